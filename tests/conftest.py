import base64
import hashlib
import hmac
import os
import tempfile

# Settings are read at import time; give them a secret and a throwaway audit dir first.
os.environ.setdefault("SSO_SECRET", "testsecret")
os.environ.setdefault("AUDIT_DIR", tempfile.mkdtemp(prefix="rp-sso-audit-"))

import httpx
import pytest

from rp_sso import audit
from rp_sso.handshake import HandshakeConfig, SsoHandshake


SECRET = "testsecret"


@pytest.fixture(autouse=True)
def audit_dir(tmp_path, monkeypatch):
    d = tmp_path / "audit"
    monkeypatch.setattr(audit, "AUDIT_DIR", d)
    return d


@pytest.fixture()
def handshake_config() -> HandshakeConfig:
    return HandshakeConfig(
        login_url="https://sso.test/sso",
        signup_url="https://sso.test/sso/signup",
        verify_url="https://sso.test/sso/verify",
        secret=SECRET,
        timeout=0.5,
    )


@pytest.fixture()
def make_handshake(handshake_config):
    """Build a handshake whose HTTP client answers with `handler`."""
    built = []

    def _make(handler=None) -> SsoHandshake:
        if handler is None:
            handler = lambda request: httpx.Response(200)
        client = httpx.Client(transport=httpx.MockTransport(handler))
        handshake = SsoHandshake(handshake_config, client)
        built.append((handshake, client))
        return handshake

    yield _make

    for handshake, client in built:
        handshake.close()
        client.close()


@pytest.fixture()
def handshake(make_handshake) -> SsoHandshake:
    return make_handshake()


@pytest.fixture()
def sign_payload():
    """Encode + sign a plaintext body the way the identity provider does."""

    def _sign(plaintext: str, secret: str = SECRET):
        payload = base64.b64encode(plaintext.encode("utf-8")).decode("ascii")
        sig = hmac.new(secret.encode("utf-8"), payload.encode("utf-8"), hashlib.sha256).hexdigest()
        return payload, sig

    return _sign
