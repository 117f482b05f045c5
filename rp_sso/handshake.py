"""
rp_sso/handshake.py

The relying-party side of the SSO handshake.

Outbound (browser -> provider):
  1) mint a nonce
  2) body  = "return_sso_url=<url>&nonce=<nonce>"
  3) sso   = base64(body)
  4) sig   = hex(HMAC-SHA256(secret, sso))
  5) URL   = <provider url>?sso=<urlencoded sso>&sig=<sig>

Inbound (provider -> browser -> us):
  1) recompute sig over the received `sso` and compare (constant time)
  2) only then decode + parse the body
  3) require external_id (int), username, email

Failure handling:
- An unreachable provider is a boolean False, never an exception.
- A forged payload and a malformed payload look identical to the caller
  (None), so the endpoint cannot be used as a decoding oracle.
- Only caller bugs (empty return URL, unknown flow) raise SsoMisuseError.

Nonces are not recorded here. A valid (sso, sig) pair can be replayed until
the provider refuses it; single-use enforcement is the provider's job.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Union
from urllib.parse import quote

import httpx

from .models import IdentityClaim
from . import sso_payload


class SsoMisuseError(ValueError):
    """Raised when the handshake is called with arguments no caller should pass."""


class SsoFlow(str, Enum):
    LOGIN = "login"
    SIGNUP = "signup"
    VERIFY = "verify"


class AuthReason(str, Enum):
    AUTHENTICATED = "authenticated"
    SIGNATURE_MISMATCH = "signature_mismatch"
    MALFORMED_PAYLOAD = "malformed_payload"
    INCOMPLETE_PAYLOAD = "incomplete_payload"


@dataclass(frozen=True)
class HandshakeConfig:
    login_url: str
    signup_url: str
    verify_url: str
    secret: str = field(repr=False)
    # seconds
    timeout: float = 2.0

    def base_url(self, flow: SsoFlow) -> str:
        if flow is SsoFlow.LOGIN:
            return self.login_url
        if flow is SsoFlow.SIGNUP:
            return self.signup_url
        return self.verify_url


@dataclass(frozen=True)
class SsoRedirect:
    """A signed redirect plus the pieces worth auditing."""

    url: str
    flow: SsoFlow
    nonce: str
    payload: str
    signature: str


@dataclass(frozen=True)
class AuthOutcome:
    """
    Result of checking an inbound payload.

    `reason` is for the audit log only. It must not be shown to clients:
    telling "forged" from "malformed" apart would hand attackers an oracle.
    """

    claim: Optional[IdentityClaim]
    reason: AuthReason

    @property
    def ok(self) -> bool:
        return self.claim is not None


class SsoHandshake:
    """Builds signed provider redirects and authenticates provider responses."""

    def __init__(self, config: HandshakeConfig, client: httpx.Client):
        self._config = config
        self._client = client
        # Availability checks run here so the caller can walk away at the deadline even if
        # the provider keeps a socket busy.
        self._check_pool = ThreadPoolExecutor(max_workers=4, thread_name_prefix="sso-availability")

    @property
    def config(self) -> HandshakeConfig:
        return self._config

    def close(self) -> None:
        """Stop the availability workers; the HTTP client belongs to the caller."""
        self._check_pool.shutdown(wait=False, cancel_futures=True)

    # -------------------------------------------------------------------------
    # Availability
    # -------------------------------------------------------------------------
    def is_available(self) -> bool:
        """
        GET the login URL once; the whole call is bounded by the configured timeout.

        True only for an exact 200. Timeouts, transport errors, bad URLs and
        every other status collapse to False. The response body is never read,
        and a provider that trickles bytes past the deadline counts as down.
        """
        future = self._check_pool.submit(self._login_status_ok)
        try:
            return future.result(timeout=self._config.timeout)
        except FutureTimeout:
            future.cancel()
            return False

    def _login_status_ok(self) -> bool:
        try:
            with self._client.stream("GET", self._config.login_url, timeout=self._config.timeout) as resp:
                return resp.status_code == httpx.codes.OK
        except (httpx.HTTPError, httpx.InvalidURL):
            return False

    # -------------------------------------------------------------------------
    # Outbound
    # -------------------------------------------------------------------------
    def generate_payload(self, return_url: str, nonce: Optional[str] = None) -> str:
        """Base64 body for an outbound request; mints a nonce unless given one."""
        if nonce is None:
            nonce = sso_payload.generate_nonce()
        return sso_payload.b64_encode_text(sso_payload.outbound_plaintext(return_url, nonce))

    def generate_signature(self, payload: str) -> str:
        return sso_payload.sign(self._config.secret, payload)

    def build_redirect(self, return_url: str, flow: Union[SsoFlow, str] = SsoFlow.LOGIN) -> SsoRedirect:
        if not return_url or not str(return_url).strip():
            raise SsoMisuseError("return_url must be a non-empty URL")

        try:
            flow = SsoFlow(flow)
        except ValueError:
            raise SsoMisuseError(f"unknown SSO flow: {flow!r}") from None

        base_url = self._config.base_url(flow)
        nonce = sso_payload.generate_nonce()
        payload = self.generate_payload(return_url, nonce)
        sig = self.generate_signature(payload)

        url = base_url + "?sso=" + quote(payload, safe="") + "&sig=" + sig
        return SsoRedirect(url=url, flow=flow, nonce=nonce, payload=payload, signature=sig)

    def build_redirect_url(self, return_url: str, flow: Union[SsoFlow, str] = SsoFlow.LOGIN) -> str:
        """Fully formed provider URL; redirect the browser to it as-is."""
        return self.build_redirect(return_url, flow).url

    def login_url_for(self, return_url: str) -> str:
        return self.build_redirect_url(return_url, SsoFlow.LOGIN)

    def signup_url_for(self, return_url: str) -> str:
        return self.build_redirect_url(return_url, SsoFlow.SIGNUP)

    def verify_url_for(self, return_url: str) -> str:
        return self.build_redirect_url(return_url, SsoFlow.VERIFY)

    # -------------------------------------------------------------------------
    # Inbound
    # -------------------------------------------------------------------------
    def inspect(self, payload: str, signature: str) -> AuthOutcome:
        """
        Check an inbound (sso, sig) pair and say why it was accepted or not.

        `payload` is the Base64 string exactly as received in `sso`, after the
        web layer has URL-decoded the query string.
        """
        # Nothing in the payload is looked at before the signature holds.
        try:
            matches = sso_payload.signature_matches(self._config.secret, payload, signature)
        except UnicodeEncodeError:
            # lone surrogates cannot be UTF-8 encoded, so cannot be what was signed
            matches = False
        if not matches:
            return AuthOutcome(None, AuthReason.SIGNATURE_MISMATCH)

        try:
            fields = sso_payload.parse_fields(sso_payload.decode_inbound(payload))
        except ValueError:
            return AuthOutcome(None, AuthReason.MALFORMED_PAYLOAD)

        external_id = sso_payload.parse_int32(fields.get("external_id"))
        username = fields.get("username")
        email = fields.get("email")

        if external_id is None or username is None or email is None:
            return AuthOutcome(None, AuthReason.INCOMPLETE_PAYLOAD)

        claim = IdentityClaim(id=external_id, username=username, email=email, avatar_url=None)
        return AuthOutcome(claim, AuthReason.AUTHENTICATED)

    def authenticate(self, payload: str, signature: str) -> Optional[IdentityClaim]:
        """The verified identity, or None for any forged, stale or malformed payload."""
        return self.inspect(payload, signature).claim
