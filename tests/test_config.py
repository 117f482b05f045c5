import pytest
from pydantic import ValidationError

from rp_sso.config import Settings


def test_origin_is_normalized():
    s = Settings(ORIGIN="  https://RP.Example.com:8443/  ")
    assert s.ORIGIN == "https://rp.example.com:8443"


def test_origin_requires_http_scheme():
    with pytest.raises(ValidationError):
        Settings(ORIGIN="ftp://rp.example.com")


@pytest.mark.parametrize("field", ["SSO_LOGIN_URL", "SSO_SIGNUP_URL", "SSO_VERIFY_URL"])
def test_provider_urls_must_be_absolute(field):
    with pytest.raises(ValidationError):
        Settings(**{field: "/sso/login"})


def test_provider_url_keeps_path_and_query():
    s = Settings(SSO_LOGIN_URL=" https://idp.test/sso?realm=rp ")
    assert s.SSO_LOGIN_URL == "https://idp.test/sso?realm=rp"


def test_default_return_url_follows_origin():
    s = Settings(ORIGIN="https://rp.test", CALLBACK_URL="")
    assert s.default_return_url == "https://rp.test/sso/callback"

    s = Settings(ORIGIN="https://rp.test", CALLBACK_URL="https://rp.test/after")
    assert s.default_return_url == "https://rp.test/after"


def test_handshake_config_converts_timeout_and_keeps_secret_out_of_repr():
    s = Settings(SSO_SECRET="s3cr3t", SSO_TIMEOUT_MS=1500, SSO_LOGIN_URL="https://idp.test/sso")
    config = s.handshake_config()

    assert config.timeout == 1.5
    assert config.secret == "s3cr3t"
    assert config.login_url == "https://idp.test/sso"
    assert "s3cr3t" not in repr(config)
    assert "s3cr3t" not in repr(s)


def test_handshake_config_requires_secret():
    with pytest.raises(ValueError):
        Settings(SSO_SECRET="").handshake_config()


@pytest.mark.parametrize("value", [0, -5])
def test_timeout_must_be_positive(value):
    with pytest.raises(ValidationError):
        Settings(SSO_TIMEOUT_MS=value)


@pytest.mark.parametrize(
    "raw, expected",
    [("off", False), ("0", False), ("", False), ("yes", True), ("1", True), (False, False)],
)
def test_audit_enabled_accepts_env_style_values(raw, expected):
    assert Settings(AUDIT_ENABLED=raw).AUDIT_ENABLED is expected
