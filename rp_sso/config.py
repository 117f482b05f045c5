from pathlib import Path
from urllib.parse import urlparse, urlunparse

from pydantic import SecretStr, ValidationInfo, field_validator
from pydantic_settings import BaseSettings

from .handshake import HandshakeConfig


DEFAULT_AUDIT_DIR = Path(__file__).resolve().parent.parent / "audit"


def _require_absolute_url(v: str, field: str) -> str:
    v = (v or "").strip()
    p = urlparse(v)

    if p.scheme not in ("http", "https"):
        raise ValueError(f"{field} must start with http:// or https://")

    if not p.hostname:
        raise ValueError(f"{field} must include a hostname")

    return v


class Settings(BaseSettings):
    ORIGIN: str = "http://127.0.0.1:8081"

    # where the provider sends the browser back to (empty -> ORIGIN/sso/callback)
    CALLBACK_URL: str = ""

    # identity provider endpoints
    SSO_LOGIN_URL: str = "https://sso.example.org/sso"
    SSO_SIGNUP_URL: str = "https://sso.example.org/sso/signup"
    SSO_VERIFY_URL: str = "https://sso.example.org/sso/verify"

    # shared HMAC key; never logged, never rendered
    SSO_SECRET: SecretStr = SecretStr("")

    # availability check deadline
    SSO_TIMEOUT_MS: int = 2000

    AUDIT_ENABLED: bool = True
    AUDIT_DIR: Path = DEFAULT_AUDIT_DIR

    class Config:
        env_file = ".env"
        frozen = True

    @field_validator("ORIGIN")
    @classmethod
    def normalize_origin(cls, v: str) -> str:
        """
        ORIGIN is the public origin of this relying application.

        Normalization:
          - strip whitespace
          - strip trailing slash
          - require http/https
          - require hostname
          - lowercase hostname

        Note: we preserve an optional port if present.
        """
        v = _require_absolute_url(v, "ORIGIN").rstrip("/")
        p = urlparse(v)

        netloc = p.hostname.lower()
        if p.port:
            netloc = f"{netloc}:{p.port}"

        return urlunparse((p.scheme, netloc, "", "", "", ""))

    @field_validator("SSO_LOGIN_URL", "SSO_SIGNUP_URL", "SSO_VERIFY_URL")
    @classmethod
    def normalize_provider_url(cls, v: str, info: ValidationInfo) -> str:
        # Path and query are kept verbatim; the provider owns them.
        return _require_absolute_url(v, info.field_name)

    @field_validator("CALLBACK_URL")
    @classmethod
    def normalize_callback(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            return ""
        return _require_absolute_url(v, "CALLBACK_URL")

    @field_validator("SSO_TIMEOUT_MS")
    @classmethod
    def positive_timeout(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("SSO_TIMEOUT_MS must be a positive number of milliseconds")
        return v

    @field_validator("AUDIT_ENABLED", mode="before")
    @classmethod
    def normalize_audit_enabled(cls, v):
        # accept 0/1, "true"/"false" from env consistently
        if isinstance(v, bool):
            return v
        if isinstance(v, (int,)):
            return bool(v)
        if isinstance(v, str):
            return v.strip().lower() not in ("0", "false", "no", "off", "")
        return True

    @property
    def default_return_url(self) -> str:
        return self.CALLBACK_URL or f"{self.ORIGIN}/sso/callback"

    def handshake_config(self) -> HandshakeConfig:
        """
        Freeze the provider settings into the handshake's own config value.

        Raises ValueError when no shared secret is configured: an unsigned
        handshake must never be built.
        """
        secret = self.SSO_SECRET.get_secret_value()
        if not secret:
            raise ValueError("SSO_SECRET must be set to the secret shared with the identity provider")

        return HandshakeConfig(
            login_url=self.SSO_LOGIN_URL,
            signup_url=self.SSO_SIGNUP_URL,
            verify_url=self.SSO_VERIFY_URL,
            secret=secret,
            timeout=self.SSO_TIMEOUT_MS / 1000.0,
        )


settings = Settings()
