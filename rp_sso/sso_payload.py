# rp_sso/sso_payload.py
#
# -----------------------------------------------------------------------------
# Architectural notes
# -----------------------------------------------------------------------------
# This module defines the *wire layer* of the SSO handshake.
#
# Responsibilities:
#   - Mint nonces for outbound payloads
#   - Base64 transport encoding (outbound strict, inbound lenient)
#   - HMAC-SHA256 signing and constant-time signature comparison
#   - Tolerant parsing of the provider's key=value&key=value payload
#
# What this module is NOT:
#   - Not a policy engine (which fields are required lives in handshake.py)
#   - Not stateful (nonces are never recorded)
#   - Not an HTTP layer
#
# Wire format (both directions):
#
#     sso = base64( utf8( "k1=v1&k2=v2&..." ) )
#     sig = hex( HMAC-SHA256( key = utf8(secret), msg = utf8(sso) ) )
#
# The signature covers the *encoded* payload string, exactly as transmitted,
# so the receiver can check it before decoding anything.
# -----------------------------------------------------------------------------


import base64
import hashlib
import hmac
import re
import secrets
from typing import Dict, Optional
from urllib.parse import unquote_plus


CHAR_ENCODING = "utf-8"

NONCE_BITS = 130
NONCE_RADIX = 32
_RADIX_DIGITS = "0123456789abcdefghijklmnopqrstuvwxyz"

_B64_NOISE = re.compile(r"[^A-Za-z0-9+/]")
_INT_RE = re.compile(r"[+-]?[0-9]+")

INT32_MIN = -(2**31)
INT32_MAX = 2**31 - 1


# -----------------------------------------------------------------------------
# Nonce
# -----------------------------------------------------------------------------
def to_radix(n: int, radix: int) -> str:
    """Render a non-negative integer in the given radix, lowercase, no leading zeros."""
    if n < 0:
        raise ValueError("n must be non-negative")
    if not 2 <= radix <= len(_RADIX_DIGITS):
        raise ValueError("radix out of range")
    if n == 0:
        return "0"

    out = []
    while n:
        n, rem = divmod(n, radix)
        out.append(_RADIX_DIGITS[rem])
    return "".join(reversed(out))


def generate_nonce() -> str:
    """
    130 random bits from the OS CSPRNG, rendered base-32 (digits 0-9a-v).

    `secrets` draws from os.urandom, which is safe to call from any thread.
    """
    return to_radix(secrets.randbits(NONCE_BITS), NONCE_RADIX)


# -----------------------------------------------------------------------------
# Base64 helpers
# -----------------------------------------------------------------------------
def b64_encode_text(text: str) -> str:
    """Standard Base64 (WITH padding) of the UTF-8 bytes of `text`."""
    return base64.b64encode(text.encode(CHAR_ENCODING)).decode("ascii")


def b64_decode_lenient(s: str) -> bytes:
    """
    Decode standard Base64 the forgiving way providers tend to need:

      - characters outside the Base64 alphabet (line breaks, spaces,
        stray padding) are discarded
      - missing '=' padding is restored

    Raises ValueError when what remains cannot be Base64.
    """
    s = _B64_NOISE.sub("", str(s))
    if len(s) % 4 == 1:
        raise ValueError("truncated base64 input")
    s += "=" * (-len(s) % 4)
    return base64.b64decode(s, validate=True)


# -----------------------------------------------------------------------------
# Signing
# -----------------------------------------------------------------------------
def sign(secret: str, payload: str) -> str:
    """
    HMAC-SHA256 over the UTF-8 bytes of the encoded payload, lowercase hex.

    Deterministic: the same (secret, payload) always yields the same string.
    """
    mac = hmac.new(secret.encode(CHAR_ENCODING), payload.encode(CHAR_ENCODING), hashlib.sha256)
    return mac.hexdigest()


def signature_matches(secret: str, payload: str, signature: str) -> bool:
    """Recompute the signature and compare it to `signature` in constant time."""
    expected = sign(secret, payload)
    return hmac.compare_digest(expected.encode(CHAR_ENCODING), str(signature).encode(CHAR_ENCODING))


# -----------------------------------------------------------------------------
# Payload bodies
# -----------------------------------------------------------------------------
def outbound_plaintext(return_url: str, nonce: str) -> str:
    # The return URL is embedded verbatim; the whole body is Base64'd afterwards.
    return "return_sso_url=" + return_url + "&nonce=" + nonce


def decode_inbound(payload: str) -> str:
    """
    Base64 -> UTF-8 -> URL-decode.

    The URL decode runs over the whole body before it is split, so an
    encoded '&' or '=' inside a value still acts as a separator.

    Raises ValueError (binascii.Error / UnicodeDecodeError) on bad input.
    """
    text = b64_decode_lenient(payload).decode(CHAR_ENCODING)
    return unquote_plus(text, encoding=CHAR_ENCODING, errors="strict")


def parse_fields(body: str) -> Dict[str, Optional[str]]:
    """
    Split `k=v&k=v` into a mapping.

    - empty segments are skipped
    - each segment splits on the FIRST '='
    - a segment without '=' (or with an empty value) maps to None
    - duplicate keys: last one wins
    """
    out: Dict[str, Optional[str]] = {}
    for segment in body.split("&"):
        if not segment:
            continue
        key, sep, value = segment.partition("=")
        out[key] = value if sep and value else None
    return out


def parse_int32(value: Optional[str]) -> Optional[int]:
    """Base-10 signed 32-bit integer, ASCII digits only; None on anything else."""
    if value is None or not _INT_RE.fullmatch(value):
        return None
    n = int(value)
    if not INT32_MIN <= n <= INT32_MAX:
        return None
    return n
