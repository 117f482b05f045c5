import base64
import hashlib
import hmac

import pytest

from rp_sso import sso_payload


def test_to_radix_matches_int_parsing():
    assert sso_payload.to_radix(0, 32) == "0"
    assert sso_payload.to_radix(31, 32) == "v"
    assert sso_payload.to_radix(32, 32) == "10"
    assert sso_payload.to_radix(123456789, 32) == "3lnj8l"
    assert int(sso_payload.to_radix(2**130 - 1, 32), 32) == 2**130 - 1


def test_to_radix_rejects_negative():
    with pytest.raises(ValueError):
        sso_payload.to_radix(-1, 32)


def test_nonce_is_base32_and_at_most_130_bits():
    for _ in range(50):
        nonce = sso_payload.generate_nonce()
        assert nonce
        assert set(nonce) <= set("0123456789abcdefghijklmnopqrstuv")
        assert len(nonce) <= 26
        assert nonce == "0" or not nonce.startswith("0")
        assert int(nonce, 32) < 2**130


def test_nonces_differ():
    assert len({sso_payload.generate_nonce() for _ in range(100)}) == 100


def test_b64_encode_text_is_standard_padded_base64():
    assert sso_payload.b64_encode_text("a") == "YQ=="
    assert sso_payload.b64_encode_text("é") == base64.b64encode("é".encode("utf-8")).decode()


def test_b64_decode_lenient_ignores_line_breaks_and_missing_padding():
    assert sso_payload.b64_decode_lenient("aGVs\r\nbG8=") == b"hello"
    assert sso_payload.b64_decode_lenient("YQ") == b"a"
    assert sso_payload.b64_decode_lenient(" YQ== ") == b"a"


def test_b64_decode_lenient_rejects_truncated_input():
    with pytest.raises(ValueError):
        sso_payload.b64_decode_lenient("abcde")


def test_sign_is_hmac_sha256_lower_hex_and_deterministic():
    expected = hmac.new(b"k", b"payload", hashlib.sha256).hexdigest()
    assert sso_payload.sign("k", "payload") == expected
    assert sso_payload.sign("k", "payload") == sso_payload.sign("k", "payload")
    assert expected == expected.lower()
    assert len(expected) == 64


def test_sign_depends_on_secret():
    assert sso_payload.sign("k1", "payload") != sso_payload.sign("k2", "payload")


def test_signature_matches():
    sig = sso_payload.sign("k", "payload")
    assert sso_payload.signature_matches("k", "payload", sig)
    assert not sso_payload.signature_matches("k", "payload", sig.upper())
    assert not sso_payload.signature_matches("k", "payload", sig[:-1])
    assert not sso_payload.signature_matches("k", "payload", "ü" * 64)


def test_outbound_plaintext_layout():
    assert (
        sso_payload.outbound_plaintext("https://rp.test/cb?x=1", "abc")
        == "return_sso_url=https://rp.test/cb?x=1&nonce=abc"
    )


def test_decode_inbound_url_decodes_after_base64():
    payload = base64.b64encode(b"username=alice+smith&email=alice%40example.com").decode()
    assert sso_payload.decode_inbound(payload) == "username=alice smith&email=alice@example.com"


def test_decode_inbound_rejects_invalid_utf8():
    payload = base64.b64encode(b"\xff\xfe\xfd").decode()
    with pytest.raises(ValueError):
        sso_payload.decode_inbound(payload)


def test_parse_fields_basic():
    assert sso_payload.parse_fields("external_id=42&username=alice") == {
        "external_id": "42",
        "username": "alice",
    }


def test_parse_fields_tolerates_odd_segments():
    fields = sso_payload.parse_fields("&a=1&&flag&empty=&eq=x=y&")
    assert fields == {"a": "1", "flag": None, "empty": None, "eq": "x=y"}


@pytest.mark.parametrize(
    "value, expected",
    [
        ("42", 42),
        ("-7", -7),
        ("+5", 5),
        ("2147483647", 2147483647),
        ("-2147483648", -2147483648),
        ("2147483648", None),
        ("4_2", None),
        (" 42", None),
        ("42.0", None),
        ("٤٢", None),
        ("", None),
        (None, None),
    ],
)
def test_parse_int32(value, expected):
    assert sso_payload.parse_int32(value) == expected
