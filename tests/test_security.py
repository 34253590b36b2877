"""Secret parsing, challenge generation and signature checks."""

import hashlib
import hmac

import pytest

from devconfirm.errors import InvalidFormat, InvalidSecretFormat
from devconfirm.utils.security import (
    compute_signature,
    create_access_token,
    decode_token,
    generate_challenge,
    new_confirmation_id,
    parse_shared_secret,
    signatures_match,
)

SECRET_HEX = "ab" * 32


def test_secret_round_trips_as_raw_bytes():
    secret = parse_shared_secret(SECRET_HEX)
    assert secret == bytes([0xAB] * 32)
    assert len(secret) == 32


def test_secret_case_is_normalised():
    assert parse_shared_secret(SECRET_HEX.upper()) == parse_shared_secret(SECRET_HEX)
    assert parse_shared_secret("aB" * 32) == parse_shared_secret(SECRET_HEX)


@pytest.mark.parametrize("bad", [
    "",
    "ab" * 31,
    "ab" * 33,
    "ab" * 31 + "zz",
    "0x" + "ab" * 31,
    " " + "ab" * 32,
    "ab" * 32 + "\n",
])
def test_secret_rejects_malformed_input(bad):
    with pytest.raises(InvalidSecretFormat):
        parse_shared_secret(bad)


def test_invalid_secret_is_an_invalid_format():
    assert issubclass(InvalidSecretFormat, InvalidFormat)


def test_signature_covers_hex_challenge_text():
    secret = bytes(range(32))
    challenge = bytes(range(32, 64))
    expected = hmac.new(secret, challenge.hex().encode(), hashlib.sha256).hexdigest()
    assert compute_signature(secret, challenge) == expected


def test_signatures_match_is_case_insensitive_on_input():
    sig = compute_signature(b"k" * 32, b"c" * 32)
    assert signatures_match(sig, sig)
    assert signatures_match(sig, sig.upper())


def test_signatures_match_rejects_mismatch_and_garbage():
    sig = compute_signature(b"k" * 32, b"c" * 32)
    other = compute_signature(b"j" * 32, b"c" * 32)
    assert not signatures_match(sig, other)
    assert not signatures_match(sig, sig[:-2])
    assert not signatures_match(sig, "zz" * 32)
    assert not signatures_match(sig, None)


def test_challenges_and_ids_are_fresh():
    assert len(generate_challenge()) == 32
    assert generate_challenge() != generate_challenge()
    ids = {new_confirmation_id() for _ in range(1000)}
    assert len(ids) == 1000


def test_access_token_round_trip():
    payload = decode_token(create_access_token("user_1"))
    assert payload["sub"] == "user_1"
    assert payload["type"] == "access"
