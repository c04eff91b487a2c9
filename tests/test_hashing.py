import pytest

from bulkfetch.exceptions import HashingError
from bulkfetch.hashing import decode_pepper, hash_identifier

from conftest import TEST_ITERATIONS, TEST_PEPPER


def test_hash_matches_pbkdf2_sha256_reference_vector():
    # RFC 7914 section 11, first 32 bytes of PBKDF2-HMAC-SHA256("passwd", "salt", 1)
    assert hash_identifier("passwd", b"salt", 1) == (
        "55ac046e56e3089fec1691c22544b605f94185216dde0465e68b9d57c20dacbc"
    )


def test_hash_is_deterministic_hex_256_bits():
    first = hash_identifier("1S00E00AA00", TEST_PEPPER, TEST_ITERATIONS)
    second = hash_identifier("1S00E00AA00", TEST_PEPPER, TEST_ITERATIONS)

    assert first == second
    assert len(first) == 64
    int(first, 16)


def test_hash_changes_with_pepper_and_iterations():
    base = hash_identifier("1S00E00AA00", TEST_PEPPER, TEST_ITERATIONS)

    assert hash_identifier("1S00E00AA00", b"other-pepper", TEST_ITERATIONS) != base
    assert hash_identifier("1S00E00AA00", TEST_PEPPER, TEST_ITERATIONS + 1) != base
    assert hash_identifier("1S00E00AA01", TEST_PEPPER, TEST_ITERATIONS) != base


@pytest.mark.parametrize("identifier", ["", "   ", None])
def test_blank_identifier_hashes_to_empty_string(identifier):
    assert hash_identifier(identifier, TEST_PEPPER, TEST_ITERATIONS) == ""


def test_invalid_iterations_raise_hashing_error():
    with pytest.raises(HashingError):
        hash_identifier("1S00E00AA00", TEST_PEPPER, 0)


def test_hashing_error_is_runtime_error():
    assert issubclass(HashingError, RuntimeError)


def test_decode_pepper():
    assert decode_pepper("73616c74") == b"salt"


@pytest.mark.parametrize("pepper", [None, "", "not-hex"])
def test_decode_pepper_rejects_missing_or_malformed(pepper):
    with pytest.raises(HashingError):
        decode_pepper(pepper)
