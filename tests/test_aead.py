"""
Tests for enclave_attest/aead.py

Tests:
- decryption recovers the plaintext
- any single flipped bit in ciphertext, IV or tag fails closed
"""
import pytest

from enclave_attest.aead import decrypt_aes_gcm, encrypt_aes_gcm
from enclave_attest.errors import DecryptionFailed

KEY = bytes(range(32))
IV = b"\x10" * 12
PLAINTEXT = b"opaque-session-identifier"


def _flip(data: bytes, bit: int) -> bytes:
    flipped = bytearray(data)
    flipped[bit // 8] ^= 1 << (bit % 8)
    return bytes(flipped)


@pytest.fixture
def sealed():
    return encrypt_aes_gcm(KEY, IV, PLAINTEXT)


def test_decrypt_recovers_plaintext(sealed):
    ciphertext, tag = sealed

    assert len(tag) == 16
    assert decrypt_aes_gcm(KEY, IV, ciphertext, tag) == PLAINTEXT


@pytest.mark.parametrize("bit", [0, 7, 100, 8 * len(PLAINTEXT) - 1])
def test_flipped_ciphertext_bit_fails(sealed, bit):
    ciphertext, tag = sealed

    with pytest.raises(DecryptionFailed):
        decrypt_aes_gcm(KEY, IV, _flip(ciphertext, bit), tag)


@pytest.mark.parametrize("bit", [0, 50, 95])
def test_flipped_iv_bit_fails(sealed, bit):
    ciphertext, tag = sealed

    with pytest.raises(DecryptionFailed):
        decrypt_aes_gcm(KEY, _flip(IV, bit), ciphertext, tag)


@pytest.mark.parametrize("bit", [0, 64, 127])
def test_flipped_tag_bit_fails(sealed, bit):
    ciphertext, tag = sealed

    with pytest.raises(DecryptionFailed):
        decrypt_aes_gcm(KEY, IV, ciphertext, _flip(tag, bit))


def test_wrong_key_fails(sealed):
    ciphertext, tag = sealed

    with pytest.raises(DecryptionFailed):
        decrypt_aes_gcm(b"\xff" * 32, IV, ciphertext, tag)


def test_bad_lengths_fail(sealed):
    ciphertext, tag = sealed

    with pytest.raises(DecryptionFailed):
        decrypt_aes_gcm(KEY, IV[:11], ciphertext, tag)
    with pytest.raises(DecryptionFailed):
        decrypt_aes_gcm(KEY, IV, ciphertext, tag[:15])
