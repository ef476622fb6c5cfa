"""AES-256-GCM helpers for the session token."""

from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .errors import DecryptionFailed

IV_LENGTH = 12
TAG_LENGTH = 16


def encrypt_aes_gcm(key: bytes, iv: bytes, plaintext: bytes, aad: Optional[bytes] = None):
    """Encrypt and return (ciphertext, tag) split the way the wire carries them."""
    sealed = AESGCM(key).encrypt(iv, plaintext, aad)
    return sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]


def decrypt_aes_gcm(
    key: bytes,
    iv: bytes,
    ciphertext: bytes,
    tag: bytes,
    aad: Optional[bytes] = None
) -> bytes:
    """
    Authenticated decryption; fails closed.

    Raises:
        DecryptionFailed: On a bad key, IV or tag length, or tag mismatch
    """
    if len(iv) != IV_LENGTH:
        raise DecryptionFailed(f"IV must be {IV_LENGTH} bytes, got {len(iv)}")
    if len(tag) != TAG_LENGTH:
        raise DecryptionFailed(f"Tag must be {TAG_LENGTH} bytes, got {len(tag)}")

    try:
        return AESGCM(key).decrypt(iv, ciphertext + tag, aad)
    except InvalidTag as e:
        raise DecryptionFailed("Authentication tag mismatch") from e
    except ValueError as e:
        raise DecryptionFailed(f"Decryption failed: {e}") from e
