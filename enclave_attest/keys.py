"""
Key agreement and key derivation for the attestation handshake

The client generates a fresh X25519 key pair per handshake and agrees two
secrets with the enclave: one against the server's ephemeral key and one
against its static key. Both secrets feed a single HKDF expansion that yields
the client-bound and server-bound AES-256 keys.
"""

from dataclasses import dataclass, field
import logging

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import x25519
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from .errors import InvalidPeerKey, KeyDerivationError

logger = logging.getLogger(__name__)

PUBLIC_KEY_LENGTH = 32
AES256_KEY_LENGTH = 32

# HKDF version 3 is plain RFC 5869 (counter starts at 1) over SHA-256.
HKDF_VERSION = 3


@dataclass
class KeyPair:
    """Ephemeral X25519 key pair owned by a single handshake."""
    private_key: x25519.X25519PrivateKey = field(repr=False)
    public_key: bytes

    @classmethod
    def from_private_bytes(cls, private_bytes: bytes) -> 'KeyPair':
        """Rebuild a key pair from raw private bytes (fixtures and replays)."""
        private_key = x25519.X25519PrivateKey.from_private_bytes(private_bytes)
        return cls(
            private_key=private_key,
            public_key=private_key.public_key().public_bytes_raw()
        )


@dataclass(frozen=True)
class DerivedKeys:
    """Symmetric keys produced by one HKDF expansion."""
    client_key: bytes = field(repr=False)
    server_key: bytes = field(repr=False)


@dataclass(frozen=True)
class HandshakeKeys:
    """
    Everything the handshake's key material binds together.

    The private half of the client key pair is not kept here; once the keys
    are derived only the public values and the symmetric keys survive.
    """
    client_public: bytes
    server_ephemeral_public: bytes
    server_static_public: bytes
    derived: DerivedKeys

    @property
    def client_key(self) -> bytes:
        return self.derived.client_key

    @property
    def server_key(self) -> bytes:
        return self.derived.server_key


def generate_ephemeral_key_pair() -> KeyPair:
    """Generate a fresh X25519 key pair from the OS CSPRNG."""
    private_key = x25519.X25519PrivateKey.generate()
    public_key = private_key.public_key().public_bytes_raw()
    logger.debug(f"Generated ephemeral key pair (public: {public_key.hex()[:16]}...)")
    return KeyPair(private_key=private_key, public_key=public_key)


def agree(private_key: x25519.X25519PrivateKey, peer_public_key: bytes) -> bytes:
    """
    X25519 Diffie-Hellman between our private key and a peer's raw public key.

    Args:
        private_key: Our X25519 private key
        peer_public_key: Peer public key, 32 raw bytes

    Returns:
        32-byte shared secret

    Raises:
        InvalidPeerKey: If the peer key has the wrong length or is a
            low-order point (the shared secret would be all zeros)
    """
    if len(peer_public_key) != PUBLIC_KEY_LENGTH:
        raise InvalidPeerKey(
            f"Peer public key must be {PUBLIC_KEY_LENGTH} bytes, got {len(peer_public_key)}"
        )

    try:
        peer = x25519.X25519PublicKey.from_public_bytes(peer_public_key)
        return private_key.exchange(peer)
    except ValueError as e:
        raise InvalidPeerKey(f"Peer public key rejected: {e}") from e


def derive(
    ephemeral_secret: bytes,
    static_secret: bytes,
    client_public: bytes,
    server_ephemeral_public: bytes,
    server_static_public: bytes
) -> DerivedKeys:
    """
    Derive the client and server keys from both shared secrets.

    IKM is ephemeral_secret || static_secret, the salt is the three public
    keys in client, server-ephemeral, server-static order, and info is empty.
    The first 32 output bytes are the client key, the next 32 the server key.

    Raises:
        KeyDerivationError: If any input is empty or the halves collide
    """
    inputs = {
        'ephemeral_secret': ephemeral_secret,
        'static_secret': static_secret,
        'client_public': client_public,
        'server_ephemeral_public': server_ephemeral_public,
        'server_static_public': server_static_public,
    }
    for name, value in inputs.items():
        if not value:
            raise KeyDerivationError(f"Cannot derive keys: {name} is empty")

    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=AES256_KEY_LENGTH * 2,
        salt=client_public + server_ephemeral_public + server_static_public,
        info=b""
    )
    material = hkdf.derive(ephemeral_secret + static_secret)

    client_key = material[:AES256_KEY_LENGTH]
    server_key = material[AES256_KEY_LENGTH:]
    if client_key == server_key:
        raise KeyDerivationError("Derived client and server keys are identical")

    return DerivedKeys(client_key=client_key, server_key=server_key)


def establish(
    key_pair: KeyPair,
    server_ephemeral_public: bytes,
    server_static_public: bytes
) -> HandshakeKeys:
    """
    Run both agreements and the derivation for one handshake.

    Raises:
        InvalidPeerKey: If either server key is not a usable curve point
        KeyDerivationError: If derivation fails
    """
    if not server_ephemeral_public:
        raise KeyDerivationError("Invalid serverEphemeralPublic")
    if not server_static_public:
        raise KeyDerivationError("Invalid serverStaticPublic")

    ephemeral_to_ephemeral = agree(key_pair.private_key, server_ephemeral_public)
    ephemeral_to_static = agree(key_pair.private_key, server_static_public)

    derived = derive(
        ephemeral_to_ephemeral,
        ephemeral_to_static,
        key_pair.public_key,
        server_ephemeral_public,
        server_static_public
    )
    del ephemeral_to_ephemeral, ephemeral_to_static

    logger.info(f"✓ Session keys derived (HKDF v{HKDF_VERSION}, SHA-256)")
    return HandshakeKeys(
        client_public=key_pair.public_key,
        server_ephemeral_public=server_ephemeral_public,
        server_static_public=server_static_public,
        derived=derived
    )
