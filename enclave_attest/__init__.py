"""
Remote attestation client for services running inside SGX enclaves.

Establishes a mutually-verified encrypted session with an enclave: X25519 key
agreement, HKDF key derivation, SGX quote verification, IAS signature chain
validation against pinned roots, and AES-GCM decryption of the session token.
"""

from .config import (
    AttestationService,
    EnclaveConfig,
    ServiceConfig,
    load_enclave_config,
    load_service_config,
)
from .errors import (
    AttestationVerificationFailed,
    AuthorizationFailure,
    DecryptionFailed,
    InvalidAttestationCount,
    InvalidPeerKey,
    KeyDerivationError,
    MalformedQuote,
    MalformedResponse,
    RemoteAttestationError,
    SignatureVerificationFailed,
    TransportFailure,
)
from .multi import MultiAttestationCoordinator, MultiAttestationResult
from .quote import Quote, ReportDataBinding, parse_quote, verify_quote
from .session import AttestationSession, Handshake, HandshakeState, perform_attestation
from .transport import Authorization, AuthorizationClient, HttpTransport

__version__ = "0.1.0"

__all__ = [
    "AttestationService",
    "AttestationSession",
    "AttestationVerificationFailed",
    "Authorization",
    "AuthorizationClient",
    "AuthorizationFailure",
    "DecryptionFailed",
    "EnclaveConfig",
    "Handshake",
    "HandshakeState",
    "HttpTransport",
    "InvalidAttestationCount",
    "InvalidPeerKey",
    "KeyDerivationError",
    "MalformedQuote",
    "MalformedResponse",
    "MultiAttestationCoordinator",
    "MultiAttestationResult",
    "Quote",
    "RemoteAttestationError",
    "ReportDataBinding",
    "ServiceConfig",
    "SignatureVerificationFailed",
    "TransportFailure",
    "load_enclave_config",
    "load_service_config",
    "parse_quote",
    "perform_attestation",
    "verify_quote",
]
