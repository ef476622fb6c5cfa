"""
Error taxonomy for remote attestation.

Every failure raised by this package is a RemoteAttestationError carrying a
stable machine-readable code and whether the caller may retry the operation.
Only authorization and transport failures are retryable; everything else
means the remote party is adversarial or incompatible.
"""

from typing import Optional


class ErrorCodes:
    """Stable machine-readable error codes."""

    AUTHORIZATION_FAILURE = "AUTHORIZATION_FAILURE"
    TRANSPORT_FAILURE = "TRANSPORT_FAILURE"
    MALFORMED_RESPONSE = "MALFORMED_RESPONSE"
    INVALID_PEER_KEY = "INVALID_PEER_KEY"
    KEY_DERIVATION_ERROR = "KEY_DERIVATION_ERROR"
    MALFORMED_QUOTE = "MALFORMED_QUOTE"
    ATTESTATION_VERIFICATION_FAILED = "ATTESTATION_VERIFICATION_FAILED"
    SIGNATURE_VERIFICATION_FAILED = "SIGNATURE_VERIFICATION_FAILED"
    DECRYPTION_FAILED = "DECRYPTION_FAILED"
    INVALID_ATTESTATION_COUNT = "INVALID_ATTESTATION_COUNT"


class RemoteAttestationError(Exception):
    """Base class for every attestation failure."""

    code: str = "REMOTE_ATTESTATION_ERROR"
    retryable: bool = False

    def __init__(self, message: str, details: Optional[dict] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
            "retryable": self.retryable,
        }


class AuthorizationFailure(RemoteAttestationError):
    """Authorization could not be obtained or was rejected by the host."""

    code = ErrorCodes.AUTHORIZATION_FAILURE
    retryable = True


class TransportFailure(RemoteAttestationError):
    """The network round-trip failed (connection, timeout, bad status)."""

    code = ErrorCodes.TRANSPORT_FAILURE
    retryable = True


class MalformedResponse(RemoteAttestationError):
    code = ErrorCodes.MALFORMED_RESPONSE


class InvalidPeerKey(RemoteAttestationError):
    code = ErrorCodes.INVALID_PEER_KEY


class KeyDerivationError(RemoteAttestationError):
    code = ErrorCodes.KEY_DERIVATION_ERROR


class MalformedQuote(RemoteAttestationError):
    code = ErrorCodes.MALFORMED_QUOTE


class AttestationVerificationFailed(RemoteAttestationError):
    """The quote does not come from the pinned enclave or this handshake."""

    code = ErrorCodes.ATTESTATION_VERIFICATION_FAILED


class SignatureVerificationFailed(RemoteAttestationError):
    """The IAS certificate chain, signature or signed report is not acceptable."""

    code = ErrorCodes.SIGNATURE_VERIFICATION_FAILED


class DecryptionFailed(RemoteAttestationError):
    code = ErrorCodes.DECRYPTION_FAILED


class InvalidAttestationCount(RemoteAttestationError):
    code = ErrorCodes.INVALID_ATTESTATION_COUNT
