"""
Fan-out attestation across enclave replicas

The host answers one handshake with several attestation payloads keyed by
opaque server-assigned ids. All of them share the authorization, the client
ephemeral key pair and the cookies of that single round-trip. The result is
all-or-nothing: one failed entry fails the whole call.
"""

from dataclasses import dataclass, field
import logging
from typing import Dict, Optional

from .config import EnclaveConfig
from .errors import InvalidAttestationCount, MalformedResponse
from .keys import generate_ephemeral_key_pair
from .response import parse_attestation_response
from .session import AttestationSession, Handshake, HandshakeState
from .transport import Authorization

logger = logging.getLogger(__name__)

MIN_ATTESTATIONS = 1
MAX_ATTESTATIONS = 3


@dataclass(frozen=True)
class MultiAttestationResult:
    """Verified sessions keyed by the server's opaque attestation ids"""
    cookies: Dict[str, str]
    auth: Authorization
    enclave_config: EnclaveConfig = field(repr=False)
    sessions: Dict[str, AttestationSession] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.sessions)

    def __getitem__(self, attestation_id: str) -> AttestationSession:
        return self.sessions[attestation_id]


def check_attestation_count(attestations: Dict[str, dict]) -> None:
    """
    Reject responses with too few or too many attestations.

    Raises:
        InvalidAttestationCount: Unless 1 <= count <= 3
    """
    count = len(attestations)
    if not MIN_ATTESTATIONS <= count <= MAX_ATTESTATIONS:
        logger.error(f"✗ Invalid attestation count: {count}")
        raise InvalidAttestationCount(
            f"Invalid attestation count: {count} "
            f"(expected {MIN_ATTESTATIONS}-{MAX_ATTESTATIONS})",
            details={"count": count}
        )


class MultiAttestationCoordinator:
    """
    Runs one handshake whose reply carries several attestations.

    Usage:
        coordinator = MultiAttestationCoordinator(cds_config, authorization_source=auth_client)
        result = coordinator.perform()
        session = result["<attestation id>"]
    """

    def __init__(
        self,
        enclave_config: EnclaveConfig,
        authorization_source=None,
        transport=None,
        clock=None
    ) -> None:
        self.enclave_config = enclave_config
        self.authorization_source = authorization_source
        self.transport = transport
        self.clock = clock

    def perform(self, auth: Optional[Authorization] = None) -> MultiAttestationResult:
        """
        Attest every replica in the reply.

        The count is checked before any entry is examined. Every entry is then
        verified, and only when all pass are the session tokens decrypted.

        Raises:
            InvalidAttestationCount: Fewer than 1 or more than 3 attestations
            RemoteAttestationError: Any per-entry failure fails the whole call
        """
        handshake = Handshake(
            self.enclave_config,
            authorization_source=self.authorization_source,
            transport=self.transport,
            clock=self.clock
        )

        logger.info("=" * 80)
        logger.info(f"Multi Remote Attestation: {self.enclave_config.enclave_name}")
        logger.info("=" * 80)

        with handshake.tracking():
            auth = handshake.authorize(auth)
            key_pair = generate_ephemeral_key_pair()
            reply = handshake.send(auth, key_pair)

            body = reply.body
            if not isinstance(body, dict) or 'attestations' not in body:
                raise MalformedResponse("Missing required field 'attestations'")
            attestations = body['attestations']
            if not isinstance(attestations, dict):
                raise MalformedResponse("Field 'attestations' must be an object")

            check_attestation_count(attestations)

            responses = {
                attestation_id: parse_attestation_response(params)
                for attestation_id, params in attestations.items()
            }
            handshake.transition(HandshakeState.RESPONSE_RECEIVED)

            verified = {}
            for attestation_id, response in responses.items():
                logger.info("-" * 80)
                logger.info(f"Attestation {attestation_id}")
                logger.info("-" * 80)
                verified[attestation_id] = handshake.verify(response, key_pair)
            del key_pair
            handshake.transition(HandshakeState.VERIFIED)

            tokens = {
                attestation_id: handshake.decrypt(responses[attestation_id], keys)
                for attestation_id, keys in verified.items()
            }
            handshake.transition(HandshakeState.DECRYPTED)

        cookies = dict(reply.cookies)
        sessions = {
            attestation_id: AttestationSession(
                keys=verified[attestation_id],
                session_token=token,
                cookies=dict(cookies),
                enclave_name=self.enclave_config.enclave_name,
                auth=auth
            )
            for attestation_id, token in tokens.items()
        }
        logger.info(f"✓ {len(sessions)} remote attestation(s) complete")

        return MultiAttestationResult(
            cookies=cookies,
            auth=auth,
            enclave_config=self.enclave_config,
            sessions=sessions
        )
