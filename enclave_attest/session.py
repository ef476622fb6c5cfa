"""
Attestation handshake orchestration

A Handshake owns one ephemeral key pair and walks the states

    AWAITING_AUTHORIZATION -> HANDSHAKE_SENT -> RESPONSE_RECEIVED
        -> VERIFIED -> DECRYPTED

or ends in FAILED from any of them. Key derivation, quote verification and
signature verification must all pass before the session token is decrypted.
A Handshake is single-use; concurrent handshakes each get their own.
"""

from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
import base64
import logging
from typing import Callable, Dict, Iterator, Optional

from .aead import decrypt_aes_gcm
from .config import EnclaveConfig
from .errors import AuthorizationFailure, RemoteAttestationError
from .ias import verify_signature, verify_signature_body
from .keys import HandshakeKeys, KeyPair, establish, generate_ephemeral_key_pair
from .quote import parse_quote, verify_quote
from .response import AttestationResponse, parse_attestation_response
from .transport import Authorization, HttpTransport, TransportResponse

logger = logging.getLogger(__name__)


class HandshakeState(Enum):
    AWAITING_AUTHORIZATION = "awaiting-authorization"
    HANDSHAKE_SENT = "handshake-sent"
    RESPONSE_RECEIVED = "response-received"
    VERIFIED = "verified"
    DECRYPTED = "decrypted"
    FAILED = "failed"


@dataclass(frozen=True)
class AttestationSession:
    """A verified attested channel, ready for requests to the enclave."""
    keys: HandshakeKeys = field(repr=False)
    session_token: bytes = field(repr=False)
    cookies: Dict[str, str]
    enclave_name: str
    auth: Authorization

    @property
    def request_id(self) -> bytes:
        return self.session_token


class Handshake:
    """
    One attestation attempt against a single enclave identity.

    Usage:
        handshake = Handshake(enclave_config, authorization_source=auth_client)
        session = handshake.run()
    """

    def __init__(
        self,
        enclave_config: EnclaveConfig,
        authorization_source=None,
        transport=None,
        clock: Optional[Callable[[], datetime]] = None
    ) -> None:
        self.config = enclave_config
        self.authorization_source = authorization_source
        self.transport = transport or HttpTransport()
        self.clock = clock or (lambda: datetime.now(timezone.utc))

        self.state = HandshakeState.AWAITING_AUTHORIZATION
        self.failure: Optional[RemoteAttestationError] = None
        self._used = False

    def transition(self, state: HandshakeState) -> None:
        logger.debug(f"Handshake '{self.config.enclave_name}': {self.state.value} -> {state.value}")
        self.state = state

    @contextmanager
    def tracking(self) -> Iterator['Handshake']:
        """Record any attestation error as the terminal FAILED state."""
        if self._used:
            raise RuntimeError("Handshake objects are single-use; create a new one to retry")
        self._used = True
        try:
            yield self
        except RemoteAttestationError as e:
            logger.error(f"✗ Attestation with '{self.config.enclave_name}' failed "
                         f"in state {self.state.value}: {e}")
            self.failure = e
            self.transition(HandshakeState.FAILED)
            raise

    def authorize(self, auth: Optional[Authorization] = None) -> Authorization:
        """Use the pinned authorization if given, otherwise fetch one."""
        if auth is not None:
            logger.info("Using caller-supplied authorization")
            return auth
        if self.authorization_source is None:
            raise AuthorizationFailure("No authorization supplied and no authorization source configured")
        return self.authorization_source.fetch(self.config.service)

    def send(self, auth: Authorization, key_pair: KeyPair) -> TransportResponse:
        """PUT the client's ephemeral public key to the enclave host."""
        logger.info(f"Sending handshake to enclave '{self.config.enclave_name}'...")
        self.transition(HandshakeState.HANDSHAKE_SENT)
        reply = self.transport.request(
            "PUT",
            self.config.attestation_url,
            json_body={"clientPublic": base64.b64encode(key_pair.public_key).decode('ascii')},
            auth=auth.basic_auth
        )
        logger.info(f"✓ Handshake response received (HTTP {reply.status_code})")
        return reply

    def verify(self, response: AttestationResponse, key_pair: KeyPair) -> HandshakeKeys:
        """
        Derive keys, then verify the quote and the IAS signature.

        Returns:
            The handshake keys, only once every check has passed
        """
        keys = establish(key_pair, response.server_ephemeral_public, response.server_static_public)

        quote = parse_quote(response.quote)
        verify_quote(quote, keys, self.config.mrenclave, self.config.report_data_binding)

        verify_signature(
            response.signature_body,
            response.signature,
            response.certificates,
            self.config.trust_roots
        )
        verify_signature_body(
            response.signature_body,
            quote,
            max_age=self.config.max_signature_age,
            now=self.clock()
        )
        return keys

    def decrypt(self, response: AttestationResponse, keys: HandshakeKeys) -> bytes:
        """Decrypt the server-issued session token with the server key."""
        token = decrypt_aes_gcm(keys.server_key, response.iv, response.ciphertext, response.tag)
        logger.info("✓ Session token decrypted")
        return token

    def run(self, auth: Optional[Authorization] = None) -> AttestationSession:
        """
        Perform the full handshake against a single enclave.

        Args:
            auth: Pinned authorization; fetched from the source when None

        Returns:
            A verified AttestationSession

        Raises:
            RemoteAttestationError: Any typed failure; the handshake is left
                in the FAILED state
        """
        logger.info("=" * 80)
        logger.info(f"Remote Attestation: {self.config.enclave_name}")
        logger.info("=" * 80)

        with self.tracking():
            auth = self.authorize(auth)
            key_pair = generate_ephemeral_key_pair()
            reply = self.send(auth, key_pair)

            response = parse_attestation_response(reply.body)
            self.transition(HandshakeState.RESPONSE_RECEIVED)

            keys = self.verify(response, key_pair)
            del key_pair
            self.transition(HandshakeState.VERIFIED)

            token = self.decrypt(response, keys)
            self.transition(HandshakeState.DECRYPTED)

        logger.info(f"✓ Remote attestation with '{self.config.enclave_name}' complete")
        return AttestationSession(
            keys=keys,
            session_token=token,
            cookies=dict(reply.cookies),
            enclave_name=self.config.enclave_name,
            auth=auth
        )


def perform_attestation(
    enclave_config: EnclaveConfig,
    authorization_source=None,
    transport=None,
    auth: Optional[Authorization] = None
) -> AttestationSession:
    """Run a fresh single-enclave handshake."""
    handshake = Handshake(enclave_config, authorization_source=authorization_source, transport=transport)
    return handshake.run(auth)
