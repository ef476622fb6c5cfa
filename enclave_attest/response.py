"""Decoding of the attestation handshake reply."""

import base64
import binascii
from dataclasses import dataclass, field
import logging
import re
from typing import Any, Optional
from urllib.parse import unquote

from .aead import IV_LENGTH, TAG_LENGTH
from .errors import MalformedResponse
from .keys import PUBLIC_KEY_LENGTH

logger = logging.getLogger(__name__)

_BAD_PERCENT_ESCAPE = re.compile(r"%(?![0-9A-Fa-f]{2})")


@dataclass(frozen=True)
class AttestationResponse:
    """One enclave's attestation payload, decoded from the wire."""
    server_ephemeral_public: bytes
    server_static_public: bytes
    ciphertext: bytes = field(repr=False)
    iv: bytes = field(repr=False)
    tag: bytes = field(repr=False)
    quote: bytes = field(repr=False)
    signature_body: str = field(repr=False)
    signature: bytes = field(repr=False)
    certificates: str = field(repr=False)


def _required(params: dict, key: str) -> Any:
    value = params.get(key)
    if value is None:
        raise MalformedResponse(f"Missing required field '{key}'")
    return value


def _required_string(params: dict, key: str) -> str:
    value = _required(params, key)
    if not isinstance(value, str):
        raise MalformedResponse(f"Field '{key}' must be a string")
    return value


def _required_base64(params: dict, key: str, byte_count: Optional[int] = None) -> bytes:
    encoded = _required_string(params, key)
    try:
        data = base64.b64decode(encoded, validate=True)
    except binascii.Error as e:
        raise MalformedResponse(f"Field '{key}' is not valid base64: {e}") from e
    if byte_count is not None and len(data) != byte_count:
        raise MalformedResponse(
            f"Field '{key}' must be {byte_count} bytes, got {len(data)}"
        )
    if not data:
        raise MalformedResponse(f"Field '{key}' is empty")
    return data


def parse_attestation_response(params: Any) -> AttestationResponse:
    """
    Decode and length-check every wire field of an attestation payload.

    Raises:
        MalformedResponse: If a required field is missing, not decodable, or
            of the wrong byte length
    """
    if not isinstance(params, dict):
        raise MalformedResponse("Attestation payload must be a JSON object")

    encoded_certificates = _required_string(params, 'certificates')
    if _BAD_PERCENT_ESCAPE.search(encoded_certificates):
        raise MalformedResponse("Invalidly encoded certificates: bad percent escape")
    try:
        certificates = unquote(encoded_certificates, errors='strict')
    except UnicodeDecodeError as e:
        raise MalformedResponse(f"Invalidly encoded certificates: {e}") from e

    response = AttestationResponse(
        server_ephemeral_public=_required_base64(params, 'serverEphemeralPublic', PUBLIC_KEY_LENGTH),
        server_static_public=_required_base64(params, 'serverStaticPublic', PUBLIC_KEY_LENGTH),
        ciphertext=_required_base64(params, 'ciphertext'),
        iv=_required_base64(params, 'iv', IV_LENGTH),
        tag=_required_base64(params, 'tag', TAG_LENGTH),
        quote=_required_base64(params, 'quote'),
        signature_body=_required_string(params, 'signatureBody'),
        signature=_required_base64(params, 'signature'),
        certificates=certificates,
    )
    logger.debug(
        f"Attestation payload decoded (quote {len(response.quote)} bytes, "
        f"ciphertext {len(response.ciphertext)} bytes)"
    )
    return response
