"""
IAS signature verification

The attestation service returns the quote's verification report (the
"signature body") signed by the IAS report-signing key. This module validates
the signing certificate chain against pinned trust roots only, verifies the
signature over the body, and appraises the signed report itself.
"""

import base64
from datetime import datetime, timedelta, timezone
import hmac
import json
import logging
from typing import List, Optional, Sequence

from OpenSSL import crypto

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa

from .errors import SignatureVerificationFailed
from .quote import Quote

logger = logging.getLogger(__name__)

IAS_REPORT_VERSION = 3
ACCEPTED_QUOTE_STATUSES = ("OK",)
DEFAULT_MAX_SIGNATURE_AGE = timedelta(hours=24)
_TIMESTAMP_FORMATS = ("%Y-%m-%dT%H:%M:%S.%f", "%Y-%m-%dT%H:%M:%S")


def load_certificate_chain(certificates_pem: str) -> List[x509.Certificate]:
    """
    Parse concatenated PEM certificates, leaf first.

    Raises:
        SignatureVerificationFailed: If no certificate can be parsed
    """
    try:
        chain = x509.load_pem_x509_certificates(certificates_pem.encode('ascii'))
    except (ValueError, UnicodeEncodeError) as e:
        raise SignatureVerificationFailed(f"Could not parse certificate chain: {e}") from e

    if not chain:
        raise SignatureVerificationFailed("Certificate chain is empty")

    for i, cert in enumerate(chain):
        logger.info(f"✓ Certificate {i} loaded successfully")
        logger.info(f"  Subject: {cert.subject.rfc4514_string()}")
        logger.info(f"  Issuer: {cert.issuer.rfc4514_string()}")
    return chain


def validate_certificate_chain(
    chain: Sequence[x509.Certificate],
    trust_roots: Sequence[bytes]
) -> None:
    """
    Validate a certificate chain up to one of the pinned trust roots.

    Uses OpenSSL.crypto X509StoreContext with a store that holds only the
    pinned roots, so the system certificate store is never consulted. After
    OpenSSL builds the chain, the anchor it used must also match a pinned
    root byte for byte.

    Args:
        chain: Parsed certificates, leaf first, then intermediates
        trust_roots: Pinned root certificates in DER format

    Raises:
        SignatureVerificationFailed: If the chain does not validate
    """
    logger.info("Validating certificate chain...")

    if not trust_roots:
        raise SignatureVerificationFailed("No trust roots configured")

    store = crypto.X509Store()
    for root_der in trust_roots:
        try:
            store.add_cert(crypto.load_certificate(crypto.FILETYPE_ASN1, root_der))
        except crypto.Error as e:
            raise SignatureVerificationFailed(f"Invalid pinned trust root: {e}") from e
    logger.info(f"✓ X509Store created with {len(trust_roots)} pinned root certificates")

    leaf = crypto.X509.from_cryptography(chain[0])
    untrusted = [crypto.X509.from_cryptography(cert) for cert in chain[1:]]

    store_ctx = crypto.X509StoreContext(store, leaf, chain=untrusted)
    try:
        verified_chain = store_ctx.get_verified_chain()
    except crypto.X509StoreContextError as e:
        logger.error(f"✗ Certificate chain validation failed: {e}")
        raise SignatureVerificationFailed(f"Certificate chain validation failed: {e}") from e

    anchor_der = crypto.dump_certificate(crypto.FILETYPE_ASN1, verified_chain[-1])
    if not any(hmac.compare_digest(anchor_der, root_der) for root_der in trust_roots):
        logger.error("✗ Chain anchor is not one of the pinned root certificates")
        raise SignatureVerificationFailed("Certificate chain is not anchored at a pinned root")

    logger.info("✓ Certificate chain validation successful")
    logger.info(f"  → Anchored at: {verified_chain[-1].to_cryptography().subject.rfc4514_string()}")


def verify_signature(
    signature_body: str,
    signature: bytes,
    certificates_pem: str,
    trust_roots: Sequence[bytes]
) -> None:
    """
    Verify the IAS signature over a signature body.

    Steps: parse the chain, validate it against the pinned roots, then check
    the signature with the leaf certificate's public key. Quote content is not
    looked at here; see verify_signature_body.

    Args:
        signature_body: The exact string the signature covers
        signature: Raw signature bytes
        certificates_pem: PEM certificates, leaf first
        trust_roots: Pinned root certificates in DER format

    Raises:
        SignatureVerificationFailed: If any step fails
    """
    chain = load_certificate_chain(certificates_pem)
    validate_certificate_chain(chain, trust_roots)

    public_key = chain[0].public_key()
    body = signature_body.encode('utf-8')
    try:
        if isinstance(public_key, rsa.RSAPublicKey):
            public_key.verify(signature, body, padding.PKCS1v15(), hashes.SHA256())
        elif isinstance(public_key, ec.EllipticCurvePublicKey):
            public_key.verify(signature, body, ec.ECDSA(hashes.SHA256()))
        else:
            raise SignatureVerificationFailed(
                f"Unsupported signing key type: {type(public_key).__name__}"
            )
    except InvalidSignature as e:
        logger.error("✗ IAS signature is INVALID")
        raise SignatureVerificationFailed("Signature over signature body is invalid") from e

    logger.info("✓ IAS signature is VALID")


def _parse_timestamp(value: str) -> datetime:
    for fmt in _TIMESTAMP_FORMATS:
        try:
            return datetime.strptime(value, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue
    raise SignatureVerificationFailed(f"Invalid report timestamp: {value!r}")


def verify_signature_body(
    signature_body: str,
    quote: Quote,
    max_age: timedelta = DEFAULT_MAX_SIGNATURE_AGE,
    now: Optional[datetime] = None
) -> None:
    """
    Appraise the signed IAS report against the quote it vouches for.

    The report must describe exactly this quote body, have an OK quote
    status, use report version 3, and be no older (or newer) than max_age.

    Raises:
        SignatureVerificationFailed: If the report does not vouch for the quote
    """
    try:
        report = json.loads(signature_body)
    except json.JSONDecodeError as e:
        raise SignatureVerificationFailed(f"Signature body is not valid JSON: {e}") from e
    if not isinstance(report, dict):
        raise SignatureVerificationFailed("Signature body is not a JSON object")

    if report.get('version') != IAS_REPORT_VERSION:
        raise SignatureVerificationFailed(
            f"Unexpected IAS report version: {report.get('version')!r}"
        )

    status = report.get('isvEnclaveQuoteStatus')
    if status not in ACCEPTED_QUOTE_STATUSES:
        logger.error(f"✗ Quote status is {status!r}")
        raise SignatureVerificationFailed(f"Unacceptable quote status: {status!r}")

    quote_body_b64 = report.get('isvEnclaveQuoteBody')
    if not isinstance(quote_body_b64, str):
        raise SignatureVerificationFailed("Signature body is missing isvEnclaveQuoteBody")
    try:
        signed_quote_body = base64.b64decode(quote_body_b64, validate=True)
    except ValueError as e:
        raise SignatureVerificationFailed(f"Invalid isvEnclaveQuoteBody: {e}") from e
    if not hmac.compare_digest(signed_quote_body, quote.body):
        logger.error("✗ Signed report describes a different quote")
        raise SignatureVerificationFailed("Signed quote body does not match quote")

    timestamp = report.get('timestamp')
    if not isinstance(timestamp, str):
        raise SignatureVerificationFailed("Signature body is missing timestamp")
    signed_at = _parse_timestamp(timestamp)
    now = now or datetime.now(timezone.utc)
    if abs(now - signed_at) > max_age:
        logger.error(f"✗ IAS report timestamp {timestamp} is outside the accepted window")
        raise SignatureVerificationFailed(f"IAS report is stale: {timestamp}")

    logger.info(f"✓ IAS report vouches for this quote (status {status}, signed {timestamp})")
