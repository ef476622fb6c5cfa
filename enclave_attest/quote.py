"""
SGX quote parsing and verification

A quote is the fixed-layout binary record the enclave hardware produces. It
asserts which code is running (mrenclave) and binds 64 bytes of report data
to that assertion. The client checks the quote against the pinned mrenclave
and against the key material of the handshake it belongs to.
"""

from dataclasses import dataclass, field
from enum import Enum
import hashlib
import hmac
import logging
import struct

from .errors import AttestationVerificationFailed, MalformedQuote
from .keys import HandshakeKeys

logger = logging.getLogger(__name__)

# Header (48 bytes), report body (384 bytes), signature length (4 bytes).
_QUOTE_LAYOUT = struct.Struct(
    "<HH4sHHI32s"               # version .. basename
    "16sI28sQQ32s32s32s96sHH60s64s"  # report body
    "I"                         # signature_len
)
QUOTE_BODY_LENGTH = 432
QUOTE_MIN_LENGTH = _QUOTE_LAYOUT.size  # 436

SUPPORTED_VERSIONS = (1, 2)
SUPPORTED_SIGN_TYPES = (0, 1)  # unlinkable, linkable

SGX_FLAGS_INITTED = 0x0000000000000001
SGX_FLAGS_DEBUG = 0x0000000000000002

MRENCLAVE_LENGTH = 32
REPORT_DATA_LENGTH = 64


@dataclass(frozen=True)
class Quote:
    """Parsed representation of an SGX quote"""

    # Quote header
    version: int
    sign_type: int
    epid_group_id: bytes
    qe_svn: int
    pce_svn: int
    xeid: int
    basename: bytes

    # Report body
    cpu_svn: bytes
    misc_select: int
    flags: int
    xfrm: int
    mrenclave: bytes
    mrsigner: bytes
    isv_prod_id: int
    isv_svn: int
    report_data: bytes

    # Quote signature
    signature_len: int
    signature: bytes = field(repr=False)

    # Kept opaque for forward compatibility
    reserved: tuple = field(default=(), repr=False)
    extension: bytes = field(default=b"", repr=False)

    body: bytes = field(default=b"", repr=False)

    @property
    def is_debug_quote(self) -> bool:
        return bool(self.flags & SGX_FLAGS_DEBUG)

    @property
    def is_initialized(self) -> bool:
        return bool(self.flags & SGX_FLAGS_INITTED)

    @classmethod
    def from_bytes(cls, data: bytes) -> 'Quote':
        """
        Parse a binary SGX quote.

        The total length is validated before any field is read, and the
        declared signature length is checked against the bytes actually
        present.

        Args:
            data: Raw quote bytes as returned by the enclave service

        Returns:
            Quote instance

        Raises:
            MalformedQuote: If the buffer is truncated, the declared signature
                length overruns the buffer, or version/sign type is unknown
        """
        if len(data) < QUOTE_MIN_LENGTH:
            raise MalformedQuote(
                f"Quote too short: {len(data)} bytes, need at least {QUOTE_MIN_LENGTH}"
            )

        (
            version, sign_type, epid_group_id, qe_svn, pce_svn, xeid, basename,
            cpu_svn, misc_select, reserved1, flags, xfrm, mrenclave, reserved2,
            mrsigner, reserved3, isv_prod_id, isv_svn, reserved4, report_data,
            signature_len,
        ) = _QUOTE_LAYOUT.unpack_from(data, 0)

        if version not in SUPPORTED_VERSIONS:
            raise MalformedQuote(f"Unsupported quote version: {version}")
        if sign_type not in SUPPORTED_SIGN_TYPES:
            raise MalformedQuote(f"Unsupported quote sign type: {sign_type}")

        signature_end = QUOTE_MIN_LENGTH + signature_len
        if signature_end > len(data):
            raise MalformedQuote(
                f"Declared signature length {signature_len} exceeds quote "
                f"({len(data) - QUOTE_MIN_LENGTH} bytes available)"
            )

        return cls(
            version=version,
            sign_type=sign_type,
            epid_group_id=epid_group_id,
            qe_svn=qe_svn,
            pce_svn=pce_svn,
            xeid=xeid,
            basename=basename,
            cpu_svn=cpu_svn,
            misc_select=misc_select,
            flags=flags,
            xfrm=xfrm,
            mrenclave=mrenclave,
            mrsigner=mrsigner,
            isv_prod_id=isv_prod_id,
            isv_svn=isv_svn,
            report_data=report_data,
            signature_len=signature_len,
            signature=bytes(data[QUOTE_MIN_LENGTH:signature_end]),
            reserved=(reserved1, reserved2, reserved3, reserved4),
            extension=bytes(data[signature_end:]),
            body=bytes(data[:QUOTE_BODY_LENGTH]),
        )


def parse_quote(data: bytes) -> Quote:
    """Parse a binary SGX quote; see Quote.from_bytes."""
    quote = Quote.from_bytes(data)
    logger.info(f"✓ Quote parsed (version {quote.version}, {len(data)} bytes)")
    logger.info(f"  MRENCLAVE: {quote.mrenclave.hex()}")
    logger.info(f"  MRSIGNER:  {quote.mrsigner.hex()}")
    if quote.extension:
        logger.info(f"  Unrecognized trailing data: {len(quote.extension)} bytes (kept opaque)")
    return quote


class ReportDataBinding(Enum):
    """
    How the handshake's public keys appear in the quote's report data.

    This is a contract with the enclave service, not a local choice.
    STATIC_KEY_PREFIX: report data starts with the server static public key.
    SHA512_PUBLIC_KEYS: report data is SHA-512 over the three public keys.
    """
    STATIC_KEY_PREFIX = "static-key-prefix"
    SHA512_PUBLIC_KEYS = "sha512-public-keys"

    def expected(
        self,
        client_public: bytes,
        server_ephemeral_public: bytes,
        server_static_public: bytes
    ) -> bytes:
        """Bytes the leading part of report data must equal."""
        if self is ReportDataBinding.SHA512_PUBLIC_KEYS:
            return hashlib.sha512(
                client_public + server_ephemeral_public + server_static_public
            ).digest()
        return server_static_public


def verify_quote(
    quote: Quote,
    keys: HandshakeKeys,
    expected_mrenclave: bytes,
    binding: ReportDataBinding = ReportDataBinding.STATIC_KEY_PREFIX
) -> None:
    """
    Check that a quote comes from the pinned enclave and from this handshake.

    Args:
        quote: Parsed quote
        keys: Key material of the current handshake
        expected_mrenclave: Pinned 32-byte enclave measurement
        binding: Report-data binding agreed with the enclave service

    Raises:
        AttestationVerificationFailed: If any check fails
    """
    logger.info("Verifying quote...")

    if not hmac.compare_digest(quote.mrenclave, expected_mrenclave):
        logger.error("✗ MRENCLAVE does not match the pinned enclave")
        logger.error(f"  Expected: {expected_mrenclave.hex()}")
        logger.error(f"  Actual:   {quote.mrenclave.hex()}")
        raise AttestationVerificationFailed(
            "Quote mrenclave does not match expected value",
            details={"mrenclave": quote.mrenclave.hex()}
        )
    logger.info("✓ MRENCLAVE matches pinned value")

    expected = binding.expected(
        keys.client_public,
        keys.server_ephemeral_public,
        keys.server_static_public
    )
    if len(expected) > len(quote.report_data) or not hmac.compare_digest(
        quote.report_data[:len(expected)], expected
    ):
        logger.error(f"✗ Report data is not bound to this handshake ({binding.value})")
        raise AttestationVerificationFailed(
            "Quote report data does not match handshake public keys",
            details={"binding": binding.value}
        )
    logger.info(f"✓ Report data bound to handshake keys ({binding.value})")

    if quote.is_debug_quote:
        logger.error("✗ Quote was produced by a debug-mode enclave")
        raise AttestationVerificationFailed("Debug-mode enclave quotes are not accepted")
    if not quote.is_initialized:
        logger.error("✗ Quote reports an uninitialized enclave")
        raise AttestationVerificationFailed("Enclave is not initialized")

    logger.info("✓ Quote verification successful")
