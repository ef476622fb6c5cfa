"""
Configuration for enclave identities and the authorization service

Configuration is read from JSON files. Trust roots are PEM files referenced
from the enclave config and pinned as DER bytes at load time; nothing is
fetched at runtime.
"""

from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
import json
import logging
from pathlib import Path
from typing import Optional, Tuple, Union

from cryptography import x509
from cryptography.hazmat.primitives.serialization import Encoding

from .ias import DEFAULT_MAX_SIGNATURE_AGE
from .quote import MRENCLAVE_LENGTH, ReportDataBinding

logger = logging.getLogger(__name__)


class AttestationService(Enum):
    """Services that sit behind an attested enclave."""
    CONTACT_DISCOVERY = "contact-discovery"
    KEY_BACKUP = "key-backup"

    @property
    def auth_path(self) -> str:
        """Path of the endpoint that issues short-lived enclave credentials."""
        return {
            AttestationService.CONTACT_DISCOVERY: "v1/directory/auth",
            AttestationService.KEY_BACKUP: "v1/backup/auth",
        }[self]


@dataclass(frozen=True)
class EnclaveConfig:
    """Immutable description of one enclave identity"""
    enclave_name: str
    mrenclave: bytes
    host_url: str
    trust_roots: Tuple[bytes, ...]
    service: AttestationService = AttestationService.KEY_BACKUP
    report_data_binding: ReportDataBinding = ReportDataBinding.STATIC_KEY_PREFIX
    max_signature_age: timedelta = DEFAULT_MAX_SIGNATURE_AGE

    def __post_init__(self) -> None:
        if not self.enclave_name:
            raise ValueError("enclave_name must not be empty")
        if len(self.mrenclave) != MRENCLAVE_LENGTH:
            raise ValueError(
                f"mrenclave must be {MRENCLAVE_LENGTH} bytes, got {len(self.mrenclave)}"
            )
        if not self.host_url:
            raise ValueError("host_url must not be empty")
        if not self.trust_roots:
            raise ValueError("At least one trust root is required")

    @property
    def attestation_url(self) -> str:
        return f"{self.host_url.rstrip('/')}/v1/attestation/{self.enclave_name}"


@dataclass(frozen=True)
class ServiceConfig:
    """Where authorization is fetched from, and with which account credentials"""
    service_url: str
    username: Optional[str] = None
    password: Optional[str] = field(default=None, repr=False)
    timeout: float = 30.0


def load_trust_root(path: Union[str, Path]) -> bytes:
    """Load a PEM or DER certificate file and return it as DER bytes."""
    data = Path(path).read_bytes()
    if b"-----BEGIN CERTIFICATE-----" in data:
        cert = x509.load_pem_x509_certificate(data)
    else:
        cert = x509.load_der_x509_certificate(data)
    logger.info(f"Pinned trust root: {cert.subject.rfc4514_string()}")
    return cert.public_bytes(Encoding.DER)


def _read_json(path: Path) -> dict:
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")
    try:
        with open(path, "r") as f:
            return json.loads(f.read())
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in {path}: {e}")


def _required(data: dict, key: str, path: Path):
    if key not in data:
        raise ValueError(f"Missing '{key}' in {path}")
    return data[key]


def load_enclave_config(path: Union[str, Path]) -> EnclaveConfig:
    """
    Load an enclave configuration file.

    Expected JSON keys: enclave_name, mrenclave (hex), host_url and
    trust_roots (list of certificate paths, relative to the config file).
    Optional: service, report_data_binding, max_signature_age_hours.
    """
    path = Path(path)
    data = _read_json(path)

    trust_roots = tuple(
        load_trust_root(path.parent / root_path)
        for root_path in _required(data, 'trust_roots', path)
    )

    try:
        mrenclave = bytes.fromhex(_required(data, 'mrenclave', path))
    except ValueError as e:
        raise ValueError(f"Invalid mrenclave in {path}: {e}")

    config = EnclaveConfig(
        enclave_name=_required(data, 'enclave_name', path),
        mrenclave=mrenclave,
        host_url=_required(data, 'host_url', path),
        trust_roots=trust_roots,
        service=AttestationService(data.get('service', AttestationService.KEY_BACKUP.value)),
        report_data_binding=ReportDataBinding(
            data.get('report_data_binding', ReportDataBinding.STATIC_KEY_PREFIX.value)
        ),
        max_signature_age=timedelta(hours=data.get('max_signature_age_hours', 24)),
    )
    logger.info(f"Loaded enclave config '{config.enclave_name}' from {path}")
    return config


def load_service_config(path: Union[str, Path]) -> ServiceConfig:
    """Load the authorization service configuration file."""
    path = Path(path)
    data = _read_json(path)
    return ServiceConfig(
        service_url=_required(data, 'service_url', path),
        username=data.get('username'),
        password=data.get('password'),
        timeout=float(data.get('timeout', 30.0)),
    )
