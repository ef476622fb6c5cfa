"""
Pytest configuration and shared fixtures for enclave attestation tests.
"""

import sys
from pathlib import Path

import pytest

_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_TESTS_ROOT = Path(__file__).resolve().parent

for _path in [str(_PROJECT_ROOT), str(_TESTS_ROOT)]:
    if _path not in sys.path:
        sys.path.insert(0, _path)

from fixtures.enclave import CLIENT_PRIVATE, MRENCLAVE, EnclaveSimulator, FakeTransport  # noqa: E402
from fixtures.pki import make_signing_authority  # noqa: E402

from enclave_attest.config import EnclaveConfig  # noqa: E402
from enclave_attest.keys import KeyPair  # noqa: E402


@pytest.fixture(scope="session")
def authority():
    """Pinned signing authority (root + report-signing leaf)."""
    return make_signing_authority("Pinned")


@pytest.fixture(scope="session")
def rogue_authority():
    """A look-alike authority whose root is never pinned."""
    return make_signing_authority("Rogue")


@pytest.fixture
def enclave_config(authority):
    return EnclaveConfig(
        enclave_name="fc1e8f6d4b7a",
        mrenclave=MRENCLAVE,
        host_url="https://enclave.example.test",
        trust_roots=(authority.root_der,),
    )


@pytest.fixture
def simulator(authority):
    return EnclaveSimulator(authority)


@pytest.fixture
def transport(simulator):
    return FakeTransport(simulator.payload)


@pytest.fixture
def fixed_key_pair(monkeypatch):
    """Pin the client's ephemeral key pair for deterministic handshakes."""
    key_pair = KeyPair.from_private_bytes(CLIENT_PRIVATE)
    monkeypatch.setattr(
        "enclave_attest.session.generate_ephemeral_key_pair", lambda: key_pair
    )
    monkeypatch.setattr(
        "enclave_attest.multi.generate_ephemeral_key_pair", lambda: key_pair
    )
    return key_pair
