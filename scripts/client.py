#!/usr/bin/env python3
"""
A client script to attest a remote enclave service

Obtain authorization, perform the attestation handshake with the configured
enclave (or the multi-replica variant), and display the verification outcome
"""

import argparse
from dataclasses import dataclass, field
import json
import logging
import sys
from typing import List, Optional

from enclave_attest import (
    Authorization,
    AuthorizationClient,
    Handshake,
    HttpTransport,
    MultiAttestationCoordinator,
    RemoteAttestationError,
    load_enclave_config,
    load_service_config,
)

logger = logging.getLogger(__name__)


def configure_logging(log_file: str = 'client.log') -> None:
    """Log to stdout and to a file"""
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(log_file)
        ]
    )


@dataclass
class AttestationSummary:
    """Outcome of an attestation run, safe to print or persist (no key material)"""
    enclave_name: str
    state: str
    attestation_ids: List[str] = field(default_factory=list)
    cookie_names: List[str] = field(default_factory=list)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    @property
    def is_valid(self) -> bool:
        return self.error_code is None

    def to_dict(self) -> dict:
        return {
            'enclave_name': self.enclave_name,
            'state': self.state,
            'attestation_ids': self.attestation_ids,
            'cookie_names': self.cookie_names,
            'valid': self.is_valid,
            'error_code': self.error_code,
            'error_message': self.error_message,
        }

    def display(self) -> None:
        """Display the outcome in formatted output with visual indicators"""
        print("=" * 80)
        print("REMOTE ATTESTATION SUMMARY")
        print("=" * 80)
        print(f"  Enclave:         {self.enclave_name}")
        print(f"  Final state:     {self.state}")
        print(f"  Attested ids:    {', '.join(self.attestation_ids) or '-'}")
        print(f"  Session cookies: {', '.join(self.cookie_names) or '-'}")
        print()
        if self.is_valid:
            print("✓ Overall Status:  ATTESTATION VERIFIED")
        else:
            print("✗ Overall Status:  ATTESTATION FAILED")
            print()
            print(f"✗ Error: [{self.error_code}] {self.error_message}")
        print("=" * 80)


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description='Attest a remote enclave service'
    )

    parser.add_argument(
        '--enclave-config',
        type=str,
        default='enclave_config.json',
        help='Path to enclave configuration JSON file'
    )

    parser.add_argument(
        '--service-config',
        type=str,
        default='service_config.json',
        help='Path to authorization service configuration JSON file'
    )

    parser.add_argument(
        '--username',
        type=str,
        help='Pinned enclave username (skips the authorization request)'
    )

    parser.add_argument(
        '--password',
        type=str,
        help='Pinned enclave password (skips the authorization request)'
    )

    parser.add_argument(
        '--multi',
        action='store_true',
        help='Expect several attestations in one reply (replica fan-out)'
    )

    parser.add_argument(
        '--output-file',
        type=str,
        default='attestation_result.json',
        help='Output file for attestation summary (default: attestation_result.json)'
    )

    parser.add_argument(
        '--log-file',
        type=str,
        default='client.log',
        help='Log file (default: client.log)'
    )

    return parser.parse_args(argv)


def run(args: argparse.Namespace, transport=None) -> AttestationSummary:
    """Run one attestation as described by the parsed arguments."""
    enclave_config = load_enclave_config(args.enclave_config)
    service_config = load_service_config(args.service_config)
    transport = transport or HttpTransport(timeout=service_config.timeout)

    auth = None
    if args.username and args.password:
        auth = Authorization(username=args.username, password=args.password)
    auth_client = AuthorizationClient(service_config, transport=transport)

    logger.info(f"Enclave: {enclave_config.enclave_name}")
    logger.info(f"Host URL: {enclave_config.host_url}")
    logger.info(f"Expected MRENCLAVE: {enclave_config.mrenclave.hex()}")
    logger.info(f"Pinned trust roots: {len(enclave_config.trust_roots)}")

    if args.multi:
        coordinator = MultiAttestationCoordinator(
            enclave_config, authorization_source=auth_client, transport=transport
        )
        try:
            result = coordinator.perform(auth)
        except RemoteAttestationError as e:
            return AttestationSummary(
                enclave_name=enclave_config.enclave_name,
                state='failed',
                error_code=e.code,
                error_message=e.message
            )
        return AttestationSummary(
            enclave_name=enclave_config.enclave_name,
            state='decrypted',
            attestation_ids=sorted(result.sessions),
            cookie_names=sorted(result.cookies)
        )

    handshake = Handshake(enclave_config, authorization_source=auth_client, transport=transport)
    try:
        session = handshake.run(auth)
    except RemoteAttestationError as e:
        return AttestationSummary(
            enclave_name=enclave_config.enclave_name,
            state=handshake.state.value,
            error_code=e.code,
            error_message=e.message
        )
    return AttestationSummary(
        enclave_name=enclave_config.enclave_name,
        state=handshake.state.value,
        cookie_names=sorted(session.cookies)
    )


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = parse_arguments(argv)
    configure_logging(args.log_file)

    logger.info("=" * 80)
    logger.info("Starting Remote Attestation")
    logger.info("=" * 80)
    logger.info(f"Enclave Config: {args.enclave_config}")
    logger.info(f"Service Config: {args.service_config}")
    logger.info(f"Output File: {args.output_file}")

    try:
        summary = run(args)
    except (FileNotFoundError, ValueError) as e:
        logger.error("")
        logger.error("=" * 80)
        logger.error("REMOTE ATTESTATION FAILED")
        logger.error("=" * 80)
        logger.error(f"Error: {e}")
        logger.error("=" * 80)
        return 1

    summary.display()

    with open(args.output_file, 'w') as f:
        json.dump(summary.to_dict(), f, indent=2)
    logger.info(f"Attestation summary saved to: {args.output_file}")

    if not summary.is_valid:
        logger.error("The enclave did not pass attestation; no session was established")
        return 1

    logger.info("✓ Remote attestation passed")
    return 0


if __name__ == '__main__':
    sys.exit(main())
