#!/usr/bin/env python3
"""Enroll an identity with a fabric CA using software keys."""

import argparse
import base64
import sys
import tempfile
from datetime import timedelta
from pathlib import Path

from node_enrollment.lib.ca_client import FabricCAClient
from node_enrollment.lib.config import DEFAULT_PING_TIMEOUT
from node_enrollment.lib.enroller import Enroller
from node_enrollment.lib.logging_config import LOGGER
from node_enrollment.lib.models import CATLS, CSRInfo, EnrollmentRequest, EnrollmentResponse
from node_enrollment.lib.sw_enroller import SWEnroller


def write_crypto(response: EnrollmentResponse, output_dir: Path) -> None:
    """Write enrollment crypto as PEM files under output_dir.

    Layout: signcert.pem, cacerts/cacert-<n>.pem, intercerts/intercert-<n>.pem
    and keystore/key.pem.
    """
    output_dir.mkdir(parents=True, exist_ok=True)
    (output_dir / "signcert.pem").write_bytes(response.sign_cert)

    for subdir, prefix, certs in (
        ("cacerts", "cacert", response.ca_certs),
        ("intercerts", "intercert", response.intermediate_certs),
    ):
        cert_dir = output_dir / subdir
        cert_dir.mkdir(exist_ok=True)
        for i, cert in enumerate(certs):
            (cert_dir / f"{prefix}-{i}.pem").write_bytes(cert)

    if response.keystore:
        keystore_dir = output_dir / "keystore"
        keystore_dir.mkdir(mode=0o700, exist_ok=True)
        key_path = keystore_dir / "key.pem"
        key_path.write_bytes(response.keystore)
        key_path.chmod(0o600)


def main() -> int:
    """Enroll with the CA and write the resulting crypto.

    Returns:
        Exit code (0 for success, 1 for failure)
    """
    parser = argparse.ArgumentParser(description="Enroll identity with fabric CA")
    parser.add_argument("--ca-host", required=True, help="CA hostname")
    parser.add_argument("--ca-port", required=True, help="CA port")
    parser.add_argument("--ca-name", default="", help="CA name within the CA server")
    parser.add_argument("--enroll-id", required=True, help="Enrollment ID")
    parser.add_argument("--enroll-secret", required=True, help="Enrollment secret")
    parser.add_argument(
        "--ca-tls-cert",
        type=Path,
        required=True,
        help="PEM file with the CA's TLS certificate",
    )
    parser.add_argument(
        "--output-dir",
        type=Path,
        required=True,
        help="Directory for signcert.pem, cacerts/, intercerts/ and keystore/",
    )
    parser.add_argument(
        "--host",
        action="append",
        default=[],
        help="SAN host for the certificate (repeatable)",
    )
    parser.add_argument(
        "--ping-timeout",
        type=float,
        default=DEFAULT_PING_TIMEOUT.total_seconds(),
        help="Seconds to wait for the CA to answer (default: 30)",
    )
    args = parser.parse_args()

    try:
        tls_cert = args.ca_tls_cert.read_bytes()
        request = EnrollmentRequest(
            ca_host=args.ca_host,
            ca_port=args.ca_port,
            ca_name=args.ca_name,
            enroll_id=args.enroll_id,
            enroll_secret=args.enroll_secret,
            catls=CATLS(ca_cert=base64.b64encode(tls_cert).decode()),
            csr=CSRInfo(hosts=args.host),
        )

        # The client home holds a key copy; only the output dir outlives the run
        with tempfile.TemporaryDirectory(prefix="ca-client-") as home_dir:
            client = FabricCAClient(request, home_dir, tls_cert=tls_cert)
            enroller = Enroller(SWEnroller(client), timeout=timedelta(seconds=args.ping_timeout))

            enroller.validate()
            enroller.ping_ca()
            LOGGER.info(
                "Enrolling '%s' with CA %s:%s", args.enroll_id, args.ca_host, args.ca_port
            )
            response = enroller.get_crypto()

        write_crypto(response, args.output_dir)
        LOGGER.info("Enrollment crypto written to: %s", args.output_dir)
        return 0

    except FileNotFoundError as e:
        LOGGER.error("CA TLS certificate not found: %s", e)
        return 1
    except Exception as e:
        LOGGER.error("Enrollment failed: %s", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
