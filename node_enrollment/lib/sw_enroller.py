"""Software enrollment: the key is generated and kept on local disk."""

import logging
import os
from datetime import timedelta
from pathlib import Path

from .ca_chain import parse_enrollment_response
from .ca_client import FabricCAClient
from .config import TLS_CERT_FILE
from .errors import EnrollmentError
from .keystore import read_private_key
from .logging_config import get_logger
from .models import EnrollmentRequest, EnrollmentResponse


def enroll(client: FabricCAClient, logger: logging.Logger) -> EnrollmentResponse:
    """Enroll in-process with the CA client.

    Writes the CA TLS cert into the client home, initializes the client,
    enrolls, and sorts the returned chain into root and intermediate certs.

    Args:
        client: CA client to enroll with
        logger: Logger for this enrollment attempt

    Returns:
        EnrollmentResponse with sign cert and CA certs filled in

    Raises:
        EnrollmentError: If initialization or enrollment fails
    """
    request = client.get_enrollment_request()
    logger.info("Enrolling with CA '%s'", request.ca_host)

    home_dir = Path(client.get_home_dir())
    home_dir.mkdir(mode=0o750, parents=True, exist_ok=True)
    (home_dir / TLS_CERT_FILE).write_bytes(client.get_tls_cert())

    try:
        client.init()
    except EnrollmentError as e:
        raise type(e)(f"failed to initialize CA client: {e}") from e

    try:
        result = client.enroll(request)
    except EnrollmentError as e:
        raise type(e)(f"failed to enroll with CA: {e}") from e

    response = parse_enrollment_response(EnrollmentResponse(), result.ca_info)
    response.sign_cert = result.cert
    return response


class SWEnroller:
    """Enrolls in-process and returns the private key with the certs."""

    def __init__(self, client: FabricCAClient, logger: logging.Logger | None = None) -> None:
        self.client = client
        self.logger = logger or get_logger("sw_enroller")

    def get_enrollment_request(self) -> EnrollmentRequest:
        return self.client.get_enrollment_request()

    def ping_ca(self, timeout: timedelta) -> None:
        self.client.ping_ca(timeout)

    def enroll(self) -> EnrollmentResponse:
        response = enroll(self.client, self.logger)
        response.keystore = self.read_key()
        return response

    def read_key(self) -> bytes:
        return read_private_key(os.path.join(self.client.get_home_dir(), "msp", "keystore"))
