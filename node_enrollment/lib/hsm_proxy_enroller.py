"""HSM enrollment through a local PKCS#11 proxy library."""

import logging
from datetime import timedelta

from .ca_client import FabricCAClient
from .config import HSM_PROXY_LIBRARY
from .logging_config import get_logger
from .models import EnrollmentRequest, EnrollmentResponse
from .sw_enroller import enroll


class HSMProxyEnroller:
    """Enrolls in-process with keys generated behind the PKCS#11 proxy.

    The key never leaves the HSM, so the response carries no keystore.
    """

    def __init__(self, client: FabricCAClient, logger: logging.Logger | None = None) -> None:
        self.client = client
        self.logger = logger or get_logger("hsm_proxy_enroller")

    def get_enrollment_request(self) -> EnrollmentRequest:
        return self.client.get_enrollment_request()

    def ping_ca(self, timeout: timedelta) -> None:
        self.client.ping_ca(timeout)

    def enroll(self) -> EnrollmentResponse:
        self.client.set_hsm_library(HSM_PROXY_LIBRARY)
        return enroll(self.client, self.logger)
