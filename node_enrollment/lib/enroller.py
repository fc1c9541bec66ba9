"""Enroller facade shared by every enrollment strategy."""

import logging
from datetime import timedelta
from typing import Protocol

from .cert_utils import base64_to_bytes
from .config import DEFAULT_PING_TIMEOUT
from .errors import EnrollmentError, EnrollmentValidationError
from .logging_config import get_logger
from .models import EnrollmentRequest, EnrollmentResponse


class CryptoEnroller(Protocol):
    """One way of obtaining enrollment crypto from a CA."""

    def get_enrollment_request(self) -> EnrollmentRequest: ...

    def enroll(self) -> EnrollmentResponse: ...

    def ping_ca(self, timeout: timedelta) -> None: ...


def validate_request(request: EnrollmentRequest) -> None:
    """Check that every field needed to reach and enroll with the CA is set.

    Raises:
        EnrollmentValidationError: Naming the first missing field
    """
    if not request.ca_host:
        raise EnrollmentValidationError("unable to enroll, CA host not specified")
    if not request.ca_port:
        raise EnrollmentValidationError("unable to enroll, CA port not specified")
    if not request.enroll_id:
        raise EnrollmentValidationError("unable to enroll, enrollment ID not specified")
    if not request.enroll_secret:
        raise EnrollmentValidationError("unable to enroll, enrollment secret not specified")
    if request.catls is None or not request.catls.ca_cert:
        raise EnrollmentValidationError("unable to enroll, CA TLS certificate not specified")


class Enroller:
    """Runs a strategy and completes its response with the admin certs."""

    def __init__(
        self,
        enroller: CryptoEnroller,
        timeout: timedelta = DEFAULT_PING_TIMEOUT,
        logger: logging.Logger | None = None,
    ) -> None:
        self.enroller = enroller
        self.timeout = timeout
        self.logger = logger or get_logger("enroller")

    def validate(self) -> None:
        validate_request(self.enroller.get_enrollment_request())

    def ping_ca(self) -> None:
        self.enroller.ping_ca(self.timeout)

    def get_crypto(self) -> EnrollmentResponse:
        """Enroll and attach the decoded admin certificates.

        Returns:
            EnrollmentResponse from the strategy with admin_certs appended

        Raises:
            EnrollmentError: If enrollment fails or an admin cert is not base64
        """
        request = self.enroller.get_enrollment_request()
        self.logger.info("Getting crypto for '%s' from CA '%s'", request.enroll_id, request.ca_host)

        try:
            response = self.enroller.enroll()
        except EnrollmentError as e:
            raise type(e)(f"failed to enroll with CA: {e}") from e
        except OSError as e:
            raise EnrollmentError(f"failed to enroll with CA: {e}") from e

        for admin_cert in request.admin_certs:
            try:
                response.admin_certs.append(base64_to_bytes(admin_cert))
            except ValueError as e:
                raise EnrollmentValidationError(f"failed to parse admin cert: {e}") from e

        return response
