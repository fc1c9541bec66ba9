"""Tests for the Enroller facade."""

import base64
import dataclasses
from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from node_enrollment.lib.enroller import Enroller, validate_request
from node_enrollment.lib.errors import (
    CAConnectionError,
    EnrollmentError,
    EnrollmentValidationError,
    KeystoreError,
)
from node_enrollment.lib.models import CATLS, EnrollmentRequest, EnrollmentResponse


@pytest.fixture
def strategy(enrollment_request: EnrollmentRequest) -> MagicMock:
    mock = MagicMock()
    mock.get_enrollment_request.return_value = enrollment_request
    mock.enroll.return_value = EnrollmentResponse(sign_cert=b"signcert")
    return mock


class TestValidate:
    """Tests for request validation."""

    def test_complete_request_passes(self, enrollment_request: EnrollmentRequest) -> None:
        validate_request(enrollment_request)

    @pytest.mark.parametrize(
        ("field", "value", "message"),
        [
            ("ca_host", "", "unable to enroll, CA host not specified"),
            ("ca_port", "", "unable to enroll, CA port not specified"),
            ("enroll_id", "", "unable to enroll, enrollment ID not specified"),
            ("enroll_secret", "", "unable to enroll, enrollment secret not specified"),
            ("catls", None, "unable to enroll, CA TLS certificate not specified"),
            ("catls", CATLS(ca_cert=""), "unable to enroll, CA TLS certificate not specified"),
        ],
    )
    def test_missing_field(
        self, enrollment_request: EnrollmentRequest, field: str, value, message: str
    ) -> None:
        request = dataclasses.replace(enrollment_request, **{field: value})

        with pytest.raises(EnrollmentValidationError, match=message):
            validate_request(request)

    def test_first_missing_field_is_reported(self) -> None:
        """Checks run host, port, ID, secret, TLS cert."""
        with pytest.raises(EnrollmentValidationError, match="CA host not specified"):
            validate_request(EnrollmentRequest())

        with pytest.raises(EnrollmentValidationError, match="enrollment ID not specified"):
            validate_request(EnrollmentRequest(ca_host="ca", ca_port="7054"))

    def test_facade_validates_strategy_request(self, strategy: MagicMock) -> None:
        strategy.get_enrollment_request.return_value = EnrollmentRequest(ca_host="ca")

        with pytest.raises(EnrollmentValidationError, match="CA port not specified"):
            Enroller(strategy).validate()


class TestPingCA:
    """Tests for Enroller.ping_ca."""

    def test_uses_default_timeout(self, strategy: MagicMock) -> None:
        Enroller(strategy).ping_ca()
        strategy.ping_ca.assert_called_once_with(timedelta(seconds=30))

    def test_uses_configured_timeout(self, strategy: MagicMock) -> None:
        Enroller(strategy, timeout=timedelta(seconds=5)).ping_ca()
        strategy.ping_ca.assert_called_once_with(timedelta(seconds=5))

    def test_error_propagates(self, strategy: MagicMock) -> None:
        strategy.ping_ca.side_effect = CAConnectionError("pinging failed")

        with pytest.raises(CAConnectionError, match="pinging failed"):
            Enroller(strategy).ping_ca()


class TestGetCrypto:
    """Tests for Enroller.get_crypto."""

    def test_returns_strategy_response(self, strategy: MagicMock) -> None:
        response = Enroller(strategy).get_crypto()

        assert response.sign_cert == b"signcert"
        assert response.admin_certs == []

    def test_appends_decoded_admin_certs(
        self, strategy: MagicMock, enrollment_request: EnrollmentRequest
    ) -> None:
        strategy.get_enrollment_request.return_value = dataclasses.replace(
            enrollment_request,
            admin_certs=[
                base64.b64encode(b"admin1").decode(),
                base64.b64encode(b"admin2").decode(),
            ],
        )

        response = Enroller(strategy).get_crypto()

        assert response.admin_certs == [b"admin1", b"admin2"]

    def test_invalid_admin_cert_raises(
        self, strategy: MagicMock, enrollment_request: EnrollmentRequest
    ) -> None:
        strategy.get_enrollment_request.return_value = dataclasses.replace(
            enrollment_request, admin_certs=["%%% not base64"]
        )

        with pytest.raises(EnrollmentValidationError, match="failed to parse admin cert"):
            Enroller(strategy).get_crypto()

    def test_enroll_error_keeps_type_and_adds_context(self, strategy: MagicMock) -> None:
        strategy.enroll.side_effect = KeystoreError("failed to read private key: empty")

        with pytest.raises(
            KeystoreError, match="failed to enroll with CA: failed to read"
        ) as exc_info:
            Enroller(strategy).get_crypto()

        assert isinstance(exc_info.value.__cause__, KeystoreError)

    def test_os_error_is_wrapped(self, strategy: MagicMock) -> None:
        strategy.enroll.side_effect = PermissionError("read-only file system")

        with pytest.raises(EnrollmentError, match="failed to enroll with CA: read-only"):
            Enroller(strategy).get_crypto()
