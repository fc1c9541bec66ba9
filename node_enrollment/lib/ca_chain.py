"""Classification of the CA chain returned on enrollment."""

import logging

from cryptography import x509

from .cert_utils import encode_pem, is_ca_certificate, is_root_certificate, split_pem_blocks
from .errors import CAChainError
from .models import CAInfo, EnrollmentResponse

logger = logging.getLogger(__name__)


def parse_enrollment_response(
    response: EnrollmentResponse, ca_info: CAInfo
) -> EnrollmentResponse:
    """Sort the CA chain into root and intermediate certificates.

    Each root certificate is appended to ca_certs as its own PEM block. If at
    least one intermediate certificate is present, intermediate_certs is set
    to a single entry holding the whole chain exactly as the CA sent it.

    Args:
        response: Response to populate
        ca_info: CA information from the enrollment result

    Returns:
        The populated response

    Raises:
        CAChainError: If a block is not a certificate, or is not a CA certificate
    """
    has_intermediate = False

    for block in split_pem_blocks(ca_info.ca_chain):
        try:
            cert = x509.load_der_x509_certificate(block.der)
        except ValueError as e:
            raise CAChainError(f"failed to parse certificate in the CA chain: {e}") from e

        if not is_ca_certificate(cert):
            raise CAChainError("a certificate in the CA chain is not a CA certificate")

        if is_root_certificate(cert):
            response.ca_certs.append(encode_pem(block))
        else:
            has_intermediate = True

    if has_intermediate:
        response.intermediate_certs = [ca_info.ca_chain]

    logger.debug(
        "CA chain: %d root cert(s), intermediates: %s",
        len(response.ca_certs),
        has_intermediate,
    )
    return response
