"""Certificate signing request builder for enrollment."""

import ipaddress

from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric.ec import EllipticCurvePrivateKey
from cryptography.x509.oid import NameOID


class CSRBuilder:
    """Builds the X.509 CSR sent to the CA on enrollment."""

    @staticmethod
    def build_enrollment_csr(
        enroll_id: str,
        private_key: EllipticCurvePrivateKey,
        hosts: list[str] | None = None,
    ) -> x509.CertificateSigningRequest:
        """Build CSR for an enrollment identity.

        The subject carries only the enrollment ID as CN; the CA fills in the
        rest of the subject from its own policy. Hosts that parse as IP
        addresses become IP SANs, everything else becomes a DNS SAN.

        Args:
            enroll_id: Enrollment ID used as common name
            private_key: EC private key; may be an HSM backed key
            hosts: Optional SAN host overrides

        Returns:
            CSR signed with ECDSA-SHA256
        """
        builder = x509.CertificateSigningRequestBuilder().subject_name(
            x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, enroll_id)])
        )

        if hosts:
            builder = builder.add_extension(
                x509.SubjectAlternativeName([_general_name(host) for host in hosts]),
                critical=False,
            )

        return builder.sign(private_key, hashes.SHA256())


def _general_name(host: str) -> x509.GeneralName:
    try:
        return x509.IPAddress(ipaddress.ip_address(host))
    except ValueError:
        return x509.DNSName(host)
