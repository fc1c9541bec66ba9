"""Request and result models for enrollment operations."""

from dataclasses import dataclass, field
from typing import Any

from .cert_utils import base64_to_bytes
from .errors import EnrollmentValidationError


@dataclass(frozen=True)
class CATLS:
    """TLS certificate of the CA endpoint, base64 encoded PEM."""

    ca_cert: str = ""

    def get_bytes(self) -> bytes:
        return base64_to_bytes(self.ca_cert)


@dataclass(frozen=True)
class CSRInfo:
    """CSR overrides sent with the enrollment request."""

    hosts: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class EnrollmentRequest:
    """Everything needed to enroll one identity with a CA.

    Built by the caller from the component's custom resource and treated as
    read-only by every enroller.
    """

    ca_host: str = ""
    ca_port: str = ""
    ca_name: str = ""
    enroll_id: str = ""
    enroll_secret: str = ""
    catls: CATLS | None = None
    admin_certs: list[str] = field(default_factory=list)
    csr: CSRInfo | None = None

    @property
    def ca_url(self) -> str:
        return f"https://{self.ca_host}:{self.ca_port}"

    def get_catls_bytes(self) -> bytes:
        """Decode the CA TLS certificate.

        Raises:
            EnrollmentValidationError: If no CA TLS certificate is set
        """
        if self.catls is None:
            raise EnrollmentValidationError("no CA TLS certificate set")
        return self.catls.get_bytes()

    def csr_hosts(self) -> list[str]:
        if self.csr is None:
            return []
        return list(self.csr.hosts)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "EnrollmentRequest":
        """Build from the custom resource 'enrollment' section.

        Args:
            data: Dict with cahost, caport, caname, catls.cacert, enrollid,
                enrollsecret, admincerts and csr.hosts keys

        Returns:
            EnrollmentRequest
        """
        catls = data.get("catls")
        csr = data.get("csr")
        return cls(
            ca_host=data.get("cahost", ""),
            ca_port=str(data.get("caport", "")),
            ca_name=data.get("caname", ""),
            enroll_id=data.get("enrollid", ""),
            enroll_secret=data.get("enrollsecret", ""),
            catls=CATLS(ca_cert=catls.get("cacert", "")) if catls is not None else None,
            admin_certs=list(data.get("admincerts") or []),
            csr=CSRInfo(hosts=list(csr.get("hosts") or [])) if csr is not None else None,
        )


@dataclass
class EnrollmentResponse:
    """Crypto material produced by one enrollment attempt.

    keystore is only filled by software enrollment; HSM enrollments keep the
    key on the HSM.
    """

    sign_cert: bytes = b""
    ca_certs: list[bytes] = field(default_factory=list)
    intermediate_certs: list[bytes] = field(default_factory=list)
    admin_certs: list[bytes] = field(default_factory=list)
    keystore: bytes = b""


@dataclass(frozen=True)
class CAInfo:
    """CA details returned alongside an issued certificate."""

    ca_name: str
    ca_chain: bytes
    version: str = ""


@dataclass(frozen=True)
class EnrollmentResult:
    """Result of the CA enrollment exchange."""

    cert: bytes
    ca_info: CAInfo
