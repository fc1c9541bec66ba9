"""Enrollment configuration dataclasses and constants."""

import re
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any

HSM_CONFIG_MAP_NAME = "ibm-hlfsupport-hsm-config"
HSM_CONFIG_KEY = "ibm-hlfsupport-hsm-config.yaml"

HSM_PROXY_LIBRARY = "/usr/local/lib/libpkcs11-proxy.so"
HSM_LIBRARY_MOUNT_DIR = "/hsm/lib"

TLS_CERT_FILE = "tlsCert.pem"
CA_CLIENT_CONFIG_FILE = "fabric-ca-client-config.yaml"

DEFAULT_PING_TIMEOUT = timedelta(seconds=30)

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")
_DURATION_UNITS = {"h": 3600.0, "m": 60.0, "s": 1.0, "ms": 0.001}


def parse_duration(value: str | int | float | timedelta) -> timedelta:
    """Parse a duration such as '90s', '1m30s' or '500ms'.

    Plain numbers are taken as seconds.

    Raises:
        ValueError: If the string is not a valid duration
    """
    if isinstance(value, timedelta):
        return value
    if isinstance(value, (int, float)):
        return timedelta(seconds=value)

    text = value.strip()
    parts = _DURATION_PART.findall(text)
    if not parts or "".join(n + u for n, u in parts) != text:
        raise ValueError(f"invalid duration '{value}'")

    seconds = sum(float(number) * _DURATION_UNITS[unit] for number, unit in parts)
    return timedelta(seconds=seconds)


@dataclass(frozen=True)
class JobTimeouts:
    """Timeouts for the HSM enrollment job.

    No defaults: the caller owns the choice of values.
    """

    job_start: timedelta
    job_completion: timedelta

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "JobTimeouts":
        """Build from {'jobStart': '90s', 'jobCompletion': '5m'}."""
        return cls(
            job_start=parse_duration(data["jobStart"]),
            job_completion=parse_duration(data["jobCompletion"]),
        )


@dataclass
class PKCS11Options:
    """PKCS#11 settings used by the CA client key store."""

    library: str = ""
    label: str = ""
    pin: str = ""
    security: int = 256
    hash: str = "SHA2"
    software_verify: bool = False
    immutable: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "library": self.library,
            "label": self.label,
            "pin": self.pin,
            "hash": self.hash,
            "security": self.security,
            "softwareverify": self.software_verify,
            "immutable": self.immutable,
        }


@dataclass
class BCCSPConfig:
    """Crypto service provider section of a component config."""

    default: str = "PKCS11"
    pkcs11: PKCS11Options | None = None

    def to_dict(self) -> dict[str, Any]:
        section: dict[str, Any] = {"default": self.default}
        if self.pkcs11 is not None:
            section["pkcs11"] = self.pkcs11.to_dict()
        return section


@dataclass
class CAClientConfig:
    """fabric-ca-client configuration handed to the enrollment job."""

    url: str
    tls_enabled: bool = True
    tls_cert_files: list[str] = field(default_factory=lambda: [TLS_CERT_FILE])
    mspdir: str = "msp"
    bccsp: BCCSPConfig | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to the fabric-ca-client YAML layout."""
        data: dict[str, Any] = {
            "url": self.url,
            "mspdir": self.mspdir,
            "tls": {
                "enabled": self.tls_enabled,
                "certfiles": list(self.tls_cert_files),
            },
        }
        if self.bccsp is not None:
            data["bccsp"] = self.bccsp.to_dict()
        return data
