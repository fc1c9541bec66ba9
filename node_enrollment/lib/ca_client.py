"""Client for the fabric CA REST API."""

import logging
import ssl
from datetime import timedelta
from pathlib import Path
from typing import Any

import requests
from requests.adapters import HTTPAdapter

from ._types import CAResponse, EnrollRequestBody
from .cert_utils import base64_to_bytes, serialize_csr
from .certificate_builder import CSRBuilder
from .config import BCCSPConfig, CAClientConfig
from .errors import CAConnectionError, KeystoreError
from .keystore import PKCS11KeyStore, SoftwareKeyStore
from .logging_config import get_logger
from .models import CAInfo, EnrollmentRequest, EnrollmentResult

MSP_SUBDIRS = ("keystore", "signcerts", "cacerts", "intermediatecerts")


def build_ssl_context(ca_cert: bytes) -> ssl.SSLContext:
    """Build a TLS 1.2+ client context that trusts only the given CA cert.

    Raises:
        CAConnectionError: If the certificate cannot be loaded
    """
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    context.minimum_version = ssl.TLSVersion.TLSv1_2
    try:
        context.load_verify_locations(cadata=ca_cert.decode())
    except (ssl.SSLError, ValueError) as e:
        raise CAConnectionError(f"failed to load CA TLS certificate: {e}") from e
    return context


class PinnedCAAdapter(HTTPAdapter):
    """HTTPS adapter verifying the server against a single pinned CA."""

    def __init__(self, ssl_context: ssl.SSLContext, **kwargs: Any) -> None:
        self._ssl_context = ssl_context
        super().__init__(**kwargs)

    def init_poolmanager(self, *args: Any, **kwargs: Any) -> None:
        kwargs["ssl_context"] = self._ssl_context
        super().init_poolmanager(*args, **kwargs)

    # Trust comes from the pinned context alone; no CA bundle path is ever
    # loaded into it, whatever session.verify or the environment say.

    def build_connection_pool_key_attributes(
        self, request: requests.PreparedRequest, verify: Any, cert: Any = None
    ) -> tuple[dict[str, Any], dict[str, Any]]:
        host_params, pool_kwargs = super().build_connection_pool_key_attributes(
            request, True, cert
        )
        pool_kwargs.pop("ca_certs", None)
        pool_kwargs.pop("ca_cert_dir", None)
        pool_kwargs["ssl_context"] = self._ssl_context
        pool_kwargs["cert_reqs"] = "CERT_REQUIRED"
        return host_params, pool_kwargs

    def cert_verify(self, conn: Any, url: str, verify: Any, cert: Any) -> None:
        conn.cert_reqs = "CERT_REQUIRED"
        conn.ca_certs = None
        conn.ca_cert_dir = None


def _pinned_session(ca_cert: bytes) -> requests.Session:
    session = requests.Session()
    session.mount("https://", PinnedCAAdapter(build_ssl_context(ca_cert)))
    session.headers["Connection"] = "close"
    return session


class FabricCAClient:
    """CA client bound to one enrollment request and one home directory.

    The client owns its key store. set_hsm_library rebinds the PKCS#11
    library in place, so callers keep the same client object.
    """

    def __init__(
        self,
        request: EnrollmentRequest,
        home_dir: str | Path,
        bccsp: BCCSPConfig | None = None,
        tls_cert: bytes = b"",
        logger: logging.Logger | None = None,
    ) -> None:
        """Initialize CA client.

        Args:
            request: Enrollment request the client serves
            home_dir: Client home; msp/ and tlsCert.pem live here
            bccsp: Crypto provider settings, None for software keys
            tls_cert: PEM of the CA TLS certificate
            logger: Logger for this enrollment attempt
        """
        self.request = request
        self.home_dir = Path(home_dir)
        self.bccsp = bccsp
        self.tls_cert = tls_cert
        self.logger = logger or get_logger("ca_client")
        self.config = CAClientConfig(url=request.ca_url, bccsp=bccsp)
        self._keystore: SoftwareKeyStore | PKCS11KeyStore | None = None

    def get_home_dir(self) -> str:
        return str(self.home_dir)

    def get_config(self) -> CAClientConfig:
        return self.config

    def get_tls_cert(self) -> bytes:
        return self.tls_cert

    def get_enrollment_request(self) -> EnrollmentRequest:
        return self.request

    def set_hsm_library(self, library: str) -> None:
        """Point the PKCS#11 provider at a different library.

        No-op when the client uses software keys.
        """
        if self.bccsp is None or self.bccsp.pkcs11 is None:
            return

        self.bccsp.pkcs11.library = library
        self.config.bccsp = self.bccsp
        if self._keystore is not None:
            self._keystore.close()
            self._keystore = None

    def ping_ca(self, timeout: timedelta) -> None:
        """Check that the CA answers on /cainfo.

        Only the status line and headers are read. The timeout bounds each
        socket read and half of it bounds connecting, so a CA that answers
        slowly but steadily may take longer than timeout overall.

        Args:
            timeout: Read timeout for the check; half of it bounds connecting

        Raises:
            CAConnectionError: If the CA is unreachable or not healthy
        """
        url = f"{self.config.url}/cainfo"
        self.logger.info("Pinging CA at '%s' with timeout value of %s", url, timeout)

        seconds = timeout.total_seconds()
        try:
            with _pinned_session(self.tls_cert) as session:
                response = session.get(url, timeout=(seconds / 2, seconds), stream=True)
                if response.status_code != requests.codes.ok:
                    raise CAConnectionError(
                        f"pinging '{url}' failed: failed health check, ca is not running "
                        f"(status {response.status_code})"
                    )
        except requests.RequestException as e:
            raise CAConnectionError(f"pinging '{url}' failed: {e}") from e

    def init(self) -> None:
        """Create the MSP layout and open the configured key store.

        Raises:
            KeystoreError: If directories or the key store cannot be set up
        """
        msp_dir = self.home_dir / self.config.mspdir
        try:
            for subdir in MSP_SUBDIRS:
                (msp_dir / subdir).mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise KeystoreError(f"failed to create msp directories: {e}") from e

        if self._keystore is not None:
            self._keystore.close()

        if self.bccsp is not None and self.bccsp.pkcs11 is not None:
            self.logger.info("Using PKCS11 key store with library '%s'", self.bccsp.pkcs11.library)
            self._keystore = PKCS11KeyStore(self.bccsp.pkcs11)
        else:
            self._keystore = SoftwareKeyStore(msp_dir / "keystore")

    def enroll(self, request: EnrollmentRequest) -> EnrollmentResult:
        """Enroll with the CA and store the issued certificate.

        Args:
            request: Enrollment request; ID and secret are used for basic auth

        Returns:
            EnrollmentResult with the signed cert and CA info

        Raises:
            KeystoreError: If no key could be generated
            CAConnectionError: If the CA exchange fails
        """
        if self._keystore is None:
            self.init()

        hosts = request.csr_hosts()
        key = self._keystore.generate_key()
        csr = CSRBuilder.build_enrollment_csr(request.enroll_id, key, hosts)

        body: EnrollRequestBody = {
            "certificate_request": serialize_csr(csr).decode(),
            "caname": request.ca_name,
        }
        if hosts:
            body["hosts"] = hosts

        url = f"{self.config.url}/api/v1/enroll"
        self.logger.info("Enrolling '%s' with CA at '%s'", request.enroll_id, url)

        try:
            with _pinned_session(self._trusted_tls_cert()) as session:
                response = session.post(
                    url,
                    json=body,
                    auth=(request.enroll_id, request.enroll_secret),
                )
                payload: CAResponse = response.json()
        except (requests.RequestException, ValueError) as e:
            raise CAConnectionError(f"enroll request to '{url}' failed: {e}") from e

        if not response.ok or not payload.get("success"):
            messages = "; ".join(
                f"{err.get('code')}: {err.get('message')}" for err in payload.get("errors", [])
            )
            raise CAConnectionError(
                f"enroll request to '{url}' rejected: status {response.status_code}: {messages}"
            )

        result = self._parse_result(payload)
        self._store(result)
        return result

    def _trusted_tls_cert(self) -> bytes:
        for cert_file in self.config.tls_cert_files:
            path = self.home_dir / cert_file
            if path.is_file():
                return path.read_bytes()
        return self.tls_cert

    def _parse_result(self, payload: CAResponse) -> EnrollmentResult:
        result = payload.get("result", {})
        server_info = result.get("ServerInfo", {})
        try:
            return EnrollmentResult(
                cert=base64_to_bytes(result.get("Cert", "")),
                ca_info=CAInfo(
                    ca_name=server_info.get("CAName", ""),
                    ca_chain=base64_to_bytes(server_info.get("CAChain", "")),
                    version=server_info.get("Version", ""),
                ),
            )
        except ValueError as e:
            raise CAConnectionError(f"invalid enrollment response: {e}") from e

    def _store(self, result: EnrollmentResult) -> None:
        msp_dir = self.home_dir / self.config.mspdir
        ca_file = f"{self.request.ca_host}-{self.request.ca_port}.pem"
        (msp_dir / "signcerts" / "cert.pem").write_bytes(result.cert)
        (msp_dir / "cacerts" / ca_file).write_bytes(result.ca_info.ca_chain)
