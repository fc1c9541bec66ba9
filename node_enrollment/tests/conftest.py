"""Test fixtures for node_enrollment tests."""

import base64
from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric.ec import EllipticCurvePrivateKey
from cryptography.x509.oid import NameOID

from node_enrollment.lib.cert_utils import generate_private_key, serialize_certificate
from node_enrollment.lib.config import JobTimeouts
from node_enrollment.lib.hsm_config import HSMConfig
from node_enrollment.lib.instance import ComponentInstance
from node_enrollment.lib.k8s_client import KubernetesClient, Scheme
from node_enrollment.lib.models import CATLS, CSRInfo, EnrollmentRequest


def build_certificate(
    common_name: str,
    key: EllipticCurvePrivateKey,
    issuer_name: str | None = None,
    issuer_key: EllipticCurvePrivateKey | None = None,
    ca: bool = True,
    with_aki: bool = True,
) -> x509.Certificate:
    """Build a test certificate; self-signed when no issuer is given."""
    issuer_key = issuer_key or key
    now = datetime.now(UTC)
    builder = (
        x509.CertificateBuilder()
        .subject_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)]))
        .issuer_name(
            x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, issuer_name or common_name)])
        )
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(minutes=1))
        .not_valid_after(now + timedelta(days=1))
        .add_extension(x509.BasicConstraints(ca=ca, path_length=None), critical=True)
        .add_extension(x509.SubjectKeyIdentifier.from_public_key(key.public_key()), critical=False)
    )
    if with_aki:
        builder = builder.add_extension(
            x509.AuthorityKeyIdentifier.from_issuer_public_key(issuer_key.public_key()),
            critical=False,
        )
    return builder.sign(issuer_key, hashes.SHA256())


@pytest.fixture
def root_key() -> EllipticCurvePrivateKey:
    """Generate EC private key for the root CA."""
    return generate_private_key()


@pytest.fixture
def root_cert(root_key: EllipticCurvePrivateKey) -> x509.Certificate:
    """Self-signed root CA certificate with AKI equal to its SKI."""
    return build_certificate("Test Root CA", root_key)


@pytest.fixture
def root_pem(root_cert: x509.Certificate) -> bytes:
    return serialize_certificate(root_cert)


@pytest.fixture
def intermediate_key() -> EllipticCurvePrivateKey:
    """Generate EC private key for the intermediate CA."""
    return generate_private_key()


@pytest.fixture
def intermediate_cert(
    intermediate_key: EllipticCurvePrivateKey, root_key: EllipticCurvePrivateKey
) -> x509.Certificate:
    """Intermediate CA certificate signed by the root CA."""
    return build_certificate(
        "Test Intermediate CA",
        intermediate_key,
        issuer_name="Test Root CA",
        issuer_key=root_key,
    )


@pytest.fixture
def intermediate_pem(intermediate_cert: x509.Certificate) -> bytes:
    return serialize_certificate(intermediate_cert)


@pytest.fixture
def leaf_pem(root_key: EllipticCurvePrivateKey) -> bytes:
    """End-entity certificate signed by the root CA."""
    cert = build_certificate(
        "peer1",
        generate_private_key(),
        issuer_name="Test Root CA",
        issuer_key=root_key,
        ca=False,
    )
    return serialize_certificate(cert)


@pytest.fixture
def enrollment_request(root_pem: bytes) -> EnrollmentRequest:
    """Complete enrollment request trusting the root CA for TLS."""
    return EnrollmentRequest(
        ca_host="ca.example.com",
        ca_port="7054",
        ca_name="ca",
        enroll_id="peer1",
        enroll_secret="peer1pw",
        catls=CATLS(ca_cert=base64.b64encode(root_pem).decode()),
        csr=CSRInfo(hosts=["peer1.example.com", "10.0.0.1"]),
    )


@pytest.fixture
def instance() -> ComponentInstance:
    """HSM enabled peer instance."""
    return ComponentInstance(
        name="test",
        namespace="default",
        uid="0b5f1d2e-uid",
        pull_secrets=["regcred"],
        pvc="test-pvc",
        image="ghcr.io/example/enroller:latest",
        hsm_enabled=True,
    )


@pytest.fixture
def scheme() -> Scheme:
    scheme = Scheme()
    scheme.register(ComponentInstance, "ibp.com/v1beta1", "IBPPeer")
    return scheme


@pytest.fixture
def timeouts() -> JobTimeouts:
    return JobTimeouts(job_start=timedelta(seconds=1), job_completion=timedelta(seconds=1))


@pytest.fixture
def hsm_config_data() -> dict:
    """HSM config document as stored in the HSM config map."""
    return {
        "type": "hsm",
        "version": "v1",
        "library": {
            "filepath": "/usr/lib/libCryptoki2_64.so",
            "image": "ghcr.io/example/gemalto-client:amd64",
            "auth": {"imagePullSecret": "hsmpullsecret"},
        },
        "envs": [{"name": "DUMMY_ENV_NAME", "value": "DUMMY_ENV_VALUE"}],
        "mountpaths": [
            {"mountpath": "/pvc/mount/path", "usePVC": True},
            {
                "name": "hsmcrypto",
                "secret": "hsmcrypto",
                "mountpath": "/hsm",
                "paths": [{"key": "cafile.pem", "path": "cafile.pem"}],
            },
            {
                "name": "hsmconfig",
                "secret": "hsmcrypto",
                "mountpath": "/etc/Chrystoki.conf",
                "subpath": "Chrystoki.conf",
            },
        ],
    }


@pytest.fixture
def hsm_config(hsm_config_data: dict) -> HSMConfig:
    """HSM config without a daemon."""
    return HSMConfig.from_dict(hsm_config_data)


@pytest.fixture
def daemon_hsm_config(hsm_config_data: dict) -> HSMConfig:
    """HSM config with a daemon section."""
    data = dict(hsm_config_data)
    data["daemon"] = {
        "image": "ghcr.io/example/hsmdaemon:amd64",
        "auth": {"imagePullSecret": "hsmpullsecret"},
        "envs": [{"name": "DAEMON_ENV_NAME", "value": "DAEMON_ENV_VALUE"}],
    }
    return HSMConfig.from_dict(data)


@pytest.fixture
def mock_k8s() -> MagicMock:
    """Kubernetes client mock; every call succeeds and returns a MagicMock."""
    return MagicMock(spec=KubernetesClient)


@pytest.fixture
def cert_factory():
    """Return the test certificate builder."""
    return build_certificate
