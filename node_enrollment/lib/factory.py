"""Selection of the enrollment strategy for a component instance."""

import copy
import logging
from enum import Enum
from pathlib import Path

from .ca_client import FabricCAClient
from .config import HSM_PROXY_LIBRARY, BCCSPConfig, JobTimeouts, PKCS11Options
from .enroller import CryptoEnroller, Enroller
from .errors import HSMConfigError
from .hsm_config import read_hsm_config
from .hsm_enroller import HSMDaemonEnroller, HSMEnroller
from .hsm_proxy_enroller import HSMProxyEnroller
from .instance import Instance
from .k8s_client import KubernetesClient, Scheme
from .logging_config import get_logger
from .models import EnrollmentRequest
from .sw_enroller import SWEnroller


class EnrollerKind(Enum):
    SOFTWARE = "software"
    HSM_PROXY = "hsm_proxy"
    HSM_SIDECAR_JOB = "hsm_sidecar_job"
    HSM_DAEMON_SIDECAR_JOB = "hsm_daemon_sidecar_job"


def select_enroller_kind(
    hsm_enabled: bool, using_proxy: bool, daemon_configured: bool
) -> EnrollerKind:
    """Pick the enrollment strategy.

    | hsm_enabled | using_proxy | daemon_configured | strategy               |
    |-------------|-------------|-------------------|------------------------|
    | False       | any         | any               | SOFTWARE               |
    | True        | True        | any               | HSM_PROXY              |
    | True        | False       | True              | HSM_DAEMON_SIDECAR_JOB |
    | True        | False       | False             | HSM_SIDECAR_JOB        |
    """
    if not hsm_enabled:
        return EnrollerKind.SOFTWARE
    if using_proxy:
        return EnrollerKind.HSM_PROXY
    if daemon_configured:
        return EnrollerKind.HSM_DAEMON_SIDECAR_JOB
    return EnrollerKind.HSM_SIDECAR_JOB


def init_bccsp(instance: Instance) -> BCCSPConfig | None:
    """Return the instance's PKCS#11 BCCSP section with defaults applied.

    The instance's own config override is never modified.

    Returns:
        BCCSPConfig, or None when HSM is disabled
    """
    if not instance.is_hsm_enabled():
        return None

    override = instance.get_config_override()
    section = override.get_bccsp_section() if override is not None else None
    bccsp = copy.deepcopy(section) if section is not None else BCCSPConfig()

    if bccsp.pkcs11 is None:
        bccsp.pkcs11 = PKCS11Options()
    if instance.using_hsm_proxy():
        bccsp.pkcs11.library = HSM_PROXY_LIBRARY
    if not bccsp.pkcs11.hash:
        bccsp.pkcs11.hash = "SHA2"
    if not bccsp.pkcs11.security:
        bccsp.pkcs11.security = 256

    return bccsp


def factory(
    request: EnrollmentRequest,
    client: KubernetesClient,
    instance: Instance,
    storage_path: str | Path,
    scheme: Scheme,
    tls_cert: bytes,
    timeouts: JobTimeouts,
    logger: logging.Logger | None = None,
) -> Enroller:
    """Build the Enroller for an instance.

    The HSM config is only read when a sidecar job strategy may be needed.

    Args:
        request: Enrollment request
        client: Kubernetes client
        instance: Component instance to enroll for
        storage_path: CA client home directory
        scheme: Registry used to set owner references
        tls_cert: PEM of the CA TLS certificate
        timeouts: Job timeouts for the sidecar job strategies
        logger: Logger for this enrollment attempt

    Returns:
        Enroller wrapping the selected strategy

    Raises:
        HSMConfigError: If the HSM config is needed but cannot be read
    """
    logger = logger or get_logger("factory")

    hsm_config = None
    if instance.is_hsm_enabled() and not instance.using_hsm_proxy():
        try:
            hsm_config = read_hsm_config(client, instance.get_namespace())
        except HSMConfigError as e:
            raise HSMConfigError(f"failed to read HSM config: {e}") from e

    kind = select_enroller_kind(
        instance.is_hsm_enabled(),
        instance.using_hsm_proxy(),
        hsm_config is not None and hsm_config.daemon is not None,
    )
    logger.info("Using %s enroller for '%s'", kind.value, instance.get_name())

    bccsp = init_bccsp(instance)
    ca_client = FabricCAClient(request, storage_path, bccsp, tls_cert, logger=logger)

    strategy: CryptoEnroller
    if kind is EnrollerKind.SOFTWARE:
        strategy = SWEnroller(ca_client, logger=logger)
    elif kind is EnrollerKind.HSM_PROXY:
        strategy = HSMProxyEnroller(ca_client, logger=logger)
    elif kind is EnrollerKind.HSM_DAEMON_SIDECAR_JOB:
        strategy = HSMDaemonEnroller(
            ca_client, client, instance, scheme, timeouts, hsm_config, logger=logger
        )
    else:
        strategy = HSMEnroller(
            ca_client, client, instance, scheme, timeouts, hsm_config, logger=logger
        )

    return Enroller(strategy, logger=logger)
