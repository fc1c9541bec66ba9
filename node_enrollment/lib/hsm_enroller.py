"""HSM enrollment run as a sidecar job inside the cluster."""

import base64
import logging
import posixpath
from datetime import timedelta

import yaml
from kubernetes.client import V1ConfigMap, V1ObjectMeta, V1Secret

from .ca_client import FabricCAClient
from .config import CA_CLIENT_CONFIG_FILE, HSM_LIBRARY_MOUNT_DIR, TLS_CERT_FILE, JobTimeouts
from .errors import EnrollmentValidationError, JobError, NotFoundError, OrchestrationError
from .hsm_config import HSMConfig
from .hsm_job import (
    CERTGEN_CONTAINER,
    build_enroll_job,
    client_config_map_name,
    root_tls_secret_name,
)
from .instance import Instance
from .job import JobStatus
from .k8s_client import KubernetesClient, Scheme
from .logging_config import get_logger
from .models import EnrollmentRequest, EnrollmentResponse
from .polling import PollTimeoutError, poll_until

# (suffix, must exist) of the secrets the enrollment job writes
OUTPUT_SECRETS = (
    ("signcert", True),
    ("cacerts", True),
    ("admincerts", False),
    ("intercerts", False),
)


class HSMEnroller:
    """Enrolls by running the CA client in a job that loads the HSM library.

    Each call to enroll recreates all transient objects, so a failed attempt
    is retried by calling enroll again. On a failed job the job and its pods
    are left in place for inspection.
    """

    daemon = False
    secret_poll_interval = 2.0
    secret_poll_timeout = 30.0

    def __init__(
        self,
        client: FabricCAClient,
        k8s_client: KubernetesClient,
        instance: Instance,
        scheme: Scheme,
        timeouts: JobTimeouts,
        hsm_config: HSMConfig,
        logger: logging.Logger | None = None,
    ) -> None:
        self.client = client
        self.k8s_client = k8s_client
        self.instance = instance
        self.scheme = scheme
        self.timeouts = timeouts
        self.hsm_config = hsm_config
        self.logger = logger or get_logger(self.__class__.__name__.lower())

    def get_enrollment_request(self) -> EnrollmentRequest:
        return self.client.get_enrollment_request()

    def ping_ca(self, timeout: timedelta) -> None:
        self.client.ping_ca(timeout)

    def enroll(self) -> EnrollmentResponse:
        """Run the enrollment job and adopt the secrets it produces.

        Returns:
            Empty EnrollmentResponse; the crypto lives in the ecert-* secrets

        Raises:
            OrchestrationError: If a cluster object cannot be created or removed
            JobError: If the job does not start, does not finish, fails, or
                produces no sign cert secret
        """
        self._delete_ca_client_config()

        library = posixpath.basename(self.hsm_config.library.file_path)
        self.client.set_hsm_library(posixpath.join(HSM_LIBRARY_MOUNT_DIR, library))

        self._create_root_tls_secret()
        self._create_ca_client_config()

        job = build_enroll_job(
            self.instance,
            self.client,
            self.hsm_config,
            self.timeouts,
            self.k8s_client,
            daemon=self.daemon,
            logger=self.logger,
        )
        try:
            self.k8s_client.create_job(job.k8s_job, owner=self.instance, scheme=self.scheme)
        except OrchestrationError as e:
            raise OrchestrationError(f"failed to create job: {e}") from e
        self.logger.info("Job '%s' created", job.name)

        job.wait_until_active()
        self.logger.info("Job '%s' active", job.name)

        job.wait_until_container_finished(CERTGEN_CONTAINER)
        self.logger.info("Job '%s' finished", job.name)

        status = job.container_status(CERTGEN_CONTAINER)
        if status is JobStatus.FAILED:
            raise JobError(
                f"Job '{job.name}' finished unsuccessfully, not cleaning up pods to "
                "allow for error evaluation"
            )
        if status is not JobStatus.COMPLETED:
            raise JobError(f"Job '{job.name}' finished without a {CERTGEN_CONTAINER} exit code")

        job.delete()
        self._delete_root_tls_secret()
        self._delete_ca_client_config()

        self._wait_for_sign_cert()
        self._set_controller_references()

        return EnrollmentResponse()

    def _output_secret_name(self, suffix: str) -> str:
        return f"ecert-{self.instance.get_name()}-{suffix}"

    def _create_root_tls_secret(self) -> None:
        try:
            tls_cert = self.client.get_enrollment_request().get_catls_bytes()
        except ValueError as e:
            raise EnrollmentValidationError(f"failed to decode CA TLS certificate: {e}") from e

        secret = V1Secret(
            metadata=V1ObjectMeta(
                name=root_tls_secret_name(self.instance),
                namespace=self.instance.get_namespace(),
            ),
            data={TLS_CERT_FILE: base64.b64encode(tls_cert).decode()},
        )
        try:
            self.k8s_client.create_secret(secret, owner=self.instance, scheme=self.scheme)
        except OrchestrationError as e:
            raise OrchestrationError(f"failed to create root TLS secret: {e}") from e

    def _delete_root_tls_secret(self) -> None:
        try:
            self.k8s_client.delete_secret(
                root_tls_secret_name(self.instance), self.instance.get_namespace()
            )
        except OrchestrationError as e:
            raise OrchestrationError(f"failed to delete secret: {e}") from e

    def _create_ca_client_config(self) -> None:
        config_yaml = yaml.safe_dump(self.client.get_config().to_dict(), sort_keys=False)
        config_map = V1ConfigMap(
            metadata=V1ObjectMeta(
                name=client_config_map_name(self.instance),
                namespace=self.instance.get_namespace(),
            ),
            binary_data={CA_CLIENT_CONFIG_FILE: base64.b64encode(config_yaml.encode()).decode()},
        )
        try:
            self.k8s_client.create_config_map(config_map, owner=self.instance, scheme=self.scheme)
        except OrchestrationError as e:
            raise OrchestrationError(f"failed to create ca config map: {e}") from e

    def _delete_ca_client_config(self) -> None:
        try:
            self.k8s_client.delete_config_map(
                client_config_map_name(self.instance),
                self.instance.get_namespace(),
                ignore_not_found=True,
            )
        except OrchestrationError as e:
            raise OrchestrationError(f"failed to delete config map: {e}") from e

    def _wait_for_sign_cert(self) -> None:
        name = self._output_secret_name("signcert")

        def created() -> bool:
            self.logger.info("Waiting for secret '%s' to be created", name)
            try:
                self.k8s_client.get_secret(name, self.instance.get_namespace())
            except OrchestrationError:
                return False
            return True

        try:
            poll_until(created, self.secret_poll_interval, self.secret_poll_timeout)
        except PollTimeoutError as e:
            raise JobError(f"failed to create secret '{name}'") from e

    def _set_controller_references(self) -> None:
        for suffix, required in OUTPUT_SECRETS:
            name = self._output_secret_name(suffix)
            try:
                secret = self.k8s_client.get_secret(name, self.instance.get_namespace())
            except NotFoundError:
                if required:
                    raise
                self.logger.info("Secret '%s' not found, skipping controller reference", name)
                continue

            try:
                self.k8s_client.update_secret(secret, owner=self.instance, scheme=self.scheme)
            except OrchestrationError as e:
                raise OrchestrationError(
                    f"failed to update secret '{name}' with controller reference: {e}"
                ) from e


class HSMDaemonEnroller(HSMEnroller):
    """HSMEnroller whose job also runs the vendor PKCS#11 daemon.

    The daemon shares the in-memory volume with certgen and signals it is
    up by creating /shared/daemon-launched.
    """

    daemon = True
