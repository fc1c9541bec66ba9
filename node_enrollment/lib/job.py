"""Wrapper tracking one Kubernetes job through start, finish and cleanup."""

import logging
import secrets
import string
from enum import Enum

from kubernetes.client import V1Job, V1Pod

from .config import JobTimeouts
from .errors import JobError, OrchestrationError
from .k8s_client import KubernetesClient
from .logging_config import get_logger
from .polling import PollTimeoutError, poll_until

JOB_ID_CHARSET = string.digits + string.ascii_lowercase


class JobStatus(Enum):
    FAILED = "failed"
    COMPLETED = "completed"
    UNKNOWN = "unknown"


def job_id() -> str:
    """Return a random '<10 chars>-<5 chars>' suffix over [0-9a-z]."""
    first = "".join(secrets.choice(JOB_ID_CHARSET) for _ in range(10))
    second = "".join(secrets.choice(JOB_ID_CHARSET) for _ in range(5))
    return f"{first}-{second}"


class Job:
    """A job and the pods it runs.

    The job name gets a random suffix on construction so that retries never
    collide with a job left behind by a failed attempt.
    """

    active_poll_interval = 0.5
    finish_poll_interval = 2.0

    def __init__(
        self,
        k8s_job: V1Job,
        timeouts: JobTimeouts,
        client: KubernetesClient,
        logger: logging.Logger | None = None,
    ) -> None:
        self.k8s_job = k8s_job
        self.k8s_job.metadata.name = f"{k8s_job.metadata.name}-{job_id()}"
        self.timeouts = timeouts
        self.client = client
        self.logger = logger or get_logger("job")

    @property
    def name(self) -> str:
        return self.k8s_job.metadata.name

    @property
    def namespace(self) -> str:
        return self.k8s_job.metadata.namespace

    @property
    def label_selector(self) -> str:
        return f"job-name={self.name}"

    def _get_pods(self) -> list[V1Pod]:
        return self.client.list_pods(self.namespace, self.label_selector)

    def wait_until_active(self) -> None:
        """Wait until the job reports an active or succeeded pod.

        Raises:
            JobError: If the job is not active within the start timeout, or
                cannot be read
        """

        def active() -> bool:
            self.logger.info(
                "Waiting for job '%s' to start in namespace '%s'", self.name, self.namespace
            )
            status = self.client.get_job(self.name, self.namespace).status
            if status is None:
                return False
            return (status.active or 0) >= 1 or (status.succeeded or 0) >= 1

        try:
            poll_until(
                active,
                self.active_poll_interval,
                self.timeouts.job_start.total_seconds(),
            )
        except (PollTimeoutError, OrchestrationError) as e:
            raise JobError(f"job failed to start: {e}") from e

    def wait_until_container_finished(self, container: str) -> None:
        """Wait until every status of the named container is terminated.

        Pod listing errors are logged and retried.

        Raises:
            JobError: If the container does not finish within the completion timeout
        """

        def finished() -> bool:
            self.logger.info("Waiting for job pod '%s' to finish", self.name)
            try:
                pods = self._get_pods()
            except OrchestrationError as e:
                self.logger.warning("get job pod err: %s", e)
                return False

            if not pods:
                return False
            return self._container_terminated(pods, container)

        try:
            poll_until(
                finished,
                self.finish_poll_interval,
                self.timeouts.job_completion.total_seconds(),
            )
        except PollTimeoutError as e:
            raise JobError(f"pod for job '{self.name}' failed to finish: {e}") from e

    @staticmethod
    def _container_terminated(pods: list[V1Pod], container: str) -> bool:
        # A pod still in its init containers has no status for the container yet
        seen = False
        for pod in pods:
            for status in (pod.status and pod.status.container_statuses) or []:
                if status.name != container:
                    continue
                if status.state is None or status.state.terminated is None:
                    return False
                seen = True
        return seen

    def container_status(self, container: str) -> JobStatus:
        """Return the outcome of the named container from its exit code."""
        for pod in self._get_pods():
            for status in (pod.status and pod.status.container_statuses) or []:
                if status.name != container:
                    continue
                if status.state is not None and status.state.terminated is not None:
                    if status.state.terminated.exit_code == 0:
                        return JobStatus.COMPLETED
                    return JobStatus.FAILED
        return JobStatus.UNKNOWN

    def delete(self) -> None:
        """Delete the job, then each of its pods.

        Raises:
            OrchestrationError: If the job, the pod list or a pod fails
        """
        try:
            self.client.delete_job(self.name, self.namespace)
        except OrchestrationError as e:
            raise OrchestrationError(f"failed to delete: {e}") from e

        try:
            pods = self._get_pods()
        except OrchestrationError as e:
            raise OrchestrationError(f"failed to list job pods: {e}") from e

        for pod in pods:
            try:
                self.client.delete_pod(pod.metadata.name, self.namespace)
            except OrchestrationError as e:
                raise OrchestrationError(
                    f"failed to delete pod '{pod.metadata.name}': {e}"
                ) from e
