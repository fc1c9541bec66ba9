"""Kubernetes client for the objects enrollment creates and watches."""

from collections.abc import Callable
from typing import Any, TypeVar

from kubernetes import client
from kubernetes.client import (
    ApiClient,
    V1ConfigMap,
    V1Job,
    V1ObjectMeta,
    V1OwnerReference,
    V1Pod,
    V1Secret,
)
from kubernetes.client.rest import ApiException

from .errors import NotFoundError, OrchestrationError
from .instance import Instance

T = TypeVar("T")


class Scheme:
    """Registry mapping owner classes to their API version and kind."""

    def __init__(self) -> None:
        self._kinds: dict[type, tuple[str, str]] = {}

    def register(self, cls: type, api_version: str, kind: str) -> None:
        self._kinds[cls] = (api_version, kind)

    def kind_for(self, obj: Any) -> tuple[str, str]:
        """Return (api_version, kind) registered for the object's class.

        Raises:
            OrchestrationError: If no class in the object's MRO is registered
        """
        for cls in obj.__class__.__mro__:
            if cls in self._kinds:
                return self._kinds[cls]
        raise OrchestrationError(f"no kind registered for type '{obj.__class__.__name__}'")

    def owner_reference(self, owner: Instance) -> V1OwnerReference:
        api_version, kind = self.kind_for(owner)
        return V1OwnerReference(
            api_version=api_version,
            kind=kind,
            name=owner.get_name(),
            uid=owner.get_uid(),
            controller=True,
            block_owner_deletion=True,
        )


def set_controller_reference(
    metadata: V1ObjectMeta, owner: Instance, scheme: Scheme
) -> None:
    """Make owner the controller of the object, replacing a previous reference to it."""
    ref = scheme.owner_reference(owner)
    existing = [r for r in (metadata.owner_references or []) if r.uid != ref.uid]
    for r in existing:
        if r.controller:
            raise OrchestrationError(
                f"object '{metadata.name}' is already controlled by {r.kind} '{r.name}'"
            )
    metadata.owner_references = existing + [ref]


class KubernetesClient:
    """Wrapper over CoreV1Api and BatchV1Api.

    API errors surface as OrchestrationError; a 404 surfaces as NotFoundError
    so callers can tell "missing" from "broken".
    """

    def __init__(self, api_client: ApiClient | None = None) -> None:
        """Initialize Kubernetes client.

        Args:
            api_client: Configured ApiClient; the default configuration is
                used when omitted
        """
        self.core = client.CoreV1Api(api_client)
        self.batch = client.BatchV1Api(api_client)

    def _call(self, action: str, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        try:
            return fn(*args, **kwargs)
        except ApiException as e:
            if e.status == 404:
                raise NotFoundError(f"{action}: not found") from e
            raise OrchestrationError(f"{action}: {e.status} {e.reason}") from e

    def _delete(
        self,
        action: str,
        fn: Callable[..., Any],
        name: str,
        namespace: str,
        ignore_not_found: bool,
    ) -> None:
        try:
            self._call(action, fn, name=name, namespace=namespace)
        except NotFoundError:
            if not ignore_not_found:
                raise

    @staticmethod
    def _own(
        metadata: V1ObjectMeta, owner: Instance | None, scheme: Scheme | None
    ) -> None:
        if owner is None:
            return
        if scheme is None:
            raise OrchestrationError("a scheme is required to set an owner reference")
        set_controller_reference(metadata, owner, scheme)

    # Secrets

    def create_secret(
        self, secret: V1Secret, owner: Instance | None = None, scheme: Scheme | None = None
    ) -> V1Secret:
        self._own(secret.metadata, owner, scheme)
        return self._call(
            f"create secret '{secret.metadata.name}'",
            self.core.create_namespaced_secret,
            namespace=secret.metadata.namespace,
            body=secret,
        )

    def get_secret(self, name: str, namespace: str) -> V1Secret:
        return self._call(
            f"get secret '{name}'",
            self.core.read_namespaced_secret,
            name=name,
            namespace=namespace,
        )

    def update_secret(
        self, secret: V1Secret, owner: Instance | None = None, scheme: Scheme | None = None
    ) -> V1Secret:
        self._own(secret.metadata, owner, scheme)
        return self._call(
            f"update secret '{secret.metadata.name}'",
            self.core.replace_namespaced_secret,
            name=secret.metadata.name,
            namespace=secret.metadata.namespace,
            body=secret,
        )

    def delete_secret(self, name: str, namespace: str, ignore_not_found: bool = False) -> None:
        self._delete(
            f"delete secret '{name}'",
            self.core.delete_namespaced_secret,
            name,
            namespace,
            ignore_not_found,
        )

    # Config maps

    def create_config_map(
        self, config_map: V1ConfigMap, owner: Instance | None = None, scheme: Scheme | None = None
    ) -> V1ConfigMap:
        self._own(config_map.metadata, owner, scheme)
        return self._call(
            f"create config map '{config_map.metadata.name}'",
            self.core.create_namespaced_config_map,
            namespace=config_map.metadata.namespace,
            body=config_map,
        )

    def get_config_map(self, name: str, namespace: str) -> V1ConfigMap:
        return self._call(
            f"get config map '{name}'",
            self.core.read_namespaced_config_map,
            name=name,
            namespace=namespace,
        )

    def delete_config_map(
        self, name: str, namespace: str, ignore_not_found: bool = False
    ) -> None:
        self._delete(
            f"delete config map '{name}'",
            self.core.delete_namespaced_config_map,
            name,
            namespace,
            ignore_not_found,
        )

    # Jobs and pods

    def create_job(
        self, job: V1Job, owner: Instance | None = None, scheme: Scheme | None = None
    ) -> V1Job:
        self._own(job.metadata, owner, scheme)
        return self._call(
            f"create job '{job.metadata.name}'",
            self.batch.create_namespaced_job,
            namespace=job.metadata.namespace,
            body=job,
        )

    def get_job(self, name: str, namespace: str) -> V1Job:
        return self._call(
            f"get job '{name}'",
            self.batch.read_namespaced_job,
            name=name,
            namespace=namespace,
        )

    def delete_job(self, name: str, namespace: str, ignore_not_found: bool = False) -> None:
        self._delete(
            f"delete job '{name}'",
            self.batch.delete_namespaced_job,
            name,
            namespace,
            ignore_not_found,
        )

    def list_pods(self, namespace: str, label_selector: str) -> list[V1Pod]:
        pods = self._call(
            f"list pods '{label_selector}'",
            self.core.list_namespaced_pod,
            namespace=namespace,
            label_selector=label_selector,
        )
        return list(pods.items or [])

    def delete_pod(self, name: str, namespace: str, ignore_not_found: bool = False) -> None:
        self._delete(
            f"delete pod '{name}'",
            self.core.delete_namespaced_pod,
            name,
            namespace,
            ignore_not_found,
        )
