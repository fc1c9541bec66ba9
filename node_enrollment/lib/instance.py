"""Component instance consumed by the enrollment strategies."""

from dataclasses import dataclass, field
from typing import Protocol

from kubernetes.client import V1LocalObjectReference, V1ResourceRequirements

from .config import BCCSPConfig


class ConfigOverride(Protocol):
    """Component config override carrying an optional BCCSP section."""

    def get_bccsp_section(self) -> BCCSPConfig | None: ...


class Instance(Protocol):
    """CA, peer or orderer resource that enrollment runs on behalf of."""

    def get_name(self) -> str: ...

    def get_namespace(self) -> str: ...

    def get_uid(self) -> str: ...

    def get_pull_secrets(self) -> list[V1LocalObjectReference]: ...

    def pvc_name(self) -> str: ...

    def get_resource(self, component: str) -> V1ResourceRequirements: ...

    def enroller_image(self) -> str: ...

    def is_hsm_enabled(self) -> bool: ...

    def using_hsm_proxy(self) -> bool: ...

    def get_config_override(self) -> ConfigOverride | None: ...


@dataclass
class NodeConfigOverride:
    bccsp: BCCSPConfig | None = None

    def get_bccsp_section(self) -> BCCSPConfig | None:
        return self.bccsp


@dataclass
class ComponentInstance:
    """Plain Instance implementation built from resource metadata.

    resources maps a container component name (e.g. 'hsmdaemon') to its
    resource requirements.
    """

    name: str
    namespace: str
    uid: str = ""
    pull_secrets: list[str] = field(default_factory=list)
    pvc: str = ""
    image: str = ""
    resources: dict[str, V1ResourceRequirements] = field(default_factory=dict)
    hsm_enabled: bool = False
    hsm_proxy: bool = False
    config_override: ConfigOverride | None = None

    def get_name(self) -> str:
        return self.name

    def get_namespace(self) -> str:
        return self.namespace

    def get_uid(self) -> str:
        return self.uid

    def get_pull_secrets(self) -> list[V1LocalObjectReference]:
        return [V1LocalObjectReference(name=secret) for secret in self.pull_secrets]

    def pvc_name(self) -> str:
        return self.pvc

    def get_resource(self, component: str) -> V1ResourceRequirements:
        return self.resources.get(component, V1ResourceRequirements())

    def enroller_image(self) -> str:
        return self.image

    def is_hsm_enabled(self) -> bool:
        return self.hsm_enabled

    def using_hsm_proxy(self) -> bool:
        return self.hsm_proxy

    def get_config_override(self) -> ConfigOverride | None:
        return self.config_override
