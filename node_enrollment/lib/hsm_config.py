"""HSM configuration read from the cluster."""

import copy
import logging
import re
from dataclasses import dataclass, field
from typing import Any

import yaml
from kubernetes.client import (
    V1EnvVar,
    V1KeyToPath,
    V1LocalObjectReference,
    V1ResourceRequirements,
    V1SecretVolumeSource,
    V1SecurityContext,
    V1Volume,
    V1VolumeMount,
)
from kubernetes.client import models as k8s_models

from .config import HSM_CONFIG_KEY, HSM_CONFIG_MAP_NAME
from .errors import HSMConfigError, OrchestrationError
from .k8s_client import KubernetesClient

logger = logging.getLogger(__name__)


_LIST_TYPE = re.compile(r"list\[(.*)\]")
_DICT_TYPE = re.compile(r"dict\(([^,]*), (.*)\)")


def deserialize_model(data: Any, klass: str) -> Any:
    """Build a kubernetes model (e.g. 'V1SecurityContext') from its camelCase dict.

    Walks the model's openapi_types and attribute_map, the same tables the
    generated client uses to read API responses. Primitive types and
    timestamps are passed through unchanged.

    Raises:
        ValueError: If a list or mapping is expected and the data is not one
    """
    if data is None:
        return None

    match = _LIST_TYPE.fullmatch(klass)
    if match:
        if not isinstance(data, list):
            raise ValueError(f"expected a list for '{klass}', got {type(data).__name__}")
        return [deserialize_model(item, match.group(1)) for item in data]

    match = _DICT_TYPE.fullmatch(klass)
    if match:
        if not isinstance(data, dict):
            raise ValueError(f"expected a mapping for '{klass}', got {type(data).__name__}")
        return {key: deserialize_model(value, match.group(2)) for key, value in data.items()}

    model = getattr(k8s_models, klass, None)
    if model is None or not hasattr(model, "openapi_types"):
        return data

    if not isinstance(data, dict):
        raise ValueError(f"expected a mapping for '{klass}', got {type(data).__name__}")
    kwargs = {
        attr: deserialize_model(data[model.attribute_map[attr]], attr_type)
        for attr, attr_type in model.openapi_types.items()
        if model.attribute_map[attr] in data
    }
    return model(**kwargs)


def _volume_source(mount: dict[str, Any]) -> V1Volume | None:
    # Volume sources are inlined into V1Volume, which requires a name
    source = mount.get("volumeSource")
    if source is None:
        return None
    return deserialize_model({**source, "name": mount.get("name", "")}, "V1Volume")


@dataclass
class Auth:
    image_pull_secret: str = ""

    def build_pull_secret(self) -> V1LocalObjectReference:
        return V1LocalObjectReference(name=self.image_pull_secret)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "Auth | None":
        if data is None:
            return None
        return cls(image_pull_secret=data.get("imagePullSecret", ""))


@dataclass
class Library:
    file_path: str = ""
    image: str = ""
    auto_update_disabled: bool = False
    auth: Auth | None = None


@dataclass
class Path:
    key: str
    path: str


@dataclass
class MountPath:
    """One volume the HSM client needs mounted.

    Without volume_source the volume is backed by the named secret, with
    paths projected as key/path items.
    """

    name: str = ""
    secret: str = ""
    mount_path: str = ""
    use_pvc: bool = False
    sub_path: str = ""
    paths: list[Path] = field(default_factory=list)
    volume_source: V1Volume | None = None

    def build_volume_mount(self) -> V1VolumeMount:
        return V1VolumeMount(
            name=self.name,
            mount_path=self.mount_path,
            sub_path=self.sub_path or None,
        )

    def build_volume(self) -> V1Volume:
        if self.volume_source is not None:
            volume = copy.deepcopy(self.volume_source)
            volume.name = self.name
        else:
            volume = V1Volume(
                name=self.name, secret=V1SecretVolumeSource(secret_name=self.secret)
            )

        if self.paths:
            if volume.secret is None:
                raise HSMConfigError(
                    f"mount path '{self.name}' lists paths but is not backed by a secret"
                )
            items = list(volume.secret.items or [])
            items.extend(V1KeyToPath(key=p.key, path=p.path) for p in self.paths)
            volume.secret.items = items

        return volume


@dataclass
class Daemon:
    """Long running PKCS#11 daemon container settings."""

    image: str = ""
    envs: list[V1EnvVar] = field(default_factory=list)
    auth: Auth | None = None
    security_context: V1SecurityContext | None = None
    resources: V1ResourceRequirements | None = None

    def get_envs(self) -> list[V1EnvVar]:
        return self.envs

    def build_pull_secret(self) -> V1LocalObjectReference:
        if self.auth is not None:
            return self.auth.build_pull_secret()
        return V1LocalObjectReference(name="")


@dataclass
class HSMConfig:
    """HSM library, mounts and optional daemon for enrollment jobs."""

    type: str = ""
    version: str = ""
    library: Library = field(default_factory=Library)
    mount_paths: list[MountPath] = field(default_factory=list)
    envs: list[V1EnvVar] = field(default_factory=list)
    daemon: Daemon | None = None

    def build_pull_secret(self) -> V1LocalObjectReference:
        if self.library.auth is not None:
            return self.library.auth.build_pull_secret()
        return V1LocalObjectReference(name="")

    def get_volumes(self) -> list[V1Volume]:
        return [m.build_volume() for m in self.mount_paths if not m.use_pvc]

    def get_volume_mounts(self) -> list[V1VolumeMount]:
        return [m.build_volume_mount() for m in self.mount_paths if not m.use_pvc]

    def get_envs(self) -> list[V1EnvVar]:
        return self.envs

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "HSMConfig":
        """Build from the YAML document stored in the HSM config map.

        Args:
            data: Parsed YAML with type, version, library, mountpaths, envs
                and daemon keys

        Returns:
            HSMConfig
        """
        library = data.get("library") or {}
        daemon = data.get("daemon")

        return cls(
            type=data.get("type", ""),
            version=data.get("version", ""),
            library=Library(
                file_path=library.get("filepath", ""),
                image=library.get("image", ""),
                auto_update_disabled=library.get("autoUpdateDisabled", False),
                auth=Auth.from_dict(library.get("auth")),
            ),
            mount_paths=[
                MountPath(
                    name=m.get("name", ""),
                    secret=m.get("secret", ""),
                    mount_path=m.get("mountpath", ""),
                    use_pvc=m.get("usePVC", False),
                    sub_path=m.get("subpath", ""),
                    paths=[Path(key=p["key"], path=p["path"]) for p in m.get("paths") or []],
                    volume_source=_volume_source(m),
                )
                for m in data.get("mountpaths") or []
            ],
            envs=deserialize_model(data.get("envs") or [], "list[V1EnvVar]"),
            daemon=Daemon(
                image=daemon.get("image", ""),
                envs=deserialize_model(daemon.get("envs") or [], "list[V1EnvVar]"),
                auth=Auth.from_dict(daemon.get("auth")),
                security_context=deserialize_model(
                    daemon.get("securityContext"), "V1SecurityContext"
                ),
                resources=deserialize_model(daemon.get("resources"), "V1ResourceRequirements"),
            )
            if daemon is not None
            else None,
        )


def read_hsm_config(k8s_client: KubernetesClient, namespace: str) -> HSMConfig:
    """Read the HSM config map from the instance's namespace.

    Args:
        k8s_client: Kubernetes client
        namespace: Namespace of the component instance

    Returns:
        Parsed HSMConfig

    Raises:
        HSMConfigError: If the config map is missing or the YAML is invalid
    """
    try:
        config_map = k8s_client.get_config_map(HSM_CONFIG_MAP_NAME, namespace)
    except OrchestrationError as e:
        raise HSMConfigError(f"failed to get hsm config '{HSM_CONFIG_MAP_NAME}': {e}") from e

    raw = (config_map.data or {}).get(HSM_CONFIG_KEY, "")
    try:
        hsm_config = HSMConfig.from_dict(yaml.safe_load(raw) or {})
    except (yaml.YAMLError, AttributeError, KeyError, TypeError, ValueError) as e:
        raise HSMConfigError(f"failed to parse hsm config '{HSM_CONFIG_MAP_NAME}': {e}") from e

    logger.info(
        "Read HSM config '%s' (library '%s', daemon: %s)",
        HSM_CONFIG_MAP_NAME,
        hsm_config.library.file_path,
        hsm_config.daemon is not None,
    )
    return hsm_config
