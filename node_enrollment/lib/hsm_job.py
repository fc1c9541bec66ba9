"""Enrollment job manifest for HSM backed enrollment."""

import copy
import logging
import posixpath
import shlex

from kubernetes.client import (
    V1ConfigMapVolumeSource,
    V1Container,
    V1EmptyDirVolumeSource,
    V1Job,
    V1JobSpec,
    V1LocalObjectReference,
    V1ObjectMeta,
    V1PersistentVolumeClaimVolumeSource,
    V1PodSpec,
    V1PodTemplateSpec,
    V1ResourceRequirements,
    V1SecretVolumeSource,
    V1SecurityContext,
    V1Volume,
    V1VolumeMount,
)

from .ca_client import FabricCAClient
from .config import CA_CLIENT_CONFIG_FILE, TLS_CERT_FILE, JobTimeouts
from .hsm_config import HSMConfig
from .instance import Instance
from .job import Job
from .k8s_client import KubernetesClient

HSM_CLIENT_CONTAINER = "hsm-client"
CERTGEN_CONTAINER = "certgen"
HSM_DAEMON_CONTAINER = "hsm-daemon"
HSM_DAEMON_COMPONENT = "hsmdaemon"

SHARED_VOLUME = "shared"
SHARED_MOUNT_PATH = "/shared"
CLIENT_CONFIG_PATH = f"/tmp/{CA_CLIENT_CONFIG_FILE}"
ENROLLER_BINARY = "/usr/local/bin/enroller"

DAEMON_CHECK_CMD = (
    "while true; do if [ -f /shared/daemon-launched ]; then break; fi; done"
)

HSM_CLIENT_RESOURCES = V1ResourceRequirements(
    requests={"cpu": "0.1", "memory": "100Mi", "ephemeral-storage": "100Mi"},
    limits={"cpu": "1", "memory": "500Mi", "ephemeral-storage": "1Gi"},
)


def root_tls_secret_name(instance: Instance) -> str:
    return f"{instance.get_name()}-init-roottls"


def client_config_map_name(instance: Instance) -> str:
    return f"{instance.get_name()}-init-config"


def pvc_volume_name(instance: Instance) -> str:
    return f"{instance.get_name()}-pvc-volume"


def append_pull_secret_if_missing(
    pull_secrets: list[V1LocalObjectReference], pull_secret: V1LocalObjectReference
) -> list[V1LocalObjectReference]:
    """Append pull_secret unless it is unnamed or already listed."""
    if not pull_secret.name:
        return pull_secrets
    if any(s.name == pull_secret.name for s in pull_secrets):
        return pull_secrets
    return pull_secrets + [pull_secret]


def _hsm_client_container(hsm_config: HSMConfig) -> V1Container:
    library_path = hsm_config.library.file_path
    library_name = posixpath.basename(library_path)
    copy_cmd = (
        f"mkdir -p {SHARED_MOUNT_PATH}/hsm && "
        f'dst="{SHARED_MOUNT_PATH}/hsm/{library_name}" && '
        f'echo "Copying {library_path} to ${{dst}}" && '
        f"mkdir -p $(dirname $dst) && cp -r {library_path} $dst"
    )
    return V1Container(
        name=HSM_CLIENT_CONTAINER,
        image=hsm_config.library.image,
        image_pull_policy="Always",
        command=["sh", "-c", copy_cmd],
        security_context=V1SecurityContext(run_as_user=0, run_as_non_root=False),
        volume_mounts=[V1VolumeMount(name=SHARED_VOLUME, mount_path=SHARED_MOUNT_PATH)],
        resources=copy.deepcopy(HSM_CLIENT_RESOURCES),
    )


def _enroll_command(instance: Instance, ca_client: FabricCAClient) -> str:
    # Quoted so an empty CA name keeps its position and secrets stay literal
    request = ca_client.get_enrollment_request()
    return shlex.join(
        [
            ENROLLER_BINARY,
            "node",
            "enroll",
            ca_client.get_home_dir(),
            CLIENT_CONFIG_PATH,
            request.ca_host,
            request.ca_port,
            request.ca_name,
            instance.get_name(),
            instance.get_namespace(),
            request.enroll_id,
            request.enroll_secret,
        ]
    )


def _certgen_container(
    instance: Instance, ca_client: FabricCAClient, hsm_config: HSMConfig, daemon: bool
) -> V1Container:
    volume_mounts = [
        V1VolumeMount(
            name="tlscertfile",
            mount_path=f"{ca_client.get_home_dir()}/{TLS_CERT_FILE}",
            sub_path=TLS_CERT_FILE,
        ),
        V1VolumeMount(
            name="clientconfig",
            mount_path=CLIENT_CONFIG_PATH,
            sub_path=CA_CLIENT_CONFIG_FILE,
        ),
        V1VolumeMount(name=SHARED_VOLUME, mount_path="/hsm/lib", sub_path="hsm"),
    ]

    enroll_cmd = _enroll_command(instance, ca_client)
    if not daemon:
        return V1Container(
            name=CERTGEN_CONTAINER,
            image=instance.enroller_image(),
            image_pull_policy="Always",
            security_context=V1SecurityContext(run_as_user=0, run_as_non_root=False),
            env=list(hsm_config.get_envs()),
            command=["sh", "-c", enroll_cmd],
            volume_mounts=volume_mounts,
        )

    # The daemon signals readiness by touching a file on the shared volume
    volume_mounts.append(V1VolumeMount(name=SHARED_VOLUME, mount_path=SHARED_MOUNT_PATH))
    return V1Container(
        name=CERTGEN_CONTAINER,
        image=instance.enroller_image(),
        image_pull_policy="Always",
        security_context=V1SecurityContext(
            run_as_user=0, privileged=True, allow_privilege_escalation=True
        ),
        env=list(hsm_config.get_envs()),
        command=["sh", "-c"],
        args=[f"{DAEMON_CHECK_CMD} && {enroll_cmd}"],
        volume_mounts=volume_mounts,
    )


def _daemon_container(
    hsm_config: HSMConfig,
    resources: V1ResourceRequirements,
    pvc_mount: V1VolumeMount | None,
) -> V1Container:
    daemon = hsm_config.daemon
    security_context = V1SecurityContext(
        run_as_user=0,
        run_as_non_root=False,
        privileged=True,
        allow_privilege_escalation=True,
    )
    override = daemon.security_context
    if override is not None:
        for attr in ("privileged", "run_as_non_root", "run_as_user", "allow_privilege_escalation"):
            value = getattr(override, attr)
            if value is not None:
                setattr(security_context, attr, value)

    volume_mounts = [V1VolumeMount(name=SHARED_VOLUME, mount_path=SHARED_MOUNT_PATH)]
    volume_mounts.extend(hsm_config.get_volume_mounts())
    if pvc_mount is not None:
        volume_mounts.append(pvc_mount)

    return V1Container(
        name=HSM_DAEMON_CONTAINER,
        image=daemon.image,
        image_pull_policy="Always",
        security_context=security_context,
        resources=daemon.resources if daemon.resources is not None else resources,
        volume_mounts=volume_mounts,
        env=list(daemon.get_envs()),
    )


def build_enroll_job(
    instance: Instance,
    ca_client: FabricCAClient,
    hsm_config: HSMConfig,
    timeouts: JobTimeouts,
    client: KubernetesClient,
    daemon: bool = False,
    logger: logging.Logger | None = None,
) -> Job:
    """Build the job that enrolls from inside the cluster with the HSM library.

    An init container copies the HSM library into an in-memory volume that
    the certgen container mounts at /hsm/lib. With daemon=True an hsm-daemon
    container runs next to certgen, and certgen waits for it before enrolling.

    Args:
        instance: Component instance being enrolled
        ca_client: CA client whose config and request the job uses
        hsm_config: HSM configuration
        timeouts: Start and completion timeouts for the job
        client: Kubernetes client the job is tracked with
        daemon: Add the hsm-daemon container and PVC wiring
        logger: Logger for this enrollment attempt

    Returns:
        Job with a randomized name, not yet submitted
    """
    name = instance.get_name()
    job_name = f"{name}-enroll"

    volumes = [
        V1Volume(name=SHARED_VOLUME, empty_dir=V1EmptyDirVolumeSource(medium="Memory")),
        V1Volume(
            name="tlscertfile",
            secret=V1SecretVolumeSource(secret_name=root_tls_secret_name(instance)),
        ),
        V1Volume(
            name="clientconfig",
            config_map=V1ConfigMapVolumeSource(name=client_config_map_name(instance)),
        ),
    ]

    certgen = _certgen_container(instance, ca_client, hsm_config, daemon)
    certgen.volume_mounts.extend(hsm_config.get_volume_mounts())
    volumes.extend(hsm_config.get_volumes())

    pod_spec = V1PodSpec(
        service_account_name=name,
        image_pull_secrets=append_pull_secret_if_missing(
            instance.get_pull_secrets(), hsm_config.build_pull_secret()
        ),
        restart_policy="Never",
        init_containers=[_hsm_client_container(hsm_config)],
        containers=[certgen],
        volumes=volumes,
    )

    if daemon and hsm_config.daemon is not None:
        volumes.append(
            V1Volume(
                name=pvc_volume_name(instance),
                persistent_volume_claim=V1PersistentVolumeClaimVolumeSource(
                    claim_name=instance.pvc_name()
                ),
            )
        )

        pvc_mount = None
        for mount in hsm_config.mount_paths:
            if mount.use_pvc:
                pvc_mount = V1VolumeMount(
                    name=pvc_volume_name(instance), mount_path=mount.mount_path
                )

        pod_spec.containers.append(
            _daemon_container(hsm_config, instance.get_resource(HSM_DAEMON_COMPONENT), pvc_mount)
        )
        if hsm_config.daemon.auth is not None:
            pod_spec.image_pull_secrets = append_pull_secret_if_missing(
                pod_spec.image_pull_secrets, hsm_config.daemon.build_pull_secret()
            )
        if pvc_mount is not None:
            certgen.volume_mounts.append(copy.deepcopy(pvc_mount))

    k8s_job = V1Job(
        api_version="batch/v1",
        kind="Job",
        metadata=V1ObjectMeta(
            name=job_name,
            namespace=instance.get_namespace(),
            labels={"name": job_name, "owner": name},
        ),
        spec=V1JobSpec(
            backoff_limit=0,
            template=V1PodTemplateSpec(spec=pod_spec),
        ),
    )

    return Job(k8s_job, timeouts, client, logger)
