"""Rendering of resource specs into Kubernetes API objects."""

from functools import lru_cache
from typing import Any

from kubernetes.client import ApiClient
from kubernetes.client import V1ConfigMap, V1Secret, V1Service, V1ServicePort, V1ServiceSpec
from kubernetes.client import V1Container, V1ContainerPort, V1EnvVar, V1EnvVarSource
from kubernetes.client import V1ConfigMapKeySelector, V1SecretKeySelector
from kubernetes.client import V1Deployment, V1DeploymentSpec, V1LabelSelector
from kubernetes.client import V1HostPathVolumeSource, V1ObjectMeta
from kubernetes.client import V1PersistentVolume, V1PersistentVolumeSpec
from kubernetes.client import V1PersistentVolumeClaim, V1PersistentVolumeClaimSpec
from kubernetes.client import V1PersistentVolumeClaimVolumeSource
from kubernetes.client import V1PodSpec, V1PodTemplateSpec, V1ResourceRequirements
from kubernetes.client import V1Volume, V1VolumeMount

from .models import (
    ConfigMapSpec,
    DeploymentSpec,
    PersistentVolumeClaimSpec,
    PersistentVolumeSpec,
    ResourceKind,
    ResourceSpec,
    SecretSpec,
    ServiceSpec,
)


@lru_cache
def _serializer() -> ApiClient:
    return ApiClient()


def _metadata(spec: ResourceSpec, labels: dict[str, str] | None = None) -> V1ObjectMeta:
    return V1ObjectMeta(
        name=spec.name,
        namespace=spec.namespace,
        labels=labels if labels is not None else spec.metadata_labels(),
        annotations=spec.annotations or None,
    )


def render_config_map(spec: ConfigMapSpec) -> V1ConfigMap:
    return V1ConfigMap(
        api_version="v1",
        kind="ConfigMap",
        metadata=_metadata(spec),
        data=dict(spec.data),
    )


def render_secret(spec: SecretSpec) -> V1Secret:
    return V1Secret(
        api_version="v1",
        kind="Secret",
        metadata=_metadata(spec),
        type=spec.type,
        data=spec.encoded_data(),
    )


def render_persistent_volume(spec: PersistentVolumeSpec) -> V1PersistentVolume:
    return V1PersistentVolume(
        api_version="v1",
        kind="PersistentVolume",
        metadata=_metadata(spec),
        spec=V1PersistentVolumeSpec(
            capacity={"storage": spec.capacity},
            access_modes=list(spec.access_modes),
            storage_class_name=spec.storage_class_name,
            persistent_volume_reclaim_policy=spec.reclaim_policy,
            host_path=(
                V1HostPathVolumeSource(path=spec.host_path) if spec.host_path else None
            ),
        ),
    )


def render_persistent_volume_claim(
    spec: PersistentVolumeClaimSpec,
) -> V1PersistentVolumeClaim:
    return V1PersistentVolumeClaim(
        api_version="v1",
        kind="PersistentVolumeClaim",
        metadata=_metadata(spec),
        spec=V1PersistentVolumeClaimSpec(
            access_modes=list(spec.access_modes),
            storage_class_name=spec.storage_class_name,
            volume_name=spec.volume_name,
            resources=V1ResourceRequirements(requests={"storage": spec.storage}),
        ),
    )


def _env_var(binding) -> V1EnvVar:
    ref = binding.ref
    if ref.kind == ResourceKind.SECRET:
        source = V1EnvVarSource(
            secret_key_ref=V1SecretKeySelector(name=ref.name, key=ref.key)
        )
    else:
        source = V1EnvVarSource(
            config_map_key_ref=V1ConfigMapKeySelector(name=ref.name, key=ref.key)
        )
    return V1EnvVar(name=binding.name, value_from=source)


def render_deployment(spec: DeploymentSpec) -> V1Deployment:
    # Literal env first, then bindings, each in declaration order
    env = [V1EnvVar(name=k, value=v) for k, v in spec.env.items()]
    env.extend(_env_var(binding) for binding in spec.env_bindings)

    container = V1Container(
        name=spec.container_name or spec.name,
        image=spec.image,
        command=spec.command,
        args=spec.args,
        env=env or None,
        ports=[V1ContainerPort(container_port=port) for port in spec.ports] or None,
        volume_mounts=[
            V1VolumeMount(
                name=mount.volume,
                mount_path=mount.mount_path,
                read_only=mount.read_only or None,
            )
            for mount in spec.volume_mounts
        ]
        or None,
    )

    if spec.resources is not None:
        container.resources = V1ResourceRequirements(
            limits=dict(spec.resources.limits) or None,
            requests=dict(spec.resources.requests) or None,
        )

    pod_spec = V1PodSpec(
        containers=[container],
        volumes=[
            V1Volume(
                name=mount.volume,
                persistent_volume_claim=V1PersistentVolumeClaimVolumeSource(
                    claim_name=mount.claim_name
                ),
            )
            for mount in spec.volume_mounts
        ]
        or None,
    )

    labels = spec.metadata_labels()

    return V1Deployment(
        api_version="apps/v1",
        kind="Deployment",
        metadata=_metadata(spec, labels),
        spec=V1DeploymentSpec(
            replicas=spec.replicas,
            selector=V1LabelSelector(match_labels=spec.selector),
            template=V1PodTemplateSpec(
                metadata=V1ObjectMeta(labels=labels),
                spec=pod_spec,
            ),
        ),
    )


def render_service(spec: ServiceSpec) -> V1Service:
    return V1Service(
        api_version="v1",
        kind="Service",
        metadata=_metadata(spec),
        spec=V1ServiceSpec(
            type=spec.type,
            selector=spec.effective_selector,
            ports=[
                V1ServicePort(
                    name=port.name,
                    port=port.port,
                    target_port=port.target_port,
                    protocol=port.protocol,
                    node_port=port.node_port,
                )
                for port in spec.ports
            ],
        ),
    )


_RENDERERS = {
    ResourceKind.CONFIG_MAP: render_config_map,
    ResourceKind.SECRET: render_secret,
    ResourceKind.PERSISTENT_VOLUME: render_persistent_volume,
    ResourceKind.PERSISTENT_VOLUME_CLAIM: render_persistent_volume_claim,
    ResourceKind.DEPLOYMENT: render_deployment,
    ResourceKind.SERVICE: render_service,
}


def render(spec: ResourceSpec) -> Any:
    """Render a spec into the matching ``kubernetes.client`` model."""
    return _RENDERERS[spec.resource_kind](spec)


def to_body(obj: Any) -> dict[str, Any]:
    """Serialize a ``kubernetes.client`` model (or spec) to API field names."""
    if isinstance(obj, ResourceSpec):
        obj = render(obj)
    return _serializer().sanitize_for_serialization(obj)
