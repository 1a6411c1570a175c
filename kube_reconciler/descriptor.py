"""Loading resource specs from YAML descriptors and Kubernetes manifests."""

import logging
from pathlib import Path
from typing import Any, Callable, Optional, Union

import yaml
from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from .exceptions import DescriptorError
from .models import (
    AnyResourceSpec,
    ConfigMapSpec,
    DeploymentSpec,
    PersistentVolumeClaimSpec,
    PersistentVolumeSpec,
    ResourceKind,
    ResourceSpec,
    SecretSpec,
    ServiceSpec,
)

logger = logging.getLogger(__name__)

_spec_adapter: TypeAdapter = TypeAdapter(AnyResourceSpec)


def _yaml_error(e: yaml.YAMLError) -> DescriptorError:
    # The YAML snippet in str(e) may contain secret values; report position only
    mark = getattr(e, "problem_mark", None)
    problem = getattr(e, "problem", None) or "invalid YAML"
    if mark is not None:
        return DescriptorError(f"line {mark.line + 1}, column {mark.column + 1}: {problem}")
    return DescriptorError(problem)


def _format_errors(label: str, e: PydanticValidationError) -> str:
    parts = []
    for err in e.errors(include_input=False, include_url=False):
        loc = ".".join(str(p) for p in err["loc"])
        parts.append(f"{loc}: {err['msg']}" if loc else err["msg"])
    return f"{label}: " + "; ".join(parts)


def _build(label: str, factory: Callable[..., ResourceSpec], **fields) -> ResourceSpec:
    try:
        return factory(**fields)
    except PydanticValidationError as e:
        raise DescriptorError(_format_errors(label, e)) from None


# ---------------------------------------------------------------------------
# Compact descriptor format
# ---------------------------------------------------------------------------


def parse_descriptor(text: str) -> list[ResourceSpec]:
    """
    Parse a compact YAML descriptor.

    Example::

        namespace: shop
        resources:
          - kind: ConfigMap
            name: db-config
            data: {host: mysql, dbName: shop}
          - kind: Deployment
            name: app
            image: shop/app:1.0
            env_bindings:
              - name: DB_HOST
                ref: {kind: ConfigMap, name: db-config, key: host}

    Raises:
        DescriptorError: If the YAML or any resource is malformed
    """
    try:
        doc = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise _yaml_error(e) from None

    if not isinstance(doc, dict) or not isinstance(doc.get("resources"), list):
        raise DescriptorError("descriptor must be a mapping with a 'resources' list")

    namespace = doc.get("namespace") or "default"
    specs: list[ResourceSpec] = []
    for i, entry in enumerate(doc["resources"]):
        if not isinstance(entry, dict):
            raise DescriptorError(f"resources[{i}]: must be a mapping")
        entry = {"namespace": namespace, **entry}
        try:
            specs.append(_spec_adapter.validate_python(entry))
        except PydanticValidationError as e:
            raise DescriptorError(_format_errors(f"resources[{i}]", e)) from None

    logger.debug(f"Loaded {len(specs)} resources from descriptor")
    return specs


def load_descriptor(path: Union[str, Path]) -> list[ResourceSpec]:
    """Load a compact YAML descriptor from a file."""
    return parse_descriptor(Path(path).read_text(encoding="utf-8"))


# ---------------------------------------------------------------------------
# Plain Kubernetes manifests
# ---------------------------------------------------------------------------


def _metadata_fields(doc: dict[str, Any], default_namespace: str) -> dict[str, Any]:
    metadata = doc.get("metadata") or {}
    if not metadata.get("name"):
        raise DescriptorError(f"{doc.get('kind')}: metadata.name is required")
    return {
        "name": metadata["name"],
        "namespace": metadata.get("namespace") or default_namespace,
        "labels": metadata.get("labels") or {},
        "annotations": metadata.get("annotations") or {},
    }


def _config_map(doc: dict[str, Any], meta: dict[str, Any]) -> ResourceSpec:
    data = {k: str(v) for k, v in (doc.get("data") or {}).items()}
    return _build(f"ConfigMap {meta['name']}", ConfigMapSpec, data=data, **meta)


def _secret(doc: dict[str, Any], meta: dict[str, Any]) -> ResourceSpec:
    return _build(
        f"Secret {meta['name']}",
        SecretSpec,
        type=doc.get("type") or "Opaque",
        data=doc.get("data") or {},
        string_data=doc.get("stringData") or {},
        **meta,
    )


def _persistent_volume(doc: dict[str, Any], meta: dict[str, Any]) -> ResourceSpec:
    spec = doc.get("spec") or {}
    fields: dict[str, Any] = {
        "capacity": (spec.get("capacity") or {}).get("storage", "1Gi"),
        "storage_class_name": spec.get("storageClassName"),
        "host_path": (spec.get("hostPath") or {}).get("path"),
        "reclaim_policy": spec.get("persistentVolumeReclaimPolicy") or "Retain",
    }
    if spec.get("accessModes"):
        fields["access_modes"] = spec["accessModes"]
    meta = {**meta, "namespace": None}
    return _build(f"PersistentVolume {meta['name']}", PersistentVolumeSpec, **fields, **meta)


def _persistent_volume_claim(doc: dict[str, Any], meta: dict[str, Any]) -> ResourceSpec:
    spec = doc.get("spec") or {}
    requests = (spec.get("resources") or {}).get("requests") or {}
    fields: dict[str, Any] = {
        "storage": requests.get("storage", "1Gi"),
        "storage_class_name": spec.get("storageClassName"),
        "volume_name": spec.get("volumeName"),
    }
    if spec.get("accessModes"):
        fields["access_modes"] = spec["accessModes"]
    return _build(
        f"PersistentVolumeClaim {meta['name']}", PersistentVolumeClaimSpec, **fields, **meta
    )


def _env(container: dict[str, Any], label: str) -> tuple[dict[str, str], list[dict]]:
    env: dict[str, str] = {}
    bindings: list[dict[str, Any]] = []
    for var in container.get("env") or []:
        value_from = var.get("valueFrom")
        if value_from is None:
            value = var.get("value")
            env[var["name"]] = "" if value is None else str(value)
            continue
        if "configMapKeyRef" in value_from:
            kind, selector = ResourceKind.CONFIG_MAP, value_from["configMapKeyRef"]
        elif "secretKeyRef" in value_from:
            kind, selector = ResourceKind.SECRET, value_from["secretKeyRef"]
        else:
            raise DescriptorError(
                f"{label}: env {var['name']} uses an unsupported valueFrom source"
            )
        bindings.append(
            {
                "name": var["name"],
                "ref": {"kind": kind, "name": selector.get("name"), "key": selector.get("key")},
            }
        )
    return env, bindings


def _deployment(doc: dict[str, Any], meta: dict[str, Any]) -> ResourceSpec:
    label = f"Deployment {meta['name']}"
    spec = doc.get("spec") or {}
    template = spec.get("template") or {}
    pod_spec = template.get("spec") or {}
    containers = pod_spec.get("containers") or []
    if len(containers) != 1:
        raise DescriptorError(f"{label}: exactly one container is supported")
    container = containers[0]

    claims: dict[str, str] = {}
    for volume in pod_spec.get("volumes") or []:
        pvc = volume.get("persistentVolumeClaim")
        if pvc is None:
            raise DescriptorError(
                f"{label}: volume {volume.get('name')} is not a persistentVolumeClaim"
            )
        claims[volume["name"]] = pvc["claimName"]

    mounts = []
    for mount in container.get("volumeMounts") or []:
        if mount["name"] not in claims:
            raise DescriptorError(f"{label}: volumeMount {mount['name']} has no volume")
        mounts.append(
            {
                "claim_name": claims[mount["name"]],
                "mount_path": mount["mountPath"],
                "volume_name": mount["name"],
                "read_only": bool(mount.get("readOnly", False)),
            }
        )

    selector = spec.get("selector") or {}
    if selector.get("matchExpressions"):
        raise DescriptorError(f"{label}: selector.matchExpressions is not supported")

    env, bindings = _env(container, label)
    template_labels = (template.get("metadata") or {}).get("labels") or {}
    meta = {**meta, "labels": {**meta["labels"], **template_labels}}

    return _build(
        label,
        DeploymentSpec,
        image=container.get("image"),
        replicas=spec.get("replicas", 1),
        selector=selector.get("matchLabels") or {},
        container_name=container.get("name"),
        command=container.get("command"),
        args=container.get("args"),
        env=env,
        env_bindings=bindings,
        ports=[p["containerPort"] for p in container.get("ports") or []],
        volume_mounts=mounts,
        resources=container.get("resources") or None,
        **meta,
    )


def _service(doc: dict[str, Any], meta: dict[str, Any]) -> ResourceSpec:
    spec = doc.get("spec") or {}
    ports = [
        {
            "port": p.get("port"),
            "target_port": p.get("targetPort"),
            "protocol": p.get("protocol") or "TCP",
            "node_port": p.get("nodePort"),
            "name": p.get("name"),
        }
        for p in spec.get("ports") or []
    ]
    return _build(
        f"Service {meta['name']}",
        ServiceSpec,
        type=spec.get("type") or "ClusterIP",
        ports=ports,
        selector=spec.get("selector") or {},
        **meta,
    )


_CONVERTERS: dict[str, Callable[[dict[str, Any], dict[str, Any]], ResourceSpec]] = {
    ResourceKind.CONFIG_MAP.value: _config_map,
    ResourceKind.SECRET.value: _secret,
    ResourceKind.PERSISTENT_VOLUME.value: _persistent_volume,
    ResourceKind.PERSISTENT_VOLUME_CLAIM.value: _persistent_volume_claim,
    ResourceKind.DEPLOYMENT.value: _deployment,
    ResourceKind.SERVICE.value: _service,
}


def parse_manifests(text: str, default_namespace: str = "default") -> list[ResourceSpec]:
    """
    Parse multi-document Kubernetes YAML into resource specs.

    Raises:
        DescriptorError: On malformed YAML or an unsupported kind/field
    """
    try:
        docs = [doc for doc in yaml.safe_load_all(text) if doc is not None]
    except yaml.YAMLError as e:
        raise _yaml_error(e) from None

    specs: list[ResourceSpec] = []
    for doc in docs:
        if not isinstance(doc, dict):
            raise DescriptorError("each manifest document must be a mapping")
        kind = doc.get("kind")
        if kind == "List":
            docs.extend(doc.get("items") or [])
            continue
        converter = _CONVERTERS.get(kind)
        if converter is None:
            raise DescriptorError(f"unsupported kind: {kind}")
        try:
            specs.append(converter(doc, _metadata_fields(doc, default_namespace)))
        except (KeyError, TypeError) as e:
            raise DescriptorError(f"{kind}: malformed manifest ({e!r})") from None

    logger.debug(f"Loaded {len(specs)} resources from manifests")
    return specs


def load_manifests(
    *paths: Union[str, Path], default_namespace: Optional[str] = None
) -> list[ResourceSpec]:
    """Load Kubernetes manifests from files or directories of ``*.yaml``/``*.yml``."""
    files: list[Path] = []
    for path in map(Path, paths):
        if path.is_dir():
            files.extend(sorted(p for p in path.iterdir() if p.suffix in (".yaml", ".yml")))
        else:
            files.append(path)

    specs: list[ResourceSpec] = []
    for file in files:
        specs.extend(
            parse_manifests(
                file.read_text(encoding="utf-8"),
                default_namespace=default_namespace or "default",
            )
        )
    return specs
