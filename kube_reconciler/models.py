"""Resource models for the reconciler."""

import base64
import binascii
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Iterator, Literal, NamedTuple, Optional, Union

from kubernetes.utils import parse_quantity
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    SecretBytes,
    field_validator,
    model_validator,
)

from .exceptions import RolloutCancelled, RolloutDegraded, RolloutTimeout


class ResourceKind(str, Enum):
    """Supported Kubernetes resource kinds."""

    PERSISTENT_VOLUME = "PersistentVolume"
    PERSISTENT_VOLUME_CLAIM = "PersistentVolumeClaim"
    CONFIG_MAP = "ConfigMap"
    SECRET = "Secret"
    DEPLOYMENT = "Deployment"
    SERVICE = "Service"

    @property
    def rank(self) -> int:
        """Tie-break rank used when ordering unrelated resources."""
        return KIND_ORDER.index(self)

    @property
    def namespaced(self) -> bool:
        return self is not ResourceKind.PERSISTENT_VOLUME


KIND_ORDER = [
    ResourceKind.PERSISTENT_VOLUME,
    ResourceKind.PERSISTENT_VOLUME_CLAIM,
    ResourceKind.CONFIG_MAP,
    ResourceKind.SECRET,
    ResourceKind.DEPLOYMENT,
    ResourceKind.SERVICE,
]

MANAGED_BY_LABEL = "managed-by"
MANAGED_BY_VALUE = "kube-reconciler"


class ResourceKey(NamedTuple):
    """Identity of a resource within a cluster."""

    kind: ResourceKind
    namespace: Optional[str]
    name: str

    def __str__(self) -> str:
        if self.namespace:
            return f"{self.kind.value} {self.namespace}/{self.name}"
        return f"{self.kind.value} {self.name}"


class Reference(BaseModel):
    """Pointer from one resource to another (optionally to one of its keys)."""

    model_config = ConfigDict(frozen=True)

    kind: ResourceKind
    name: str
    key: Optional[str] = None

    def resolve(self, namespace: Optional[str]) -> ResourceKey:
        """Resolve to a key in the referrer's namespace."""
        return ResourceKey(
            self.kind, namespace if self.kind.namespaced else None, self.name
        )

    def __str__(self) -> str:
        target = f"{self.kind.value} {self.name}"
        return f"{target}[{self.key}]" if self.key else target


class ResourceSpec(BaseModel):
    """Base specification shared by every resource kind."""

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    kind: str
    name: str = Field(..., min_length=1, max_length=253)
    namespace: Optional[str] = "default"
    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)

    @property
    def resource_kind(self) -> ResourceKind:
        return ResourceKind(self.kind)

    @property
    def key(self) -> ResourceKey:
        return ResourceKey(self.resource_kind, self.namespace, self.name)

    def references(self) -> list[Reference]:
        """References this resource holds to other resources."""
        return []

    def dependencies(self) -> list[ResourceKey]:
        """Keys of the resources this one must be applied after."""
        return [ref.resolve(self.namespace) for ref in self.references()]

    def provided_keys(self) -> set[str]:
        """Keys a Reference may select within this resource."""
        return set()

    def metadata_labels(self) -> dict[str, str]:
        return {MANAGED_BY_LABEL: MANAGED_BY_VALUE, **self.labels}


class ConfigMapSpec(ResourceSpec):
    """ConfigMap specification."""

    kind: Literal["ConfigMap"] = "ConfigMap"
    data: dict[str, str] = Field(default_factory=dict)

    def provided_keys(self) -> set[str]:
        return set(self.data)


class SecretSpec(ResourceSpec):
    """
    Secret specification.

    Values are held as opaque ``SecretBytes`` so they never show up in reprs,
    logs or error messages. Input may be given as raw bytes, as base64 strings
    under ``data`` (the Kubernetes manifest convention) or as plain strings
    under ``string_data``.
    """

    kind: Literal["Secret"] = "Secret"
    type: str = "Opaque"
    data: dict[str, SecretBytes] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _normalize_data(cls, values: Any) -> Any:
        if not isinstance(values, dict):
            return values

        values = dict(values)
        data: dict[str, Any] = {}
        for key, value in (values.get("data") or {}).items():
            if isinstance(value, str):
                try:
                    value = base64.b64decode(value, validate=True)
                except binascii.Error:
                    # Never echo the value itself
                    raise ValueError(f"data.{key} is not valid base64") from None
            data[key] = value

        string_data = dict(values.pop("string_data", None) or {})
        string_data.update(values.pop("stringData", None) or {})
        for key, value in string_data.items():
            data[key] = str(value).encode("utf-8")

        values["data"] = data
        return values

    def provided_keys(self) -> set[str]:
        return set(self.data)

    def encoded_data(self) -> dict[str, str]:
        """Values base64-encoded for the Kubernetes API."""
        return {
            key: base64.b64encode(value.get_secret_value()).decode("ascii")
            for key, value in self.data.items()
        }


class PersistentVolumeSpec(ResourceSpec):
    """PersistentVolume specification (cluster scoped)."""

    kind: Literal["PersistentVolume"] = "PersistentVolume"
    namespace: Optional[str] = None
    capacity: str = "1Gi"
    access_modes: list[str] = Field(default_factory=lambda: ["ReadWriteOnce"])
    storage_class_name: Optional[str] = None
    host_path: Optional[str] = None
    reclaim_policy: str = "Retain"

    @field_validator("namespace")
    @classmethod
    def _cluster_scoped(cls, value: Optional[str]) -> None:
        return None


class PersistentVolumeClaimSpec(ResourceSpec):
    """PersistentVolumeClaim specification."""

    kind: Literal["PersistentVolumeClaim"] = "PersistentVolumeClaim"
    storage: str = "1Gi"
    access_modes: list[str] = Field(default_factory=lambda: ["ReadWriteOnce"])
    storage_class_name: Optional[str] = None
    volume_name: Optional[str] = None

    def references(self) -> list[Reference]:
        if self.volume_name:
            return [Reference(kind=ResourceKind.PERSISTENT_VOLUME, name=self.volume_name)]
        return []


class EnvBinding(BaseModel):
    """Environment variable whose value comes from a ConfigMap or Secret key."""

    model_config = ConfigDict(frozen=True)

    name: str
    ref: Reference

    @field_validator("ref")
    @classmethod
    def _check_ref(cls, ref: Reference) -> Reference:
        if ref.kind not in (ResourceKind.CONFIG_MAP, ResourceKind.SECRET):
            raise ValueError("env bindings must reference a ConfigMap or Secret")
        if not ref.key:
            raise ValueError("env bindings must name a key")
        return ref


class ClaimMount(BaseModel):
    """Mount of a PersistentVolumeClaim into the deployment's container."""

    model_config = ConfigDict(frozen=True)

    claim_name: str
    mount_path: str
    volume_name: Optional[str] = None
    read_only: bool = False

    @property
    def volume(self) -> str:
        return self.volume_name or self.claim_name


class ResourceRequirements(BaseModel):
    """Container compute resources, as Kubernetes quantities."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    limits: dict[str, str] = Field(default_factory=dict)
    requests: dict[str, str] = Field(default_factory=dict)

    @field_validator("limits", "requests", mode="before")
    @classmethod
    def _check_quantities(cls, values: Any) -> Any:
        if not isinstance(values, dict):
            return values
        checked = {}
        for name, quantity in values.items():
            try:
                parse_quantity(quantity)
            except (ValueError, TypeError):
                raise ValueError(f"{name}: {quantity!r} is not a valid quantity") from None
            checked[name] = str(quantity)
        return checked


class DeploymentSpec(ResourceSpec):
    """
    Deployment specification (single container).

    ``selector`` defaults to ``{"app": name}``. Pod template labels always
    include it, so a label that contradicts the selector is rejected.
    """

    kind: Literal["Deployment"] = "Deployment"
    image: str
    replicas: int = Field(default=1, ge=0)
    selector: dict[str, str] = Field(default_factory=dict)
    container_name: Optional[str] = None
    command: Optional[list[str]] = None
    args: Optional[list[str]] = None
    env: dict[str, str] = Field(default_factory=dict)
    env_bindings: list[EnvBinding] = Field(default_factory=list)
    ports: list[int] = Field(default_factory=list)
    volume_mounts: list[ClaimMount] = Field(default_factory=list)
    resources: Optional[ResourceRequirements] = None

    @model_validator(mode="before")
    @classmethod
    def _default_selector(cls, values: Any) -> Any:
        if isinstance(values, dict) and not values.get("selector") and values.get("name"):
            values = {**values, "selector": {"app": values["name"]}}
        return values

    @model_validator(mode="after")
    def _check_selector(self) -> "DeploymentSpec":
        for key, value in self.selector.items():
            if self.labels.get(key, value) != value:
                raise ValueError(f"label {key!r} conflicts with the selector")
        return self

    def references(self) -> list[Reference]:
        refs = [binding.ref for binding in self.env_bindings]
        refs.extend(
            Reference(kind=ResourceKind.PERSISTENT_VOLUME_CLAIM, name=mount.claim_name)
            for mount in self.volume_mounts
        )
        return refs

    def metadata_labels(self) -> dict[str, str]:
        return {**super().metadata_labels(), **self.selector}


class ServicePort(BaseModel):
    """Service port mapping."""

    model_config = ConfigDict(frozen=True)

    port: int
    target_port: Optional[Union[int, str]] = None
    protocol: str = "TCP"
    node_port: Optional[int] = None
    name: Optional[str] = None


class ServiceSpec(ResourceSpec):
    """
    Service specification.

    Either ``selector`` or ``deployment`` must be given. Naming a deployment
    makes the Service depend on it and selects its pods.
    """

    kind: Literal["Service"] = "Service"
    type: str = "ClusterIP"
    ports: list[ServicePort] = Field(..., min_length=1)
    selector: dict[str, str] = Field(default_factory=dict)
    deployment: Optional[str] = None

    @model_validator(mode="after")
    def _require_selector(self) -> "ServiceSpec":
        if not self.selector and not self.deployment:
            raise ValueError("service needs a selector or a deployment")
        return self

    @property
    def effective_selector(self) -> dict[str, str]:
        if self.selector:
            return self.selector
        return {"app": self.deployment}

    def references(self) -> list[Reference]:
        if self.deployment:
            return [Reference(kind=ResourceKind.DEPLOYMENT, name=self.deployment)]
        return []


AnyResourceSpec = Annotated[
    Union[
        ConfigMapSpec,
        SecretSpec,
        PersistentVolumeSpec,
        PersistentVolumeClaimSpec,
        DeploymentSpec,
        ServiceSpec,
    ],
    Field(discriminator="kind"),
]


@dataclass(frozen=True)
class ReconciliationPlan:
    """Resources in the order they must be applied."""

    resources: tuple[ResourceSpec, ...]

    def __iter__(self) -> Iterator[ResourceSpec]:
        return iter(self.resources)

    def __len__(self) -> int:
        return len(self.resources)

    def keys(self) -> list[ResourceKey]:
        return [spec.key for spec in self.resources]


class ResourceState(BaseModel):
    """Observed state of a resource, serialized to plain API field names."""

    kind: ResourceKind
    namespace: Optional[str] = None
    name: str
    body: dict[str, Any] = Field(default_factory=dict)

    @property
    def resource_version(self) -> Optional[str]:
        return self.body.get("metadata", {}).get("resourceVersion")


class PodStatus(BaseModel):
    """Readiness of a single pod."""

    name: str
    phase: Optional[str] = None
    ready: bool = False
    restart_count: int = 0
    waiting_reason: Optional[str] = None


class ApplyOutcome(str, Enum):
    """Outcome of applying one resource."""

    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    FAILED = "failed"


class ApplyResult(BaseModel):
    """Result of applying one resource."""

    kind: ResourceKind
    namespace: Optional[str] = None
    name: str
    outcome: ApplyOutcome
    reason: Optional[str] = None
    changes: list[str] = Field(default_factory=list)

    @classmethod
    def for_spec(
        cls,
        spec: ResourceSpec,
        outcome: ApplyOutcome,
        reason: Optional[str] = None,
        changes: Optional[list[str]] = None,
    ) -> "ApplyResult":
        return cls(
            kind=spec.resource_kind,
            namespace=spec.namespace,
            name=spec.name,
            outcome=outcome,
            reason=reason,
            changes=changes or [],
        )

    @property
    def key(self) -> ResourceKey:
        return ResourceKey(self.kind, self.namespace, self.name)

    @property
    def ok(self) -> bool:
        return self.outcome != ApplyOutcome.FAILED


class RolloutState(str, Enum):
    """Terminal state of a rollout watch."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    TIMED_OUT = "timed-out"


REASON_TIMEOUT = "timeout"
REASON_CANCELLED = "cancelled"


class RolloutStatus(BaseModel):
    """Result of waiting for a deployment to become ready."""

    name: str
    namespace: str = "default"
    desired_replicas: int
    ready_replicas: int = 0
    state: RolloutState
    reason: Optional[str] = None
    elapsed_seconds: float = 0.0
    finished_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def healthy(self) -> bool:
        return self.state == RolloutState.HEALTHY

    @property
    def cancelled(self) -> bool:
        return self.state == RolloutState.TIMED_OUT and self.reason == REASON_CANCELLED

    def raise_for_status(self) -> None:
        """
        Raise if the rollout did not become healthy.

        Raises:
            RolloutCancelled: If the watch was cancelled
            RolloutTimeout: If the deadline passed
            RolloutDegraded: If pods were stuck in a failing state
        """
        message = (
            f"Deployment {self.namespace}/{self.name}: "
            f"{self.ready_replicas}/{self.desired_replicas} ready ({self.reason})"
        )
        if self.cancelled:
            raise RolloutCancelled(message)
        if self.state == RolloutState.TIMED_OUT:
            raise RolloutTimeout(message)
        if self.state == RolloutState.DEGRADED:
            raise RolloutDegraded(message)


class DeploymentReport(BaseModel):
    """Aggregated outcome of one reconciliation pass."""

    success: bool
    results: list[ApplyResult] = Field(default_factory=list)
    rollouts: list[RolloutStatus] = Field(default_factory=list)
    failed_resource: Optional[str] = None
    failure_reason: Optional[str] = None

    @property
    def counts(self) -> dict[str, int]:
        counts = {outcome.value: 0 for outcome in ApplyOutcome}
        for result in self.results:
            counts[result.outcome.value] += 1
        return counts
