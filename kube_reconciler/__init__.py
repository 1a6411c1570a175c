"""Kube Reconciler - Declarative deployment reconciliation for Kubernetes."""

from .apply import ApplyEngine
from .cluster import ClusterApi, ClusterConnection, KubernetesClusterApi
from .config import Settings, get_settings
from .descriptor import load_descriptor, load_manifests, parse_descriptor, parse_manifests
from .diff import diff
from .exceptions import (
    ApiError,
    CycleError,
    DescriptorError,
    DuplicateResource,
    ReconcilerError,
    RolloutCancelled,
    RolloutDegraded,
    RolloutTimeout,
    UnresolvedReference,
    ValidationError,
)
from .models import (
    ApplyOutcome,
    ApplyResult,
    ClaimMount,
    ConfigMapSpec,
    DeploymentReport,
    DeploymentSpec,
    EnvBinding,
    PersistentVolumeClaimSpec,
    PersistentVolumeSpec,
    PodStatus,
    ReconciliationPlan,
    Reference,
    ResourceKey,
    ResourceKind,
    ResourceRequirements,
    ResourceSpec,
    ResourceState,
    RolloutState,
    RolloutStatus,
    SecretSpec,
    ServicePort,
    ServiceSpec,
)
from .ordering import order
from .reconciler import Reconciler
from .report import summarize
from .rollout import RolloutWatcher
from .validation import validate

__version__ = "0.1.0"

__all__ = [
    # Reconciliation
    "Reconciler",
    "ApplyEngine",
    "RolloutWatcher",
    "validate",
    "order",
    "summarize",
    "diff",
    # Cluster access
    "ClusterApi",
    "ClusterConnection",
    "KubernetesClusterApi",
    # Loading
    "load_descriptor",
    "load_manifests",
    "parse_descriptor",
    "parse_manifests",
    # Configuration
    "Settings",
    "get_settings",
    # Models
    "ResourceKind",
    "ResourceKey",
    "ResourceSpec",
    "ConfigMapSpec",
    "SecretSpec",
    "PersistentVolumeSpec",
    "PersistentVolumeClaimSpec",
    "DeploymentSpec",
    "ServiceSpec",
    "ServicePort",
    "EnvBinding",
    "ClaimMount",
    "ResourceRequirements",
    "Reference",
    "ReconciliationPlan",
    "ResourceState",
    "PodStatus",
    "ApplyOutcome",
    "ApplyResult",
    "RolloutState",
    "RolloutStatus",
    "DeploymentReport",
    # Errors
    "ReconcilerError",
    "ValidationError",
    "DuplicateResource",
    "UnresolvedReference",
    "CycleError",
    "ApiError",
    "DescriptorError",
    "RolloutTimeout",
    "RolloutCancelled",
    "RolloutDegraded",
]
