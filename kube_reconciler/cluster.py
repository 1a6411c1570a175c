"""Cluster API access for the reconciler."""

import base64
import logging
import tempfile
from pathlib import Path
from typing import Any, Callable, Optional, Protocol

from kubernetes import config
from kubernetes.client import ApiClient, AppsV1Api, CoreV1Api, V1Deployment, V1Pod
from kubernetes.client.exceptions import ApiException
from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.wait import wait_base

from .config import Settings
from .exceptions import ApiError
from .manifests import render, to_body
from .models import PodStatus, ResourceKind, ResourceSpec, ResourceState

logger = logging.getLogger(__name__)

REVISION_ANNOTATION = "deployment.kubernetes.io/revision"
POD_TEMPLATE_HASH_LABEL = "pod-template-hash"


class ClusterApi(Protocol):
    """Operations the reconciler needs from a cluster."""

    def get(
        self, kind: ResourceKind, namespace: Optional[str], name: str
    ) -> Optional[ResourceState]:
        ...

    def create(self, spec: ResourceSpec) -> None:
        ...

    def update(self, spec: ResourceSpec) -> None:
        ...

    def list_pods_for_deployment(self, name: str, namespace: str) -> list[PodStatus]:
        ...


class ClusterConnection:
    """Represents a connection to a single Kubernetes cluster."""

    def __init__(
        self,
        kubeconfig_path: Optional[str] = None,
        kubeconfig_data: Optional[str] = None,
        context: Optional[str] = None,
    ):
        """
        Initialize cluster connection.

        Args:
            kubeconfig_path: Path to a kubeconfig file
            kubeconfig_data: Base64 encoded kubeconfig (takes precedence)
            context: Specific kubeconfig context to use

        Raises:
            ValueError: If kubeconfig is invalid
        """
        self.kubeconfig_path = kubeconfig_path
        self.kubeconfig_data = kubeconfig_data
        self.context = context
        self._api_client: Optional[ApiClient] = None
        self._core_v1: Optional[CoreV1Api] = None
        self._apps_v1: Optional[AppsV1Api] = None
        self._temp_kubeconfig: Optional[Path] = None

        self._initialize_client()

    @classmethod
    def from_settings(cls, settings: Settings) -> "ClusterConnection":
        return cls(
            kubeconfig_path=settings.kubeconfig_path,
            kubeconfig_data=settings.kubeconfig_data,
            context=settings.context,
        )

    def _initialize_client(self):
        """Initialize Kubernetes API client."""
        try:
            if self.kubeconfig_data:
                # Decode base64 kubeconfig and write to temp file
                kubeconfig_content = base64.b64decode(self.kubeconfig_data)
                with tempfile.NamedTemporaryFile(mode="wb", delete=False) as f:
                    f.write(kubeconfig_content)
                    self._temp_kubeconfig = Path(f.name)
                config.load_kube_config(
                    config_file=str(self._temp_kubeconfig),
                    context=self.context,
                )
            elif self.kubeconfig_path:
                config.load_kube_config(
                    config_file=str(Path(self.kubeconfig_path).expanduser()),
                    context=self.context,
                )
            else:
                # Running inside the cluster
                config.load_incluster_config()

            self._api_client = ApiClient()
            self._core_v1 = CoreV1Api(self._api_client)
            self._apps_v1 = AppsV1Api(self._api_client)

        except Exception as e:
            self._remove_temp_kubeconfig()
            raise ValueError(f"Failed to initialize cluster connection: {e}") from e

    @property
    def core_v1(self) -> CoreV1Api:
        """Get CoreV1Api instance."""
        if not self._core_v1:
            raise RuntimeError("Cluster connection not initialized")
        return self._core_v1

    @property
    def apps_v1(self) -> AppsV1Api:
        """Get AppsV1Api instance."""
        if not self._apps_v1:
            raise RuntimeError("Cluster connection not initialized")
        return self._apps_v1

    def _remove_temp_kubeconfig(self):
        if self._temp_kubeconfig and self._temp_kubeconfig.exists():
            self._temp_kubeconfig.unlink()
        self._temp_kubeconfig = None

    def close(self):
        """Close the cluster connection and clean up resources."""
        if self._api_client:
            self._api_client.close()
            self._api_client = None

        self._remove_temp_kubeconfig()
        self._core_v1 = None
        self._apps_v1 = None

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()


def _is_transient(exc: BaseException) -> bool:
    if not isinstance(exc, ApiException):
        return False
    return exc.status == 429 or (exc.status is not None and exc.status >= 500)


def _to_api_error(exc: ApiException) -> ApiError:
    # exc.body can echo the request payload; keep status and reason only
    return ApiError(exc.status, exc.reason)


class KubernetesClusterApi:
    """
    ``ClusterApi`` backed by the official Kubernetes client.

    Transient failures (HTTP 429 and 5xx) are retried with exponential
    backoff; any other ``ApiException`` surfaces as ``ApiError``.
    """

    def __init__(
        self,
        cluster: Any,
        retry_attempts: int = 3,
        retry_wait: Optional[wait_base] = None,
    ):
        """
        Initialize cluster API.

        Args:
            cluster: ClusterConnection (anything exposing core_v1 and apps_v1)
            retry_attempts: Attempts per call for transient failures
            retry_wait: Backoff between attempts (exponential by default)
        """
        self.cluster = cluster
        self.core_v1 = cluster.core_v1
        self.apps_v1 = cluster.apps_v1
        self._retrying = retry(
            retry=retry_if_exception(_is_transient),
            stop=stop_after_attempt(retry_attempts),
            wait=retry_wait or wait_exponential(multiplier=1, min=2, max=10),
            reraise=True,
        )

    def _call(self, fn: Callable[..., Any], **kwargs) -> Any:
        try:
            return self._retrying(fn)(**kwargs)
        except ApiException as e:
            raise _to_api_error(e) from None

    def _readers(self) -> dict[ResourceKind, Callable[..., Any]]:
        return {
            ResourceKind.CONFIG_MAP: self.core_v1.read_namespaced_config_map,
            ResourceKind.SECRET: self.core_v1.read_namespaced_secret,
            ResourceKind.PERSISTENT_VOLUME: self.core_v1.read_persistent_volume,
            ResourceKind.PERSISTENT_VOLUME_CLAIM: (
                self.core_v1.read_namespaced_persistent_volume_claim
            ),
            ResourceKind.DEPLOYMENT: self.apps_v1.read_namespaced_deployment,
            ResourceKind.SERVICE: self.core_v1.read_namespaced_service,
        }

    def _creators(self) -> dict[ResourceKind, Callable[..., Any]]:
        return {
            ResourceKind.CONFIG_MAP: self.core_v1.create_namespaced_config_map,
            ResourceKind.SECRET: self.core_v1.create_namespaced_secret,
            ResourceKind.PERSISTENT_VOLUME: self.core_v1.create_persistent_volume,
            ResourceKind.PERSISTENT_VOLUME_CLAIM: (
                self.core_v1.create_namespaced_persistent_volume_claim
            ),
            ResourceKind.DEPLOYMENT: self.apps_v1.create_namespaced_deployment,
            ResourceKind.SERVICE: self.core_v1.create_namespaced_service,
        }

    def _replacers(self) -> dict[ResourceKind, Callable[..., Any]]:
        return {
            ResourceKind.CONFIG_MAP: self.core_v1.replace_namespaced_config_map,
            ResourceKind.SECRET: self.core_v1.replace_namespaced_secret,
            ResourceKind.PERSISTENT_VOLUME: self.core_v1.replace_persistent_volume,
            ResourceKind.PERSISTENT_VOLUME_CLAIM: (
                self.core_v1.replace_namespaced_persistent_volume_claim
            ),
            ResourceKind.DEPLOYMENT: self.apps_v1.replace_namespaced_deployment,
            ResourceKind.SERVICE: self.core_v1.replace_namespaced_service,
        }

    def _read(self, kind: ResourceKind, namespace: Optional[str], name: str) -> Any:
        kwargs: dict[str, Any] = {"name": name}
        if kind.namespaced:
            kwargs["namespace"] = namespace
        return self._call(self._readers()[kind], **kwargs)

    def get(
        self, kind: ResourceKind, namespace: Optional[str], name: str
    ) -> Optional[ResourceState]:
        """
        Get observed state of a resource.

        Returns:
            ResourceState or None if not found

        Raises:
            ApiError: If the read fails for any reason other than 404
        """
        try:
            obj = self._read(kind, namespace, name)
        except ApiError as e:
            if e.status == 404:
                return None
            raise
        return ResourceState(
            kind=kind, namespace=namespace, name=name, body=to_body(obj)
        )

    def create(self, spec: ResourceSpec) -> None:
        """
        Create a resource.

        Raises:
            ApiError: If creation fails
        """
        kwargs: dict[str, Any] = {"body": render(spec)}
        if spec.resource_kind.namespaced:
            kwargs["namespace"] = spec.namespace
        self._call(self._creators()[spec.resource_kind], **kwargs)

    def update(self, spec: ResourceSpec) -> None:
        """
        Replace a resource, carrying the observed resourceVersion forward.

        Raises:
            ApiError: If the update fails (409 on a concurrent modification)
        """
        existing = self._read(spec.resource_kind, spec.namespace, spec.name)
        body = render(spec)
        body.metadata.resource_version = existing.metadata.resource_version

        # PVC and PV specs are largely immutable once bound; keep the bound volume
        if spec.resource_kind == ResourceKind.PERSISTENT_VOLUME_CLAIM:
            if not body.spec.volume_name and existing.spec:
                body.spec.volume_name = existing.spec.volume_name
        # ClusterIP is allocated by the server and cannot change
        if spec.resource_kind == ResourceKind.SERVICE and existing.spec:
            body.spec.cluster_ip = existing.spec.cluster_ip

        kwargs: dict[str, Any] = {"name": spec.name, "body": body}
        if spec.resource_kind.namespaced:
            kwargs["namespace"] = spec.namespace
        self._call(self._replacers()[spec.resource_kind], **kwargs)

    def _current_template_hash(
        self, deployment: V1Deployment, namespace: str, label_selector: str
    ) -> Optional[str]:
        """
        Find the pod-template-hash of the deployment's current ReplicaSet.

        Returns None while the controller has not yet observed the latest
        generation, or has not created the ReplicaSet for it.
        """
        meta = deployment.metadata
        status = deployment.status
        if status is None or (status.observed_generation or 0) < (meta.generation or 0):
            return None

        revision = (meta.annotations or {}).get(REVISION_ANNOTATION)
        if revision is None:
            return None

        replica_sets = self._call(
            self.apps_v1.list_namespaced_replica_set,
            namespace=namespace,
            label_selector=label_selector,
        )
        for rs in replica_sets.items:
            owners = rs.metadata.owner_references or []
            if not any(owner.uid == meta.uid for owner in owners):
                continue
            if (rs.metadata.annotations or {}).get(REVISION_ANNOTATION) == revision:
                return (rs.metadata.labels or {}).get(POD_TEMPLATE_HASH_LABEL)
        return None

    def list_pods_for_deployment(self, name: str, namespace: str) -> list[PodStatus]:
        """
        List pods of the deployment's current ReplicaSet.

        Pods left over from a previous revision are not included, so an
        update is only healthy once its own pods are ready.

        Raises:
            ApiError: If listing fails
        """
        deployment = self._call(
            self.apps_v1.read_namespaced_deployment, name=name, namespace=namespace
        )
        match_labels = {"app": name}
        if deployment.spec and deployment.spec.selector:
            match_labels = deployment.spec.selector.match_labels or match_labels
        label_selector = ",".join(f"{k}={v}" for k, v in match_labels.items())

        template_hash = self._current_template_hash(deployment, namespace, label_selector)
        if template_hash is None:
            logger.debug(f"Deployment {namespace}/{name}: current ReplicaSet not ready yet")
            return []

        pods = self._call(
            self.core_v1.list_namespaced_pod,
            namespace=namespace,
            label_selector=f"{label_selector},{POD_TEMPLATE_HASH_LABEL}={template_hash}",
        )
        return [pod_status(pod) for pod in pods.items]


def pod_status(pod: V1Pod) -> PodStatus:
    """Summarize a pod's readiness."""
    statuses = (pod.status and pod.status.container_statuses) or []
    ready = bool(statuses) and all(cs.ready for cs in statuses)
    if pod.metadata and pod.metadata.deletion_timestamp:
        ready = False

    waiting_reason = None
    for cs in statuses:
        if cs.state and cs.state.waiting and cs.state.waiting.reason:
            waiting_reason = cs.state.waiting.reason
            break

    return PodStatus(
        name=pod.metadata.name,
        phase=pod.status.phase if pod.status else None,
        ready=ready,
        restart_count=sum(cs.restart_count or 0 for cs in statuses),
        waiting_reason=waiting_reason,
    )
