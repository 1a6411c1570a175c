"""Tests for the rollout watcher."""

import threading
import time
from unittest.mock import MagicMock

from kubernetes.client import (
    V1ContainerState,
    V1ContainerStateWaiting,
    V1ContainerStatus,
    V1Deployment,
    V1DeploymentSpec,
    V1DeploymentStatus,
    V1LabelSelector,
    V1ObjectMeta,
    V1OwnerReference,
    V1Pod,
    V1PodList,
    V1PodStatus,
    V1ReplicaSet,
    V1ReplicaSetList,
)
from tenacity import wait_none

from kube_reconciler import (
    ApiError,
    KubernetesClusterApi,
    PodStatus,
    RolloutState,
    RolloutWatcher,
)


def _pod(name: str, template_hash: str, ready: bool, waiting: str = None) -> V1Pod:
    state = V1ContainerState(waiting=V1ContainerStateWaiting(reason=waiting)) if waiting else None
    return V1Pod(
        metadata=V1ObjectMeta(name=name, labels={"app": "app", "pod-template-hash": template_hash}),
        status=V1PodStatus(
            phase="Running" if ready else "Pending",
            container_statuses=[
                V1ContainerStatus(
                    name="app",
                    image="shop/app:1.0",
                    image_id="",
                    ready=ready,
                    restart_count=0,
                    state=state,
                )
            ],
        ),
    )


class TestRolloutWatcher:
    """Test RolloutWatcher.wait_for_healthy()."""

    def test_healthy_immediately(self, fake_cluster, ready_pods):
        fake_cluster.pods[("default", "app")] = ready_pods(2, 2)
        watcher = RolloutWatcher(fake_cluster, poll_interval=0.01)

        status = watcher.wait_for_healthy("app", 2, timeout=1)

        assert status.state == RolloutState.HEALTHY
        assert status.ready_replicas == 2
        assert status.reason is None

    def test_healthy_after_polls(self, ready_pods):
        cluster = MagicMock()
        cluster.list_pods_for_deployment.side_effect = [
            ready_pods(3, 0),
            ready_pods(3, 1),
            ready_pods(3, 3),
        ]
        watcher = RolloutWatcher(cluster, poll_interval=0.01)

        status = watcher.wait_for_healthy("app", 3, timeout=5, namespace="shop")

        assert status.state == RolloutState.HEALTHY
        assert status.namespace == "shop"
        assert cluster.list_pods_for_deployment.call_count == 3
        cluster.list_pods_for_deployment.assert_called_with("app", "shop")

    def test_zero_replicas_is_healthy(self, fake_cluster):
        status = RolloutWatcher(fake_cluster).wait_for_healthy("app", 0, timeout=1)
        assert status.state == RolloutState.HEALTHY

    def test_timeout(self, fake_cluster, ready_pods):
        fake_cluster.pods[("default", "app")] = ready_pods(2, 1)
        watcher = RolloutWatcher(fake_cluster, poll_interval=0.02)

        status = watcher.wait_for_healthy("app", 2, timeout=0.1)

        assert status.state == RolloutState.TIMED_OUT
        assert status.reason == "timeout"
        assert status.ready_replicas == 1
        assert status.elapsed_seconds >= 0.1

    def test_cancel_returns_within_one_poll_interval(self, fake_cluster, ready_pods):
        """Cancellation interrupts the wait between polls."""
        fake_cluster.pods[("default", "app")] = ready_pods(1, 0)
        watcher = RolloutWatcher(fake_cluster, poll_interval=5.0)
        token = threading.Event()
        threading.Timer(0.05, token.set).start()

        start = time.monotonic()
        status = watcher.wait_for_healthy("app", 1, timeout=60, cancel_token=token)
        elapsed = time.monotonic() - start

        assert status.state == RolloutState.TIMED_OUT
        assert status.reason == "cancelled"
        assert elapsed < 5.0

    def test_cancelled_before_first_poll(self, fake_cluster):
        token = threading.Event()
        token.set()

        status = RolloutWatcher(fake_cluster).wait_for_healthy(
            "app", 1, timeout=60, cancel_token=token
        )

        assert status.cancelled
        assert fake_cluster.calls == []

    def test_stuck_pod_is_degraded(self, fake_cluster):
        fake_cluster.pods[("default", "app")] = [
            PodStatus(name="app-1", phase="Running", ready=True),
            PodStatus(name="app-2", phase="Pending", waiting_reason="ImagePullBackOff"),
        ]
        watcher = RolloutWatcher(fake_cluster, poll_interval=0.01)

        status = watcher.wait_for_healthy("app", 2, timeout=5)

        assert status.state == RolloutState.DEGRADED
        assert status.reason == "ImagePullBackOff"
        assert status.ready_replicas == 1

    def test_stuck_pod_without_fail_fast_times_out(self, fake_cluster):
        fake_cluster.pods[("default", "app")] = [
            PodStatus(name="app-1", phase="Running", waiting_reason="CrashLoopBackOff"),
        ]
        watcher = RolloutWatcher(fake_cluster, poll_interval=0.01, fail_fast=False)

        status = watcher.wait_for_healthy("app", 1, timeout=0.05)

        assert status.state == RolloutState.TIMED_OUT
        assert status.reason == "timeout"

    def test_api_errors_keep_polling(self, ready_pods):
        cluster = MagicMock()
        cluster.list_pods_for_deployment.side_effect = [
            ApiError(503, "Service Unavailable"),
            ready_pods(1, 1),
        ]
        watcher = RolloutWatcher(cluster, poll_interval=0.01)

        status = watcher.wait_for_healthy("app", 1, timeout=5)

        assert status.state == RolloutState.HEALTHY
        assert cluster.list_pods_for_deployment.call_count == 2

    def test_update_ignores_pods_of_previous_revision(self, mock_cluster_connection):
        """A ready pod left from the old ReplicaSet does not make an update healthy."""
        revision_key = "deployment.kubernetes.io/revision"
        apps_v1 = mock_cluster_connection.apps_v1
        apps_v1.read_namespaced_deployment.return_value = V1Deployment(
            metadata=V1ObjectMeta(
                name="app", uid="uid-app", generation=2, annotations={revision_key: "2"}
            ),
            spec=V1DeploymentSpec(
                selector=V1LabelSelector(match_labels={"app": "app"}), template=MagicMock()
            ),
            status=V1DeploymentStatus(observed_generation=2),
        )
        owner = V1OwnerReference(api_version="apps/v1", kind="Deployment", name="app", uid="uid-app")
        apps_v1.list_namespaced_replica_set.return_value = V1ReplicaSetList(
            items=[
                V1ReplicaSet(
                    metadata=V1ObjectMeta(
                        name=f"app-{template_hash}",
                        labels={"app": "app", "pod-template-hash": template_hash},
                        annotations={revision_key: revision},
                        owner_references=[owner],
                    )
                )
                for revision, template_hash in (("1", "aaa"), ("2", "bbb"))
            ]
        )
        old_pod = _pod("app-aaa-1", "aaa", ready=True)
        new_pod = _pod("app-bbb-1", "bbb", ready=False, waiting="ImagePullBackOff")

        def list_pods(namespace, label_selector):
            pods = [old_pod, new_pod]
            if "pod-template-hash=" in label_selector:
                wanted = label_selector.rsplit("=", 1)[1]
                pods = [p for p in pods if p.metadata.labels["pod-template-hash"] == wanted]
            return V1PodList(items=pods)

        mock_cluster_connection.core_v1.list_namespaced_pod.side_effect = list_pods
        cluster_api = KubernetesClusterApi(mock_cluster_connection, retry_wait=wait_none())
        watcher = RolloutWatcher(cluster_api, poll_interval=0.01)

        status = watcher.wait_for_healthy("app", 1, timeout=5)

        assert status.state == RolloutState.DEGRADED
        assert status.reason == "ImagePullBackOff"
        assert status.ready_replicas == 0
