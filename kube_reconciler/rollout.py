"""Rollout watcher for deployments."""

import logging
import threading
import time
from typing import Callable, Optional

from .cluster import ClusterApi
from .exceptions import ApiError
from .models import (
    REASON_CANCELLED,
    REASON_TIMEOUT,
    PodStatus,
    RolloutState,
    RolloutStatus,
)

logger = logging.getLogger(__name__)

# Container waiting reasons that will not resolve on their own
FATAL_WAITING_REASONS = frozenset(
    {
        "CrashLoopBackOff",
        "ImagePullBackOff",
        "ErrImagePull",
        "CreateContainerConfigError",
        "InvalidImageName",
    }
)


class RolloutWatcher:
    """
    Polls a deployment's pods until the desired replica count is ready.

    Terminal states:
    - healthy: ready pods reached the desired count
    - degraded: a pod is stuck in a fatal waiting state (with fail_fast)
    - timed-out: the deadline passed (reason "timeout") or the cancellation
      token was set (reason "cancelled")
    """

    def __init__(
        self,
        cluster_api: ClusterApi,
        poll_interval: float = 2.0,
        fail_fast: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize rollout watcher.

        Args:
            cluster_api: Cluster API collaborator
            poll_interval: Seconds between polls
            fail_fast: Report degraded as soon as a pod is stuck
            clock: Monotonic clock
        """
        self.cluster_api = cluster_api
        self.poll_interval = poll_interval
        self.fail_fast = fail_fast
        self._clock = clock

    def wait_for_healthy(
        self,
        name: str,
        desired_replicas: int,
        timeout: float,
        namespace: str = "default",
        cancel_token: Optional[threading.Event] = None,
    ) -> RolloutStatus:
        """
        Wait for a deployment to become healthy.

        Args:
            name: Deployment name
            desired_replicas: Replica count that must be ready
            timeout: Maximum seconds to wait
            namespace: Kubernetes namespace
            cancel_token: Setting it ends the wait immediately

        Returns:
            RolloutStatus with the terminal state
        """
        cancel_token = cancel_token or threading.Event()
        start = self._clock()
        deadline = start + timeout
        ready = 0

        def finish(state: RolloutState, reason: Optional[str] = None) -> RolloutStatus:
            status = RolloutStatus(
                name=name,
                namespace=namespace,
                desired_replicas=desired_replicas,
                ready_replicas=ready,
                state=state,
                reason=reason,
                elapsed_seconds=self._clock() - start,
            )
            log = logger.info if state == RolloutState.HEALTHY else logger.warning
            log(
                f"Deployment {namespace}/{name} {state.value}: "
                f"{ready}/{desired_replicas} ready"
                + (f" ({reason})" if reason else "")
            )
            return status

        logger.info(
            f"Waiting for deployment {namespace}/{name} "
            f"({desired_replicas} replicas, timeout {timeout}s)"
        )

        while True:
            if cancel_token.is_set():
                return finish(RolloutState.TIMED_OUT, REASON_CANCELLED)

            pods: Optional[list[PodStatus]] = None
            try:
                pods = self.cluster_api.list_pods_for_deployment(name, namespace)
            except ApiError as e:
                logger.warning(f"Failed to list pods for {namespace}/{name}: {e}")

            if pods is not None:
                ready = sum(1 for pod in pods if pod.ready)
                if ready >= desired_replicas:
                    return finish(RolloutState.HEALTHY)

                if self.fail_fast:
                    stuck = next(
                        (p for p in pods if p.waiting_reason in FATAL_WAITING_REASONS),
                        None,
                    )
                    if stuck is not None:
                        return finish(RolloutState.DEGRADED, stuck.waiting_reason)

            remaining = deadline - self._clock()
            if remaining <= 0:
                return finish(RolloutState.TIMED_OUT, REASON_TIMEOUT)

            if cancel_token.wait(min(self.poll_interval, remaining)):
                return finish(RolloutState.TIMED_OUT, REASON_CANCELLED)
