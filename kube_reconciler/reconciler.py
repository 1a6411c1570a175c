"""One reconciliation pass: validate, order, apply, watch, report."""

import logging
import threading
from datetime import datetime
from typing import Iterable, Optional

from .apply import ApplyEngine
from .cluster import ClusterApi
from .config import Settings
from .models import (
    ApplyResult,
    DeploymentReport,
    DeploymentSpec,
    ReconciliationPlan,
    ResourceSpec,
    RolloutStatus,
)
from .ordering import order
from .report import summarize
from .rollout import RolloutWatcher
from .validation import validate

logger = logging.getLogger(__name__)


class Reconciler:
    """
    Reconciles a declared resource set against a cluster.

    Responsibilities:
    - Validate references and names before touching the cluster
    - Apply resources in dependency order
    - Wait for every applied deployment to roll out
    - Summarize the pass into a DeploymentReport
    """

    def __init__(
        self,
        cluster_api: ClusterApi,
        dry_run: bool = False,
        rollout_timeout: float = 300.0,
        poll_interval: float = 2.0,
        fail_fast: bool = True,
        wait: bool = True,
    ):
        """
        Initialize reconciler.

        Args:
            cluster_api: Cluster API collaborator
            dry_run: If True, compute outcomes without changing the cluster
            rollout_timeout: Seconds to wait for each deployment
            poll_interval: Seconds between rollout polls
            fail_fast: Stop waiting on a deployment once a pod is stuck
            wait: If False, skip rollout watching
        """
        self.cluster_api = cluster_api
        self.dry_run = dry_run
        self.rollout_timeout = rollout_timeout
        self.wait = wait
        self.engine = ApplyEngine(cluster_api, dry_run=dry_run)
        self.watcher = RolloutWatcher(
            cluster_api, poll_interval=poll_interval, fail_fast=fail_fast
        )

    @classmethod
    def from_settings(cls, cluster_api: ClusterApi, settings: Settings) -> "Reconciler":
        return cls(
            cluster_api,
            dry_run=settings.dry_run,
            rollout_timeout=settings.rollout_timeout_seconds,
            poll_interval=settings.poll_interval_seconds,
            fail_fast=settings.fail_fast,
        )

    def plan(self, specs: Iterable[ResourceSpec]) -> ReconciliationPlan:
        """
        Validate and order a resource set.

        Raises:
            ValidationError: If names collide or references do not resolve
            CycleError: If references form a cycle
        """
        specs = list(specs)
        validate(specs)
        return order(specs)

    def reconcile(
        self,
        specs: Iterable[ResourceSpec],
        cancel_token: Optional[threading.Event] = None,
    ) -> DeploymentReport:
        """
        Run one reconciliation pass.

        Args:
            specs: Desired resources
            cancel_token: Cooperative cancellation for apply and rollout

        Returns:
            DeploymentReport for the pass

        Raises:
            ValidationError: Before any cluster call, on an invalid set
            CycleError: Before any cluster call, on a reference cycle
        """
        start_time = datetime.utcnow()
        plan = self.plan(specs)
        logger.info(
            "Reconciling plan: " + ", ".join(str(key) for key in plan.keys())
        )

        results = self.engine.apply(plan, cancel_token=cancel_token)

        rollouts: list[RolloutStatus] = []
        if self.wait and not self.dry_run:
            rollouts = self._watch_rollouts(plan, results, cancel_token)

        report = summarize(results, rollouts)
        duration = (datetime.utcnow() - start_time).total_seconds()
        counts = ", ".join(f"{n} {outcome}" for outcome, n in report.counts.items() if n)
        if report.success:
            logger.info(f"✓ Reconciled {len(plan)} resources in {duration:.2f}s ({counts})")
        else:
            logger.error(
                f"Reconciliation failed at {report.failed_resource}: "
                f"{report.failure_reason} ({counts})"
            )
        return report

    def _watch_rollouts(
        self,
        plan: ReconciliationPlan,
        results: list[ApplyResult],
        cancel_token: Optional[threading.Event],
    ) -> list[RolloutStatus]:
        rollouts: list[RolloutStatus] = []
        for spec, result in zip(plan, results):
            if not isinstance(spec, DeploymentSpec) or not result.ok:
                continue
            rollouts.append(
                self.watcher.wait_for_healthy(
                    spec.name,
                    spec.replicas,
                    self.rollout_timeout,
                    namespace=spec.namespace,
                    cancel_token=cancel_token,
                )
            )
        return rollouts
