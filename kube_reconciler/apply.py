"""Apply engine: drives observed cluster state toward the plan."""

import logging
import threading
from typing import Optional

from .cluster import ClusterApi
from .diff import diff
from .exceptions import ApiError
from .manifests import to_body
from .models import (
    REASON_CANCELLED,
    ApplyOutcome,
    ApplyResult,
    ReconciliationPlan,
    ResourceKey,
    ResourceSpec,
)

logger = logging.getLogger(__name__)


class ApplyEngine:
    """
    Applies a reconciliation plan one resource at a time.

    Failure policy:
    - A failed create/update does not abort the plan
    - Resources referencing a failed resource are skipped without an API call
    - Once the cancellation token is set, remaining resources are marked failed
    """

    def __init__(self, cluster_api: ClusterApi, dry_run: bool = False):
        """
        Initialize apply engine.

        Args:
            cluster_api: Cluster API collaborator
            dry_run: If True, compute outcomes without create/update calls
        """
        self.cluster_api = cluster_api
        self.dry_run = dry_run

    def apply(
        self,
        plan: ReconciliationPlan,
        cancel_token: Optional[threading.Event] = None,
    ) -> list[ApplyResult]:
        """
        Apply every resource in plan order.

        Args:
            plan: Topologically ordered resources
            cancel_token: Checked before each resource

        Returns:
            One ApplyResult per resource, in plan order
        """
        results: list[ApplyResult] = []
        failed: set[ResourceKey] = set()
        mode_str = "SHADOW" if self.dry_run else "LIVE"
        logger.info(f"Starting {mode_str} apply of {len(plan)} resources")

        for spec in plan:
            if cancel_token is not None and cancel_token.is_set():
                result = ApplyResult.for_spec(spec, ApplyOutcome.FAILED, REASON_CANCELLED)
            else:
                failed_dep = next(
                    (dep for dep in spec.dependencies() if dep in failed), None
                )
                if failed_dep is not None:
                    result = ApplyResult.for_spec(
                        spec,
                        ApplyOutcome.FAILED,
                        f"dependency failed: {failed_dep.name}",
                    )
                else:
                    result = self.apply_one(spec)

            if not result.ok:
                failed.add(spec.key)
                logger.warning(f"{spec.key}: {result.outcome.value} ({result.reason})")
            else:
                logger.info(f"{spec.key}: {result.outcome.value}")
            results.append(result)

        return results

    def apply_one(self, spec: ResourceSpec) -> ApplyResult:
        """
        Create, update or leave a single resource.

        API failures are reported in the result, never raised.
        """
        try:
            observed = self.cluster_api.get(spec.resource_kind, spec.namespace, spec.name)

            if observed is None:
                if not self.dry_run:
                    self.cluster_api.create(spec)
                return ApplyResult.for_spec(spec, ApplyOutcome.CREATED)

            changes = diff(to_body(spec), observed.body)
            if not changes:
                return ApplyResult.for_spec(spec, ApplyOutcome.UNCHANGED)

            logger.debug(f"{spec.key} drifted at: {', '.join(changes)}")
            if not self.dry_run:
                self.cluster_api.update(spec)
            return ApplyResult.for_spec(spec, ApplyOutcome.UPDATED, changes=changes)

        except ApiError as e:
            return ApplyResult.for_spec(spec, ApplyOutcome.FAILED, str(e))
