"""Aggregation of a reconciliation pass into a single report."""

from typing import Optional, Sequence, Union

from .models import ApplyResult, DeploymentReport, RolloutStatus


def summarize(
    apply_results: Sequence[ApplyResult],
    rollout_statuses: Union[RolloutStatus, Sequence[RolloutStatus], None] = None,
) -> DeploymentReport:
    """
    Build a DeploymentReport.

    The pass succeeds only if every resource applied and every rollout is
    healthy. Otherwise the first failing resource is named, apply failures
    (in plan order) taking precedence over rollout failures.
    """
    if rollout_statuses is None:
        rollouts: list[RolloutStatus] = []
    elif isinstance(rollout_statuses, RolloutStatus):
        rollouts = [rollout_statuses]
    else:
        rollouts = list(rollout_statuses)

    failed_resource: Optional[str] = None
    failure_reason: Optional[str] = None

    first_failed = next((r for r in apply_results if not r.ok), None)
    if first_failed is not None:
        failed_resource = first_failed.name
        failure_reason = first_failed.reason
    else:
        first_unhealthy = next((s for s in rollouts if not s.healthy), None)
        if first_unhealthy is not None:
            failed_resource = first_unhealthy.name
            failure_reason = f"rollout {first_unhealthy.state.value}"
            if first_unhealthy.reason:
                failure_reason += f": {first_unhealthy.reason}"

    return DeploymentReport(
        success=failed_resource is None,
        results=list(apply_results),
        rollouts=rollouts,
        failed_resource=failed_resource,
        failure_reason=failure_reason,
    )
