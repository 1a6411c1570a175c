"""CLI for kube-reconciler."""

import logging
import signal
import threading
from pathlib import Path
from typing import Optional

import typer

from .cluster import ClusterConnection, KubernetesClusterApi
from .config import get_settings
from .descriptor import load_descriptor, load_manifests
from .exceptions import DescriptorError, ReconcilerError
from .models import DeploymentReport, ResourceSpec
from .reconciler import Reconciler

app = typer.Typer(
    name="kube-reconciler",
    help="Declarative deployment reconciler for Kubernetes",
    no_args_is_help=True,
)

logger = logging.getLogger(__name__)


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def _load(path: Path, manifests: bool, namespace: Optional[str]) -> list[ResourceSpec]:
    try:
        if manifests:
            return load_manifests(path, default_namespace=namespace)
        return load_descriptor(path)
    except (DescriptorError, OSError) as e:
        typer.echo(f"Error loading {path}: {e}", err=True)
        raise typer.Exit(code=2)


def _print_report(report: DeploymentReport) -> None:
    for result in report.results:
        line = f"  {result.outcome.value:<10} {result.key}"
        if result.reason:
            line += f" ({result.reason})"
        elif result.changes:
            line += f" [{', '.join(result.changes)}]"
        typer.echo(line)

    for rollout in report.rollouts:
        line = (
            f"  rollout    Deployment {rollout.namespace}/{rollout.name}: "
            f"{rollout.state.value} {rollout.ready_replicas}/{rollout.desired_replicas}"
        )
        if rollout.reason:
            line += f" ({rollout.reason})"
        typer.echo(line)

    if report.success:
        typer.echo("✓ Reconciliation succeeded")
    else:
        typer.echo(
            f"✗ Reconciliation failed: {report.failed_resource}: {report.failure_reason}",
            err=True,
        )


def _reconcile(
    path: Path,
    manifests: bool,
    namespace: Optional[str],
    dry_run: bool,
    wait: bool = True,
    timeout: Optional[float] = None,
) -> None:
    settings = get_settings()
    setup_logging(settings.log_level)
    specs = _load(path, manifests, namespace or settings.default_namespace)

    cancel_token = threading.Event()

    def _cancel(signum, frame):
        logger.info("Received interrupt, cancelling reconciliation...")
        cancel_token.set()

    previous = signal.signal(signal.SIGINT, _cancel)
    try:
        with ClusterConnection.from_settings(settings) as cluster:
            cluster_api = KubernetesClusterApi(
                cluster, retry_attempts=settings.api_retry_attempts
            )
            reconciler = Reconciler(
                cluster_api,
                dry_run=dry_run or settings.dry_run,
                rollout_timeout=timeout or settings.rollout_timeout_seconds,
                poll_interval=settings.poll_interval_seconds,
                fail_fast=settings.fail_fast,
                wait=wait,
            )
            report = reconciler.reconcile(specs, cancel_token=cancel_token)
    except (ReconcilerError, ValueError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=2)
    finally:
        signal.signal(signal.SIGINT, previous)

    _print_report(report)
    if not report.success:
        raise typer.Exit(code=1)


@app.command()
def validate(
    path: Path = typer.Argument(..., help="Descriptor or manifest file"),
    manifests: bool = typer.Option(False, "--manifests", help="Read Kubernetes YAML"),
    namespace: Optional[str] = typer.Option(None, "--namespace", "-n"),
):
    """Validate a descriptor and print the apply order."""
    settings = get_settings()
    setup_logging(settings.log_level)
    specs = _load(path, manifests, namespace or settings.default_namespace)

    # Planning never touches the cluster
    try:
        plan = Reconciler(cluster_api=None).plan(specs)
    except ReconcilerError as e:
        typer.echo(f"Invalid: {e}", err=True)
        raise typer.Exit(code=1)

    for i, key in enumerate(plan.keys(), start=1):
        typer.echo(f"{i:>3}. {key}")


@app.command()
def plan(
    path: Path = typer.Argument(..., help="Descriptor or manifest file"),
    manifests: bool = typer.Option(False, "--manifests", help="Read Kubernetes YAML"),
    namespace: Optional[str] = typer.Option(None, "--namespace", "-n"),
):
    """Show what apply would change, without changing the cluster."""
    _reconcile(path, manifests, namespace, dry_run=True)


@app.command()
def apply(
    path: Path = typer.Argument(..., help="Descriptor or manifest file"),
    manifests: bool = typer.Option(False, "--manifests", help="Read Kubernetes YAML"),
    namespace: Optional[str] = typer.Option(None, "--namespace", "-n"),
    timeout: Optional[float] = typer.Option(
        None, "--timeout", help="Seconds to wait for each deployment"
    ),
    wait: bool = typer.Option(True, "--wait/--no-wait", help="Wait for rollouts"),
):
    """Reconcile the cluster toward the descriptor."""
    _reconcile(path, manifests, namespace, dry_run=False, wait=wait, timeout=timeout)


if __name__ == "__main__":
    app()
