"""Main CLI entry point for the cluster controller."""

import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from cluster_controller.config import ControllerConfig
from cluster_controller.exceptions import ClusterControllerError
from cluster_controller.logging_config import get_logger, setup_logging
from cluster_controller.result import Request

app = typer.Typer(
    name="cluster-controller",
    help="Reconcile Cluster API clusters and their machines",
    add_completion=False,
)

console = Console()
logger = get_logger(__name__)

MAX_BACKOFF = 60.0

state = {"config": ControllerConfig()}


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
    log_file: str | None = typer.Option(None, "--log-file", help="Path to log file"),
    config_path: str | None = typer.Option(
        None, "--config", "-c", help="Path to controller configuration YAML"
    ),
):
    """Global options for all commands."""
    config = ControllerConfig()
    if config_path:
        try:
            config = ControllerConfig.load(config_path)
        except ClusterControllerError as e:
            console.print(f"[red]Configuration Error:[/red] {e.message}")
            if e.details:
                console.print(f"\n{e.details}")
            raise typer.Exit(code=1)
    state["config"] = config

    log_path = Path(log_file) if log_file else None
    setup_logging(level=config.log_level, verbose=verbose, log_file=log_path)
    logger.debug("Logging initialized")


def _build_reconciler():
    """Create a reconciler against the cluster in the current kubeconfig."""
    from kubernetes import config as kube_config

    from cluster_controller.controller import ClusterReconciler
    from cluster_controller.store import KubernetesObjectStore

    config = state["config"]
    try:
        kube_config.load_kube_config(config_file=config.kubeconfig)
    except Exception as e:
        console.print(f"[red]Error:[/red] Failed to load kubeconfig: {e}")
        raise typer.Exit(code=1)
    return ClusterReconciler(KubernetesObjectStore(), config)


def _resolve_namespace(namespace: str | None) -> str:
    """Return the namespace option, falling back to the configured namespace."""
    namespace = namespace or state["config"].namespace
    if not namespace:
        console.print(
            "[red]Error:[/red] No namespace given. Pass --namespace or set namespace in the config"
        )
        raise typer.Exit(code=1)
    return namespace


def _run_until_settled(reconciler, request: Request, follow: bool) -> bool:
    """Reconcile request, sleeping between passes as the result asks.

    Returns:
        True if the last pass succeeded
    """
    backoff = 1.0
    while True:
        try:
            result = reconciler.reconcile(request)
        except ClusterControllerError as e:
            logger.error(f"Reconcile of {request} failed: {e}")
            console.print(f"[red]{request}:[/red] {e.message}")
            if not follow:
                return False
            time.sleep(backoff)
            backoff = min(backoff * 2, MAX_BACKOFF)
            continue

        backoff = 1.0
        if result.is_zero():
            console.print(f"[green]✓[/green] {request} reconciled")
            return True
        console.print(f"[yellow]{request}[/yellow] requeue after {result.requeue_after:g}s")
        if not follow:
            return True
        time.sleep(result.requeue_after)


@app.command()
def version() -> None:
    """Show version information."""
    from cluster_controller import __version__

    typer.echo(f"cluster-controller version {__version__}")


@app.command()
def reconcile(
    name: str = typer.Argument(..., help="Name of the Cluster"),
    namespace: str | None = typer.Option(
        None, "--namespace", "-n", help="Namespace of the Cluster, defaults to the configured one"
    ),
    follow: bool = typer.Option(
        False, "--follow", "-f", help="Keep reconciling until no requeue is requested"
    ),
) -> None:
    """
    Run reconcile passes for one Cluster.

    Without --follow a single pass runs and its requeue hint is printed.
    """
    namespace = _resolve_namespace(namespace)
    reconciler = _build_reconciler()
    if not _run_until_settled(reconciler, Request(namespace=namespace, name=name), follow):
        raise typer.Exit(code=1)


@app.command()
def reconcile_all(
    namespace: str | None = typer.Option(
        None, "--namespace", "-n", help="Namespace to reconcile, defaults to the configured one"
    ),
) -> None:
    """
    Run one reconcile pass for every Cluster in a namespace.

    Clusters are reconciled in parallel up to max_concurrent_reconciles, each at most once.
    """
    from cluster_controller.models.meta import CLUSTER_API_VERSION

    namespace = _resolve_namespace(namespace)
    reconciler = _build_reconciler()
    try:
        clusters = reconciler.store.list(CLUSTER_API_VERSION, "Cluster", namespace)
    except ClusterControllerError as e:
        console.print(f"[red]Error:[/red] {e.message}")
        raise typer.Exit(code=1)

    requests = sorted(
        {Request(namespace=namespace, name=c["metadata"]["name"]) for c in clusters},
        key=str,
    )
    if not requests:
        console.print(f"[yellow]No clusters found in namespace {namespace}[/yellow]")
        return

    workers = state["config"].max_concurrent_reconciles
    with ThreadPoolExecutor(max_workers=workers) as pool:
        outcomes = list(
            pool.map(lambda r: _run_until_settled(reconciler, r, follow=False), requests)
        )

    failed = outcomes.count(False)
    console.print(f"\n[bold]Reconciled:[/bold] {len(requests)}  [bold]Failed:[/bold] {failed}")
    if failed:
        raise typer.Exit(code=1)


@app.command()
def descendants(
    name: str = typer.Argument(..., help="Name of the Cluster"),
    namespace: str | None = typer.Option(
        None, "--namespace", "-n", help="Namespace of the Cluster, defaults to the configured one"
    ),
) -> None:
    """
    Show the machines and machine groups that belong to a Cluster.

    Owned descendants are deleted directly when the Cluster is deleted;
    the rest are removed through their owners.
    """
    from pydantic import ValidationError as PydanticValidationError

    from cluster_controller.models.cluster import Cluster
    from cluster_controller.models.meta import CLUSTER_API_VERSION

    namespace = _resolve_namespace(namespace)
    reconciler = _build_reconciler()
    try:
        cluster = Cluster.model_validate(
            reconciler.store.get(CLUSTER_API_VERSION, "Cluster", namespace, name)
        )
        found = reconciler.graph.list_descendants(cluster)
    except ClusterControllerError as e:
        console.print(f"[red]Error:[/red] {e.message}")
        raise typer.Exit(code=1)
    except PydanticValidationError as e:
        console.print(f"[red]Error:[/red] Cluster {namespace}/{name} is malformed: {e}")
        raise typer.Exit(code=1)

    owned = {(o.kind, o.name) for o in found.filter_owned_descendants(cluster)}
    rows = [
        ("MachinePool", found.machine_pools),
        ("MachineDeployment", found.machine_deployments),
        ("MachineSet", found.machine_sets),
        ("Machine (worker)", found.worker_machines),
        ("Machine (control plane)", found.control_plane_machines),
    ]

    table = Table(title=f"Descendants of {namespace}/{name}")
    table.add_column("Kind", style="cyan")
    table.add_column("Name", style="magenta")
    table.add_column("Owned", style="yellow")
    table.add_column("Deleting", style="red")
    for label, items in rows:
        for obj in items:
            table.add_row(
                label,
                obj.name,
                "Yes" if (obj.kind, obj.name) in owned else "No",
                "Yes" if obj.metadata.is_deleting else "No",
            )

    console.print(table)
    console.print(f"\n[bold]Total descendants:[/bold] {found.length()}")


if __name__ == "__main__":
    app()
