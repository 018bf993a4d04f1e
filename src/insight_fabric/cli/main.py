"""
insight-fabric CLI - inspect and edit a local graph store
"""

from __future__ import annotations

import json
import logging

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ..errors import GraphError
from ..graph.service import GraphService, build_service
from ..settings import settings

console = Console()


def _configure_logging() -> None:
    level = (settings.log_level or "INFO").upper()
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def _service(ctx: click.Context) -> GraphService:
    if "service" not in ctx.obj:
        cfg = settings.model_copy(update={"store": "sqlite", "sqlite_path": ctx.obj["db_path"]})
        service = build_service(cfg)
        ctx.obj["service"] = service
        ctx.call_on_close(service.close)
    return ctx.obj["service"]


def _split(value: str | None) -> list[str] | None:
    if not value:
        return None
    return [v.strip() for v in value.split(",") if v.strip()]


@click.group()
@click.option("--db", "db_path", default=None, help="SQLite graph file (default: settings.sqlite_path)")
@click.pass_context
def cli(ctx, db_path):
    """Insight Fabric - intelligence graph toolkit"""
    _configure_logging()
    ctx.ensure_object(dict)
    ctx.obj["db_path"] = db_path or settings.sqlite_path


@cli.command()
def version():
    """Print the package version"""
    from .. import __version__

    console.print(__version__)


@cli.command()
def serve():
    """Run the HTTP API (uses INSIGHT_FABRIC_* settings)"""
    from ..api.server import main

    main()


@cli.command()
@click.pass_context
def stats(ctx):
    """Show graph statistics"""
    s = _service(ctx).query.stats()
    console.print(
        Panel.fit(
            f"[bold cyan]Nodes: {s.active_nodes:,}/{s.total_nodes:,} active  "
            f"Edges: {s.active_edges:,}/{s.total_edges:,} active[/bold cyan]"
        )
    )

    table = Table(title="Nodes by Type")
    table.add_column("Type", style="magenta")
    table.add_column("Count", style="green")
    for node_type, count in sorted(s.nodes_by_type.items(), key=lambda kv: -kv[1]):
        table.add_row(node_type, f"{count:,}")
    console.print(table)

    table = Table(title="Edges by Type")
    table.add_column("Type", style="blue")
    table.add_column("Count", style="green")
    for edge_type, count in sorted(s.edges_by_type.items(), key=lambda kv: -kv[1]):
        table.add_row(edge_type, f"{count:,}")
    console.print(table)


@cli.group()
def node():
    """Create and list nodes"""


@node.command("add")
@click.argument("node_type")
@click.argument("label")
@click.option("--description", default=None)
@click.option("--tag", "tags", multiple=True, help="Repeatable")
@click.option("--props", default=None, help="Properties as a JSON object")
@click.pass_context
def node_add(ctx, node_type, label, description, tags, props):
    """Create a node"""
    try:
        created = _service(ctx).nodes.create(
            node_type, label, description=description, tags=list(tags), properties=json.loads(props or "{}")
        )
    except GraphError as exc:
        raise click.ClickException(exc.message) from exc
    console.print(f"[green]✓ Created {created.node_type.value} node: {created.id}[/green]")


@node.command("list")
@click.option("--type", "node_types", default=None, help="Comma-separated node types")
@click.option("--search", default=None)
@click.option("--limit", default=20, help="Number of results")
@click.pass_context
def node_list(ctx, node_types, search, limit):
    """List active nodes"""
    try:
        nodes, total = _service(ctx).nodes.list(
            node_types=_split(node_types), search=search, is_active=True, limit=limit
        )
    except GraphError as exc:
        raise click.ClickException(exc.message) from exc
    if not nodes:
        console.print("[yellow]No nodes found[/yellow]")
        return

    table = Table(title=f"Nodes ({len(nodes)} of {total})")
    table.add_column("ID", style="cyan", overflow="fold")
    table.add_column("Type", style="magenta")
    table.add_column("Label", style="white", overflow="fold")
    table.add_column("Centrality", style="green")
    for n in nodes:
        table.add_row(n.id, n.node_type.value, n.label, f"{n.centrality_score:.3f}" if n.centrality_score is not None else "-")
    console.print(table)


@cli.group()
def edge():
    """Create edges"""


@edge.command("add")
@click.argument("source_node_id")
@click.argument("target_node_id")
@click.argument("edge_type")
@click.option("--weight", default=None, type=float)
@click.option("--bidirectional", is_flag=True)
@click.pass_context
def edge_add(ctx, source_node_id, target_node_id, edge_type, weight, bidirectional):
    """Connect two nodes"""
    try:
        created = _service(ctx).edges.create(
            source_node_id, target_node_id, edge_type, weight=weight, is_bidirectional=bidirectional
        )
    except GraphError as exc:
        raise click.ClickException(exc.message) from exc
    console.print(f"[green]✓ Created {created.edge_type.value} edge: {created.id}[/green]")


@cli.command()
@click.argument("start_node_id")
@click.option("--direction", default="both", type=click.Choice(["incoming", "outgoing", "both"]))
@click.option("--depth", default=3, help="Max depth")
@click.option("--limit", default=100, help="Max nodes")
@click.pass_context
def traverse(ctx, start_node_id, direction, depth, limit):
    """Breadth-first walk from a node"""
    try:
        res = _service(ctx).traversal.traverse(start_node_id, direction=direction, max_depth=depth, limit=limit)
    except GraphError as exc:
        raise click.ClickException(exc.message) from exc

    table = Table(title=f"Traversal from {res.start_node.label} (depth {res.depth})")
    table.add_column("Hops", style="cyan", width=5)
    table.add_column("Type", style="magenta")
    table.add_column("Label", style="white", overflow="fold")
    hops = {p.node_ids[-1]: p.path_length for p in res.paths}
    for n in res.visited_nodes:
        table.add_row(str(hops.get(n.id, 0)), n.node_type.value, n.label)
    console.print(table)


@cli.command()
@click.argument("start_node_id")
@click.argument("end_node_id")
@click.option("--depth", default=6, help="Max hops")
@click.option("--explain", is_flag=True, help="Ask the reasoning provider to narrate the path")
@click.pass_context
def path(ctx, start_node_id, end_node_id, depth, explain):
    """Cheapest path between two nodes"""
    svc = _service(ctx)
    try:
        if explain:
            out = svc.paths.explain_path(start_node_id, end_node_id, max_depth=depth)
            found = out.path if out else None
        else:
            out = None
            found = svc.paths.find_path(start_node_id, end_node_id, max_depth=depth)
    except GraphError as exc:
        raise click.ClickException(exc.message) from exc

    if found is None:
        console.print("[yellow]No path found[/yellow]")
        return
    labels = " → ".join(n.label for n in found.nodes)
    console.print(Panel.fit(f"{labels}\n\nhops={found.path_length} weight={found.total_weight:g}", title="path"))
    if out is not None:
        if out.degraded:
            console.print("[yellow]Reasoning unavailable; showing bare path[/yellow]")
        elif out.explanation:
            title = "explanation"
            if out.confidence is not None:
                title += f" (confidence {out.confidence:.2f})"
            console.print(Panel(out.explanation, title=title, style="green"))


@cli.command()
@click.option("--type", "node_types", default=None, help="Comma-separated node types")
@click.pass_context
def metrics(ctx, node_types):
    """Recompute centrality and clusters"""
    try:
        res = _service(ctx).metrics.compute(node_types=_split(node_types))
    except GraphError as exc:
        raise click.ClickException(exc.message) from exc
    console.print_json(json.dumps(res.to_dict()))


DIFF_COUNT_KEYS = ("nodesAdded", "nodesRemoved", "nodesModified", "edgesAdded", "edgesRemoved", "edgesModified")


@cli.group()
def snapshot():
    """Capture and list snapshots"""


@snapshot.command("create")
@click.argument("name")
@click.option("--type", "snapshot_type", default="full", type=click.Choice(["full", "incremental"]))
@click.option("--no-diff", is_flag=True)
@click.pass_context
def snapshot_create(ctx, name, snapshot_type, no_diff):
    """Capture a snapshot and wait for it"""
    svc = _service(ctx)
    try:
        snap = svc.snapshots.create(name, snapshot_type=snapshot_type, compute_diff=not no_diff)
    except GraphError as exc:
        raise click.ClickException(exc.message) from exc
    snap = svc.snapshots.wait(snap.id)
    color = "green" if snap.status.value == "complete" else "red"
    console.print(f"[{color}]{snap.status.value}: {snap.id}[/{color}]")
    if snap.diff:
        console.print_json(json.dumps({k: v for k, v in snap.diff.items() if k in DIFF_COUNT_KEYS}))


@snapshot.command("list")
@click.option("--limit", default=20)
@click.pass_context
def snapshot_list(ctx, limit):
    """List snapshots, newest first"""
    snaps, _total = _service(ctx).snapshots.list(limit=limit)
    if not snaps:
        console.print("[yellow]No snapshots[/yellow]")
        return
    table = Table(title="Snapshots")
    table.add_column("ID", style="cyan", overflow="fold")
    table.add_column("Name", style="white")
    table.add_column("Status", style="magenta")
    table.add_column("Nodes", style="green")
    table.add_column("Edges", style="green")
    for s in snaps:
        table.add_row(s.id, s.name, s.status.value, str(s.captured_node_count), str(s.captured_edge_count))
    console.print(table)


if __name__ == "__main__":
    cli()
