from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from boardtask_graph.core.config import ConfigError, Settings, load_settings
from boardtask_graph.core.derive.attributes import DerivedAttributeEngine
from boardtask_graph.core.derive.progress import count_blocked, format_estimated_minutes, progress
from boardtask_graph.core.editor import GraphEditor, create_editor
from boardtask_graph.core.errors import (
    ApiError,
    GraphError,
    GraphLoadError,
    GraphValidationError,
)
from boardtask_graph.core.graph.mirror import GraphMirror
from boardtask_graph.core.io.load_graph import dump_graph_yaml, load_graph
from boardtask_graph.core.model import GraphSnapshot
from boardtask_graph.core.session.edit_session import EditSession
from boardtask_graph.core.validate.validate_graph import summarize_graph, validate_graph

app = typer.Typer(add_completion=False, no_args_is_help=True)

T = TypeVar("T")

_CONFIG = typer.Option(None, "--config", help="YAML settings file (default: $BOARDTASK_CONFIG)")
_BASE_URL = typer.Option(None, "--base-url", help="Boardtask server URL")
_PROJECT = typer.Option(None, "--project", help="Project id")
_TOKEN = typer.Option(None, "--token", help="Bearer token for the API")


@app.callback()
def _callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log API traffic to stderr"),
) -> None:
    """Boardtask graph CLI."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


@app.command("validate")
def validate(
    path: str = typer.Argument(..., help="Path to a graph snapshot (.yaml/.yml/.json)"),
    format: str = typer.Option("text", "--format", help="Output format: text|json"),
) -> None:
    """Validate a graph snapshot file."""
    _check_format(format, ("text", "json"), "E_VALIDATE_UNKNOWN_FORMAT")

    def _emit_json(ok: bool, *, exit_code: int, errors: list[GraphError], summary: dict | None) -> None:
        payload = {
            "tool": "boardtask-graph",
            "command": "validate",
            "ok": ok,
            "error_count": len(errors),
            "errors": [_to_item(e) for e in errors],
            "summary": summary,
        }
        typer.echo(json.dumps(payload, indent=2, sort_keys=True))
        raise typer.Exit(code=exit_code)

    try:
        data = load_graph(path)
    except GraphLoadError as e:
        if format == "json":
            _emit_json(False, exit_code=1, errors=[e], summary=None)
        _print_errors([e])
        raise typer.Exit(code=1)

    snapshot, errors = validate_graph(data)
    if errors or snapshot is None:
        if format == "json":
            _emit_json(False, exit_code=2, errors=list(errors), summary=None)
        _print_errors(list(errors))
        raise typer.Exit(code=2)

    if format == "text":
        typer.echo(summarize_graph(snapshot))
        return

    mirror = _mirror_for(snapshot)
    summary = {
        "node_count": len(snapshot.nodes),
        "edge_count": len(snapshot.edges),
        "group_count": len(mirror.groups()),
        "roots": sorted(n.id for n in mirror.nodes() if mirror.is_root(n.id)),
    }
    _emit_json(True, exit_code=0, errors=[], summary=summary)


@app.command("show")
def show(
    path: str = typer.Argument(..., help="Path to a graph snapshot (.yaml/.yml/.json)"),
    filter: Optional[str] = typer.Option(None, "--filter", help="Progress filter: todo|in-progress|done"),
    format: str = typer.Option("text", "--format", help="Output format: text|json|table"),
    config: Optional[str] = _CONFIG,
) -> None:
    """Show blocked/filtered/order attributes for every node in a snapshot."""
    _check_format(format, ("text", "json", "table"), "E_SHOW_UNKNOWN_FORMAT")
    settings = _settings(config)
    snapshot = _load_snapshot(path)
    engine = _engine_for(_mirror_for(snapshot), settings, filter)
    _render(engine, format, command="show")


@app.command("progress")
def progress_cmd(
    path: str = typer.Argument(..., help="Path to a graph snapshot (.yaml/.yml/.json)"),
    format: str = typer.Option("text", "--format", help="Output format: text|json"),
    config: Optional[str] = _CONFIG,
) -> None:
    """Summarize done/blocked counts for a snapshot."""
    _check_format(format, ("text", "json"), "E_PROGRESS_UNKNOWN_FORMAT")
    settings = _settings(config)
    mirror = _mirror_for(_load_snapshot(path))

    done = progress(mirror, done_status_id=settings.done_status_id)
    blocked = count_blocked(
        mirror,
        done_status_id=settings.done_status_id,
        todo_status_id=settings.filter_status_ids["todo"],
        in_progress_status_id=settings.filter_status_ids["in-progress"],
    )
    remaining = sum(
        n.estimated_minutes or 0 for n in mirror.nodes() if n.status_id != settings.done_status_id
    )

    if format == "json":
        payload = {
            "tool": "boardtask-graph",
            "command": "progress",
            "done": done.done,
            "total": done.total,
            "percent": done.percent,
            "blocked": {
                "total": blocked.total,
                "todo": blocked.todo,
                "in_progress": blocked.in_progress,
            },
            "remaining_minutes": remaining,
        }
        typer.echo(json.dumps(payload, indent=2, sort_keys=True))
        return

    typer.echo(f"Progress: {done.done}/{done.total} done ({done.percent}%)")
    typer.echo(
        f"Blocked: {blocked.total} (todo={blocked.todo}, in_progress={blocked.in_progress})"
    )
    typer.echo(f"Remaining estimate: {format_estimated_minutes(remaining)}")


@app.command("fetch")
def fetch(
    out: Optional[str] = typer.Option(None, "--out", help="Write the fetched snapshot as YAML"),
    filter: Optional[str] = typer.Option(None, "--filter", help="Progress filter: todo|in-progress|done"),
    format: str = typer.Option("text", "--format", help="Output format: text|json|table"),
    config: Optional[str] = _CONFIG,
    base_url: Optional[str] = _BASE_URL,
    project: Optional[str] = _PROJECT,
    token: Optional[str] = _TOKEN,
) -> None:
    """Fetch the project graph from the API and show derived attributes."""
    _check_format(format, ("text", "json", "table"), "E_FETCH_UNKNOWN_FORMAT")
    settings = _settings(config, base_url=base_url, project_id=project, token=token)

    # Reject a bad filter before any request is made.
    _engine_for(GraphMirror(), settings, filter)

    async def _fetch(editor: GraphEditor) -> None:
        editor.engine.set_filter(filter)
        await editor.refresh()

    editor = _run(settings, _fetch)

    if out:
        snapshot = GraphSnapshot(
            nodes=editor.mirror.nodes(),
            edges=editor.mirror.edges(),
            node_types=editor.node_types,
            task_statuses=editor.task_statuses,
            slots=editor.slots,
        )
        dump_graph_yaml(snapshot, out)
        typer.echo(f"OK: wrote snapshot to {out}", err=True)
    _render(editor.engine, format, command="fetch")


@app.command("add-node")
def add_node(
    title: Optional[str] = typer.Option(None, "--title", help="Title (default: New Node)"),
    parent: Optional[str] = typer.Option(None, "--parent", help="Create as a child of this node"),
    child: Optional[str] = typer.Option(None, "--child", help="Create as a parent of this node"),
    config: Optional[str] = _CONFIG,
    base_url: Optional[str] = _BASE_URL,
    project: Optional[str] = _PROJECT,
    token: Optional[str] = _TOKEN,
) -> None:
    """Create a node, optionally linked under --parent or above --child."""
    if parent and child:
        _print_errors(
            [
                GraphValidationError(
                    code="E_ADD_NODE_CONFLICT",
                    message="use either --parent or --child, not both",
                    path="parent",
                )
            ]
        )
        raise typer.Exit(code=2)
    settings = _settings(config, base_url=base_url, project_id=project, token=token)

    async def _add(editor: GraphEditor):
        await editor.refresh()
        if parent:
            return await editor.add_child_node(parent, title=title)
        if child:
            return await editor.add_parent_node(child, title=title)
        return await editor.add_node(title=title)

    node = _run_value(settings, _add)
    typer.echo(f"OK: created {node.id} ({node.title})")


@app.command("connect")
def connect(
    parent: str = typer.Argument(..., help="Blocking node id"),
    child: str = typer.Argument(..., help="Blocked node id"),
    config: Optional[str] = _CONFIG,
    base_url: Optional[str] = _BASE_URL,
    project: Optional[str] = _PROJECT,
    token: Optional[str] = _TOKEN,
) -> None:
    """Add a dependency edge parent -> child."""
    settings = _settings(config, base_url=base_url, project_id=project, token=token)

    async def _connect(editor: GraphEditor):
        await editor.refresh()
        return await editor.connect(parent, child)

    edge = _run_value(settings, _connect)
    typer.echo(f"OK: connected {edge.id}")


@app.command("disconnect")
def disconnect(
    parent: str = typer.Argument(..., help="Blocking node id"),
    child: str = typer.Argument(..., help="Blocked node id"),
    config: Optional[str] = _CONFIG,
    base_url: Optional[str] = _BASE_URL,
    project: Optional[str] = _PROJECT,
    token: Optional[str] = _TOKEN,
) -> None:
    """Remove the dependency edge parent -> child."""
    settings = _settings(config, base_url=base_url, project_id=project, token=token)

    async def _disconnect(editor: GraphEditor):
        await editor.refresh()
        return await editor.disconnect(parent, child)

    removed = _run_value(settings, _disconnect)
    if not removed:
        typer.echo(f"WARN: {parent}->{child} was not connected", err=True)
    typer.echo(f"OK: disconnected {parent}->{child}")


@app.command("remove-node")
def remove_node(
    node_id: str = typer.Argument(..., help="Node id"),
    config: Optional[str] = _CONFIG,
    base_url: Optional[str] = _BASE_URL,
    project: Optional[str] = _PROJECT,
    token: Optional[str] = _TOKEN,
) -> None:
    """Delete a node and its edges."""
    settings = _settings(config, base_url=base_url, project_id=project, token=token)

    async def _remove(editor: GraphEditor):
        await editor.refresh()
        await editor.remove_node(node_id)

    _run(settings, _remove)
    typer.echo(f"OK: removed {node_id}")


@app.command("insert-between")
def insert_between(
    parent: str = typer.Argument(..., help="Existing parent id"),
    child: str = typer.Argument(..., help="Existing child id"),
    title: Optional[str] = typer.Option(None, "--title", help="Title (default: New Node)"),
    config: Optional[str] = _CONFIG,
    base_url: Optional[str] = _BASE_URL,
    project: Optional[str] = _PROJECT,
    token: Optional[str] = _TOKEN,
) -> None:
    """Insert a new node on the edge parent -> child."""
    settings = _settings(config, base_url=base_url, project_id=project, token=token)

    async def _insert(editor: GraphEditor):
        await editor.refresh()
        return await editor.insert_between(parent, child, title=title)

    node = _run_value(settings, _insert)
    typer.echo(f"OK: inserted {node.id} between {parent} and {child}")


@app.command("group")
def group(
    node_ids: list[str] = typer.Argument(..., help="Nodes to place in the new group"),
    title: Optional[str] = typer.Option(None, "--title", help="Group title (default: New Group)"),
    config: Optional[str] = _CONFIG,
    base_url: Optional[str] = _BASE_URL,
    project: Optional[str] = _PROJECT,
    token: Optional[str] = _TOKEN,
) -> None:
    """Create a group and move the given nodes into it."""
    settings = _settings(config, base_url=base_url, project_id=project, token=token)

    async def _group(editor: GraphEditor):
        await editor.refresh()
        staged = editor.stage_group(title)
        group_id = staged.id
        for node_id in node_ids:
            node = await editor.move_to_group(node_id, group_id)
            group_id = node.parent_id or group_id
        return group_id

    group_id = _run_value(settings, _group)
    typer.echo(f"OK: grouped {len(node_ids)} nodes into {group_id}")


@app.command("edit")
def edit(
    node_id: str = typer.Argument(..., help="Node or group id"),
    title: Optional[str] = typer.Option(None, "--title"),
    description: Optional[str] = typer.Option(None, "--description"),
    node_type: Optional[str] = typer.Option(None, "--type", help="Node type id"),
    status: Optional[str] = typer.Option(None, "--status", help="Task status id"),
    slot: Optional[str] = typer.Option(None, "--slot", help="Slot id ('' clears)"),
    estimate: Optional[str] = typer.Option(None, "--estimate", help="Estimated minutes ('' clears)"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Save without asking"),
    config: Optional[str] = _CONFIG,
    base_url: Optional[str] = _BASE_URL,
    project: Optional[str] = _PROJECT,
    token: Optional[str] = _TOKEN,
) -> None:
    """Edit a node's metadata through an edit session."""
    settings = _settings(config, base_url=base_url, project_id=project, token=token)
    changes: dict[str, Any] = {
        "title": title,
        "description": description,
        "node_type_id": node_type,
        "status_id": status,
        "slot_id": slot,
        "estimated_minutes": estimate,
    }

    def confirm(session: EditSession) -> str:
        if yes or typer.confirm(f"Save changes to {session.node_id}?", default=True):
            return "save"
        return "discard"

    async def _edit(editor: GraphEditor):
        await editor.refresh()
        await editor.select(node_id)
        for name, value in changes.items():
            if value is not None:
                editor.session.set_field(name, value)
        changed = editor.session.has_changes()
        decision = await editor.clear_selection()
        return decision if changed else None

    decision = _run_value(settings, _edit, confirm=confirm)
    if decision is None:
        typer.echo("OK: no changes")
    elif decision == "save":
        typer.echo(f"OK: saved {node_id}")
    else:
        typer.echo(f"OK: discarded changes to {node_id}")


def _settings(config: Optional[str], **overrides: Any) -> Settings:
    try:
        return load_settings(config, **overrides)
    except FileNotFoundError:
        _print_errors(
            [
                GraphLoadError(
                    code="E_CONFIG_FILE_NOT_FOUND",
                    message=f"config file not found: {config}",
                    path="config",
                )
            ]
        )
        raise typer.Exit(code=1)
    except ConfigError as e:
        _print_errors(
            [GraphValidationError(code="E_CONFIG_INVALID", message=str(e), path="config")]
        )
        raise typer.Exit(code=2)


def _load_snapshot(path: str) -> GraphSnapshot:
    try:
        data = load_graph(path)
    except GraphLoadError as e:
        _print_errors([e])
        raise typer.Exit(code=1)
    snapshot, errors = validate_graph(data)
    if errors or snapshot is None:
        _print_errors(list(errors))
        raise typer.Exit(code=2)
    return snapshot


def _mirror_for(snapshot: GraphSnapshot) -> GraphMirror:
    mirror = GraphMirror()
    mirror.load(snapshot.nodes, snapshot.edges)
    return mirror


def _engine_for(
    mirror: GraphMirror, settings: Settings, filter: Optional[str]
) -> DerivedAttributeEngine:
    try:
        engine = DerivedAttributeEngine(
            mirror,
            done_status_id=settings.done_status_id,
            filter_status_ids=settings.filter_status_ids,
            progress_filter=filter,
        )
    except GraphValidationError as e:
        _print_errors([e])
        raise typer.Exit(code=2)
    engine.recompute()
    return engine


def _run(settings: Settings, action: Callable[[GraphEditor], Awaitable[Any]], **kwargs: Any) -> GraphEditor:
    editor, _ = _execute(settings, action, **kwargs)
    return editor


def _run_value(settings: Settings, action: Callable[[GraphEditor], Awaitable[T]], **kwargs: Any) -> T:
    _, value = _execute(settings, action, **kwargs)
    return value


def _execute(
    settings: Settings, action: Callable[[GraphEditor], Awaitable[T]], **kwargs: Any
) -> tuple[GraphEditor, T]:
    try:
        editor = create_editor(settings, **kwargs)
    except ConfigError as e:
        _print_errors(
            [GraphValidationError(code="E_CONFIG_INVALID", message=str(e), path="project")]
        )
        raise typer.Exit(code=2)

    async def _main() -> T:
        async with editor.client:
            return await action(editor)

    try:
        value = asyncio.run(_main())
    except ApiError as e:
        _print_errors([e])
        raise typer.Exit(code=1)
    except GraphError as e:
        _print_errors([e])
        raise typer.Exit(code=2)
    return editor, value


def _rows(engine: DerivedAttributeEngine) -> list[dict[str, Any]]:
    mirror = engine.mirror
    rows: list[dict[str, Any]] = []
    for node in sorted(mirror.nodes(), key=lambda n: engine.node_sort_key(n.id)):
        attrs = engine.attributes(node.id)
        rows.append(
            {
                "id": node.id,
                "title": node.title,
                "status_id": node.status_id,
                "group": mirror.is_group(node.id),
                "parent_group_id": node.parent_id,
                "root": attrs.is_root,
                "done": attrs.is_done,
                "blocked": attrs.blocked,
                "filtered_out": attrs.filtered_out,
                "order_key": attrs.order_key,
                "estimate": format_estimated_minutes(node.estimated_minutes),
            }
        )
    return rows


def _render(engine: DerivedAttributeEngine, format: str, *, command: str) -> None:
    rows = _rows(engine)
    if format == "json":
        payload = {
            "tool": "boardtask-graph",
            "command": command,
            "filter": engine.progress_filter,
            "nodes": rows,
            "edges": [e.id for e in engine.sorted_edges()],
        }
        typer.echo(json.dumps(payload, indent=2, sort_keys=True))
        return

    if format == "table":
        table = Table(title=f"boardtask-graph {command}")
        for col in ("Order", "Id", "Title", "Root", "Done", "Blocked", "Hidden", "Estimate"):
            table.add_column(col)
        for r in rows:
            table.add_row(
                str(r["order_key"]),
                r["id"],
                r["title"],
                "yes" if r["root"] else "",
                "yes" if r["done"] else "",
                "yes" if r["blocked"] else "",
                "yes" if r["filtered_out"] else "",
                r["estimate"],
            )
        Console().print(table)
        return

    for r in rows:
        flags = [name for name in ("root", "done", "blocked", "filtered_out", "group") if r[name]]
        typer.echo(f"[{r['order_key']}] {r['id']} {r['title']}" + (f" ({', '.join(flags)})" if flags else ""))


def _check_format(format: str, allowed: tuple[str, ...], code: str) -> None:
    if format not in allowed:
        err = GraphValidationError(
            code=code,
            message=f"unknown format: {format} (choose one of: {', '.join(allowed)})",
            file=None,
            path="format",
        )
        _print_errors([err])
        raise typer.Exit(code=2)


def _to_item(e: GraphError) -> dict:
    source = "load" if isinstance(e, GraphLoadError) else "validate"
    return {
        "code": e.code,
        "message": e.message,
        "file": e.file,
        "path": e.path,
        "severity": "error",
        "source": source,
    }


def _print_errors(errors: list[GraphError]) -> None:
    errors_sorted = sorted(errors, key=lambda e: (e.file or "", e.path or "", e.code))
    for e in errors_sorted:
        typer.echo(str(e), err=True)


def main() -> None:
    app(prog_name="boardtask-graph")


cli = typer.main.get_command(app)

if __name__ == "__main__":
    main()
