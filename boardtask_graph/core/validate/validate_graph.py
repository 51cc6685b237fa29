from __future__ import annotations

from typing import Any, Iterable, Mapping, Optional, cast

from boardtask_graph.core.errors import GraphValidationError
from boardtask_graph.core.model import Edge, GraphSnapshot, Node, NodeType, Slot, TaskStatus


_OPTIONAL_STR_FIELDS = ("description", "node_type_id", "status_id", "slot_id", "parent_id")


def _is_int(v: Any) -> bool:
    return isinstance(v, int) and not isinstance(v, bool)


def _error(code: str, message: str, path: str, file: Optional[str]) -> GraphValidationError:
    return GraphValidationError(code=code, message=message, file=file, path=path)


def parse_node(raw: Any, *, path: str = "node", file: Optional[str] = None) -> Node:
    """Build a Node from an API/snapshot dict, raising on the first malformed field."""
    if not isinstance(raw, Mapping):
        raise _error("E_INVALID_TYPE", "node must be an object", path, file)

    nid = raw.get("id")
    if not isinstance(nid, str) or not nid.strip():
        raise _error(
            "E_REQUIRED_FIELD", "id is required and must be a non-empty string", f"{path}.id", file
        )

    # The graph endpoint predates "title"; older payloads carry "label".
    title = raw.get("title", raw.get("label"))
    if not isinstance(title, str):
        raise _error("E_REQUIRED_FIELD", "title is required and must be a string", f"{path}.title", file)

    for key in _OPTIONAL_STR_FIELDS:
        v = raw.get(key)
        if v is not None and not isinstance(v, str):
            raise _error("E_INVALID_TYPE", f"{key} must be a string", f"{path}.{key}", file)

    estimate = raw.get("estimated_minutes")
    if estimate is not None and (not _is_int(estimate) or estimate < 0):
        raise _error(
            "E_INVALID_TYPE",
            "estimated_minutes must be a non-negative integer",
            f"{path}.estimated_minutes",
            file,
        )

    created_at = raw.get("created_at", 0)
    if created_at is None:
        created_at = 0
    if not _is_int(created_at):
        raise _error("E_INVALID_TYPE", "created_at must be an integer", f"{path}.created_at", file)

    updated_at = raw.get("updated_at")
    if updated_at is not None and not _is_int(updated_at):
        raise _error("E_INVALID_TYPE", "updated_at must be an integer", f"{path}.updated_at", file)

    is_group = raw.get("is_group", False)
    if not isinstance(is_group, bool):
        raise _error("E_INVALID_TYPE", "is_group must be a boolean", f"{path}.is_group", file)

    return Node(
        id=nid,
        title=title,
        node_type_id=cast(Optional[str], raw.get("node_type_id")),
        status_id=cast(Optional[str], raw.get("status_id")),
        description=cast(Optional[str], raw.get("description")),
        slot_id=cast(Optional[str], raw.get("slot_id")),
        estimated_minutes=cast(Optional[int], estimate),
        parent_id=cast(Optional[str], raw.get("parent_id")),
        created_at=created_at,
        updated_at=cast(Optional[int], updated_at),
        is_group=is_group,
    )


def parse_edge(raw: Any, *, path: str = "edge", file: Optional[str] = None) -> Edge:
    if not isinstance(raw, Mapping):
        raise _error("E_INVALID_TYPE", "edge must be an object", path, file)

    for key in ("parent_id", "child_id"):
        v = raw.get(key)
        if not isinstance(v, str) or not v.strip():
            raise _error(
                "E_REQUIRED_FIELD",
                f"{key} is required and must be a non-empty string",
                f"{path}.{key}",
                file,
            )

    created_at = raw.get("created_at")
    if created_at is not None and not _is_int(created_at):
        raise _error("E_INVALID_TYPE", "created_at must be an integer", f"{path}.created_at", file)

    return Edge(parent_id=raw["parent_id"], child_id=raw["child_id"], created_at=created_at)


def parse_node_type(raw: Any, *, path: str = "node_type", file: Optional[str] = None) -> NodeType:
    if not isinstance(raw, Mapping):
        raise _error("E_INVALID_TYPE", "node type must be an object", path, file)
    for key in ("id", "name"):
        if not isinstance(raw.get(key), str):
            raise _error("E_REQUIRED_FIELD", f"{key} must be a string", f"{path}.{key}", file)
    color = raw.get("color") or ""
    if not isinstance(color, str):
        raise _error("E_INVALID_TYPE", "color must be a string", f"{path}.color", file)
    return NodeType(id=raw["id"], name=raw["name"], color=color)


def parse_task_status(raw: Any, *, path: str = "task_status", file: Optional[str] = None) -> TaskStatus:
    if not isinstance(raw, Mapping):
        raise _error("E_INVALID_TYPE", "task status must be an object", path, file)
    for key in ("id", "name"):
        if not isinstance(raw.get(key), str):
            raise _error("E_REQUIRED_FIELD", f"{key} must be a string", f"{path}.{key}", file)
    sort_order = raw.get("sort_order", 0)
    if not _is_int(sort_order):
        raise _error("E_INVALID_TYPE", "sort_order must be an integer", f"{path}.sort_order", file)
    return TaskStatus(id=raw["id"], name=raw["name"], sort_order=sort_order)


def parse_slot(raw: Any, *, path: str = "slot", file: Optional[str] = None) -> Slot:
    if not isinstance(raw, Mapping):
        raise _error("E_INVALID_TYPE", "slot must be an object", path, file)
    for key in ("id", "name"):
        if not isinstance(raw.get(key), str):
            raise _error("E_REQUIRED_FIELD", f"{key} must be a string", f"{path}.{key}", file)
    sort_order = raw.get("sort_order", 0)
    if not _is_int(sort_order):
        raise _error("E_INVALID_TYPE", "sort_order must be an integer", f"{path}.sort_order", file)
    return Slot(id=raw["id"], name=raw["name"], sort_order=sort_order)


def validate_graph(
    data: dict[str, Any],
) -> tuple[Optional[GraphSnapshot], list[GraphValidationError]]:
    """Validate a graph document (API graph response or snapshot file).

    Returns (snapshot, errors). Snapshot is None when errors exist.
    """

    file = cast(Optional[str], data.get("__file__"))
    errors: list[GraphValidationError] = []

    nodes_raw = data.get("nodes")
    if not isinstance(nodes_raw, list):
        errors.append(_error("E_REQUIRED_FIELD", "nodes is required and must be an array", "nodes", file))
        return None, _sorted(errors)

    edges_raw = data.get("edges", [])
    if edges_raw is None:
        edges_raw = []
    if not isinstance(edges_raw, list):
        errors.append(_error("E_INVALID_TYPE", "edges must be an array", "edges", file))
        edges_raw = []

    nodes: list[Node] = []
    seen: set[str] = set()
    for i, raw in enumerate(nodes_raw):
        try:
            node = parse_node(raw, path=f"nodes[{i}]", file=file)
        except GraphValidationError as e:
            errors.append(e)
            continue
        if node.id in seen:
            errors.append(
                _error("E_DUPLICATE_ID", f"duplicate node id: {node.id}", f"nodes[{i}].id", file)
            )
            continue
        seen.add(node.id)
        nodes.append(node)

    # Group references.
    for i, raw in enumerate(nodes_raw):
        if not isinstance(raw, Mapping):
            continue
        gid = raw.get("parent_id")
        if isinstance(gid, str) and gid not in seen:
            errors.append(
                _error(
                    "E_UNKNOWN_GROUP",
                    f"parent_id references unknown node: {gid}",
                    f"nodes[{i}].parent_id",
                    file,
                )
            )

    edges: list[Edge] = []
    edge_keys: set[tuple[str, str]] = set()
    for i, raw in enumerate(edges_raw):
        try:
            edge = parse_edge(raw, path=f"edges[{i}]", file=file)
        except GraphValidationError as e:
            errors.append(e)
            continue
        bad = False
        for key, nid in (("parent_id", edge.parent_id), ("child_id", edge.child_id)):
            if nid not in seen:
                errors.append(
                    _error(
                        "E_UNKNOWN_NODE",
                        f"{key} references unknown node: {nid}",
                        f"edges[{i}].{key}",
                        file,
                    )
                )
                bad = True
        if edge.parent_id == edge.child_id:
            errors.append(
                _error("E_SELF_EDGE", "edge cannot connect a node to itself", f"edges[{i}]", file)
            )
            bad = True
        if edge.key in edge_keys:
            errors.append(
                _error("E_DUPLICATE_EDGE", f"duplicate edge: {edge.id}", f"edges[{i}]", file)
            )
            bad = True
        if not bad:
            edge_keys.add(edge.key)
            edges.append(edge)

    node_types = _parse_list(data, "node_types", parse_node_type, file, errors)
    task_statuses = _parse_list(data, "task_statuses", parse_task_status, file, errors)
    slots = _parse_list(data, "slots", parse_slot, file, errors)

    if errors:
        return None, _sorted(errors)

    return (
        GraphSnapshot(
            nodes=nodes,
            edges=edges,
            node_types=node_types,
            task_statuses=task_statuses,
            slots=slots,
        ),
        [],
    )


def summarize_graph(snapshot: GraphSnapshot) -> str:
    child_ids = {e.child_id for e in snapshot.edges}
    roots = sorted(n.id for n in snapshot.nodes if n.id not in child_ids)
    groups = {n.parent_id for n in snapshot.nodes if n.parent_id} | {
        n.id for n in snapshot.nodes if n.is_group
    }
    return (
        f"OK: {len(snapshot.nodes)} nodes, {len(snapshot.edges)} edges, {len(groups)} groups"
        + "\nRoots: "
        + ", ".join(roots)
    )


def _parse_list(data, key, parse, file, errors) -> list:
    raw_list = data.get(key)
    if raw_list is None:
        return []
    if not isinstance(raw_list, list):
        errors.append(_error("E_INVALID_TYPE", f"{key} must be an array", key, file))
        return []
    out = []
    for i, raw in enumerate(raw_list):
        try:
            out.append(parse(raw, path=f"{key}[{i}]", file=file))
        except GraphValidationError as e:
            errors.append(e)
    return out


def _sorted(errors: Iterable[GraphValidationError]) -> list[GraphValidationError]:
    return sorted(
        list(errors),
        key=lambda e: (
            e.file or "",
            e.path or "",
            e.code,
        ),
    )
