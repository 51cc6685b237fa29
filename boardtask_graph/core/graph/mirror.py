from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any, Iterable, Iterator, Mapping, Optional, Union

from boardtask_graph.core.errors import GraphValidationError
from boardtask_graph.core.model import Edge, Node
from boardtask_graph.core.validate.validate_graph import parse_edge, parse_node


log = logging.getLogger(__name__)

NodeLike = Union[Node, Mapping[str, Any]]
EdgeLike = Union[Edge, Mapping[str, Any]]

UPDATABLE_FIELDS: frozenset[str] = frozenset(
    {
        "title",
        "description",
        "node_type_id",
        "status_id",
        "slot_id",
        "estimated_minutes",
        "created_at",
        "updated_at",
        "is_group",
    }
)


class GraphMirror:
    """In-memory view of a project's nodes, edges and groups.

    Filled from the last full graph fetch and mutated after each successful
    remote action. Every mutation leaves the mirror consistent: no edge
    references a missing node and no member references a missing group.
    Parent lists keep edge insertion order so "first parent" is deterministic.
    """

    def __init__(self) -> None:
        self._nodes: dict[str, Node] = {}
        self._edges: dict[tuple[str, str], Edge] = {}
        self._parents: dict[str, list[str]] = {}
        self._children: dict[str, list[str]] = {}

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def __iter__(self) -> Iterator[Node]:
        return iter(list(self._nodes.values()))

    # Loading

    def load(self, nodes: Iterable[NodeLike], edges: Iterable[EdgeLike]) -> None:
        """Replace the whole mirror.

        Raises GraphValidationError on malformed input; the previous content is
        kept in that case.
        """
        staged = GraphMirror()
        for i, raw in enumerate(nodes):
            node = raw if isinstance(raw, Node) else parse_node(raw, path=f"nodes[{i}]")
            if node.id in staged._nodes:
                raise GraphValidationError(
                    code="E_DUPLICATE_ID",
                    message=f"duplicate node id: {node.id}",
                    path=f"nodes[{i}].id",
                )
            staged._nodes[node.id] = node

        for node in staged._nodes.values():
            if node.parent_id is not None and node.parent_id not in staged._nodes:
                raise GraphValidationError(
                    code="E_UNKNOWN_GROUP",
                    message=f"parent_id references unknown node: {node.parent_id}",
                    path=f"nodes.{node.id}.parent_id",
                )

        for i, raw in enumerate(edges):
            edge = raw if isinstance(raw, Edge) else parse_edge(raw, path=f"edges[{i}]")
            staged._check_edge(edge, path=f"edges[{i}]")
            staged._insert_edge(edge)

        self._nodes = staged._nodes
        self._edges = staged._edges
        self._parents = staged._parents
        self._children = staged._children
        log.info("mirror loaded: %d nodes, %d edges", len(self._nodes), len(self._edges))

    # Accessors

    def get(self, node_id: str) -> Node:
        self._require(node_id)
        return self._nodes[node_id]

    def find(self, node_id: str) -> Optional[Node]:
        return self._nodes.get(node_id)

    def nodes(self) -> list[Node]:
        return list(self._nodes.values())

    def edges(self) -> list[Edge]:
        return list(self._edges.values())

    def has_edge(self, parent_id: str, child_id: str) -> bool:
        return (parent_id, child_id) in self._edges

    def members_of(self, group_id: str) -> list[str]:
        return [n.id for n in self._nodes.values() if n.parent_id == group_id]

    def is_group(self, node_id: str) -> bool:
        node = self.get(node_id)
        return node.is_group or any(n.parent_id == node_id for n in self._nodes.values())

    def groups(self) -> list[Node]:
        member_of = {n.parent_id for n in self._nodes.values() if n.parent_id}
        return [n for n in self._nodes.values() if n.is_group or n.id in member_of]

    # Traversal

    def parent_ids_of(self, node_id: str) -> set[str]:
        return set(self._parents.get(node_id, ()))

    def children_ids_of(self, node_id: str) -> set[str]:
        return set(self._children.get(node_id, ()))

    def is_root(self, node_id: str) -> bool:
        return not self._parents.get(node_id)

    def root_ancestor_of(self, node_id: str) -> str:
        """Follow first parents upward until a root.

        A repeated node means the collaborator let a cycle through; that is
        logged and the walk stops at the current node.
        """
        self._require(node_id)
        visited = {node_id}
        current = node_id
        while True:
            parents = self._parents.get(current)
            if not parents:
                return current
            nxt = parents[0]
            if nxt in visited:
                log.warning(
                    "dependency cycle detected walking up from %s (repeat at %s)", node_id, nxt
                )
                return current
            visited.add(nxt)
            current = nxt

    # Mutation

    def add_node(self, node: NodeLike) -> Node:
        if not isinstance(node, Node):
            node = parse_node(node)
        if node.id in self._nodes:
            raise GraphValidationError(
                code="E_DUPLICATE_ID", message=f"duplicate node id: {node.id}", path="node.id"
            )
        if node.parent_id is not None and node.parent_id not in self._nodes:
            raise GraphValidationError(
                code="E_UNKNOWN_GROUP",
                message=f"parent_id references unknown node: {node.parent_id}",
                path="node.parent_id",
            )
        self._nodes[node.id] = node
        return node

    def add_edge(self, parent_id: str, child_id: str, created_at: Optional[int] = None) -> Edge:
        """Add parent -> child. Adding an existing edge returns it unchanged."""
        existing = self._edges.get((parent_id, child_id))
        if existing is not None:
            return existing
        edge = Edge(parent_id=parent_id, child_id=child_id, created_at=created_at)
        self._check_edge(edge, path="edge")
        self._insert_edge(edge)
        return edge

    def remove_edge(self, parent_id: str, child_id: str) -> bool:
        """Remove parent -> child. Returns False when there was no such edge."""
        if self._edges.pop((parent_id, child_id), None) is None:
            return False
        self._parents[child_id].remove(parent_id)
        self._children[parent_id].remove(child_id)
        return True

    def remove_node(self, node_id: str) -> Node:
        """Remove a node, every edge touching it, and detach its members."""
        node = self.get(node_id)
        for parent_id in list(self._parents.get(node_id, ())):
            self.remove_edge(parent_id, node_id)
        for child_id in list(self._children.get(node_id, ())):
            self.remove_edge(node_id, child_id)
        self._parents.pop(node_id, None)
        self._children.pop(node_id, None)
        for member_id in self.members_of(node_id):
            self._nodes[member_id] = replace(self._nodes[member_id], parent_id=None)
        del self._nodes[node_id]
        return node

    def check_move(self, node_id: str, group_id: Optional[str]) -> None:
        """Raise if node_id cannot be placed in group_id."""
        self._require(node_id)
        if group_id is None:
            return
        if group_id not in self._nodes:
            raise GraphValidationError(
                code="E_UNKNOWN_GROUP",
                message=f"group does not exist: {group_id}",
                path="group_id",
            )
        current: Optional[str] = group_id
        seen: set[str] = set()
        while current is not None and current not in seen:
            if current == node_id:
                raise GraphValidationError(
                    code="E_GROUP_CYCLE",
                    message=f"{node_id} cannot be placed inside itself",
                    path="group_id",
                )
            seen.add(current)
            current = self._nodes[current].parent_id

    def move_to_group(self, node_id: str, group_id: Optional[str]) -> Node:
        self.check_move(node_id, group_id)
        if group_id is not None and not self._nodes[group_id].is_group:
            self._nodes[group_id] = replace(self._nodes[group_id], is_group=True)
        node = replace(self._nodes[node_id], parent_id=group_id)
        self._nodes[node_id] = node
        return node

    def update_node(self, node_id: str, **fields: Any) -> Node:
        self._require(node_id)
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise GraphValidationError(
                code="E_UNKNOWN_FIELD",
                message=f"cannot update fields: {', '.join(sorted(unknown))}",
                path=f"nodes.{node_id}",
            )
        node = replace(self._nodes[node_id], **fields)
        self._nodes[node_id] = node
        return node

    def rename_node(self, old_id: str, new_id: str) -> Node:
        """Give a node a new id, rewiring its edges and members."""
        node = self.get(old_id)
        if new_id in self._nodes:
            raise GraphValidationError(
                code="E_DUPLICATE_ID", message=f"duplicate node id: {new_id}", path="node.id"
            )
        incoming = [self._edges[(p, old_id)] for p in self._parents.get(old_id, ())]
        outgoing = [self._edges[(old_id, c)] for c in self._children.get(old_id, ())]
        for edge in incoming + outgoing:
            self.remove_edge(edge.parent_id, edge.child_id)

        # Rebuild the dict so the renamed node keeps its position.
        renamed = replace(node, id=new_id)
        self._nodes = {
            (new_id if k == old_id else k): (renamed if k == old_id else v)
            for k, v in self._nodes.items()
        }
        for member_id in self.members_of(old_id):
            self._nodes[member_id] = replace(self._nodes[member_id], parent_id=new_id)
        self._parents.pop(old_id, None)
        self._children.pop(old_id, None)

        for edge in incoming:
            self.add_edge(edge.parent_id, new_id, edge.created_at)
        for edge in outgoing:
            self.add_edge(new_id, edge.child_id, edge.created_at)
        return renamed

    # Internals

    def _require(self, node_id: str) -> None:
        if node_id not in self._nodes:
            raise GraphValidationError(
                code="E_UNKNOWN_NODE", message=f"unknown node: {node_id}", path="node_id"
            )

    def _check_edge(self, edge: Edge, *, path: str) -> None:
        for key, nid in (("parent_id", edge.parent_id), ("child_id", edge.child_id)):
            if nid not in self._nodes:
                raise GraphValidationError(
                    code="E_UNKNOWN_NODE",
                    message=f"{key} references unknown node: {nid}",
                    path=f"{path}.{key}",
                )
        if edge.parent_id == edge.child_id:
            raise GraphValidationError(
                code="E_SELF_EDGE", message="edge cannot connect a node to itself", path=path
            )

    def _insert_edge(self, edge: Edge) -> None:
        if edge.key in self._edges:
            return
        self._edges[edge.key] = edge
        self._parents.setdefault(edge.child_id, []).append(edge.parent_id)
        self._children.setdefault(edge.parent_id, []).append(edge.child_id)
