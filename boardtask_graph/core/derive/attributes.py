from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from boardtask_graph.core.defaults import DONE_STATUS_ID, FILTER_STATUS_IDS
from boardtask_graph.core.errors import GraphValidationError
from boardtask_graph.core.graph.mirror import GraphMirror
from boardtask_graph.core.model import Edge


@dataclass(frozen=True)
class NodeAttributes:
    is_root: bool
    is_done: bool
    blocked: bool
    filtered_out: bool
    order_key: int


def is_done(mirror: GraphMirror, node_id: str, done_status_id: str) -> bool:
    node = mirror.find(node_id)
    return node is not None and node.status_id is not None and node.status_id == done_status_id


def compute_blocked(mirror: GraphMirror, done_status_id: str = DONE_STATUS_ID) -> dict[str, bool]:
    """Map every node id to whether it is blocked.

    Roots and done nodes are never blocked. Any other node is blocked when at
    least one parent is itself neither a root nor done.
    """
    out: dict[str, bool] = {}
    for node in mirror.nodes():
        nid = node.id
        if mirror.is_root(nid) or is_done(mirror, nid, done_status_id):
            out[nid] = False
            continue
        out[nid] = any(
            not mirror.is_root(pid) and not is_done(mirror, pid, done_status_id)
            for pid in mirror.parent_ids_of(nid)
        )
    return out


def compute_filtered_out(
    mirror: GraphMirror, target_status_id: Optional[str]
) -> dict[str, bool]:
    """Map every node id to whether the progress filter hides it. Groups are never hidden."""
    if target_status_id is None:
        return {n.id: False for n in mirror.nodes()}
    groups = {g.id for g in mirror.groups()}
    return {
        n.id: (n.id not in groups and n.status_id != target_status_id) for n in mirror.nodes()
    }


def compute_order_keys(mirror: GraphMirror) -> dict[str, int]:
    """Stable left-to-right index of root subtrees.

    Roots are numbered by (created_at, id); every other node takes the index of
    its root ancestor. A walk that stops short of a root sorts after all roots.
    """
    roots = sorted(
        (n for n in mirror.nodes() if mirror.is_root(n.id)), key=lambda n: (n.created_at, n.id)
    )
    root_index = {n.id: i for i, n in enumerate(roots)}
    fallback = len(root_index)
    return {
        n.id: root_index.get(mirror.root_ancestor_of(n.id), fallback) for n in mirror.nodes()
    }


class DerivedAttributeEngine:
    def __init__(
        self,
        mirror: GraphMirror,
        *,
        done_status_id: str = DONE_STATUS_ID,
        filter_status_ids: Optional[dict[str, str]] = None,
        progress_filter: Optional[str] = None,
    ) -> None:
        self.mirror = mirror
        self.done_status_id = done_status_id
        self.filter_status_ids = dict(filter_status_ids or FILTER_STATUS_IDS)
        self.progress_filter: Optional[str] = None
        self._blocked: dict[str, bool] = {}
        self._filtered_out: dict[str, bool] = {}
        self._order_key: dict[str, int] = {}
        self.set_filter(progress_filter)

    def set_filter(self, value: Optional[str]) -> None:
        """Select the active progress filter. Call recompute_filtered() afterwards."""
        if value in (None, "", "none"):
            self.progress_filter = None
            return
        if value not in self.filter_status_ids:
            raise GraphValidationError(
                code="E_UNKNOWN_FILTER",
                message=f"unknown filter: {value} (choose one of: none, {', '.join(self.filter_status_ids)})",
                path="filter",
            )
        self.progress_filter = value

    @property
    def target_status_id(self) -> Optional[str]:
        if self.progress_filter is None:
            return None
        return self.filter_status_ids[self.progress_filter]

    def recompute_blocked(self) -> dict[str, bool]:
        self._blocked = compute_blocked(self.mirror, self.done_status_id)
        return dict(self._blocked)

    def recompute_filtered(self) -> dict[str, bool]:
        self._filtered_out = compute_filtered_out(self.mirror, self.target_status_id)
        return dict(self._filtered_out)

    def recompute_order(self) -> dict[str, int]:
        self._order_key = compute_order_keys(self.mirror)
        return dict(self._order_key)

    def recompute(self) -> None:
        self.recompute_blocked()
        self.recompute_filtered()
        self.recompute_order()

    def blocked(self, node_id: str) -> bool:
        return self._blocked.get(node_id, False)

    def filtered_out(self, node_id: str) -> bool:
        return self._filtered_out.get(node_id, False)

    def order_key(self, node_id: str) -> int:
        # Nodes added since the last recompute sort last.
        return self._order_key.get(node_id, len(self._order_key))

    def attributes(self, node_id: str) -> NodeAttributes:
        self.mirror.get(node_id)
        return NodeAttributes(
            is_root=self.mirror.is_root(node_id),
            is_done=is_done(self.mirror, node_id, self.done_status_id),
            blocked=self.blocked(node_id),
            filtered_out=self.filtered_out(node_id),
            order_key=self.order_key(node_id),
        )

    # Layout sort hooks

    def node_sort_key(self, node_id: str) -> tuple[int, int, str]:
        node = self.mirror.get(node_id)
        return (self.order_key(node_id), node.created_at, node.id)

    def edge_sort_key(self, edge: Edge) -> tuple[int, int, str]:
        return (self.order_key(edge.parent_id), self.order_key(edge.child_id), edge.id)

    def compare_edges(self, a: Edge, b: Edge) -> int:
        ka, kb = self.edge_sort_key(a), self.edge_sort_key(b)
        return (ka > kb) - (ka < kb)

    def sorted_edges(self) -> list[Edge]:
        return sorted(self.mirror.edges(), key=self.edge_sort_key)
