from __future__ import annotations

import itertools
import logging
import time
from typing import Any, Callable, Optional

from boardtask_graph.core.api.client import BoardtaskClient
from boardtask_graph.core.config import ConfigError, Settings
from boardtask_graph.core.defaults import (
    DEFAULT_GROUP_TITLE,
    DEFAULT_NODE_TITLE,
    DEFAULT_NODE_TYPE_ID,
    SYSTEM_NODE_TYPES,
    SYSTEM_TASK_STATUSES,
)
from boardtask_graph.core.derive.attributes import DerivedAttributeEngine, NodeAttributes
from boardtask_graph.core.errors import ApiError, GraphValidationError
from boardtask_graph.core.graph.mirror import GraphMirror
from boardtask_graph.core.model import Edge, Node, NodeType, Slot, TaskStatus
from boardtask_graph.core.session.edit_session import (
    EDITABLE_FIELDS,
    ConfirmFn,
    Decision,
    EditSession,
)


log = logging.getLogger(__name__)

OnChange = Callable[["GraphEditor"], None]

MAX_SELECTED = 2


class GraphEditor:
    """Client-side graph editor state for one project.

    Remote first: every persisting action awaits the API, then mutates the
    mirror, then recomputes derived attributes, then calls on_change. A failed
    call raises ApiError and leaves the mirror as it was.
    """

    def __init__(
        self,
        client: BoardtaskClient,
        *,
        engine: Optional[DerivedAttributeEngine] = None,
        on_change: Optional[OnChange] = None,
        confirm: Optional[ConfirmFn] = None,
        node_type_id: str = DEFAULT_NODE_TYPE_ID,
    ) -> None:
        self.client = client
        self.engine = engine or DerivedAttributeEngine(GraphMirror())
        self.mirror = self.engine.mirror
        self.on_change = on_change
        self.session = EditSession(save=self._persist_session, confirm=confirm)
        self.node_type_id = node_type_id
        self.selected: list[str] = []
        self.node_types: list[NodeType] = list(SYSTEM_NODE_TYPES)
        self.task_statuses: list[TaskStatus] = list(SYSTEM_TASK_STATUSES)
        self.slots: list[Slot] = []
        self._staged: set[str] = set()
        self._staged_ids = itertools.count(1)

    # Read side

    def attributes(self, node_id: str) -> NodeAttributes:
        return self.engine.attributes(node_id)

    def recompute_blocked(self) -> dict[str, bool]:
        return self.engine.recompute_blocked()

    def recompute_filtered(self) -> dict[str, bool]:
        return self.engine.recompute_filtered()

    def is_staged(self, node_id: str) -> bool:
        return node_id in self._staged

    # Loading

    async def refresh(self) -> None:
        """Fetch reference data and the full graph, replacing the mirror."""
        try:
            self.node_types = await self.client.fetch_node_types()
            self.task_statuses = await self.client.fetch_task_statuses()
            self.slots = await self.client.fetch_slots()
        except ApiError as e:
            # Reference data only decorates the editor; the graph itself is what matters.
            log.warning("could not load reference data: %s", e)

        snapshot = await self.client.fetch_graph()
        self.mirror.load(snapshot.nodes, snapshot.edges)
        self._staged.clear()
        self.selected = [nid for nid in self.selected if nid in self.mirror]
        if self.session.node_id is not None and self.session.node_id not in self.mirror:
            log.info("discarding edit of %s: node is gone", self.session.node_id)
            self.session.discard()
            if self.selected:
                self.session.open(self.selected[-1], self._values(self.selected[-1]))
        self._changed()

    # Selection

    async def select(self, node_id: str) -> None:
        """Select a node; at most two stay selected, the oldest is dropped.

        The edit session follows the last selected node, settling pending
        changes on the previous one first.
        """
        self.mirror.get(node_id)
        previous = list(self.selected)
        if node_id not in self.selected:
            self.selected.append(node_id)
        while len(self.selected) > MAX_SELECTED:
            self.selected.pop(0)
        try:
            await self.session.select(node_id, self._values(node_id))
        except Exception:
            self.selected = previous
            raise

    async def unselect(self, node_id: str) -> None:
        if node_id in self.selected:
            self.selected.remove(node_id)
        await self._follow_selection()

    async def clear_selection(self) -> Optional[Decision]:
        self.selected = []
        return await self.session.close()

    # Node actions

    async def add_node(self, *, title: Optional[str] = None) -> Node:
        node = await self.client.create_node(
            title=title or DEFAULT_NODE_TITLE, node_type_id=self.node_type_id, description=""
        )
        self.mirror.add_node(node)
        self._changed()
        return node

    async def add_child_node(
        self, parent_id: Optional[str] = None, *, title: Optional[str] = None
    ) -> Optional[Node]:
        parent_id = parent_id or self._last_selected()
        if parent_id is None:
            return None
        self.mirror.get(parent_id)
        node = await self.client.create_node(
            title=title or DEFAULT_NODE_TITLE, node_type_id=self.node_type_id, description=""
        )
        edge = await self.client.create_edge(parent_id, node.id)
        self.mirror.add_node(node)
        self.mirror.add_edge(parent_id, node.id, edge.created_at)
        self._changed()
        return node

    async def add_parent_node(
        self, child_id: Optional[str] = None, *, title: Optional[str] = None
    ) -> Optional[Node]:
        child_id = child_id or self._last_selected()
        if child_id is None:
            return None
        self.mirror.get(child_id)
        node = await self.client.create_node(
            title=title or DEFAULT_NODE_TITLE, node_type_id=self.node_type_id, description=""
        )
        edge = await self.client.create_edge(node.id, child_id)
        self.mirror.add_node(node)
        self.mirror.add_edge(node.id, child_id, edge.created_at)
        self._changed()
        return node

    async def remove_node(self, node_id: str) -> None:
        self.mirror.get(node_id)
        if node_id not in self._staged:
            await self.client.delete_node(node_id)
        self._staged.discard(node_id)
        self.mirror.remove_node(node_id)
        if node_id in self.selected:
            self.selected.remove(node_id)
        if self.session.node_id == node_id:
            self.session.discard()
            await self._follow_selection()
        self._changed()

    async def remove_selected(self) -> list[str]:
        """Delete every selected node, one at a time; stops at the first failure."""
        removed: list[str] = []
        for node_id in list(self.selected):
            await self.remove_node(node_id)
            removed.append(node_id)
        return removed

    async def insert_between(
        self, parent_id: str, child_id: str, *, title: Optional[str] = None
    ) -> Node:
        if not self.mirror.has_edge(parent_id, child_id):
            raise GraphValidationError(
                code="E_UNKNOWN_EDGE",
                message=f"no edge {parent_id}->{child_id}",
                path="edge",
            )
        node = await self.client.insert_between(
            parent_id,
            child_id,
            title=title or DEFAULT_NODE_TITLE,
            node_type_id=self.node_type_id,
        )
        self.mirror.add_node(node)
        self.mirror.remove_edge(parent_id, child_id)
        self.mirror.add_edge(parent_id, node.id)
        self.mirror.add_edge(node.id, child_id)
        self._changed()
        return node

    # Edge actions

    async def connect(
        self, parent_id: Optional[str] = None, child_id: Optional[str] = None
    ) -> Optional[Edge]:
        """Create parent -> child; with no arguments uses the two selected nodes in order."""
        if parent_id is None and child_id is None:
            if len(self.selected) != MAX_SELECTED:
                return None
            parent_id, child_id = self.selected
        if parent_id is None or child_id is None:
            raise GraphValidationError(
                code="E_REQUIRED_FIELD", message="both parent and child are required", path="edge"
            )
        self.mirror.get(parent_id)
        self.mirror.get(child_id)
        edge = await self.client.create_edge(parent_id, child_id)
        added = self.mirror.add_edge(parent_id, child_id, edge.created_at)
        self._changed()
        return added

    async def disconnect(
        self, parent_id: Optional[str] = None, child_id: Optional[str] = None
    ) -> bool:
        """Delete parent -> child. Returns whether the mirror had that edge."""
        if parent_id is None and child_id is None:
            if len(self.selected) != MAX_SELECTED:
                return False
            parent_id, child_id = self.selected
        if parent_id is None or child_id is None:
            raise GraphValidationError(
                code="E_REQUIRED_FIELD", message="both parent and child are required", path="edge"
            )
        await self.client.delete_edge(parent_id, child_id)
        removed = self.mirror.remove_edge(parent_id, child_id)
        if not removed:
            log.info("edge %s->%s was not in the mirror", parent_id, child_id)
        self._changed()
        return removed

    # Groups

    def stage_group(self, title: Optional[str] = None) -> Node:
        """Create a client-only group; it is persisted when a member is first moved in."""
        node = Node(
            id=f"staged-group-{next(self._staged_ids)}",
            title=title or DEFAULT_GROUP_TITLE,
            node_type_id=self.node_type_id,
            description="",
            created_at=int(time.time()),
            is_group=True,
        )
        self.mirror.add_node(node)
        self._staged.add(node.id)
        self._changed()
        return node

    async def move_to_group(self, node_id: str, group_id: Optional[str]) -> Node:
        self.mirror.check_move(node_id, group_id)
        if node_id in self._staged:
            raise GraphValidationError(
                code="E_STAGED_GROUP",
                message="a staged group cannot be nested before it is saved",
                path="node_id",
            )
        if group_id is not None and group_id in self._staged:
            group_id = await self._commit_staged_group(group_id)
        await self.client.update_node(node_id, {"parent_id": group_id})
        node = self.mirror.move_to_group(node_id, group_id)
        self._changed()
        return node

    async def _commit_staged_group(self, staged_id: str) -> str:
        staged = self.mirror.get(staged_id)
        created = await self.client.create_node(
            title=staged.title,
            node_type_id=staged.node_type_id or self.node_type_id,
            description=staged.description or "",
            group_id=staged.parent_id,
        )
        self.mirror.rename_node(staged_id, created.id)
        self.mirror.update_node(created.id, created_at=created.created_at, is_group=True)
        self._staged.discard(staged_id)
        self.selected = [created.id if nid == staged_id else nid for nid in self.selected]
        if self.session.node_id == staged_id:
            self.session.node_id = created.id
        log.info("staged group %s saved as %s", staged_id, created.id)
        return created.id

    # Filter

    def set_filter(self, value: Optional[str]) -> None:
        self.engine.set_filter(value)
        self.engine.recompute_filtered()
        self._notify()

    # Slots

    async def create_slot(self, name: str, sort_order: Optional[int] = None) -> Slot:
        slot = await self.client.create_slot(name, sort_order)
        self.slots.append(slot)
        self._notify()
        return slot

    async def update_slot(
        self, slot_id: str, *, name: Optional[str] = None, sort_order: Optional[int] = None
    ) -> Slot:
        slot = await self.client.update_slot(slot_id, name=name, sort_order=sort_order)
        self.slots = [slot if s.id == slot_id else s for s in self.slots]
        self._notify()
        return slot

    async def delete_slot(self, slot_id: str) -> None:
        await self.client.delete_slot(slot_id)
        self.slots = [s for s in self.slots if s.id != slot_id]
        for node in self.mirror.nodes():
            if node.slot_id == slot_id:
                self.mirror.update_node(node.id, slot_id=None)
        self._notify()

    # Internals

    async def _persist_session(self, node_id: str, draft: dict[str, Any]) -> None:
        fields = _payload(draft)
        if node_id in self._staged:
            self.mirror.update_node(node_id, **fields)
        else:
            updated = await self.client.update_node(node_id, fields)
            self.mirror.update_node(node_id, updated_at=updated.updated_at, **fields)
        self._changed()

    async def _follow_selection(self) -> None:
        if not self.selected:
            await self.session.close()
            return
        target = self.selected[-1]
        await self.session.select(target, self._values(target))

    def _values(self, node_id: str) -> dict[str, Any]:
        node = self.mirror.get(node_id)
        return {f: getattr(node, f) for f in EDITABLE_FIELDS}

    def _last_selected(self) -> Optional[str]:
        return self.selected[-1] if self.selected else None

    def _changed(self) -> None:
        self.engine.recompute()
        self._notify()

    def _notify(self) -> None:
        if self.on_change is not None:
            self.on_change(self)


def _payload(draft: dict[str, Any]) -> dict[str, Any]:
    out = dict(draft)
    out["title"] = out.get("title") or ""
    out["description"] = out.get("description") or ""
    for key in ("node_type_id", "status_id", "slot_id"):
        if out.get(key) == "":
            out[key] = None
    # The API requires a node type; None would clear it.
    if out.get("node_type_id") is None:
        out.pop("node_type_id", None)
    if out.get("status_id") is None:
        out.pop("status_id", None)
    return out


def create_editor(
    settings: Settings,
    *,
    on_change: Optional[OnChange] = None,
    confirm: Optional[ConfirmFn] = None,
    client: Optional[BoardtaskClient] = None,
) -> GraphEditor:
    """Build an independent editor for settings.project_id."""
    if not settings.project_id:
        raise ConfigError("project_id is not set (use --project or BOARDTASK_PROJECT_ID)")
    client = client or BoardtaskClient(
        settings.base_url,
        settings.project_id,
        token=settings.token,
        timeout=settings.timeout,
    )
    engine = DerivedAttributeEngine(
        GraphMirror(),
        done_status_id=settings.done_status_id,
        filter_status_ids=settings.filter_status_ids,
    )
    return GraphEditor(client, engine=engine, on_change=on_change, confirm=confirm)
