from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Optional


ProgressFilter = Literal["todo", "in-progress", "done"]


@dataclass(frozen=True)
class Node:
    id: str
    title: str
    node_type_id: Optional[str] = None
    status_id: Optional[str] = None
    description: Optional[str] = None
    slot_id: Optional[str] = None
    estimated_minutes: Optional[int] = None
    parent_id: Optional[str] = None  # containing group
    created_at: int = 0
    updated_at: Optional[int] = None
    is_group: bool = False

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "node_type_id": self.node_type_id,
            "status_id": self.status_id,
            "slot_id": self.slot_id,
            "estimated_minutes": self.estimated_minutes,
            "parent_id": self.parent_id,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
        if self.is_group:
            out["is_group"] = True
        return out


@dataclass(frozen=True)
class Edge:
    parent_id: str
    child_id: str
    created_at: Optional[int] = None

    @property
    def id(self) -> str:
        return f"{self.parent_id}->{self.child_id}"

    @property
    def key(self) -> tuple[str, str]:
        return (self.parent_id, self.child_id)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"parent_id": self.parent_id, "child_id": self.child_id}
        if self.created_at is not None:
            out["created_at"] = self.created_at
        return out


@dataclass(frozen=True)
class NodeType:
    id: str
    name: str
    color: str


@dataclass(frozen=True)
class TaskStatus:
    id: str
    name: str
    sort_order: int = 0


@dataclass(frozen=True)
class Slot:
    id: str
    name: str
    sort_order: int = 0


@dataclass(frozen=True)
class GraphSnapshot:
    nodes: list[Node]
    edges: list[Edge]
    node_types: list[NodeType] = field(default_factory=list)
    task_statuses: list[TaskStatus] = field(default_factory=list)
    slots: list[Slot] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "nodes": [n.to_dict() for n in self.nodes],
            "edges": [e.to_dict() for e in self.edges],
        }
        if self.node_types:
            out["node_types"] = [
                {"id": t.id, "name": t.name, "color": t.color} for t in self.node_types
            ]
        if self.task_statuses:
            out["task_statuses"] = [
                {"id": s.id, "name": s.name, "sort_order": s.sort_order}
                for s in self.task_statuses
            ]
        if self.slots:
            out["slots"] = [
                {"id": s.id, "name": s.name, "sort_order": s.sort_order} for s in self.slots
            ]
        return out
