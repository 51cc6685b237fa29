from __future__ import annotations

import inspect
import logging
import math
from typing import Any, Awaitable, Callable, Literal, Mapping, Optional, Union

from boardtask_graph.core.errors import SessionBusyError, SessionStateError


log = logging.getLogger(__name__)

Decision = Literal["save", "discard"]
ConfirmFn = Callable[["EditSession"], Union[Decision, Awaitable[Decision]]]
SaveFn = Callable[[str, dict[str, Any]], Awaitable[None]]

EDITABLE_FIELDS: tuple[str, ...] = (
    "title",
    "description",
    "node_type_id",
    "status_id",
    "slot_id",
    "estimated_minutes",
)


def normalize_value(value: Any) -> str:
    """Canonical form used for change detection: None and "" are the same empty value."""
    if value is None or value == "":
        return ""
    return str(value)


def has_changes(draft: Mapping[str, Any], original: Mapping[str, Any]) -> bool:
    return any(
        normalize_value(draft.get(f)) != normalize_value(original.get(f)) for f in EDITABLE_FIELDS
    )


def coerce_estimate(value: Any) -> Optional[int]:
    """Estimated minutes from user input; anything unusable becomes None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value >= 0 else None
    text = str(value).strip()
    if not text:
        return None
    try:
        number = float(text)
    except ValueError:
        return None
    if not math.isfinite(number) or number < 0:
        return None
    return int(number)


class EditSession:
    """Single in-progress edit of one node or group.

    Closed until open()/select() captures a snapshot of the editable fields as
    `original`; set_field() only touches `draft`. Closing with pending changes
    asks the caller-supplied confirm step for "save" or "discard" and waits for
    the answer before finishing the transition.
    """

    def __init__(self, *, save: SaveFn, confirm: Optional[ConfirmFn] = None) -> None:
        self._save = save
        self._confirm = confirm
        self.node_id: Optional[str] = None
        self.draft: dict[str, Any] = {}
        self.original: dict[str, Any] = {}
        self.busy = False

    @property
    def is_open(self) -> bool:
        return self.node_id is not None

    @property
    def state(self) -> str:
        return "editing" if self.is_open else "closed"

    def has_changes(self) -> bool:
        return self.is_open and has_changes(self.draft, self.original)

    def open(self, node_id: str, values: Mapping[str, Any]) -> None:
        if self.is_open:
            raise SessionStateError(
                code="E_SESSION_OPEN",
                message=f"already editing {self.node_id}",
                path="session",
            )
        snapshot = {f: values.get(f) for f in EDITABLE_FIELDS}
        snapshot["estimated_minutes"] = coerce_estimate(snapshot["estimated_minutes"])
        self.node_id = node_id
        self.original = dict(snapshot)
        self.draft = dict(snapshot)

    async def select(self, node_id: str, values: Mapping[str, Any]) -> None:
        """Switch the session to node_id, settling pending changes first."""
        if self.node_id == node_id:
            return
        if self.is_open:
            await self.close()
        self.open(node_id, values)

    def set_field(self, name: str, value: Any) -> None:
        self._require_open()
        if name not in EDITABLE_FIELDS:
            raise SessionStateError(
                code="E_UNKNOWN_FIELD",
                message=f"field is not editable: {name}",
                path=f"session.{name}",
            )
        if name == "estimated_minutes":
            value = coerce_estimate(value)
        self.draft[name] = value

    async def save(self) -> None:
        node_id = self._require_open()
        if self.busy:
            raise SessionBusyError(
                code="E_SESSION_BUSY", message="a save is already in flight", path="session"
            )
        self.busy = True
        try:
            await self._save(node_id, dict(self.draft))
        finally:
            self.busy = False
        self.original = dict(self.draft)

    def discard(self) -> None:
        if self.busy:
            raise SessionBusyError(
                code="E_SESSION_BUSY", message="cannot discard while saving", path="session"
            )
        self.node_id = None
        self.draft = {}
        self.original = {}

    async def close(self) -> Optional[Decision]:
        """Close the session. Returns the decision taken, or None if already closed.

        A failed save propagates and leaves the session open with its draft.
        """
        if not self.is_open:
            return None
        if not self.has_changes():
            self.discard()
            return "discard"

        decision = await self._decide()
        if decision == "save":
            await self.save()
        log.debug("edit session for %s closed (%s)", self.node_id, decision)
        self.discard()
        return decision

    async def _decide(self) -> Decision:
        if self._confirm is None:
            raise SessionStateError(
                code="E_SESSION_UNCONFIRMED",
                message="unsaved changes and no confirmation step",
                path="session",
            )
        result = self._confirm(self)
        if inspect.isawaitable(result):
            result = await result
        if result not in ("save", "discard"):
            raise SessionStateError(
                code="E_SESSION_DECISION",
                message=f"confirmation must return 'save' or 'discard', got {result!r}",
                path="session",
            )
        return result

    def _require_open(self) -> str:
        if self.node_id is None:
            raise SessionStateError(
                code="E_SESSION_CLOSED", message="no node is being edited", path="session"
            )
        return self.node_id
