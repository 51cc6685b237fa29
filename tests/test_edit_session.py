import asyncio

from boardtask_graph.core.errors import SessionBusyError, SessionStateError
from boardtask_graph.core.session.edit_session import (
    EditSession,
    coerce_estimate,
    has_changes,
)


class FakeSave:
    def __init__(self, fail=False):
        self.calls = []
        self.fail = fail

    async def __call__(self, node_id, draft):
        self.calls.append((node_id, draft))
        if self.fail:
            raise RuntimeError("server down")


def _values(**overrides):
    values = {
        "title": "Task",
        "description": None,
        "node_type_id": "type",
        "status_id": "todo",
        "slot_id": None,
        "estimated_minutes": None,
    }
    values.update(overrides)
    return values


def test_close_without_changes_does_not_prompt():
    save = FakeSave()
    asked = []
    session = EditSession(save=save, confirm=lambda s: asked.append(s) or "save")
    session.open("n1", _values())
    session.set_field("description", "")

    decision = asyncio.run(session.close())
    assert decision == "discard"
    assert asked == []
    assert save.calls == []
    assert session.state == "closed"


def test_save_then_close_updates_once():
    save = FakeSave()
    session = EditSession(save=save, confirm=lambda s: "save")
    session.open("n1", _values())
    session.set_field("title", "Renamed")

    async def run():
        await session.save()
        assert session.original == session.draft
        return await session.close()

    assert asyncio.run(run()) == "discard"
    assert len(save.calls) == 1
    assert save.calls[0][0] == "n1"
    assert save.calls[0][1]["title"] == "Renamed"


def test_close_with_changes_uses_confirmation():
    save = FakeSave()
    session = EditSession(save=save, confirm=lambda s: "save")
    session.open("n1", _values())
    session.set_field("status_id", "done")
    assert asyncio.run(session.close()) == "save"
    assert save.calls[0][1]["status_id"] == "done"

    session = EditSession(save=save, confirm=lambda s: "discard")
    session.open("n2", _values())
    session.set_field("status_id", "done")
    assert asyncio.run(session.close()) == "discard"
    assert len(save.calls) == 1


def test_async_confirmation_is_awaited():
    save = FakeSave()

    async def confirm(s):
        await asyncio.sleep(0)
        return "save"

    session = EditSession(save=save, confirm=confirm)
    session.open("n1", _values())
    session.set_field("estimated_minutes", "90")
    assert asyncio.run(session.close()) == "save"
    assert save.calls[0][1]["estimated_minutes"] == 90


def test_select_switches_after_settling():
    save = FakeSave()
    session = EditSession(save=save, confirm=lambda s: "save")

    async def run():
        await session.select("n1", _values())
        session.set_field("title", "Changed")
        await session.select("n1", _values(title="ignored"))
        assert session.draft["title"] == "Changed"
        await session.select("n2", _values(title="Second"))

    asyncio.run(run())
    assert [c[0] for c in save.calls] == ["n1"]
    assert session.node_id == "n2"
    assert session.draft["title"] == "Second"


def test_failed_save_keeps_draft_open():
    save = FakeSave(fail=True)
    session = EditSession(save=save, confirm=lambda s: "save")
    session.open("n1", _values())
    session.set_field("title", "Changed")
    try:
        asyncio.run(session.close())
        assert False, "expected RuntimeError"
    except RuntimeError:
        pass
    assert session.is_open
    assert session.busy is False
    assert session.draft["title"] == "Changed"


def test_save_rejected_while_busy():
    session = EditSession(save=FakeSave())
    session.open("n1", _values())
    session.busy = True
    try:
        asyncio.run(session.save())
        assert False, "expected SessionBusyError"
    except SessionBusyError as e:
        assert e.code == "E_SESSION_BUSY"


def test_state_errors():
    session = EditSession(save=FakeSave())
    try:
        session.set_field("title", "x")
        assert False, "expected SessionStateError"
    except SessionStateError as e:
        assert e.code == "E_SESSION_CLOSED"

    session.open("n1", _values())
    try:
        session.open("n2", _values())
        assert False, "expected SessionStateError"
    except SessionStateError as e:
        assert e.code == "E_SESSION_OPEN"

    session.set_field("title", "changed")
    try:
        asyncio.run(session.close())
        assert False, "expected SessionStateError"
    except SessionStateError as e:
        assert e.code == "E_SESSION_UNCONFIRMED"


def test_bad_confirmation_value():
    session = EditSession(save=FakeSave(), confirm=lambda s: "maybe")
    session.open("n1", _values())
    session.set_field("title", "changed")
    try:
        asyncio.run(session.close())
        assert False, "expected SessionStateError"
    except SessionStateError as e:
        assert e.code == "E_SESSION_DECISION"


def test_unknown_field():
    session = EditSession(save=FakeSave())
    session.open("n1", _values())
    try:
        session.set_field("parent_id", "g")
        assert False, "expected SessionStateError"
    except SessionStateError as e:
        assert e.code == "E_UNKNOWN_FIELD"
        assert e.path == "session.parent_id"
    assert "parent_id" not in session.draft


def test_change_detection_treats_empty_as_none():
    assert not has_changes({"description": ""}, {"description": None})
    assert has_changes({"estimated_minutes": 5}, {"estimated_minutes": None})


def test_coerce_estimate():
    assert coerce_estimate("45") == 45
    assert coerce_estimate("12.7") == 12
    assert coerce_estimate("") is None
    assert coerce_estimate("soon") is None
    assert coerce_estimate(-3) is None
    assert coerce_estimate(True) is None
    assert coerce_estimate("inf") is None
