from boardtask_graph.core.defaults import DONE_STATUS_ID, IN_PROGRESS_STATUS_ID, TODO_STATUS_ID
from boardtask_graph.core.derive.progress import count_blocked, format_estimated_minutes, progress
from boardtask_graph.core.graph.mirror import GraphMirror
from boardtask_graph.core.io.load_graph import load_graph
from boardtask_graph.core.validate.validate_graph import validate_graph


def _basic():
    snapshot, errors = validate_graph(load_graph("examples/basic-graph.yaml"))
    assert errors == []
    m = GraphMirror()
    m.load(snapshot.nodes, snapshot.edges)
    return m


def test_count_blocked_by_status():
    m = _basic()
    counts = count_blocked(m)
    assert counts.total == 1
    assert counts.todo == 1
    assert counts.in_progress == 0

    m.update_node("ship", status_id=IN_PROGRESS_STATUS_ID)
    counts = count_blocked(m)
    assert (counts.total, counts.todo, counts.in_progress) == (1, 0, 1)

    m.update_node("build", status_id=DONE_STATUS_ID)
    assert count_blocked(m).total == 0


def test_progress_percent():
    m = _basic()
    p = progress(m)
    assert (p.done, p.total) == (1, 6)
    assert p.percent == 16

    for n in m.nodes():
        m.update_node(n.id, status_id=DONE_STATUS_ID)
    assert progress(m).percent == 100


def test_progress_empty_graph():
    p = progress(GraphMirror())
    assert p.total == 0
    assert p.percent == 0


def test_blocked_counts_respect_custom_ids():
    m = GraphMirror()
    m.load(
        [
            {"id": "a", "title": "a"},
            {"id": "b", "title": "b", "status_id": "wip"},
            {"id": "c", "title": "c", "status_id": TODO_STATUS_ID},
        ],
        [{"parent_id": "a", "child_id": "b"}, {"parent_id": "b", "child_id": "c"}],
    )
    counts = count_blocked(m, in_progress_status_id="wip")
    assert (counts.total, counts.todo, counts.in_progress) == (1, 1, 0)


def test_format_estimated_minutes():
    assert format_estimated_minutes(None) == "—"
    assert format_estimated_minutes(0) == "—"
    assert format_estimated_minutes(45) == "45 min"
    assert format_estimated_minutes(120) == "2 h"
    assert format_estimated_minutes(90) == "1 h 30 min"
