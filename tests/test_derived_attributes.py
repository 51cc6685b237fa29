from boardtask_graph.core.defaults import DONE_STATUS_ID, IN_PROGRESS_STATUS_ID, TODO_STATUS_ID
from boardtask_graph.core.derive.attributes import DerivedAttributeEngine
from boardtask_graph.core.errors import GraphValidationError
from boardtask_graph.core.graph.mirror import GraphMirror
from boardtask_graph.core.model import Edge, Node


def _engine(nodes, edges, **kwargs):
    m = GraphMirror()
    m.load(nodes, edges)
    engine = DerivedAttributeEngine(m, **kwargs)
    engine.recompute()
    return engine


def _chain():
    return _engine(
        [
            Node(id="A", title="A", status_id=TODO_STATUS_ID, created_at=1),
            Node(id="B", title="B", status_id=TODO_STATUS_ID, created_at=2),
        ],
        [Edge(parent_id="A", child_id="B")],
    )


def test_child_of_root_is_not_blocked():
    engine = _chain()
    assert engine.blocked("A") is False
    assert engine.blocked("B") is False


def test_grandchild_blocked_until_parent_done():
    engine = _chain()
    engine.mirror.add_node(Node(id="C", title="C", status_id=TODO_STATUS_ID, created_at=3))
    engine.mirror.add_edge("B", "C")
    engine.recompute_blocked()
    assert engine.blocked("C") is True

    engine.mirror.update_node("B", status_id=DONE_STATUS_ID)
    engine.recompute_blocked()
    assert engine.blocked("C") is False


def test_done_node_is_never_blocked():
    engine = _engine(
        [
            Node(id="A", title="A"),
            Node(id="B", title="B"),
            Node(id="C", title="C", status_id=DONE_STATUS_ID),
        ],
        [Edge(parent_id="A", child_id="B"), Edge(parent_id="B", child_id="C")],
    )
    assert engine.blocked("C") is False


def test_recompute_is_idempotent():
    engine = _chain()
    first = engine.recompute_blocked()
    assert engine.recompute_blocked() == first
    assert engine.recompute_order() == engine.recompute_order()


def test_order_keys_follow_root_creation():
    engine = _engine(
        [
            Node(id="late", title="late", created_at=50),
            Node(id="early", title="early", created_at=10),
            Node(id="kid", title="kid", created_at=5),
        ],
        [Edge(parent_id="late", child_id="kid")],
    )
    assert engine.order_key("early") == 0
    assert engine.order_key("late") == 1
    assert engine.order_key("kid") == 1

    engine.mirror.add_node(Node(id="newer", title="newer", created_at=99))
    engine.recompute_order()
    assert engine.order_key("early") == 0
    assert engine.order_key("late") == 1
    assert engine.order_key("newer") == 2


def test_order_key_ties_break_on_id():
    engine = _engine([Node(id="b", title="b"), Node(id="a", title="a")], [])
    assert engine.order_key("a") == 0
    assert engine.order_key("b") == 1


def test_cycle_does_not_hang():
    engine = _engine(
        [Node(id="root", title="r"), Node(id="x", title="x"), Node(id="y", title="y")],
        [Edge(parent_id="x", child_id="y"), Edge(parent_id="y", child_id="x")],
    )
    assert engine.order_key("root") == 0
    assert engine.order_key("x") == 1
    assert engine.order_key("y") == 1
    assert engine.blocked("x") is True


def test_filter_hides_other_statuses_but_not_groups():
    engine = _engine(
        [
            Node(id="g", title="g", is_group=True),
            Node(id="t", title="t", status_id=TODO_STATUS_ID, parent_id="g"),
            Node(id="d", title="d", status_id=DONE_STATUS_ID),
            Node(id="none", title="no status"),
        ],
        [],
    )
    assert not any(engine.recompute_filtered().values())

    engine.set_filter("done")
    engine.recompute_filtered()
    assert engine.filtered_out("d") is False
    assert engine.filtered_out("t") is True
    assert engine.filtered_out("none") is True
    assert engine.filtered_out("g") is False

    engine.set_filter("none")
    engine.recompute_filtered()
    assert engine.filtered_out("t") is False


def test_unknown_filter_rejected():
    engine = _chain()
    try:
        engine.set_filter("blocked")
        assert False, "expected GraphValidationError"
    except GraphValidationError as e:
        assert e.code == "E_UNKNOWN_FILTER"
    assert engine.progress_filter is None


def test_custom_status_ids():
    engine = _engine(
        [
            Node(id="A", title="A"),
            Node(id="B", title="B", status_id="shipped"),
            Node(id="C", title="C", status_id="doing"),
        ],
        [Edge(parent_id="A", child_id="B"), Edge(parent_id="B", child_id="C")],
        done_status_id="shipped",
        filter_status_ids={"todo": "open", "in-progress": "doing", "done": "shipped"},
        progress_filter="in-progress",
    )
    assert engine.blocked("C") is False
    assert engine.filtered_out("C") is False
    assert engine.filtered_out("B") is True


def test_attributes_and_sort_hooks():
    engine = _engine(
        [
            Node(id="r2", title="r2", created_at=2),
            Node(id="r1", title="r1", created_at=1),
            Node(id="c1", title="c1", status_id=IN_PROGRESS_STATUS_ID, created_at=3),
        ],
        [Edge(parent_id="r2", child_id="c1"), Edge(parent_id="r1", child_id="r2")],
    )
    attrs = engine.attributes("c1")
    assert attrs.is_root is False
    assert attrs.is_done is False
    assert attrs.blocked is True
    assert attrs.order_key == 0

    e1, e2 = engine.mirror.edges()
    assert engine.compare_edges(e2, e1) < 0
    assert engine.compare_edges(e1, e1) == 0
    assert [e.id for e in engine.sorted_edges()] == ["r1->r2", "r2->c1"]
    nodes = sorted(engine.mirror.nodes(), key=lambda n: engine.node_sort_key(n.id))
    assert [n.id for n in nodes] == ["r1", "r2", "c1"]


def test_attributes_unknown_node():
    engine = _chain()
    try:
        engine.attributes("nope")
        assert False, "expected GraphValidationError"
    except GraphValidationError as e:
        assert e.code == "E_UNKNOWN_NODE"


def test_adding_child_under_first_root_keeps_second_root_order():
    engine = _engine(
        [Node(id="R1", title="R1", created_at=1), Node(id="R2", title="R2", created_at=2)],
        [],
    )
    before = engine.order_key("R2")
    engine.mirror.add_node(Node(id="K", title="K", created_at=3))
    engine.mirror.add_edge("R1", "K")
    engine.recompute()
    assert engine.order_key("R2") == before == 1
    assert engine.order_key("R1") < engine.order_key("R2")
    assert engine.order_key("K") == engine.order_key("R1")
