from boardtask_graph.core.errors import GraphLoadError
from boardtask_graph.core.io.load_graph import dump_graph_yaml, load_graph
from boardtask_graph.core.validate.validate_graph import validate_graph


def test_load_yaml_success():
    data = load_graph("examples/basic-graph.yaml")
    assert isinstance(data["nodes"], list)
    assert isinstance(data["edges"], list)
    assert data["__file__"] == "examples/basic-graph.yaml"
    assert "task_statuses" in data
    assert "slots" not in data


def test_load_json_success():
    data = load_graph("examples/basic-graph.json")
    assert [n["id"] for n in data["nodes"]] == ["a", "b", "c"]


def test_load_missing_file():
    try:
        load_graph("examples/does-not-exist.yaml")
        assert False, "expected GraphLoadError"
    except GraphLoadError as e:
        assert e.code == "E_FILE_NOT_FOUND"


def test_load_unsupported_format(tmp_path):
    p = tmp_path / "graph.txt"
    p.write_text("hello", encoding="utf-8")
    try:
        load_graph(str(p))
        assert False, "expected GraphLoadError"
    except GraphLoadError as e:
        assert e.code == "E_UNSUPPORTED_FORMAT"


def test_load_bad_json(tmp_path):
    p = tmp_path / "graph.json"
    p.write_text("{nodes: [", encoding="utf-8")
    try:
        load_graph(str(p))
        assert False, "expected GraphLoadError"
    except GraphLoadError as e:
        assert e.code == "E_JSON_PARSE"


def test_load_top_level_must_be_mapping(tmp_path):
    p = tmp_path / "graph.yaml"
    p.write_text("- a\n- b\n", encoding="utf-8")
    try:
        load_graph(str(p))
        assert False, "expected GraphLoadError"
    except GraphLoadError as e:
        assert e.code == "E_INVALID_TOP_LEVEL"
        assert str(e).startswith(str(p))


def test_dump_then_load_keeps_groups_and_edges(tmp_path):
    snapshot, errors = validate_graph(load_graph("examples/basic-graph.yaml"))
    assert errors == []
    out = tmp_path / "nested" / "copy.yaml"
    dump_graph_yaml(snapshot, str(out))

    again, errors = validate_graph(load_graph(str(out)))
    assert errors == []
    assert [n.id for n in again.nodes] == [n.id for n in snapshot.nodes]
    assert [e.id for e in again.edges] == ["plan->build", "build->ship", "docs->review"]
    release = next(n for n in again.nodes if n.id == "release")
    assert release.is_group
