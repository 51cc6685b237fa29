import json
from typer.testing import CliRunner

from boardtask_graph.cli import app

runner = CliRunner()


def test_cli_show_text_marks_blocked():
    r = runner.invoke(app, ["show", "examples/basic-graph.yaml"])
    assert r.exit_code == 0
    lines = r.stdout.splitlines()
    assert lines[0].startswith("[0] release Release 1.0")
    ship = next(line for line in lines if " ship " in line)
    assert "blocked" in ship
    review = next(line for line in lines if " review " in line)
    assert "blocked" not in review


def test_cli_show_json_with_filter():
    r = runner.invoke(app, ["show", "examples/basic-graph.yaml", "--filter", "done", "--format", "json"])
    assert r.exit_code == 0
    payload = json.loads(r.stdout)
    assert payload["command"] == "show"
    assert payload["filter"] == "done"
    by_id = {n["id"]: n for n in payload["nodes"]}
    assert by_id["plan"]["filtered_out"] is False
    assert by_id["docs"]["filtered_out"] is True
    assert by_id["release"]["filtered_out"] is False
    assert by_id["ship"]["blocked"] is True
    assert by_id["build"]["order_key"] == by_id["plan"]["order_key"] == 2
    assert by_id["review"]["order_key"] == 1
    assert by_id["build"]["estimate"] == "1 h 30 min"
    assert payload["edges"] == ["docs->review", "build->ship", "plan->build"]


def test_cli_show_table():
    r = runner.invoke(app, ["show", "examples/basic-graph.yaml", "--format", "table"])
    assert r.exit_code == 0
    assert "boardtask-graph show" in r.stdout
    assert "ship" in r.stdout


def test_cli_show_unknown_filter():
    r = runner.invoke(app, ["show", "examples/basic-graph.yaml", "--filter", "blocked"])
    assert r.exit_code == 2
    assert "E_UNKNOWN_FILTER" in (r.stdout + r.stderr)


def test_cli_progress_text():
    r = runner.invoke(app, ["progress", "examples/basic-graph.yaml"])
    assert r.exit_code == 0
    assert "Progress: 1/6 done (16%)" in r.stdout
    assert "Blocked: 1 (todo=1, in_progress=0)" in r.stdout
    assert "Remaining estimate: 3 h 15 min" in r.stdout


def test_cli_progress_json():
    r = runner.invoke(app, ["progress", "examples/basic-graph.yaml", "--format", "json"])
    assert r.exit_code == 0
    payload = json.loads(r.stdout)
    assert payload["blocked"] == {"total": 1, "todo": 1, "in_progress": 0}
    assert payload["remaining_minutes"] == 195
