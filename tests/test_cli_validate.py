from typer.testing import CliRunner

from boardtask_graph.cli import app


runner = CliRunner()


def test_cli_validate_success():
    r = runner.invoke(app, ["validate", "examples/basic-graph.yaml"])
    assert r.exit_code == 0
    assert "OK: 6 nodes, 3 edges, 1 groups" in r.stdout
    assert "Roots:" in r.stdout


def test_cli_validate_json_file():
    r = runner.invoke(app, ["validate", "examples/basic-graph.json"])
    assert r.exit_code == 0
    assert "Roots: a" in r.stdout


def test_cli_validate_failure():
    r = runner.invoke(app, ["validate", "examples/invalid-unknown-node.yaml"])
    assert r.exit_code == 2
    assert "E_UNKNOWN_NODE" in (r.stdout + r.stderr)


def test_cli_validate_missing_file():
    r = runner.invoke(app, ["validate", "examples/nope.yaml"])
    assert r.exit_code == 1
    assert "E_FILE_NOT_FOUND" in (r.stdout + r.stderr)
