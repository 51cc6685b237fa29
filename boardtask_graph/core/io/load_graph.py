from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import yaml

from boardtask_graph.core.errors import GraphLoadError
from boardtask_graph.core.model import GraphSnapshot


def load_graph(path: str) -> dict[str, Any]:
    """Load a YAML/JSON graph snapshot file.

    Returns a dict with keys: nodes, edges and any reference lists present.
    Does not coerce types; validator owns shape checking.
    """

    p = Path(path)
    if not p.exists():
        raise GraphLoadError(
            code="E_FILE_NOT_FOUND",
            message="file does not exist",
            file=str(p),
        )

    suffix = p.suffix.lower()
    try:
        raw_text = p.read_text(encoding="utf-8")
    except OSError as e:  # pragma: no cover
        raise GraphLoadError(code="E_FILE_READ", message=str(e), file=str(p)) from e

    try:
        if suffix in {".yaml", ".yml"}:
            data = yaml.safe_load(raw_text)
        elif suffix == ".json":
            data = json.loads(raw_text)
        else:
            raise GraphLoadError(
                code="E_UNSUPPORTED_FORMAT",
                message="supported formats are .yaml/.yml and .json",
                file=str(p),
            )
    except GraphLoadError:
        raise
    except (yaml.YAMLError, ValueError) as e:
        code = "E_YAML_PARSE" if suffix in {".yaml", ".yml"} else "E_JSON_PARSE"
        raise GraphLoadError(code=code, message=str(e), file=str(p)) from e

    if not isinstance(data, dict):
        raise GraphLoadError(
            code="E_INVALID_TOP_LEVEL",
            message="top-level document must be a mapping/object",
            file=str(p),
        )

    # Normalize: keep only expected keys; validator checks required ones.
    normalized: dict[str, Any] = {
        "nodes": data.get("nodes"),
        "edges": data.get("edges", []),
    }
    for key in ("node_types", "task_statuses", "slots"):
        if key in data:
            normalized[key] = data.get(key)

    normalized["__file__"] = str(p)
    return normalized


def dump_graph_yaml(snapshot: GraphSnapshot, path: str) -> None:
    p = Path(path)
    if str(p.parent) not in (".", ""):
        p.parent.mkdir(parents=True, exist_ok=True)
    with open(p, "w", encoding="utf-8") as f:
        yaml.safe_dump(
            snapshot.to_dict(), f, sort_keys=False, default_flow_style=False, allow_unicode=True
        )
