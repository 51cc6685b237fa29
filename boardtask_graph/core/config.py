from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml

from boardtask_graph.core.defaults import DONE_STATUS_ID, FILTER_STATUS_IDS


DEFAULT_BASE_URL = "http://localhost:3000"
DEFAULT_TIMEOUT = 10.0

ENV_PREFIX = "BOARDTASK_"


class ConfigError(ValueError):
    pass


@dataclass(frozen=True)
class Settings:
    base_url: str = DEFAULT_BASE_URL
    project_id: Optional[str] = None
    timeout: float = DEFAULT_TIMEOUT
    token: Optional[str] = None
    done_status_id: str = DONE_STATUS_ID
    filter_status_ids: dict[str, str] = field(default_factory=lambda: dict(FILTER_STATUS_IDS))


_STR_KEYS = ("base_url", "project_id", "token", "done_status_id")


def load_config_file(path: str | Path) -> dict[str, Any]:
    """Load settings overrides from a YAML file.

    Format:
      base_url: http://localhost:3000
      project_id: 01J...
      timeout: 10
      done_status_id: 01JSTATUS...
      filter_status_ids: {todo: ..., in-progress: ..., done: ...}
    """
    p = Path(path)
    try:
        raw = yaml.safe_load(p.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid YAML in {p}: {e}") from e
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigError("config file must be a mapping")

    out: dict[str, Any] = {}
    for k, v in raw.items():
        if k in _STR_KEYS:
            if v is not None and not isinstance(v, str):
                raise ConfigError(f"'{k}' must be a string")
            out[k] = v
        elif k == "timeout":
            out[k] = _parse_timeout(v)
        elif k == "filter_status_ids":
            if not isinstance(v, dict) or not all(
                isinstance(a, str) and isinstance(b, str) and b.strip() for a, b in v.items()
            ):
                raise ConfigError("'filter_status_ids' must map filter names to status ids")
            out[k] = dict(FILTER_STATUS_IDS) | dict(v)
        else:
            raise ConfigError(f"unknown config key: {k}")
    return out


def settings_from_env(env: Mapping[str, str]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key in _STR_KEYS:
        v = (env.get(ENV_PREFIX + key.upper(), "") or "").strip()
        if v:
            out[key] = v
    timeout = (env.get(ENV_PREFIX + "TIMEOUT", "") or "").strip()
    if timeout:
        out["timeout"] = _parse_timeout(timeout)
    return out


def load_settings(
    config_file: str | None = None,
    *,
    env: Mapping[str, str] | None = None,
    **overrides: Any,
) -> Settings:
    """Resolve settings: defaults, then config file, then environment, then overrides.

    The config file defaults to $BOARDTASK_CONFIG. Overrides set to None are ignored.
    """
    env = os.environ if env is None else env
    settings = Settings()

    config_file = config_file or (env.get(ENV_PREFIX + "CONFIG") or None)
    if config_file:
        settings = replace(settings, **load_config_file(config_file))

    settings = replace(settings, **settings_from_env(env))

    explicit = {k: v for k, v in overrides.items() if v is not None}
    if "timeout" in explicit:
        explicit["timeout"] = _parse_timeout(explicit["timeout"])
    return replace(settings, **explicit)


def _parse_timeout(v: Any) -> float:
    if isinstance(v, bool):
        raise ConfigError("'timeout' must be a positive number")
    try:
        timeout = float(v)
    except (TypeError, ValueError) as e:
        raise ConfigError("'timeout' must be a positive number") from e
    if timeout <= 0:
        raise ConfigError("'timeout' must be a positive number")
    return timeout
