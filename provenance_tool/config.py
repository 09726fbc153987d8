"""Per-workspace interchange configuration."""
from __future__ import annotations

import copy
import json
import os
from typing import Any, Dict

from .utils import CONFIG_FILE

CONFIG_VERSION = 1
EXPORT_KINDS = ("sessions", "nuggets", "decisions", "artifacts", "events")
DEFAULT_CONFIG: Dict[str, Any] = {
    "version": CONFIG_VERSION,
    "export": {
        "sessions": True,
        "nuggets": True,
        "decisions": True,
        "artifacts": True,
        "events": False,
    },
}


def config_path(workspace_path: str) -> str:
    return os.path.join(workspace_path, CONFIG_FILE)


def load_config(workspace_path: str) -> Dict[str, Any]:
    """Load the workspace config, filling in defaults for anything missing."""
    path = config_path(workspace_path)
    config = copy.deepcopy(DEFAULT_CONFIG)
    if not os.path.exists(path):
        return config
    with open(path, "r", encoding="utf-8") as f:
        try:
            raw = json.load(f)
        except json.JSONDecodeError as exc:
            raise ValueError(f"Invalid config file {path}: {exc}") from exc
    if not isinstance(raw, dict):
        raise ValueError(f"Invalid config file {path}: expected an object")
    if raw.get("version") != CONFIG_VERSION:
        raise ValueError(f"Unsupported config version {raw.get('version')!r} in {path}")

    export = raw.get("export", {})
    if not isinstance(export, dict):
        raise ValueError(f"Invalid config file {path}: 'export' must be an object")
    for kind in EXPORT_KINDS:
        if kind not in export:
            continue
        if not isinstance(export[kind], bool):
            raise ValueError(f"Invalid config file {path}: export.{kind} must be true or false")
        config["export"][kind] = export[kind]
    return config


def write_default_config(workspace_path: str) -> str:
    path = config_path(workspace_path)
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(DEFAULT_CONFIG, f, indent=2)
        f.write("\n")
    return path
