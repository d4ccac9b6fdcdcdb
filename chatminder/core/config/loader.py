"""Config file discovery + YAML parsing."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml

from chatminder.core.config.schema import Config

ENV_VAR = "CHATMINDER_CONFIG"
SEARCH_PATHS = (
    Path("config.yaml"),
    Path("config.yml"),
    Path("~/.config/chatminder/config.yaml"),
)


def load_config(config_path: str | Path | None = None) -> Config:
    """Build the Config from a YAML file (if any) plus environment overrides.

    The file is ``config_path``, else ``$CHATMINDER_CONFIG``, else the first
    of ``SEARCH_PATHS`` that exists.  A named file that does not exist
    yields the defaults.
    """
    path = find_config_file(config_path)
    data = read_yaml(path) if path else {}
    return Config(**data)


def find_config_file(config_path: str | Path | None = None) -> Path | None:
    explicit = config_path or os.environ.get(ENV_VAR)
    if explicit:
        path = Path(explicit).expanduser()
        return path if path.is_file() else None
    for candidate in SEARCH_PATHS:
        path = candidate.expanduser()
        if path.is_file():
            return path
    return None


def read_yaml(path: Path) -> dict[str, Any]:
    with path.open(encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping, got {type(data).__name__}")
    return data
