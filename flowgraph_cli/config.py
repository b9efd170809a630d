"""Configuration paths and TOML-backed settings for FlowGraph."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import toml

logger = logging.getLogger(__name__)

BASE_DIR = Path(os.environ.get("FLOWGRAPH_HOME", str(Path.home() / ".flowgraph"))).expanduser()
CONFIG_FILE = BASE_DIR / "config.toml"
PROJECT_CONFIG_NAME = ".flowgraph.toml"

# Statement labels longer than this are cut to (limit - 3) chars + "..."
STATEMENT_LABEL_LIMIT = 50

DEFAULT_SETTINGS: Dict[str, Any] = {
    "statement_label_limit": STATEMENT_LABEL_LIMIT,
    "languages": ["python", "typescript", "tsx", "javascript"],
    "skip_dirs": [],
    "output_dir": "",
}


def _read_toml(path: Path) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = toml.load(f)
    except (OSError, toml.TomlDecodeError) as exc:
        logger.warning("Ignoring unreadable config %s: %s", path, exc)
        return {}
    return data.get("flowgraph", data)


def load_settings(project_root: Optional[Path] = None) -> Dict[str, Any]:
    """Load settings from ``~/.flowgraph/config.toml`` and the project file.

    Keys may live at the top level or under a ``[flowgraph]`` table.  A
    ``.flowgraph.toml`` in *project_root* overrides the home config, which in
    turn overrides :data:`DEFAULT_SETTINGS`.
    """
    settings = dict(DEFAULT_SETTINGS)
    sources = [CONFIG_FILE]
    if project_root is not None:
        sources.append(Path(project_root) / PROJECT_CONFIG_NAME)

    for path in sources:
        if not path.exists():
            continue
        overrides = _read_toml(path)
        unknown = set(overrides) - set(DEFAULT_SETTINGS)
        if unknown:
            logger.debug("Unknown settings in %s: %s", path, ", ".join(sorted(unknown)))
        settings.update({k: v for k, v in overrides.items() if k in DEFAULT_SETTINGS})

    settings["statement_label_limit"] = int(settings["statement_label_limit"])
    return settings


def save_settings(settings: Dict[str, Any]) -> Path:
    """Write *settings* to the home config file and return its path."""
    BASE_DIR.mkdir(parents=True, exist_ok=True)
    payload = {k: v for k, v in settings.items() if k in DEFAULT_SETTINGS}
    with open(CONFIG_FILE, "w", encoding="utf-8") as f:
        toml.dump({"flowgraph": payload}, f)
    return CONFIG_FILE
