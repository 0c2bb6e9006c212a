import copy
import os
import shlex
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


DEFAULT_CONFIG: Dict[str, Any] = {
    "query_command": ["sgpt", "--stream"],
    "perplexity_command": ["perplexity", "-g", "--stream", "--citation"],
    "renderer": "glow",  # glow | rich
    "renderer_command": "glow",
    "render_timeout": 30,
    "held_out_line_count": 4,
    "width_margin": 2,
    "style_file": "ggpt_glow_style.json",
    "pager_command": ["less", "-SR"],
    "data_dir": "",
    "share_dir": "",
    "log_file": "",
}


def default_config_path() -> Path:
    explicit = os.environ.get("ASC_CONFIG", "").strip()
    if explicit:
        return Path(explicit).expanduser()
    xdg = os.environ.get("XDG_CONFIG_HOME", "").strip()
    base = Path(xdg) if xdg else Path.home() / ".config"
    return base / "asc" / "config.yaml"


def load_config(path: Optional[Path] = None) -> Dict[str, Any]:
    path = path or default_config_path()
    if not path.exists():
        return copy.deepcopy(DEFAULT_CONFIG)
    try:
        with path.open("r", encoding="utf-8") as f:
            loaded = yaml.safe_load(f) or {}
        if not isinstance(loaded, dict):
            return copy.deepcopy(DEFAULT_CONFIG)
        cfg = copy.deepcopy(DEFAULT_CONFIG)
        cfg.update(loaded)
        return cfg
    except (OSError, yaml.YAMLError):
        return copy.deepcopy(DEFAULT_CONFIG)


def get_share_dir(cfg: Optional[Dict[str, Any]] = None) -> Path:
    """Directory for the style file, the context file and logs (XDG data home)."""
    configured = str((cfg or {}).get("share_dir") or "").strip()
    if configured:
        return Path(configured).expanduser()
    xdg = os.environ.get("XDG_DATA_HOME", "").strip()
    if xdg:
        return Path(xdg) / "asc"
    return Path.home() / ".local" / "share" / "asc"


def get_data_dir(cfg: Optional[Dict[str, Any]] = None) -> Path:
    configured = str((cfg or {}).get("data_dir") or "").strip()
    if configured:
        return Path(configured).expanduser()
    return Path.home() / ".asc" / "data"


def ensure_dirs(cfg: Dict[str, Any]) -> None:
    for p in (get_share_dir(cfg), get_data_dir(cfg) / "conversations"):
        p.mkdir(parents=True, exist_ok=True)


def get_style_path(cfg: Dict[str, Any]) -> Optional[Path]:
    """Custom renderer style, only when the file is actually present."""
    name = str(cfg.get("style_file") or "").strip()
    if not name:
        return None
    path = Path(name).expanduser()
    if not path.is_absolute():
        path = get_share_dir(cfg) / path
    return path if path.is_file() else None


def get_log_path(cfg: Dict[str, Any]) -> Path:
    configured = str(cfg.get("log_file") or "").strip()
    if configured:
        return Path(configured).expanduser()
    return get_share_dir(cfg) / "asc.log"


def held_out_line_count(cfg: Dict[str, Any]) -> int:
    try:
        value = int(cfg.get("held_out_line_count", DEFAULT_CONFIG["held_out_line_count"]))
    except (TypeError, ValueError):
        return DEFAULT_CONFIG["held_out_line_count"]
    return value if value > 0 else DEFAULT_CONFIG["held_out_line_count"]


def as_argv(value: Any) -> list[str]:
    """Accept either a list or a single shell-style string for command settings."""
    if isinstance(value, str):
        return shlex.split(value)
    return [str(v) for v in (value or [])]
