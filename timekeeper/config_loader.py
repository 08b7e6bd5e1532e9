# timekeeper/config_loader.py
from __future__ import annotations
"""
Settings for the timekeeper service, read from one YAML file.

Lookup order for the file: an explicit path, then $TIMEKEEPER_CONFIG, then
config/config.yaml in the checkout. With none of those the service runs on
built-in defaults (local bind, 180 s practice event, 1 s upload polling).

Sections under `app:`
    server       host/port for the control API
    remote       GraphQL gateway base_url, api_key, timeout_ms
    timekeeper   default_event and the debug trace size
    upload       poll interval and the optional ceilings
and a top-level `log: {level: ...}`.

A file that is named but unreadable, not YAML, or not a mapping stops startup
with a RuntimeError naming the path. Keys the service does not know are kept.
"""

import os
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml

from .models import Event

PROJECT_ROOT = Path(__file__).resolve().parents[1]
DEFAULT_CFG = PROJECT_ROOT / "config" / "config.yaml"
ENV_VAR = "TIMEKEEPER_CONFIG"


def _read_mapping(path: Path) -> Dict[str, Any]:
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise RuntimeError(f"Missing configuration file: {path} (set {ENV_VAR} or pass --config)")
    except OSError as ex:
        raise RuntimeError(f"Cannot read config {path}: {type(ex).__name__}: {ex}")

    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as ex:
        raise RuntimeError(f"Failed to parse YAML in {path}: {ex}")

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise RuntimeError(f"Config {path} must be a mapping at the top level, got {type(data).__name__}")
    return data


def _absolute(p: str | os.PathLike[str]) -> Path:
    # relative paths are taken from the checkout, not the cwd
    pth = Path(p)
    return pth if pth.is_absolute() else (PROJECT_ROOT / pth).resolve()


def load_config(path: str | os.PathLike[str] | None = None) -> Dict[str, Any]:
    """Read the config file; {} when no file is named and the default is absent."""
    if path:
        return _read_mapping(_absolute(path))
    env = os.getenv(ENV_VAR, "").strip()
    if env:
        return _read_mapping(_absolute(env))
    if DEFAULT_CFG.exists():
        return _read_mapping(DEFAULT_CFG)
    return {}


CONFIG: Dict[str, Any] = load_config()


def _app(cfg: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    return ((cfg if cfg is not None else CONFIG).get("app") or {})


# ---------- Accessors ----------
def get_server_bind(cfg: Optional[Dict[str, Any]] = None) -> Tuple[str, int]:
    """Return (host, port); defaults to ('127.0.0.1', 8000)."""
    server = _app(cfg).get("server") or {}
    host = server.get("host")
    port = server.get("port")
    if isinstance(host, str) and host.strip():
        try:
            return host.strip(), int(port) if port is not None else 8000
        except (TypeError, ValueError):
            return host.strip(), 8000
    return "127.0.0.1", 8000


def get_remote_cfg(cfg: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Return the remote API block (base_url, api_key, timeout_ms) or {}."""
    return _app(cfg).get("remote") or {}


def get_timekeeper_cfg(cfg: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    return _app(cfg).get("timekeeper") or {}


def get_default_event(cfg: Optional[Dict[str, Any]] = None) -> Event:
    """Event used until the operator picks one from the remote list."""
    block = get_timekeeper_cfg(cfg).get("default_event") or {}
    try:
        return Event.from_remote(block)
    except ValueError as ex:
        raise RuntimeError(f"Invalid app.timekeeper.default_event: {ex}") from ex


def get_upload_cfg(cfg: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Return poller settings with defaults filled in:
      interval_ms (1000), max_polls (None = unbounded), max_consecutive_errors (1)
    """
    up = _app(cfg).get("upload") or {}
    max_polls = up.get("max_polls")
    if max_polls is not None:
        try:
            max_polls = int(max_polls)
        except (TypeError, ValueError):
            raise RuntimeError(f"Invalid app.upload.max_polls: {max_polls!r}")
        if max_polls < 1:
            raise RuntimeError("app.upload.max_polls must be at least 1, or null for no ceiling")
    return {
        "interval_ms": int(up.get("interval_ms", 1000)),
        "max_polls": max_polls,
        "max_consecutive_errors": int(up.get("max_consecutive_errors", 1)),
    }


def get_log_level(default: str = "INFO", cfg: Optional[Dict[str, Any]] = None) -> str:
    lvl = (((cfg if cfg is not None else CONFIG).get("log") or {}).get("level", default))
    # normalize common variants
    return str(lvl).upper()
# ---------- End of config_loader.py ----------
