# rbuild/config.py
# -*- coding: utf-8 -*-
"""
rbuild central configuration loader

Features:
- Read YAML/JSON config from multiple locations (explicit path, env override, cwd, user, system)
- Merge with authoritative DEFAULTS, normalize/coerce types (human sizes to bytes, paths)
- Validate structure and types, warn or error (fatal optional)
- Provide typed access via Config dataclass (get_config(), get_build_config(), get_platforms())
- Thread-safe load/reload with callbacks so logging can re-apply its section
"""

from __future__ import annotations

import os
import json
import logging
import threading
from copy import deepcopy
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import yaml

from rbuild.errors import ConfigError

logger = logging.getLogger("rbuild.config")

ENV_VAR = "RBUILD_CONFIG"

# ----------------------------
# DEFAULT configuration (authoritative base)
# ----------------------------
DEFAULTS: Dict[str, Any] = {
    "logging": {
        "level": "INFO",
        "file": None,
        "file_level": "DEBUG",
        "color": True,
        "format": "[%(asctime)s] [%(levelname)s] [%(rbuild_module)s] %(message)s",
        "datefmt": "%H:%M:%S",
        "max_size": "10M",  # human readable
        "backups": 5,
        "module_levels": {},
        "jsonl": {"enabled": False, "path": "~/.rbuild/log/builds.jsonl"},
    },
    "build": {
        "timeout": None,     # seconds per command, None = wait forever
        "log_dir": None,     # per-variant command output logs
        "keep_going": False,
        "env": {},           # merged under every variant's build_env
    },
    "platforms": {
        # name -> {"prefix": path}
    },
    "recipes": {
        "paths": ["./packages"],
    },
}

# ----------------------------
# Dataclass to hold config
# ----------------------------
@dataclass
class Config:
    raw: Dict[str, Any] = field(default_factory=dict)     # values loaded from file (if any)
    merged: Dict[str, Any] = field(default_factory=dict)  # merged with DEFAULTS
    path: Optional[Path] = None

    def get(self, path: str, default: Any = None) -> Any:
        """Dot-separated getter for merged config."""
        parts = path.split(".") if path else []
        cur: Any = self.merged
        for p in parts:
            if isinstance(cur, dict) and p in cur:
                cur = cur[p]
            else:
                return default
        return cur

    def as_dict(self) -> Dict[str, Any]:
        return deepcopy(self.merged)

# ----------------------------
# Module state
# ----------------------------
_CONFIG: Optional[Config] = None
_CONFIG_LOCK = threading.RLock()
_WATCH_CALLBACKS: List[Callable[[Config], None]] = []

# ----------------------------
# Utilities
# ----------------------------
def _human_size_to_bytes(val: Union[str, int, None]) -> Optional[int]:
    if val is None:
        return None
    if isinstance(val, int):
        return val
    s = str(val).strip().upper()
    # longest suffixes first so "MB" is not read as "B"
    units = [("KB", 1024), ("MB", 1024**2), ("GB", 1024**3), ("K", 1024), ("M", 1024**2), ("G", 1024**3), ("T", 1024**4)]
    try:
        for suffix, mul in units:
            if s.endswith(suffix):
                return int(float(s[: -len(suffix)].strip()) * mul)
        return int(float(s))
    except ValueError:
        logger.warning("config: cannot parse human size '%s'", val)
        return None

def _expand_path(val: Optional[str]) -> Optional[str]:
    if val is None:
        return None
    return os.path.abspath(os.path.expanduser(os.path.expandvars(str(val))))

def _deep_merge(a: Dict[str, Any], b: Dict[str, Any]) -> Dict[str, Any]:
    res = deepcopy(a)
    for k, v in b.items():
        if k in res and isinstance(res[k], dict) and isinstance(v, dict):
            res[k] = _deep_merge(res[k], v)
        else:
            res[k] = deepcopy(v)
    return res

def _find_candidates(explicit: Optional[str] = None) -> List[Path]:
    candidates: List[Path] = []
    env = os.environ.get(ENV_VAR)
    if explicit:
        candidates.append(Path(explicit))
    if env:
        candidates.append(Path(env))
    candidates.extend([
        Path.cwd() / "rbuild.yaml",
        Path.cwd() / "rbuild.yml",
        Path.home() / ".config" / "rbuild" / "config.yaml",
        Path("/etc") / "rbuild" / "config.yaml",
    ])
    return candidates

def _find_path(explicit: Optional[str] = None) -> Optional[Path]:
    if explicit and not Path(explicit).exists():
        raise ConfigError("config file not found", context={"path": str(explicit)})
    for p in _find_candidates(explicit):
        if p.exists():
            return p
    return None

def _load_file(path: Path) -> Dict[str, Any]:
    try:
        txt = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError("cannot read config file", context={"path": str(path), "error": str(e)}) from e
    try:
        if path.suffix.lower() == ".json":
            data = json.loads(txt)
        else:
            data = yaml.safe_load(txt)
    except (yaml.YAMLError, ValueError) as e:
        raise ConfigError("cannot parse config file", context={"path": str(path), "error": str(e)}) from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError("config file must contain a mapping", context={"path": str(path)})
    return data

def _normalize_and_coerce(cfg: Dict[str, Any]) -> Dict[str, Any]:
    """Normalize path fields, convert human sizes and coerce basic types."""
    out = deepcopy(cfg)
    log = out.get("logging")
    if isinstance(log, dict):
        if log.get("file"):
            log["file"] = _expand_path(log["file"])
        jsonl = log.get("jsonl")
        if isinstance(jsonl, dict) and jsonl.get("path"):
            jsonl["path"] = _expand_path(jsonl["path"])
        if "max_size" in log:
            ms = _human_size_to_bytes(log["max_size"])
            if ms is not None:
                log["max_size_bytes"] = ms

    build = out.get("build")
    if isinstance(build, dict):
        if build.get("log_dir"):
            build["log_dir"] = _expand_path(build["log_dir"])
        if build.get("timeout") is not None:
            try:
                build["timeout"] = float(build["timeout"])
            except (TypeError, ValueError) as e:
                raise ConfigError("build.timeout must be a number of seconds", context={"value": repr(build["timeout"])}) from e
        if isinstance(build.get("env"), dict):
            build["env"] = {str(k): str(v) for k, v in build["env"].items()}

    platforms = out.get("platforms")
    if isinstance(platforms, dict):
        for pdata in platforms.values():
            if isinstance(pdata, dict) and pdata.get("prefix"):
                pdata["prefix"] = _expand_path(pdata["prefix"])

    return out

def _validate_structure(cfg: Dict[str, Any]) -> Tuple[bool, List[str]]:
    """Return (ok, issues_list). Non-fatal warnings unless called with fatal=True in load."""
    issues: List[str] = []
    for k in cfg.keys():
        if k not in DEFAULTS:
            issues.append(f"Unknown top-level config key: {k}")
    build = cfg.get("build", {})
    if not isinstance(build, dict):
        issues.append("build must be a mapping")
    else:
        t = build.get("timeout")
        if t is not None and (not isinstance(t, (int, float)) or t <= 0):
            issues.append("build.timeout must be a positive number")
        if not isinstance(build.get("env", {}), dict):
            issues.append("build.env must be a mapping")
    platforms = cfg.get("platforms", {})
    if not isinstance(platforms, dict):
        issues.append("platforms must be a mapping")
    else:
        for name, pdata in platforms.items():
            if not isinstance(pdata, dict) or not pdata.get("prefix"):
                issues.append(f"platforms.{name}.prefix is required")
    paths = cfg.get("recipes", {}).get("paths") if isinstance(cfg.get("recipes"), dict) else None
    if paths is not None and not isinstance(paths, list):
        issues.append("recipes.paths should be a list")
    return (len(issues) == 0, issues)

# ----------------------------
# Loading / reloading
# ----------------------------
def load(explicit_path: Optional[str] = None, fatal: bool = False) -> Config:
    """
    Load and merge config. If fatal=True then structural validation failures raise.
    Returns Config object.
    """
    global _CONFIG
    with _CONFIG_LOCK:
        cfg_path = _find_path(explicit_path)
        raw: Dict[str, Any] = _load_file(cfg_path) if cfg_path else {}
        merged = _normalize_and_coerce(_deep_merge(DEFAULTS, raw))
        ok, issues = _validate_structure(merged)
        if not ok:
            if fatal:
                raise ConfigError("config validation failed", context={
                    "path": str(cfg_path) if cfg_path else "<defaults>",
                    "issues": "; ".join(issues),
                })
            logger.warning("config: validation issues: %s", issues)
        _CONFIG = Config(raw=raw, merged=merged, path=cfg_path)
        logger.debug("config: loaded merged config (from=%s)", str(cfg_path) if cfg_path else "<defaults>")
        return _CONFIG

def get_config() -> Config:
    global _CONFIG
    with _CONFIG_LOCK:
        if _CONFIG is None:
            _CONFIG = load()
        return _CONFIG

def reload(explicit_path: Optional[str] = None) -> Config:
    cfg = load(explicit_path)
    _notify_watchers(cfg)
    return cfg

def reset() -> None:
    """Forget the cached config; the next get_config() loads again."""
    global _CONFIG
    with _CONFIG_LOCK:
        _CONFIG = None

# ----------------------------
# Watcher API
# ----------------------------
def register_watch_callback(cb: Callable[[Config], None]) -> None:
    with _CONFIG_LOCK:
        if cb not in _WATCH_CALLBACKS:
            _WATCH_CALLBACKS.append(cb)

def unregister_watch_callback(cb: Callable[[Config], None]) -> None:
    with _CONFIG_LOCK:
        if cb in _WATCH_CALLBACKS:
            _WATCH_CALLBACKS.remove(cb)

def _notify_watchers(cfg: Config) -> None:
    with _CONFIG_LOCK:
        cbs = list(_WATCH_CALLBACKS)
    for cb in cbs:
        cb(cfg)

# ----------------------------
# Convenience helpers for modules
# ----------------------------
def get_build_config() -> Dict[str, Any]:
    return deepcopy(get_config().merged.get("build", {}))

def get_platforms() -> Dict[str, Dict[str, Any]]:
    return deepcopy(get_config().merged.get("platforms", {}))

def get_recipe_paths() -> List[str]:
    return list(get_config().get("recipes.paths", []) or [])

def validate_config() -> Tuple[bool, List[str]]:
    ok, issues = _validate_structure(get_config().merged)
    extra: List[str] = []
    log_dir = get_config().get("build.log_dir")
    if log_dir:
        parent = Path(log_dir)
        while not parent.exists() and parent != parent.parent:
            parent = parent.parent
        if not os.access(parent, os.W_OK):
            extra.append(f"build.log_dir {log_dir} not writable")
    issues.extend(extra)
    return (len(issues) == 0, issues)
