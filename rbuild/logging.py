# rbuild/logging.py
# -*- coding: utf-8 -*-
"""
rbuild logging

Features:
 - Driven by the `logging` section of rbuild.config (re-applied on config reload)
 - Console color formatter
 - Rotating file handler
 - JSONL log of build events (one object per line)
 - Module-level configurable log levels (module_levels)
 - Per-level metrics
"""

from __future__ import annotations

import sys
import json
import logging
import logging.handlers
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

from rbuild import config as _config

ROOT_NAME = "rbuild"

# ----------------------
# Color formatter
# ----------------------
class ColorFormatter(logging.Formatter):
    COLORS = {
        logging.DEBUG: "\033[37m",    # light gray
        logging.INFO: "\033[36m",     # cyan
        logging.WARNING: "\033[33m",  # yellow
        logging.ERROR: "\033[31m",    # red
        logging.CRITICAL: "\033[41;37m", # white on red
    }
    RESET = "\033[0m"

    def __init__(self, fmt: Optional[str] = None, datefmt: Optional[str] = None, color: bool = True):
        super().__init__(fmt=fmt, datefmt=datefmt)
        self.color = color

    def format(self, record):
        msg = super().format(record)
        if self.color:
            color = self.COLORS.get(record.levelno, "")
            return f"{color}{msg}{self.RESET}"
        return msg

# ----------------------
# JSONL formatter
# ----------------------
class JSONLineFormatter(logging.Formatter):
    def format(self, record):
        obj = {
            "timestamp": record.created,
            "level": record.levelname,
            "module": getattr(record, "rbuild_module", record.name),
            "message": record.getMessage(),
        }
        for key in ("package", "variant", "step"):
            if hasattr(record, key):
                obj[key] = getattr(record, key)
        if record.exc_info:
            obj["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(obj, ensure_ascii=False)

# ----------------------
# Handler filter: module name default + per-module levels
# ----------------------
class ModuleLevelFilter(logging.Filter):
    def __init__(self, module_levels: Optional[Dict[str, str]] = None):
        super().__init__()
        self.module_levels = {m: getattr(logging, str(lvl).upper(), logging.INFO) for m, lvl in (module_levels or {}).items()}

    def filter(self, record):
        mod = getattr(record, "rbuild_module", None)
        if mod is None:
            # records from plain child loggers such as "rbuild.config"
            mod = record.name.split(".")[-1]
            record.rbuild_module = mod
        if mod in self.module_levels:
            return record.levelno >= self.module_levels[mod]
        return True

class _MetricsHandler(logging.Handler):
    def __init__(self, metrics: Dict[str, int], lock: threading.RLock):
        super().__init__(level=logging.NOTSET)
        self._metrics = metrics
        self._lock = lock

    def emit(self, record):
        with self._lock:
            if record.levelname in self._metrics:
                self._metrics[record.levelname] += 1

# ----------------------
# BuildLogger (singleton)
# ----------------------
class BuildLogger:
    _instance = None
    _singleton_lock = threading.Lock()

    def __new__(cls):
        with cls._singleton_lock:
            if cls._instance is None:
                cls._instance = super().__new__(cls)
                cls._instance._inited = False
        return cls._instance

    def __init__(self):
        if self._inited:
            return
        self._lock = threading.RLock()
        self._root = logging.getLogger(ROOT_NAME)
        self._handlers: List[logging.Handler] = []
        self._metrics: Dict[str, int] = {lvl: 0 for lvl in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")}
        self._metrics_handler = _MetricsHandler(self._metrics, self._lock)
        self._root.addHandler(self._metrics_handler)
        self._watching = False
        self._inited = True

    # ----------------------
    # Configuration (apply/hot-reload)
    # ----------------------
    def configure(self, cfg: Optional[Dict[str, Any]] = None, *, stream=None) -> None:
        """Apply a `logging` config section, replacing handlers installed earlier."""
        if cfg is None:
            cfg = _config.get_config().merged.get("logging", {})
        with self._lock:
            for h in self._handlers:
                self._root.removeHandler(h)
                h.close()
            self._handlers.clear()

            module_filter = ModuleLevelFilter(cfg.get("module_levels") or {})
            fmt = cfg.get("format") or _config.DEFAULTS["logging"]["format"]
            datefmt = cfg.get("datefmt", "%H:%M:%S")
            levels: List[int] = []

            # console handler
            console_cfg = cfg.get("console", {"enabled": True})
            if console_cfg.get("enabled", True):
                ch = logging.StreamHandler(stream or sys.stderr)
                level = _level(cfg.get("level", "INFO"))
                ch.setLevel(level)
                ch.setFormatter(ColorFormatter(fmt, datefmt=datefmt, color=bool(cfg.get("color", True))))
                self._add(ch, module_filter)
                levels.append(level)

            # rotating file handler
            if cfg.get("file"):
                file_path = Path(cfg["file"]).expanduser()
                file_path.parent.mkdir(parents=True, exist_ok=True)
                max_bytes = cfg.get("max_size_bytes") or _config._human_size_to_bytes(cfg.get("max_size", "10M"))
                fh = logging.handlers.RotatingFileHandler(
                    str(file_path),
                    maxBytes=max_bytes or 10 * 1024 * 1024,
                    backupCount=int(cfg.get("backups", 5)),
                    encoding="utf-8",
                )
                level = _level(cfg.get("file_level", "DEBUG"))
                fh.setLevel(level)
                fh.setFormatter(logging.Formatter(fmt, datefmt=datefmt))
                self._add(fh, module_filter)
                levels.append(level)

            # jsonl event log
            jsonl_cfg = cfg.get("jsonl") or {}
            if jsonl_cfg.get("enabled"):
                path = Path(jsonl_cfg.get("path") or _config.DEFAULTS["logging"]["jsonl"]["path"]).expanduser()
                path.parent.mkdir(parents=True, exist_ok=True)
                jh = logging.FileHandler(str(path), encoding="utf-8")
                level = _level(jsonl_cfg.get("level", "INFO"))
                jh.setLevel(level)
                jh.setFormatter(JSONLineFormatter())
                self._add(jh, module_filter)
                levels.append(level)

            self._root.setLevel(min(levels) if levels else _level(cfg.get("level", "INFO")))

            if not self._watching:
                _config.register_watch_callback(self._on_config_reload)
                self._watching = True

    def _add(self, handler: logging.Handler, module_filter: ModuleLevelFilter) -> None:
        handler.addFilter(module_filter)
        self._root.addHandler(handler)
        self._handlers.append(handler)

    def _on_config_reload(self, cfg: _config.Config) -> None:
        self.configure(cfg.merged.get("logging", {}))
        self._root.debug("logging: reloaded configuration", extra={"rbuild_module": "logging"})

    # ----------------------
    # Public API
    # ----------------------
    def get_logger(self, module_name: str) -> logging.LoggerAdapter:
        """Return a LoggerAdapter that injects 'rbuild_module' into records."""
        return _ModuleAdapter(self._root, {"rbuild_module": module_name})

    def get_metrics(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._metrics)


class _ModuleAdapter(logging.LoggerAdapter):
    """Keeps caller supplied `extra` (package/variant/step) next to the module name."""

    def process(self, msg, kwargs):
        extra = dict(self.extra)
        extra.update(kwargs.get("extra") or {})
        kwargs["extra"] = extra
        return msg, kwargs


def _level(name: Any) -> int:
    return getattr(logging, str(name).upper(), logging.INFO)

# ----------------------
# Public factory
# ----------------------
_GLOBAL_LOGGER = BuildLogger()

def get_logger(module: str) -> logging.LoggerAdapter:
    return _GLOBAL_LOGGER.get_logger(module)

def configure(cfg: Optional[Dict[str, Any]] = None, *, stream=None) -> None:
    _GLOBAL_LOGGER.configure(cfg, stream=stream)

def get_metrics() -> Dict[str, int]:
    return _GLOBAL_LOGGER.get_metrics()
