# nhclean/logging.py
# -*- coding: utf-8 -*-
"""
nhclean logging

Features:
 - Settings from nhclean.config, re-applied by reload_config() after --config
 - Console color formatter (stderr, so plan output on stdout stays clean)
 - Rotating file handler
 - JSONL log with one object per record
 - Module-level configurable log levels (module_levels)
"""

from __future__ import annotations

import json
import logging
import logging.handlers
import sys
import threading
import time
from copy import deepcopy
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from nhclean.config import DEFAULTS, get_logging_config
from nhclean.errors import ConfigError

_logger = logging.getLogger("nhclean.logging")

DEFAULT_FORMAT = "[%(asctime)s] [%(levelname)s] [%(nhclean_module)s] %(message)s"

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
        if not hasattr(record, "nhclean_module"):
            record.nhclean_module = record.name
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
            "timestamp": time.time(),
            "level": record.levelname,
            "module": getattr(record, "nhclean_module", record.name),
            "message": record.getMessage(),
        }
        if record.exc_info:
            obj["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(obj, ensure_ascii=False)

# ----------------------
# Module-level filter for per-module levels
# ----------------------
class ModuleLevelFilter(logging.Filter):
    def __init__(self, module_levels: Dict[str, str]):
        super().__init__()
        self.module_levels = {m: getattr(logging, str(lvl).upper(), logging.INFO) for m, lvl in (module_levels or {}).items()}

    def filter(self, record):
        mod = getattr(record, "nhclean_module", None)
        if mod and mod in self.module_levels:
            return record.levelno >= self.module_levels[mod]
        return True

def _level(name: Union[str, int, None], default: int = logging.INFO) -> int:
    if isinstance(name, int):
        return name
    return getattr(logging, str(name or "").upper(), default)

def parse_size(s: Any) -> Optional[int]:
    """'10M' -> 10485760. Returns None when the value cannot be parsed."""
    if s is None:
        return None
    if isinstance(s, int):
        return s
    ss = str(s).strip().upper()
    units = (("KB", 1024), ("K", 1024), ("MB", 1024**2), ("M", 1024**2), ("GB", 1024**3), ("G", 1024**3))
    try:
        for suffix, mul in units:
            if ss.endswith(suffix):
                return int(float(ss[: -len(suffix)]) * mul)
        return int(float(ss))
    except ValueError:
        _logger.debug("logging: parse size failed for %s", s)
        return None

def _initial_config() -> Dict[str, Any]:
    try:
        return get_logging_config()
    except ConfigError as e:
        _logger.warning("logging: %s; using default logging settings", e)
        return deepcopy(DEFAULTS["logging"])

# ----------------------
# NhcleanLogger (singleton)
# ----------------------
class NhcleanLogger:
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

        self._root = logging.getLogger("nhclean")
        self._handlers: List[logging.Handler] = []
        self._console: Optional[logging.Handler] = None
        self._module_filter: Optional[ModuleLevelFilter] = None

        self._apply_config(_initial_config())
        self._inited = True

    # ----------------------
    # Configuration (apply/reload)
    # ----------------------
    def _apply_config(self, cfg: Dict[str, Any]):
        with self._lock:
            for h in list(self._handlers):
                self._root.removeHandler(h)
                h.close()
            self._handlers.clear()
            if self._module_filter is not None:
                self._root.removeFilter(self._module_filter)

            self._module_filter = ModuleLevelFilter(cfg.get("module_levels", {}) or {})
            self._root.addFilter(self._module_filter)

            fmt = cfg.get("format") or DEFAULT_FORMAT
            datefmt = cfg.get("datefmt", "%H:%M:%S")

            # console handler
            ch = logging.StreamHandler(sys.stderr)
            ch.setLevel(_level(cfg.get("level", "INFO")))
            ch.setFormatter(ColorFormatter(fmt, datefmt=datefmt, color=bool(cfg.get("color", True)) and sys.stderr.isatty()))
            self._root.addHandler(ch)
            self._handlers.append(ch)
            self._console = ch

            # rotating file handler
            if cfg.get("file"):
                try:
                    file_path = Path(cfg["file"]).expanduser()
                    file_path.parent.mkdir(parents=True, exist_ok=True)
                    max_bytes = parse_size(cfg.get("max_size", "10M"))
                    backups = int(cfg.get("backups", 5))
                    fh = logging.handlers.RotatingFileHandler(str(file_path), maxBytes=max_bytes or 10 * 1024 * 1024, backupCount=backups, encoding="utf-8")
                    fh.setLevel(_level(cfg.get("file_level", "DEBUG"), logging.DEBUG))
                    fh.setFormatter(ColorFormatter(fmt, datefmt=datefmt, color=False))
                    self._root.addHandler(fh)
                    self._handlers.append(fh)
                except OSError:
                    _logger.exception("logging: failed to configure file handler")

            # jsonl log
            jsonl_cfg = cfg.get("jsonl", {}) or {}
            if jsonl_cfg.get("enabled"):
                try:
                    path = Path(jsonl_cfg["path"]).expanduser()
                    path.parent.mkdir(parents=True, exist_ok=True)
                    jh = logging.FileHandler(str(path), encoding="utf-8")
                    jh.setLevel(_level(jsonl_cfg.get("level", "INFO")))
                    jh.setFormatter(JSONLineFormatter())
                    self._root.addHandler(jh)
                    self._handlers.append(jh)
                except (OSError, KeyError):
                    _logger.exception("logging: failed to configure jsonl handler")

            self._root.setLevel(logging.DEBUG)

    def reload_config(self):
        """Re-apply logging config from nhclean.config."""
        self._apply_config(get_logging_config())

    # ----------------------
    # Public API
    # ----------------------
    def get_logger(self, module_name: str) -> logging.LoggerAdapter:
        """Return a LoggerAdapter that injects 'nhclean_module' into records."""
        return logging.LoggerAdapter(self._root, {"nhclean_module": module_name})

    def set_level(self, level: Union[str, int]):
        with self._lock:
            if self._console is not None:
                self._console.setLevel(_level(level))

# ----------------------
# Public factory
# ----------------------
_GLOBAL_LOGGER = NhcleanLogger()

def get_logger(module: str) -> logging.LoggerAdapter:
    return _GLOBAL_LOGGER.get_logger(module)

def set_level(level: Union[str, int]):
    return _GLOBAL_LOGGER.set_level(level)

def reload_config():
    return _GLOBAL_LOGGER.reload_config()
