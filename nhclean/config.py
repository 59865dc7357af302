# nhclean/config.py
# -*- coding: utf-8 -*-
"""
nhclean central configuration loader

Features:
- Read YAML/JSON config from multiple locations (explicit path, env override, user, system)
- Merge with authoritative DEFAULTS, normalize/coerce types (paths, retention values)
- Validate structure and types, warn or error (fatal optional)
- Provide typed access via Config dataclass (get_config(), get_clean_config(), get_logging_config())
- Thread-safe load; the loaded config is cached for get_config()
"""

from __future__ import annotations

import json
import logging
import os
import sys
import threading
from copy import deepcopy
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from nhclean.errors import ConfigError

logger = logging.getLogger("nhclean.config")

# ----------------------------
# DEFAULT configuration (authoritative base)
# ----------------------------
DEFAULTS: Dict[str, Any] = {
    "logging": {
        "level": "INFO",
        "file": None,
        "file_level": "DEBUG",
        "color": True,
        "max_size": "10M",
        "backups": 5,
        "module_levels": {},
        "jsonl": {"enabled": False, "path": "~/.local/state/nhclean/log.jsonl"},
    },
    "clean": {
        "keep": 1,
        "keep_since": "0h",
        "profiles_dir": "/nix/var/nix/profiles",
        "per_user_profiles_dir": "/nix/var/nix/profiles/per-user",
        "gcroots_dir": "/nix/var/nix/gcroots/auto",
        "xdg_profiles_subdir": ".local/state/nix/profiles",
        "gcroot_patterns": [r".*/\.direnv/.*", r".*result.*"],
        "uid_min": None,  # None -> 1000 (Linux) / 501 (macOS)
        "uid_span": 100,
        "elevation_program": "sudo",
        "gc_command": ["nix", "store", "gc"],
        "optimise_command": ["nix-store", "--optimise"],
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

# ----------------------------
# Module state
# ----------------------------
_CONFIG: Optional[Config] = None
_CONFIG_LOCK = threading.RLock()

# ----------------------------
# Utilities
# ----------------------------
def _expand_path(val: Optional[str]) -> Optional[str]:
    if val is None:
        return None
    return os.path.abspath(os.path.expanduser(os.path.expandvars(val)))

def _deep_merge(a: Dict[str, Any], b: Dict[str, Any]) -> Dict[str, Any]:
    res = deepcopy(a)
    for k, v in b.items():
        if k in res and isinstance(res[k], dict) and isinstance(v, dict):
            res[k] = _deep_merge(res[k], v)
        else:
            res[k] = deepcopy(v)
    return res

def default_uid_min() -> int:
    # regular accounts start at 501 on macOS, 1000 nearly everywhere else
    return 501 if sys.platform == "darwin" else 1000

def _find_candidates(explicit: Optional[str] = None) -> List[Path]:
    candidates: List[Path] = []
    env = os.environ.get("NHCLEAN_CONFIG")
    if explicit:
        candidates.append(Path(explicit))
    if env:
        candidates.append(Path(env))
    candidates.extend([
        Path.home() / ".config" / "nhclean" / "config.yaml",
        Path("/etc") / "nhclean" / "config.yaml",
    ])
    return candidates

def _load_file(path: Path) -> Dict[str, Any]:
    try:
        txt = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"config: failed reading {path}: {e}") from e

    try:
        if path.suffix.lower() == ".json":
            data = json.loads(txt)
        else:
            data = yaml.safe_load(txt)
    except (ValueError, yaml.YAMLError) as e:
        raise ConfigError(f"config: cannot parse {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"config: top level of {path} must be a mapping")
    return data

def _normalize_and_coerce(cfg: Dict[str, Any]) -> Dict[str, Any]:
    """Normalize path fields and coerce basic types."""
    out = deepcopy(cfg)
    clean = out.get("clean")
    if isinstance(clean, dict):
        for key in ("profiles_dir", "per_user_profiles_dir", "gcroots_dir"):
            if isinstance(clean.get(key), str):
                clean[key] = _expand_path(clean[key])
        for key in ("gc_command", "optimise_command"):
            if isinstance(clean.get(key), str):
                clean[key] = clean[key].split()
        try:
            clean["keep"] = int(clean.get("keep", 1))
        except (TypeError, ValueError):
            logger.debug("config: failed to coerce clean.keep", exc_info=True)
        if clean.get("uid_min") is None:
            clean["uid_min"] = default_uid_min()
        if isinstance(clean.get("gcroot_patterns"), str):
            clean["gcroot_patterns"] = [clean["gcroot_patterns"]]

    log_cfg = out.get("logging")
    if isinstance(log_cfg, dict):
        if isinstance(log_cfg.get("file"), str):
            log_cfg["file"] = _expand_path(log_cfg["file"])
        jsonl = log_cfg.get("jsonl")
        if isinstance(jsonl, dict) and isinstance(jsonl.get("path"), str):
            jsonl["path"] = _expand_path(jsonl["path"])
    return out

def _validate_structure(cfg: Dict[str, Any]) -> Tuple[bool, List[str]]:
    """Return (ok, issues_list). Non-fatal warnings unless called with fatal=True in load."""
    warnings: List[str] = []
    for k in cfg.keys():
        if k not in DEFAULTS:
            warnings.append(f"Unknown top-level config key: {k}")
    clean = cfg.get("clean", {})
    if not isinstance(clean, dict):
        return (False, warnings + ["clean must be a mapping"])
    for k in clean.keys():
        if k not in DEFAULTS["clean"]:
            warnings.append(f"Unknown clean config key: {k}")
    keep = clean.get("keep")
    if not isinstance(keep, int) or isinstance(keep, bool) or keep < 0:
        warnings.append("clean.keep must be integer >= 0")
    if not isinstance(clean.get("keep_since"), (str, int)):
        warnings.append("clean.keep_since must be a duration string")
    patterns = clean.get("gcroot_patterns")
    if not isinstance(patterns, list) or not all(isinstance(p, str) for p in patterns):
        warnings.append("clean.gcroot_patterns must be a list of strings")
    for key in ("gc_command", "optimise_command"):
        cmd = clean.get(key)
        if not isinstance(cmd, list) or not cmd:
            warnings.append(f"clean.{key} must be a non-empty list")
    for key in ("uid_min", "uid_span"):
        if not isinstance(clean.get(key), int):
            warnings.append(f"clean.{key} must be an integer")
    log_cfg = cfg.get("logging", {})
    if not isinstance(log_cfg, dict):
        warnings.append("logging must be a mapping")
    elif not isinstance(log_cfg.get("module_levels", {}), dict):
        warnings.append("logging.module_levels must be a mapping")
    return (len(warnings) == 0, warnings)

# ----------------------------
# Loading
# ----------------------------
def _find_path(explicit: Optional[str] = None) -> Optional[Path]:
    if explicit and not Path(explicit).exists():
        raise ConfigError(f"config: file not found: {explicit}")
    for p in _find_candidates(explicit):
        if p.exists():
            return p
    return None

def load(explicit_path: Optional[str] = None, fatal: bool = False) -> Config:
    """
    Load and merge config. If fatal=True then structural validation failures raise.
    Returns Config object.
    """
    global _CONFIG
    with _CONFIG_LOCK:
        cfg_path = _find_path(explicit_path)
        raw: Dict[str, Any] = {}
        if cfg_path:
            raw = _load_file(cfg_path)
        merged = _deep_merge(DEFAULTS, raw)
        normalized = _normalize_and_coerce(merged)
        ok, issues = _validate_structure(normalized)
        if not ok:
            msg = f"config: validation issues: {issues}"
            if fatal:
                raise ConfigError(msg)
            logger.warning(msg)
        cfg_obj = Config(raw=raw, merged=normalized, path=cfg_path)
        _CONFIG = cfg_obj
        logger.debug("config: loaded merged config (from=%s)", str(cfg_path) if cfg_path else "<defaults>")
        return cfg_obj

def from_dict(data: Dict[str, Any]) -> Config:
    """Build a Config from an in-memory mapping without touching the global state."""
    merged = _normalize_and_coerce(_deep_merge(DEFAULTS, data))
    ok, issues = _validate_structure(merged)
    if not ok:
        raise ConfigError(f"config: validation issues: {issues}")
    return Config(raw=deepcopy(data), merged=merged)

def get_config() -> Config:
    global _CONFIG
    with _CONFIG_LOCK:
        if _CONFIG is None:
            _CONFIG = load()
        return _CONFIG

# ----------------------------
# Convenience helpers for modules
# ----------------------------
def get_clean_config(cfg: Optional[Config] = None) -> Dict[str, Any]:
    cfg = cfg or get_config()
    return deepcopy(cfg.merged.get("clean", {}))

def get_logging_config(cfg: Optional[Config] = None) -> Dict[str, Any]:
    cfg = cfg or get_config()
    return deepcopy(cfg.merged.get("logging", {}))
