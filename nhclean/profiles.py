# nhclean/profiles.py
"""
profiles.py - profile discovery

A profile is a symlink whose target is named "<name>-<number>-link". The
profile path itself (not its target) is returned; its generations are
found later by listing the profile's parent directory.

Directory sets per mode:
- profile: the single path given on the command line
- user:    $XDG_STATE_HOME/nix/profiles and <per-user dir>/<user> (refuses to run as root)
- all:     <profiles dir>, every <per-user dir>/*, and the XDG profile dir
           of uid 0 and of every regular account (elevates first)
"""

from __future__ import annotations

import os
import re
from typing import Any, Dict, List, Optional

from nhclean.errors import PrivilegeError
from nhclean.fsops import FileSystem
from nhclean.logging import get_logger
from nhclean.models import MODE_ALL, MODE_PROFILE, MODE_USER, CleanMode
from nhclean.system import System

logger = get_logger("profiles")

GENERATION_LINK_RE = re.compile(r"^(.*)-([0-9]+)-link$")


def profiles_in_dir(fs: FileSystem, directory: str) -> List[str]:
    """Symlinks in ``directory`` pointing at a generation link. Read errors are logged and skipped."""
    found: List[str] = []
    try:
        entries = fs.list_dir(directory)
    except OSError as e:
        logger.warning("Failed to read profiles directory %s: %s", directory, e)
        return found
    for path in entries:
        if not fs.is_symlink(path):
            continue
        try:
            target = fs.read_link(path)
        except OSError as e:
            logger.warning("Failed to read folder element %s: %s", path, e)
            continue
        if GENERATION_LINK_RE.match(os.path.basename(target.rstrip("/"))):
            found.append(path)
    logger.debug("profiles in %s: %s", directory, found)
    return found


class ProfileDiscovery:
    def __init__(self, fs: FileSystem, system: System, cfg: Dict[str, Any]):
        self.fs = fs
        self.system = system
        self.cfg = cfg

    # ----------------------------
    # privilege gate, run once before any directory is read
    # ----------------------------
    def ensure_privileges(self, mode: CleanMode, argv: Optional[List[str]] = None) -> None:
        if mode.kind == MODE_USER and self.system.is_root():
            raise PrivilegeError("nhclean user: don't run me as root!")
        if mode.kind == MODE_ALL and not self.system.is_root():
            logger.info("Cleaning all profiles requires root, elevating")
            self.system.elevate(argv)
            # elevate() replaces the process; reaching this line means it did not
            raise PrivilegeError("privilege elevation did not take place")

    # ----------------------------
    # directory sets
    # ----------------------------
    def xdg_profiles_dir(self, home: str) -> str:
        return os.path.join(home, self.cfg["xdg_profiles_subdir"])

    def user_dirs(self) -> List[str]:
        user = self.system.current_user()
        return [
            os.path.join(self.system.state_dir(), "nix", "profiles"),
            os.path.join(self.cfg["per_user_profiles_dir"], user.name),
        ]

    def all_dirs(self) -> List[str]:
        dirs = [self.cfg["profiles_dir"]]
        per_user = self.cfg["per_user_profiles_dir"]
        try:
            dirs.extend(p for p in self.fs.list_dir(per_user) if self.fs.is_dir(p))
        except OSError as e:
            logger.warning("Failed to read per-user profiles directory %s: %s", per_user, e)

        uid_min = int(self.cfg["uid_min"])
        uid_max = uid_min + int(self.cfg["uid_span"])
        logger.debug("Scanning XDG profiles for users 0, %d-%d", uid_min, uid_max - 1)
        for account in sorted(self.system.users()):
            if account.uid == 0 or uid_min <= account.uid < uid_max:
                logger.debug("Adding XDG profiles for user %s", account.name)
                dirs.append(self.xdg_profiles_dir(account.home))
        return dirs

    def directories(self, mode: CleanMode) -> List[str]:
        if mode.kind == MODE_ALL:
            return self.all_dirs()
        if mode.kind == MODE_USER:
            return self.user_dirs()
        return []

    # ----------------------------
    # discovery
    # ----------------------------
    def discover(self, mode: CleanMode) -> List[str]:
        if mode.kind == MODE_PROFILE:
            return [mode.profile]
        profiles: List[str] = []
        for directory in self.directories(mode):
            for p in profiles_in_dir(self.fs, directory):
                if p not in profiles:
                    profiles.append(p)
        logger.info("Discovered %d profile(s)", len(profiles))
        return profiles
