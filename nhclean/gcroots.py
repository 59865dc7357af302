# nhclean/gcroots.py
"""
gcroots.py - auto gcroot scanner

Each entry of the auto gcroots registry is a symlink to some other
symlink on disk (usually a "result" link or something under .direnv).
Only targets matching one of the configured patterns are considered;
anything else is never probed, shown or removed. A candidate must exist
and be writable (checked without following its final symlink) and is
then judged on age alone: at most keep_since old -> keep, older -> remove.
"""

from __future__ import annotations

import os
import re
import time
from typing import Dict, List, Optional, Sequence

from nhclean.errors import PlanError
from nhclean.fsops import ACCESS_OK, FileSystem
from nhclean.logging import get_logger
from nhclean.policy import RetentionPolicy

logger = get_logger("gcroots")

DEFAULT_PATTERNS = (r".*/\.direnv/.*", r".*result.*")


def compile_patterns(patterns: Sequence[str]) -> List["re.Pattern[str]"]:
    compiled = []
    for p in patterns:
        try:
            compiled.append(re.compile(p))
        except re.error as e:
            raise PlanError(f"invalid gcroot pattern {p!r}: {e}") from e
    return compiled


class GcRootScanner:
    def __init__(self, gcroots_dir: str, patterns: Sequence[str] = DEFAULT_PATTERNS,
                 fs: Optional[FileSystem] = None):
        self.gcroots_dir = gcroots_dir
        self.patterns = list(patterns)
        self.regexes = compile_patterns(self.patterns)
        self.fs = fs or FileSystem()

    def matches(self, target: str) -> bool:
        return any(r.search(target) for r in self.regexes)

    def candidates(self) -> List[str]:
        """Targets of the registry entries that pass the allow-list, sorted."""
        try:
            entries = self.fs.list_dir(self.gcroots_dir)
        except OSError as e:
            raise PlanError(f"Reading auto gcroots dir: {e}", path=self.gcroots_dir) from e
        found: List[str] = []
        for link in entries:
            try:
                target = self.fs.read_link(link)
                target = os.path.join(os.path.dirname(link), target)
            except OSError as e:
                logger.warning("Failed to read gcroot %s: %s", link, e)
                continue
            if not self.matches(target):
                logger.debug("gcroot %s -> %s doesn't match any pattern, skipping", link, target)
                continue
            logger.debug("gcroot %s -> %s", link, target)
            if target not in found:
                found.append(target)
        return sorted(found)

    def _is_accessible(self, target: str) -> bool:
        try:
            state = self.fs.probe_nofollow(target)
        except OSError as e:
            raise PlanError(f"Checking access for gcroot, unknown error: {e}", path=target) from e
        if state != ACCESS_OK:
            logger.debug("gcroot target %s is %s, skipping", target, state)
            return False
        return True

    def plan(self, policy: RetentionPolicy, now: Optional[float] = None) -> Dict[str, bool]:
        """target -> remove, sorted by target path."""
        now = time.time() if now is None else now
        tagged: Dict[str, bool] = {}
        for target in self.candidates():
            if not self._is_accessible(target):
                continue
            try:
                mtime = self.fs.link_mtime(target)
            except OSError as e:
                raise PlanError(f"Reading gcroot metadata: {e}", path=target) from e
            age = now - mtime
            if age < 0:
                logger.warning("gcroot %s has a modification time in the future (%.0fs ahead); keeping it",
                               target, -age)
                tagged[target] = False
            else:
                tagged[target] = not policy.is_recent(age)
        logger.debug("gcroot plan: %s", tagged)
        return tagged
