# nhclean/generations.py
"""
generations.py - per-profile retention planner

plan_generations(profile, policy) lists the profile's parent directory,
records every "<profile>-<n>-link" entry flagged for removal and then
clears the flag for:
  - every generation whose link is at most keep_since old (age rule)
  - the ``keep`` highest-numbered generations (count rule)
A generation survives when either rule keeps it.
"""

from __future__ import annotations

import os
import re
import time
from typing import Optional

from nhclean.errors import PlanError
from nhclean.fsops import FileSystem
from nhclean.logging import get_logger
from nhclean.models import Generation, GenerationPlan
from nhclean.policy import RetentionPolicy

logger = get_logger("generations")

# generation numbers are unsigned 32-bit in nix
MAX_GENERATION = 2**32 - 1


def generation_regex(profile: str) -> "re.Pattern[str]":
    name = os.path.basename(profile.rstrip("/"))
    if not name:
        raise PlanError("Checking profile's name", path=profile)
    return re.compile(rf"^{re.escape(name)}-([0-9]+)-link", re.ASCII)


def _parse_number(raw: str, path: str) -> int:
    number = int(raw)
    if number > MAX_GENERATION:
        raise PlanError(f"generation number {raw} out of range", path=path)
    return number


def collect_generations(fs: FileSystem, profile: str) -> GenerationPlan:
    """Every generation of ``profile`` flagged for removal."""
    profile = os.path.abspath(profile)
    pattern = generation_regex(profile)
    parent = os.path.dirname(profile)
    try:
        entries = fs.list_dir(parent)
    except OSError as e:
        raise PlanError(f"Reading profile's generations: {e}", path=parent) from e

    plan = GenerationPlan()
    for path in entries:
        m = pattern.match(os.path.basename(path))
        if not m:
            logger.debug("%s is not a generation of %s, skipping", path, profile)
            continue
        number = _parse_number(m.group(1), path)
        try:
            last_modified = fs.link_mtime(path)
        except OSError as e:
            logger.warning("Skipping %s: cannot read symlink metadata: %s", path, e)
            continue
        plan.add(Generation(number=number, last_modified=last_modified, path=path))
    return plan


def apply_age_rule(plan: GenerationPlan, policy: RetentionPolicy, now: float) -> None:
    for generation in list(plan):
        age = now - generation.last_modified
        if age < 0:
            logger.warning("Generation %s has a modification time in the future (%.0fs ahead); keeping it",
                           generation.path, -age)
            plan.keep(generation)
        elif policy.is_recent(age):
            plan.keep(generation)


def apply_count_rule(plan: GenerationPlan, policy: RetentionPolicy) -> None:
    if policy.keep <= 0:
        return
    for generation, _ in plan.newest_first()[: policy.keep]:
        plan.keep(generation)


def plan_generations(profile: str, policy: RetentionPolicy, fs: Optional[FileSystem] = None,
                     now: Optional[float] = None) -> GenerationPlan:
    fs = fs or FileSystem()
    now = time.time() if now is None else now
    plan = collect_generations(fs, profile)
    apply_age_rule(plan, policy, now)
    apply_count_rule(plan, policy)
    logger.debug("generation plan for %s: %s", profile, plan.by_number())
    return plan
