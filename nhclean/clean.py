# nhclean/clean.py
"""
clean.py - profile generation and gcroot cleanup for nix

Run flow for one invocation:
- privilege gate (user mode refuses root, all mode elevates)
- discover profiles for the mode and plan each profile's generations
- plan auto gcroots (skipped in profile mode or with --no-gcroots)
- render the plan, ask for confirmation when requested (never in dry-run)
- remove tagged gcroots, then tagged generations, best-effort
- hand over to `nix store gc` and optionally `nix-store --optimise`

Planning reads the filesystem only. Individual removal failures are
logged and reported; only the collector failing aborts the run after
mutations started.
"""

from __future__ import annotations

import time
from typing import Any, Callable, Dict, List, Optional

from nhclean.config import Config, get_clean_config
from nhclean.fsops import FileSystem, remove_path_nofail
from nhclean.gcroots import GcRootScanner
from nhclean.generations import plan_generations
from nhclean.logging import get_logger
from nhclean.models import CleanMode, CleanPlan
from nhclean.profiles import ProfileDiscovery
from nhclean.report import ask_confirmation, confirm_or_abort, render_plan
from nhclean.system import System

logger = get_logger("clean")


class CleanManager:
    def __init__(self, cfg: Optional[Config] = None, fs: Optional[FileSystem] = None,
                 system: Optional[System] = None, prompt: Optional[Callable[[], bool]] = None,
                 presenter: Optional[Callable[[CleanPlan], None]] = None,
                 clock: Optional[Callable[[], float]] = None):
        self.cfg = get_clean_config(cfg)
        self.fs = fs or FileSystem()
        self.system = system or System(self.cfg.get("elevation_program", "sudo"))
        self.prompt = prompt or ask_confirmation
        self.presenter = presenter or render_plan
        self.clock = clock or time.time
        self.discovery = ProfileDiscovery(self.fs, self.system, self.cfg)

    # ----------------------------
    # planning
    # ----------------------------
    def plan(self, mode: CleanMode, argv: Optional[List[str]] = None) -> CleanPlan:
        self.discovery.ensure_privileges(mode, argv)
        now = self.clock()
        plan = CleanPlan(policy=mode.policy)

        for profile in self.discovery.discover(mode):
            plan.profiles[profile] = plan_generations(profile, mode.policy, fs=self.fs, now=now)

        if mode.scans_gcroots:
            scanner = GcRootScanner(self.cfg["gcroots_dir"], self.cfg["gcroot_patterns"], fs=self.fs)
            plan.patterns = list(scanner.patterns)
            plan.gcroots = scanner.plan(mode.policy, now=now)
        else:
            logger.debug("gcroot scan skipped (mode=%s, no_gcroots=%s)", mode.kind, mode.options.no_gcroots)
        return plan

    # ----------------------------
    # execution
    # ----------------------------
    def execute(self, plan: CleanPlan) -> Dict[str, Any]:
        """Remove every path tagged for removal. Never raises for a single path."""
        removed: List[str] = []
        failed: List[str] = []
        for path in plan.gcroots_to_remove():
            (removed if remove_path_nofail(self.fs, path) else failed).append(path)
        for generation in plan.generations_to_remove():
            (removed if remove_path_nofail(self.fs, generation.path) else failed).append(generation.path)
        if failed:
            logger.warning("%d path(s) could not be removed", len(failed))
        return {"removed": removed, "failed": failed}

    def collect_garbage(self, mode: CleanMode) -> Dict[str, bool]:
        opts = mode.options
        ran = {"gc": False, "optimise": False}
        if not opts.no_gc:
            cmd = list(self.cfg["gc_command"])
            if opts.max:
                cmd += ["--max", str(opts.max)]
            self.system.run(cmd, dry=opts.dry, message="Performing garbage collection on the nix store")
            ran["gc"] = not opts.dry
        if opts.optimise:
            self.system.run(list(self.cfg["optimise_command"]), dry=opts.dry, message="Optimising the nix store")
            ran["optimise"] = not opts.dry
        return ran

    # ----------------------------
    # run convenience for CLI
    # ----------------------------
    def run(self, mode: CleanMode, argv: Optional[List[str]] = None) -> Dict[str, Any]:
        opts = mode.options
        logger.debug("CleanManager.run mode=%s %s dry=%s ask=%s", mode.kind, mode.policy.describe(), opts.dry, opts.ask)
        plan = self.plan(mode, argv)
        self.presenter(plan)

        if opts.ask and not opts.dry:
            confirm_or_abort(self.prompt)

        result: Dict[str, Any] = {"removed": [], "failed": []}
        if not opts.dry:
            result = self.execute(plan)
        else:
            logger.info("[dry-run] %d gcroot(s) and %d generation(s) would be removed",
                        len(plan.gcroots_to_remove()), len(plan.generations_to_remove()))

        ran = self.collect_garbage(mode)

        return {
            "ok": not result["failed"],
            "dry_run": opts.dry,
            "plan": plan.to_dict(),
            "removed": result["removed"],
            "failed": result["failed"],
            "gc": ran["gc"],
            "optimise": ran["optimise"],
        }
