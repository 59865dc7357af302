#!/usr/bin/env python3
# nhclean/cli.py
"""
nhclean CLI

    nhclean all      clean every profile on the system (runs as root)
    nhclean user     clean the current user's profiles (refuses root)
    nhclean profile  clean one explicit profile, gcroots untouched

Defaults for --keep/--keep-since and every path come from the config
file (see nhclean.config); flags win over the config.
"""

from __future__ import annotations

import argparse
import sys
from typing import List, Optional

from nhclean import __version__
from nhclean import config as config_mod
from nhclean import logging as log_mod
from nhclean.clean import CleanManager
from nhclean.errors import ConfigError, NhcleanError
from nhclean.models import MODE_ALL, MODE_PROFILE, MODE_USER, CleanMode, CleanOptions
from nhclean.policy import RetentionPolicy, parse_duration
from nhclean.report import get_console, get_err_console, print_err, print_ok, print_warn

logger = log_mod.get_logger("cli")


def _keep_count(value: str) -> int:
    try:
        n = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid count: {value!r}")
    if n < 0:
        raise argparse.ArgumentTypeError("keep must be >= 0")
    return n


def _duration(value: str):
    try:
        return parse_duration(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e))


def _common_args() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("-k", "--keep", type=_keep_count, default=None,
                        help="At least keep this number of generations (default 1)")
    common.add_argument("-K", "--keep-since", type=_duration, default=None,
                        help="At least keep gcroots and generations in this time range since now, e.g. 1h, 2d, 1w (default 0h)")
    common.add_argument("-n", "--dry", action="store_true", help="Only print actions, without performing them")
    common.add_argument("-a", "--ask", action="store_true", help="Ask for confirmation")
    common.add_argument("--no-gc", "--nogc", dest="no_gc", action="store_true", help="Don't run nix store gc")
    common.add_argument("--no-gcroots", "--nogcroots", dest="no_gcroots", action="store_true", help="Don't clean gcroots")
    common.add_argument("--optimise", action="store_true", help="Run nix-store --optimise after gc")
    common.add_argument("--max", default=None, help="Pass --max to nix store gc")
    return common


def make_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="nhclean", description="Enhanced nix cleanup: profile generations and gcroots")
    ap.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    ap.add_argument("--config", default=None, help="Explicit config file (YAML or JSON)")
    verbosity = ap.add_mutually_exclusive_group()
    verbosity.add_argument("-v", "--verbose", action="store_true", help="Show debug logging")
    verbosity.add_argument("-q", "--quiet", action="store_true", help="Only show warnings and errors")
    ap.add_argument("--no-color", action="store_true", help="Disable colored output")

    common = _common_args()
    sub = ap.add_subparsers(dest="mode", metavar="{all,user,profile}")
    sub.required = True
    sub.add_parser(MODE_ALL, parents=[common], help="Clean all profiles")
    sub.add_parser(MODE_USER, parents=[common], help="Clean the current user's profiles")
    p_profile = sub.add_parser(MODE_PROFILE, parents=[common], help="Clean a specific profile")
    p_profile.add_argument("profile", help="Which profile to clean")
    return ap


def build_mode(args: argparse.Namespace, cfg: config_mod.Config) -> CleanMode:
    clean_cfg = config_mod.get_clean_config(cfg)
    keep = args.keep if args.keep is not None else clean_cfg.get("keep", 1)
    keep_since = args.keep_since if args.keep_since is not None else clean_cfg.get("keep_since", "0h")
    try:
        policy = RetentionPolicy.from_values(keep, keep_since)
    except ValueError as e:
        raise ConfigError(f"invalid retention policy in config: {e}") from e
    options = CleanOptions(
        dry=args.dry,
        ask=args.ask,
        no_gc=args.no_gc,
        no_gcroots=args.no_gcroots,
        optimise=args.optimise,
        max=args.max,
    )
    return CleanMode(kind=args.mode, policy=policy, options=options,
                     profile=getattr(args, "profile", None))


def main(argv: Optional[List[str]] = None, manager: Optional[CleanManager] = None) -> int:
    argv = list(argv) if argv is not None else sys.argv[1:]
    parser = make_parser()
    args = parser.parse_args(argv)

    if args.no_color:
        get_console().no_color = True
        get_err_console().no_color = True

    try:
        cfg = config_mod.load(args.config) if args.config else config_mod.get_config()
        if args.config:
            log_mod.reload_config()
        if args.verbose:
            log_mod.set_level("DEBUG")
        elif args.quiet:
            log_mod.set_level("WARNING")

        mode = build_mode(args, cfg)
        manager = manager or CleanManager(cfg=cfg)
        result = manager.run(mode, argv=argv)
    except KeyboardInterrupt:
        print_err("Interrupted")
        return 130
    except NhcleanError as e:
        logger.debug("fatal error", exc_info=True)
        print_err(str(e))
        return 1

    if result["dry_run"]:
        print_ok("Dry run complete, nothing was removed")
    else:
        if result["failed"]:
            print_warn(f"{len(result['failed'])} path(s) could not be removed, see log")
        print_ok(f"Removed {len(result['removed'])} path(s)")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
