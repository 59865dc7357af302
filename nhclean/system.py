# nhclean/system.py
"""
system.py - process and account level collaborators

- is_root(): effective uid check
- elevate(): re-exec the current command line through sudo/doas (never returns)
- users(): (uid, name, home) for every local account
- run(): run an external command honoring dry-run, with a progress message
"""

from __future__ import annotations

import os
import pwd
import shutil
import subprocess
import sys
from typing import List, NamedTuple, Optional, Sequence

from nhclean.errors import CommandError, PrivilegeError
from nhclean.logging import get_logger

logger = get_logger("system")

# environment kept across the elevation boundary
PRESERVED_ENV = ("NHCLEAN_CONFIG", "NIX_PATH", "PATH", "HOME", "XDG_STATE_HOME")


class Account(NamedTuple):
    uid: int
    name: str
    home: str


class System:
    def __init__(self, elevation_program: str = "sudo"):
        self.elevation_program = elevation_program

    # ----------------------------
    # privileges
    # ----------------------------
    def is_root(self) -> bool:
        return os.geteuid() == 0

    def current_user(self) -> Account:
        uid = os.geteuid()
        try:
            pw = pwd.getpwuid(uid)
        except KeyError as e:
            raise PrivilegeError(f"no passwd entry for uid {uid}") from e
        return Account(pw.pw_uid, pw.pw_name, pw.pw_dir)

    def home_dir(self) -> str:
        return os.environ.get("HOME") or self.current_user().home

    def state_dir(self) -> str:
        return os.environ.get("XDG_STATE_HOME") or os.path.join(self.home_dir(), ".local", "state")

    def elevate(self, argv: Optional[Sequence[str]] = None) -> None:
        """
        Replace the current process with an elevated copy of itself.
        Only returns by raising PrivilegeError.
        """
        program = shutil.which(self.elevation_program)
        if not program:
            raise PrivilegeError(f"cannot elevate: {self.elevation_program} not found in PATH")
        args = list(argv if argv is not None else sys.argv[1:])
        cmd = [program]
        if os.path.basename(program) == "sudo":
            cmd.append("--preserve-env=" + ",".join(PRESERVED_ENV))
        cmd += [sys.executable, "-m", "nhclean", *args]
        logger.info("Re-executing with elevated privileges: %s", " ".join(cmd))
        sys.stdout.flush()
        sys.stderr.flush()
        try:
            os.execv(program, cmd)
        except OSError as e:
            raise PrivilegeError(f"failed to re-execute through {self.elevation_program}: {e}") from e

    # ----------------------------
    # accounts
    # ----------------------------
    def users(self) -> List[Account]:
        return [Account(pw.pw_uid, pw.pw_name, pw.pw_dir) for pw in pwd.getpwall()]

    # ----------------------------
    # external commands
    # ----------------------------
    def run(self, cmd: Sequence[str], dry: bool = False, elevate: bool = False, message: Optional[str] = None) -> None:
        """Run ``cmd`` to completion; a non-zero exit raises CommandError."""
        argv = list(cmd)
        if elevate and not self.is_root():
            argv = [self.elevation_program] + argv
        if message:
            logger.info("%s", message)
        if dry:
            logger.info("[dry-run] would run: %s", " ".join(argv))
            return
        logger.debug("Running %s", argv)
        try:
            proc = subprocess.run(argv, check=False)
        except OSError as e:
            raise CommandError(f"failed to start {argv[0]}: {e}") from e
        if proc.returncode != 0:
            raise CommandError(f"command {' '.join(argv)} exited with status {proc.returncode}", returncode=proc.returncode)
