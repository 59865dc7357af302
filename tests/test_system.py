from __future__ import annotations

import sys
from typing import List, Optional

import pytest

from nhclean import system as system_mod
from nhclean.errors import CommandError, PrivilegeError
from nhclean.system import PRESERVED_ENV, System


class Execv:
    def __init__(self, error: Optional[Exception] = None):
        self.error = error
        self.calls: List[tuple] = []

    def __call__(self, program, argv) -> None:
        self.calls.append((program, list(argv)))
        if self.error:
            raise self.error


def test_elevate_reexecs_through_sudo(monkeypatch: pytest.MonkeyPatch) -> None:
    execv = Execv()
    monkeypatch.setattr(system_mod.shutil, "which", lambda name: f"/run/wrappers/bin/{name}")
    monkeypatch.setattr(system_mod.os, "execv", execv)

    System("sudo").elevate(["all", "--keep", "3"])

    program, argv = execv.calls[0]
    assert program == "/run/wrappers/bin/sudo"
    assert argv == [
        "/run/wrappers/bin/sudo",
        "--preserve-env=" + ",".join(PRESERVED_ENV),
        sys.executable, "-m", "nhclean", "all", "--keep", "3",
    ]


def test_elevate_with_other_program_skips_preserve_env(monkeypatch: pytest.MonkeyPatch) -> None:
    execv = Execv()
    monkeypatch.setattr(system_mod.shutil, "which", lambda name: f"/usr/bin/{name}")
    monkeypatch.setattr(system_mod.os, "execv", execv)

    System("doas").elevate(["all"])

    assert execv.calls[0][1] == ["/usr/bin/doas", sys.executable, "-m", "nhclean", "all"]


def test_elevate_without_program_in_path(monkeypatch: pytest.MonkeyPatch) -> None:
    execv = Execv()
    monkeypatch.setattr(system_mod.shutil, "which", lambda name: None)
    monkeypatch.setattr(system_mod.os, "execv", execv)

    with pytest.raises(PrivilegeError, match="not found in PATH"):
        System("sudo").elevate(["all"])
    assert execv.calls == []


def test_elevate_exec_failure(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(system_mod.shutil, "which", lambda name: "/usr/bin/sudo")
    monkeypatch.setattr(system_mod.os, "execv", Execv(PermissionError(13, "Permission denied")))

    with pytest.raises(PrivilegeError, match="failed to re-execute"):
        System("sudo").elevate(["all"])


def test_run_succeeds() -> None:
    System().run(["true"])


def test_run_nonzero_exit_is_command_error() -> None:
    with pytest.raises(CommandError) as excinfo:
        System().run(["false"])

    assert excinfo.value.returncode == 1


def test_run_spawn_failure_is_command_error() -> None:
    with pytest.raises(CommandError, match="failed to start"):
        System().run(["nhclean-no-such-program-here"])


def test_dry_run_spawns_nothing(monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture) -> None:
    def spawn(*args, **kwargs):
        raise AssertionError("subprocess.run called in dry-run")

    monkeypatch.setattr(system_mod.subprocess, "run", spawn)

    with caplog.at_level("INFO"):
        System().run(["nix", "store", "gc"], dry=True, message="Performing garbage collection on the nix store")

    assert "[dry-run] would run: nix store gc" in caplog.text
    assert "Performing garbage collection" in caplog.text


def test_run_elevates_command_when_unprivileged(monkeypatch: pytest.MonkeyPatch) -> None:
    seen = []

    class Done:
        returncode = 0

    def spawn(argv, check):
        seen.append(argv)
        return Done()

    monkeypatch.setattr(system_mod.subprocess, "run", spawn)
    system = System("sudo")
    monkeypatch.setattr(system, "is_root", lambda: False)

    system.run(["nix-store", "--optimise"], elevate=True)

    assert seen == [["sudo", "nix-store", "--optimise"]]


def test_state_dir_prefers_xdg(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("XDG_STATE_HOME", "/custom/state")
    assert System().state_dir() == "/custom/state"

    monkeypatch.delenv("XDG_STATE_HOME")
    monkeypatch.setenv("HOME", "/home/alice")
    assert System().state_dir() == "/home/alice/.local/state"
