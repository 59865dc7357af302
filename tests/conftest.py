from __future__ import annotations

import os
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence

import pytest

from nhclean import config as config_mod
from nhclean.errors import CommandError
from nhclean.fsops import FileSystem
from nhclean.system import Account, System

NOW = 1_700_000_000.0
MINUTE = 60
HOUR = 3600
DAY = 86400


class Elevated(Exception):
    """Raised by FakeSystem.elevate in place of exec()."""


class FakeSystem(System):
    def __init__(self, root: bool = False, users: Sequence[Account] = (), state_dir: str = "/nonexistent",
                 user: Optional[Account] = None, fail_commands: Iterable[str] = ()):
        super().__init__("sudo")
        self.root = root
        self._users = list(users)
        self._state_dir = state_dir
        self._user = user or Account(1000, "alice", "/home/alice")
        self.fail_commands = set(fail_commands)
        self.elevations: List[Optional[Sequence[str]]] = []
        self.commands: List[Dict[str, object]] = []

    def is_root(self) -> bool:
        return self.root

    def current_user(self) -> Account:
        return self._user

    def state_dir(self) -> str:
        return self._state_dir

    def users(self) -> List[Account]:
        return list(self._users)

    def elevate(self, argv=None) -> None:
        self.elevations.append(argv)
        raise Elevated()

    def run(self, cmd, dry=False, elevate=False, message=None) -> None:
        self.commands.append({"cmd": list(cmd), "dry": dry})
        if cmd[0] in self.fail_commands and not dry:
            raise CommandError(f"command {cmd[0]} exited with status 1", returncode=1)


class RecordingFS(FileSystem):
    """Real filesystem access, with a log of every call and optional injected failures."""

    def __init__(self, fail_remove: Iterable[str] = (), probe_overrides: Optional[Dict[str, object]] = None,
                 fail_mtime: Iterable[str] = ()):
        self.calls: List[tuple] = []
        self.fail_remove = set(fail_remove)
        self.probe_overrides = dict(probe_overrides or {})
        self.fail_mtime = set(fail_mtime)

    def list_dir(self, path):
        self.calls.append(("list_dir", path))
        return super().list_dir(path)

    def link_mtime(self, path):
        self.calls.append(("link_mtime", path))
        if path in self.fail_mtime:
            raise PermissionError(13, "Permission denied", path)
        return super().link_mtime(path)

    def probe_nofollow(self, path):
        self.calls.append(("probe", path))
        if path in self.probe_overrides:
            result = self.probe_overrides[path]
            if isinstance(result, BaseException):
                raise result
            return result
        return super().probe_nofollow(path)

    def remove(self, path):
        self.calls.append(("remove", path))
        if path in self.fail_remove:
            raise PermissionError(13, "Permission denied", path)
        super().remove(path)

    def mutations(self) -> List[tuple]:
        return [c for c in self.calls if c[0] == "remove"]

    def listed(self) -> List[str]:
        return [c[1] for c in self.calls if c[0] == "list_dir"]


def make_link(path: Path, target: str, mtime: float) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    os.symlink(target, path)
    os.utime(path, (mtime, mtime), follow_symlinks=False)
    return path


def make_profile(directory: Path, name: str, ages: Dict[int, float], now: float = NOW) -> Path:
    """Create ``name`` -> newest generation link plus one link per generation number, aged in seconds."""
    directory.mkdir(parents=True, exist_ok=True)
    for number, age in ages.items():
        make_link(directory / f"{name}-{number}-link", f"/nix/store/{number:032d}-{name}", now - age)
    newest = max(ages)
    profile = directory / name
    os.symlink(f"{name}-{newest}-link", profile)
    return profile


@pytest.fixture
def nix_root(tmp_path: Path) -> Path:
    root = tmp_path / "nixroot"
    (root / "profiles" / "per-user").mkdir(parents=True)
    (root / "gcroots" / "auto").mkdir(parents=True)
    return root


@pytest.fixture
def clean_cfg(nix_root: Path) -> config_mod.Config:
    return config_mod.from_dict({
        "clean": {
            "profiles_dir": str(nix_root / "profiles"),
            "per_user_profiles_dir": str(nix_root / "profiles" / "per-user"),
            "gcroots_dir": str(nix_root / "gcroots" / "auto"),
            "uid_min": 1000,
            "uid_span": 100,
        }
    })
