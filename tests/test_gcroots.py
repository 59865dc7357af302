from __future__ import annotations

import errno
import logging
import os
from datetime import timedelta
from pathlib import Path

import pytest

from conftest import DAY, HOUR, MINUTE, NOW, RecordingFS, make_link
from nhclean import fsops
from nhclean.errors import PlanError
from nhclean.fsops import ACCESS_DENIED
from nhclean.gcroots import GcRootScanner
from nhclean.policy import RetentionPolicy

WITHIN_HOUR = RetentionPolicy(keep=1, keep_since=timedelta(hours=1))


@pytest.fixture
def registry(tmp_path: Path) -> Path:
    auto = tmp_path / "gcroots" / "auto"
    auto.mkdir(parents=True)
    return auto


def _root(registry: Path, key: str, target: Path, age: float = DAY) -> Path:
    """Create a build output link at ``target`` aged ``age`` and register it."""
    make_link(target, f"/nix/store/{key * 32}-out", NOW - age)
    os.symlink(str(target), registry / key)
    return target


def test_old_build_links_are_removed_and_recent_ones_kept(tmp_path: Path, registry: Path) -> None:
    old = _root(registry, "a", tmp_path / "proj" / "result", age=2 * DAY)
    fresh = _root(registry, "b", tmp_path / "proj2" / ".direnv" / "flake-profile", age=10 * MINUTE)

    plan = GcRootScanner(str(registry)).plan(WITHIN_HOUR, now=NOW)

    assert plan == {str(old): True, str(fresh): False}


def test_targets_outside_the_allow_list_are_never_probed(tmp_path: Path, registry: Path) -> None:
    _root(registry, "c", tmp_path / "elsewhere" / "keepme", age=30 * DAY)
    fs = RecordingFS()

    plan = GcRootScanner(str(registry), fs=fs).plan(WITHIN_HOUR, now=NOW)

    assert plan == {}
    assert [c for c in fs.calls if c[0] in ("probe", "link_mtime")] == []


def test_missing_targets_are_dropped(tmp_path: Path, registry: Path) -> None:
    os.symlink(str(tmp_path / "gone" / "result"), registry / "d")
    os.symlink(str(tmp_path / "proj" / "result-bin"), registry / "e")

    plan = GcRootScanner(str(registry)).plan(WITHIN_HOUR, now=NOW)

    assert plan == {}


def test_denied_targets_are_dropped(tmp_path: Path, registry: Path) -> None:
    denied = _root(registry, "a", tmp_path / "other-user" / "result", age=2 * DAY)
    allowed = _root(registry, "b", tmp_path / "mine" / "result", age=2 * DAY)
    fs = RecordingFS(probe_overrides={str(denied): ACCESS_DENIED})

    plan = GcRootScanner(str(registry), fs=fs).plan(WITHIN_HOUR, now=NOW)

    assert plan == {str(allowed): True}


def test_unexpected_probe_error_is_fatal(tmp_path: Path, registry: Path) -> None:
    target = _root(registry, "a", tmp_path / "proj" / "result")
    fs = RecordingFS(probe_overrides={str(target): OSError(5, "Input/output error")})

    with pytest.raises(PlanError, match="Checking access for gcroot") as excinfo:
        GcRootScanner(str(registry), fs=fs).plan(WITHIN_HOUR, now=NOW)
    assert excinfo.value.path == str(target)


def test_dangling_build_link_is_still_a_candidate(tmp_path: Path, registry: Path) -> None:
    # the store path behind "result" may already be gone; the link itself is what gets removed
    target = _root(registry, "a", tmp_path / "proj" / "result", age=2 * DAY)
    assert not os.path.exists(target)

    plan = GcRootScanner(str(registry)).plan(WITHIN_HOUR, now=NOW)

    assert plan == {str(target): True}


def test_candidates_are_sorted_by_target(tmp_path: Path, registry: Path) -> None:
    for key, name in zip("zyxw", ("d", "b", "c", "a")):
        _root(registry, key, tmp_path / name / "result")

    plan = GcRootScanner(str(registry)).plan(WITHIN_HOUR, now=NOW)

    assert list(plan) == sorted(plan)
    assert len(plan) == 4


def test_no_count_rule_for_gcroots(tmp_path: Path, registry: Path) -> None:
    a = _root(registry, "a", tmp_path / "one" / "result", age=3 * DAY)
    b = _root(registry, "b", tmp_path / "two" / "result", age=2 * DAY)

    plan = GcRootScanner(str(registry)).plan(RetentionPolicy(keep=5), now=NOW)

    assert plan == {str(a): True, str(b): True}


def test_future_dated_gcroot_is_kept(tmp_path: Path, registry: Path, caplog: pytest.LogCaptureFixture) -> None:
    target = _root(registry, "a", tmp_path / "proj" / "result", age=-HOUR)

    with caplog.at_level(logging.WARNING):
        plan = GcRootScanner(str(registry)).plan(RetentionPolicy(), now=NOW)

    assert plan == {str(target): False}
    assert "in the future" in caplog.text


def test_non_symlink_registry_entry_is_skipped(tmp_path: Path, registry: Path, caplog: pytest.LogCaptureFixture) -> None:
    (registry / "stray").write_text("not a link")
    target = _root(registry, "a", tmp_path / "proj" / "result", age=2 * DAY)

    with caplog.at_level(logging.WARNING):
        plan = GcRootScanner(str(registry)).plan(WITHIN_HOUR, now=NOW)

    assert plan == {str(target): True}
    assert "stray" in caplog.text


def test_unreadable_registry_is_fatal(tmp_path: Path) -> None:
    with pytest.raises(PlanError, match="Reading auto gcroots dir"):
        GcRootScanner(str(tmp_path / "missing")).plan(WITHIN_HOUR, now=NOW)


def test_invalid_pattern_is_fatal(registry: Path) -> None:
    with pytest.raises(PlanError, match="invalid gcroot pattern"):
        GcRootScanner(str(registry), patterns=["(unclosed"])


def test_custom_patterns_replace_defaults(tmp_path: Path, registry: Path) -> None:
    default_match = _root(registry, "a", tmp_path / "proj" / "result", age=2 * DAY)
    custom = _root(registry, "b", tmp_path / "builds" / "out-link", age=2 * DAY)

    plan = GcRootScanner(str(registry), patterns=[r"/builds/"]).plan(WITHIN_HOUR, now=NOW)

    assert plan == {str(custom): True}
    assert str(default_match) not in plan


def test_read_only_target_aborts_the_scan(tmp_path: Path, registry: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    target = _root(registry, "a", tmp_path / "ro" / "result", age=2 * DAY)
    monkeypatch.setattr(fsops, "_faccessat", lambda dirfd, name, mode, flags: errno.EROFS)

    with pytest.raises(PlanError, match="Checking access for gcroot") as excinfo:
        GcRootScanner(str(registry)).plan(WITHIN_HOUR, now=NOW)

    assert excinfo.value.path == str(target)


def test_candidates_are_unique_sorted_targets(tmp_path: Path, registry: Path) -> None:
    second = _root(registry, "b", tmp_path / "zz" / "result")
    first = _root(registry, "c", tmp_path / "aa" / "result")
    os.symlink(str(second), registry / "d")

    assert GcRootScanner(str(registry)).candidates() == [str(first), str(second)]
