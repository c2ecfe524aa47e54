"""Unit tests for cross-session application leases."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

from gamedeck.leases import LeaseRegistry


def test_other_holders_excludes_own_session(tmp_path: Path) -> None:
    mine = LeaseRegistry(tmp_path, session_id="mine")
    mine.acquire("obs")
    assert mine.other_holders("obs") == []


def test_other_live_session_is_reported(tmp_path: Path) -> None:
    mine = LeaseRegistry(tmp_path, session_id="mine")
    theirs = LeaseRegistry(tmp_path, session_id="theirs")
    mine.acquire("obs")
    theirs.acquire("obs")

    assert mine.other_holders("obs") == ["theirs"]
    assert mine.other_holders("discord") == []


def test_stale_lease_is_swept(tmp_path: Path) -> None:
    mine = LeaseRegistry(tmp_path, session_id="mine")
    dead = LeaseRegistry(tmp_path, session_id="dead", pid=999_999)
    dead.acquire("obs")

    with patch("gamedeck.leases.psutil.pid_exists", return_value=False):
        assert mine.other_holders("obs") == []

    assert not any((tmp_path / "leases" / "obs").glob("*.lease"))


def test_release_all_removes_only_own_leases(tmp_path: Path) -> None:
    mine = LeaseRegistry(tmp_path, session_id="mine")
    theirs = LeaseRegistry(tmp_path, session_id="theirs")
    mine.acquire("obs")
    mine.acquire("discord")
    theirs.acquire("obs")

    mine.release_all()

    assert mine.held == frozenset()
    assert theirs.other_holders("obs") == []
    assert mine.other_holders("obs") == ["theirs"]


def test_unreadable_lease_is_ignored(tmp_path: Path) -> None:
    lease_dir = tmp_path / "leases" / "obs"
    lease_dir.mkdir(parents=True)
    (lease_dir / "garbage.lease").write_text("not-a-pid", encoding="utf-8")

    assert LeaseRegistry(tmp_path, session_id="mine").other_holders("obs") == []


def test_acquire_failure_is_not_raised(tmp_path: Path) -> None:
    blocker = tmp_path / "leases"
    blocker.write_text("a file where a directory should be", encoding="utf-8")
    registry = LeaseRegistry(tmp_path, session_id="mine")

    registry.acquire("obs")

    assert registry.held == frozenset()


def test_unsafe_ids_are_sanitised(tmp_path: Path) -> None:
    registry = LeaseRegistry(tmp_path, session_id="a/b")
    registry.acquire("../obs")

    leases = list((tmp_path / "leases").rglob("*.lease"))
    assert len(leases) == 1
    assert leases[0].is_relative_to(tmp_path / "leases")
