"""Cross-session reference counting of managed applications.

Two sessions launched side by side may share a managed application. Each
session takes a lease on every application it touches during setup; before
stopping an application at shutdown, a session checks whether any other live
session still holds a lease on it, and leaves the application running if so.

Leases are plain files, one per (application, session), in a runtime
directory:

    <runtime_dir>/leases/<app_id>/<session_id>.lease   (contents: owner pid)

No locking is needed: each session only writes and deletes its own files.
Leases whose owner pid is gone are ignored and swept.
"""

from __future__ import annotations

import os
import re
from pathlib import Path

import psutil

from gamedeck.logging import get_logger

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")
_LEASE_SUFFIX = ".lease"

logger = get_logger(__name__)


def _safe_name(value: str) -> str:
    safe = _UNSAFE_CHARS.sub("_", value)
    # "." and ".." are not usable as file names
    return safe if safe.strip(".") else safe.replace(".", "_")


class LeaseRegistry:
    """File-backed reference counts for applications shared between sessions.

    Attributes:
        root: Directory holding per-application lease directories
        session_id: Identifier of the owning session
        pid: Process id recorded in this session's lease files
    """

    def __init__(self, runtime_dir: Path, session_id: str, pid: int | None = None) -> None:
        self.root = runtime_dir / "leases"
        self.session_id = session_id
        self.pid = pid if pid is not None else os.getpid()
        self._held: set[str] = set()
        self._logger = logger.bind(component="LeaseRegistry")

    def _lease_path(self, app_id: str, session_id: str) -> Path:
        return self.root / _safe_name(app_id) / f"{_safe_name(session_id)}{_LEASE_SUFFIX}"

    def acquire(self, app_id: str) -> None:
        """Record that this session uses ``app_id``.

        Failures are logged and ignored; a missing lease only makes sharing
        less precise.
        """
        path = self._lease_path(app_id, self.session_id)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(str(self.pid), encoding="utf-8")
        except OSError as e:
            self._logger.warning("lease_acquire_failed", app_id=app_id, error=str(e))
            return
        self._held.add(app_id)
        self._logger.debug("lease_acquired", app_id=app_id)

    def other_holders(self, app_id: str) -> list[str]:
        """Return session ids of other live sessions holding ``app_id``.

        Lease files whose owner process no longer exists are removed.
        """
        app_dir = self.root / _safe_name(app_id)
        if not app_dir.is_dir():
            return []

        own_name = f"{_safe_name(self.session_id)}{_LEASE_SUFFIX}"
        holders: list[str] = []
        for lease in app_dir.glob(f"*{_LEASE_SUFFIX}"):
            if lease.name == own_name:
                continue
            try:
                owner_pid = int(lease.read_text(encoding="utf-8").strip())
            except (OSError, ValueError):
                continue

            if psutil.pid_exists(owner_pid):
                holders.append(lease.name[: -len(_LEASE_SUFFIX)])
            else:
                try:
                    lease.unlink(missing_ok=True)
                except OSError as e:
                    self._logger.warning("stale_lease_sweep_failed", lease=lease.name, error=str(e))
                    continue
                self._logger.debug("stale_lease_swept", app_id=app_id, lease=lease.name)
        return holders

    def release_all(self) -> None:
        """Remove every lease held by this session."""
        for app_id in sorted(self._held):
            try:
                self._lease_path(app_id, self.session_id).unlink(missing_ok=True)
            except OSError as e:
                self._logger.warning("lease_release_failed", app_id=app_id, error=str(e))
        self._logger.debug("leases_released", count=len(self._held))
        self._held.clear()

    @property
    def held(self) -> frozenset[str]:
        return frozenset(self._held)
