"""Process supervision for gamedeck.

This module wraps psutil and subprocess behind an async interface used by
managed application handlers, platform launchers, and the monitoring phase.
Blocking psutil calls run in worker threads via ``asyncio.to_thread``.

Example usage:
    >>> supervisor = ProcessSupervisor()
    >>> procs = await supervisor.find_processes(ProcessPattern.parse("obs64"))
    >>> if not procs:
    ...     await supervisor.start(Path("C:/obs/obs64.exe"), ["--minimize-to-tray"])
"""

from __future__ import annotations

import asyncio
import glob
import os
import re
import subprocess
import sys
from pathlib import Path
from typing import Sequence

import psutil

from gamedeck.errors import IntegrationError, WaitRefusedError
from gamedeck.logging import get_logger
from gamedeck.patterns import ProcessPattern

# %VAR% tokens, expanded on every platform
_WINDOWS_ENV_TOKEN = re.compile(r"%([^%]+)%")

logger = get_logger(__name__)


def expand_path_tokens(raw: str) -> str:
    """Expand ``%VAR%``, ``$VAR``/``${VAR}`` and ``~`` tokens in a path string."""

    def _replace(match: re.Match[str]) -> str:
        return os.environ.get(match.group(1), match.group(0))

    expanded = _WINDOWS_ENV_TOKEN.sub(_replace, raw)
    return os.path.expanduser(os.path.expandvars(expanded))


def resolve_executable_path(raw: str) -> Path:
    """Resolve a configured executable path to an existing file.

    Environment tokens are expanded first. If wildcard characters remain,
    the lexicographically last match wins, which selects the newest of
    several versioned install directories.

    Args:
        raw: Path as written in configuration

    Returns:
        Absolute path of an existing file

    Raises:
        IntegrationError: If the path is empty or nothing exists there
    """
    if not raw.strip():
        raise IntegrationError("No executable path configured")

    expanded = expand_path_tokens(raw.strip())
    if glob.has_magic(expanded):
        matches = sorted(m for m in glob.glob(expanded) if os.path.isfile(m))
        if not matches:
            raise IntegrationError(f"No executable matches {raw!r}")
        return Path(matches[-1]).resolve()

    path = Path(expanded)
    if not path.is_file():
        raise IntegrationError(f"Executable not found: {path}")
    return path.resolve()


class ProcessSupervisor:
    """Finds, starts, stops, and waits on operating-system processes."""

    def __init__(self) -> None:
        self._logger = logger.bind(component="ProcessSupervisor")
        # Children spawned here, held until their exit status is collected
        self._children: dict[int, subprocess.Popen[bytes]] = {}

    def reap_children(self) -> int:
        """Collect the exit status of spawned children that have exited.

        A child that exits on its own stays a zombie on POSIX until reaped.

        Returns:
            Number of children reaped
        """
        exited = [pid for pid, child in self._children.items() if child.poll() is not None]
        for pid in exited:
            child = self._children.pop(pid)
            self._logger.debug("child_reaped", pid=pid, returncode=child.returncode)
        return len(exited)

    async def find_processes(self, pattern: ProcessPattern) -> list[psutil.Process]:
        """Return all running processes whose name matches the pattern.

        Args:
            pattern: Parsed process-name pattern

        Returns:
            Matching process handles, possibly empty
        """
        self.reap_children()
        return await asyncio.to_thread(self._find_processes_sync, pattern)

    def _find_processes_sync(self, pattern: ProcessPattern) -> list[psutil.Process]:
        found: list[psutil.Process] = []
        for proc in psutil.process_iter(["name"]):
            try:
                name = proc.info.get("name") or ""
            except (psutil.NoSuchProcess, psutil.AccessDenied):
                continue
            if name and pattern.matches(name):
                found.append(proc)
        return found

    async def start(
        self,
        path: Path,
        args: Sequence[str] = (),
        cwd: Path | None = None,
    ) -> psutil.Process:
        """Start a detached process.

        Args:
            path: Executable to run
            args: Command-line arguments
            cwd: Working directory (defaults to the executable's directory)

        Returns:
            Handle of the started process

        Raises:
            IntegrationError: If the process could not be started
        """
        argv = [str(path), *args]
        kwargs: dict[str, object] = {
            "cwd": str(cwd or path.parent),
            "stdin": subprocess.DEVNULL,
            "stdout": subprocess.DEVNULL,
            "stderr": subprocess.DEVNULL,
        }
        if sys.platform == "win32":
            kwargs["creationflags"] = (
                subprocess.DETACHED_PROCESS | subprocess.CREATE_NEW_PROCESS_GROUP
            )
        else:
            kwargs["start_new_session"] = True

        try:
            popen = await asyncio.to_thread(subprocess.Popen, argv, **kwargs)
        except OSError as e:
            raise IntegrationError(f"Failed to start {path}: {e}") from e

        self._children[popen.pid] = popen
        self._logger.info("process_started", path=str(path), pid=popen.pid, args=list(args))
        try:
            return psutil.Process(popen.pid)
        except psutil.NoSuchProcess as e:
            raise IntegrationError(f"{path} exited immediately after start") from e

    async def stop(self, handle: psutil.Process, timeout: float = 5.0) -> bool:
        """Terminate a process, escalating to kill after ``timeout`` seconds.

        Args:
            handle: Process to stop
            timeout: Grace period before kill

        Returns:
            True if the process is gone afterwards, False otherwise
        """
        stopped = await asyncio.to_thread(self._stop_sync, handle, timeout)
        self.reap_children()
        return stopped

    def _stop_sync(self, handle: psutil.Process, timeout: float) -> bool:
        try:
            handle.terminate()
            try:
                handle.wait(timeout=timeout)
                return True
            except psutil.TimeoutExpired:
                pass

            self._logger.warning("process_kill_escalated", pid=handle.pid, timeout=timeout)
            handle.kill()
            handle.wait(timeout=timeout)
            return True
        except psutil.NoSuchProcess:
            return True
        except (psutil.AccessDenied, psutil.TimeoutExpired) as e:
            self._logger.error(
                "process_stop_failed",
                pid=handle.pid,
                error=str(e),
                error_type=type(e).__name__,
            )
            return False

    async def wait_for_exit(self, handle: psutil.Process, timeout: float | None = None) -> bool:
        """Block until the process exits or ``timeout`` elapses.

        Args:
            handle: Process to wait on
            timeout: Maximum seconds to wait (None waits indefinitely)

        Returns:
            True if the process exited, False on timeout

        Raises:
            WaitRefusedError: If the OS refuses the wait (e.g. the process
                runs at a higher privilege level)
        """
        try:
            await asyncio.to_thread(handle.wait, timeout)
            return True
        except psutil.TimeoutExpired:
            return False
        except psutil.NoSuchProcess:
            return True
        except (psutil.AccessDenied, PermissionError) as e:
            raise WaitRefusedError(f"Wait refused for pid {handle.pid}: {e}") from e

    async def is_running(self, handle: psutil.Process) -> bool:
        """Return True while the process is alive and not a zombie."""
        self.reap_children()
        return await asyncio.to_thread(self._is_running_sync, handle)

    @staticmethod
    def _is_running_sync(handle: psutil.Process) -> bool:
        try:
            return handle.is_running() and handle.status() != psutil.STATUS_ZOMBIE
        except psutil.NoSuchProcess:
            return False
        except psutil.AccessDenied:
            # Elevated processes refuse status(); existence is enough
            return psutil.pid_exists(handle.pid)

    async def open_uri(self, uri: str) -> None:
        """Hand a URI to the operating system's registered handler.

        Raises:
            OSError: If no handler could be invoked
        """
        self._logger.info("uri_opening", uri=uri)
        if sys.platform == "win32":
            await asyncio.to_thread(os.startfile, uri)  # type: ignore[attr-defined]
            return

        opener = "open" if sys.platform == "darwin" else "xdg-open"
        opener_proc = await asyncio.to_thread(
            subprocess.Popen,
            [opener, uri],
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            start_new_session=True,
        )
        self._children[opener_proc.pid] = opener_proc
