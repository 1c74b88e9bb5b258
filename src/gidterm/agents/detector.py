"""Discovery of running coding-agent processes."""

from __future__ import annotations

import logging
import os
import subprocess
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path

from gidterm.agents.commands import DETECTABLE_AGENTS, AgentType

logger = logging.getLogger(__name__)

DEFAULT_SCAN_INTERVAL_SECONDS = 5.0

PsRunner = Callable[[], str]


@dataclass(frozen=True, slots=True)
class AgentProcess:
    pid: int
    agent_type: AgentType
    command: str
    cwd: str | None = None


class ScanCache:
    """Holds the last scan result until ``ttl_seconds`` have passed."""

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_SCAN_INTERVAL_SECONDS,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._stored_at: float | None = None
        self._processes: tuple[AgentProcess, ...] = ()

    def get(self) -> tuple[AgentProcess, ...] | None:
        if self._stored_at is None:
            return None
        if self._clock() - self._stored_at >= self.ttl_seconds:
            return None
        return self._processes

    def store(self, processes: Sequence[AgentProcess]) -> None:
        self._processes = tuple(processes)
        self._stored_at = self._clock()

    def invalidate(self) -> None:
        self._stored_at = None
        self._processes = ()


def run_ps() -> str:
    """Process table as ``pid command`` lines; empty when ``ps`` is unavailable."""

    try:
        completed = subprocess.run(  # noqa: S603
            ["ps", "-eo", "pid,command"],  # noqa: S607
            capture_output=True,
            text=True,
            check=False,
            timeout=10,
        )
    except (OSError, subprocess.TimeoutExpired) as error:
        logger.warning("Process scan failed: %s", error)
        return ""
    if completed.returncode != 0:
        logger.warning("Process scan exited with %d", completed.returncode)
        return ""
    return completed.stdout


def match_agent(command: str) -> AgentType | None:
    """Agent type whose executable name appears among the first two command tokens.

    The second token covers interpreter launches such as ``node /usr/bin/claude``.
    """

    for token in command.split()[:2]:
        executable = os.path.basename(token).lower()
        for agent_type in DETECTABLE_AGENTS:
            if executable in agent_type.process_patterns:
                return agent_type
    return None


def parse_ps_output(
    output: str,
    *,
    cwd_lookup: Callable[[int], str | None] | None = None,
) -> list[AgentProcess]:
    """Agent processes found in ``ps -eo pid,command`` output; header skipped."""

    processes: list[AgentProcess] = []
    for line in output.splitlines()[1:]:
        parts = line.strip().split(None, 1)
        if len(parts) < 2 or not parts[0].isdigit():
            continue
        pid, command = int(parts[0]), parts[1].strip()
        agent_type = match_agent(command)
        if agent_type is None:
            continue
        cwd = cwd_lookup(pid) if cwd_lookup is not None else None
        processes.append(AgentProcess(pid=pid, agent_type=agent_type, command=command, cwd=cwd))
    return processes


def process_cwd(pid: int) -> str | None:
    try:
        return os.readlink(f"/proc/{pid}/cwd")
    except OSError:
        return None


def is_process_alive(pid: int) -> bool:
    """Signal-0 probe; a process owned by another user still counts as alive."""

    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


class AgentDetector:
    """Scans the process table for known agents, rate-limited by a ``ScanCache``."""

    def __init__(
        self,
        *,
        cache: ScanCache | None = None,
        runner: PsRunner = run_ps,
        cwd_lookup: Callable[[int], str | None] = process_cwd,
    ) -> None:
        self.cache = cache if cache is not None else ScanCache()
        self._runner = runner
        self._cwd_lookup = cwd_lookup

    def scan(self) -> list[AgentProcess]:
        cached = self.cache.get()
        if cached is not None:
            return list(cached)
        processes = parse_ps_output(self._runner(), cwd_lookup=self._cwd_lookup)
        self.cache.store(processes)
        logger.debug("Detected %d agent processes", len(processes))
        return processes

    def find_by_directory(self, directory: str | Path) -> AgentProcess | None:
        """First agent whose cwd is inside ``directory`` or contains it."""

        target = Path(directory).resolve()
        for process in self.scan():
            if process.cwd is None:
                continue
            cwd = Path(process.cwd)
            if cwd == target or cwd.is_relative_to(target) or target.is_relative_to(cwd):
                return process
        return None

    @staticmethod
    def is_process_alive(pid: int) -> bool:
        return is_process_alive(pid)
