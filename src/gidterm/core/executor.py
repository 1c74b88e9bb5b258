"""Supervised PTY processes for running tasks."""

from __future__ import annotations

import codecs
import errno
import logging
import os
import pty
import queue
import re
import select
import signal
import subprocess
import threading
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import NoReturn

from gidterm.core.errors import SpawnError
from gidterm.core.events import (
    CANCELLED_ERROR,
    TaskCompleted,
    TaskEvent,
    TaskFailed,
    TaskOutput,
    TaskStarted,
)

logger = logging.getLogger(__name__)

_READ_CHUNK_BYTES = 4096
_SELECT_INTERVAL_SECONDS = 0.05
_EXIT_DRAIN_SECONDS = 0.5
_LINE_BREAK = re.compile(r"\r\n|\r|\n")
_ANSI_ESCAPE = re.compile(
    r"\x1b\[[0-?]*[ -/]*[@-~]|\x1b\][^\x07\x1b]*(?:\x07|\x1b\\)|\x1b[@-Z\\-_]",
)


@dataclass(slots=True)
class _SupervisedProcess:
    task_id: str
    process: subprocess.Popen[bytes]
    master_fd: int
    cancelled: threading.Event = field(default_factory=threading.Event)
    reader: threading.Thread | None = None


class Executor:
    """Runs one PTY-attached process per task and reports events on one queue.

    Each task gets a daemon reader thread that turns the PTY byte stream into
    ``TaskOutput`` lines and finishes with exactly one ``TaskCompleted`` or
    ``TaskFailed``. The queue is the only channel back to the consumer.
    """

    def __init__(
        self,
        *,
        cancel_grace_seconds: float = 2.0,
        env: Mapping[str, str] | None = None,
    ) -> None:
        self.cancel_grace_seconds = cancel_grace_seconds
        self._base_env = dict(env) if env is not None else None
        self._events: queue.Queue[TaskEvent] = queue.Queue()
        self._processes: dict[str, _SupervisedProcess] = {}
        self._lock = threading.Lock()

    def start_task(
        self,
        task_id: str,
        command: str,
        *,
        cwd: str | None = None,
    ) -> int:
        """Spawn ``command`` through the shell on a fresh pseudo-terminal.

        Returns the child pid. On failure a ``TaskFailed`` event is queued and
        ``SpawnError`` is raised.
        """

        if not command.strip():
            self._spawn_failed(task_id, "empty command")
        with self._lock:
            existing = self._processes.get(task_id)
        if existing is not None and existing.process.poll() is None:
            raise SpawnError(task_id, "task already has a running process")

        try:
            master_fd, slave_fd = pty.openpty()
        except OSError as error:
            self._spawn_failed(task_id, f"could not allocate pseudo-terminal: {error}", error)

        try:
            process = subprocess.Popen(  # noqa: S602
                command,
                shell=True,
                stdin=slave_fd,
                stdout=slave_fd,
                stderr=slave_fd,
                cwd=cwd,
                env=self._child_env(),
                start_new_session=True,
                close_fds=True,
            )
        except (OSError, ValueError, subprocess.SubprocessError) as error:
            os.close(master_fd)
            self._spawn_failed(task_id, str(error), error)
        finally:
            os.close(slave_fd)

        supervised = _SupervisedProcess(task_id=task_id, process=process, master_fd=master_fd)
        with self._lock:
            self._processes[task_id] = supervised

        self._events.put(TaskStarted(task_id=task_id, pid=process.pid))
        reader = threading.Thread(
            target=self._supervise,
            args=(supervised,),
            name=f"gidterm-reader-{task_id}",
            daemon=True,
        )
        supervised.reader = reader
        reader.start()
        logger.info("Spawned task %s (pid=%d): %s", task_id, process.pid, command)
        return process.pid

    def cancel_task(self, task_id: str) -> bool:
        """Terminate the task's process group; returns False if nothing was running."""

        with self._lock:
            supervised = self._processes.get(task_id)
        if supervised is None or supervised.process.poll() is not None:
            return False

        supervised.cancelled.set()
        logger.info("Cancelling task %s (pid=%d)", task_id, supervised.process.pid)
        _terminate_process_group(supervised.process, grace_seconds=self.cancel_grace_seconds)
        return True

    def poll_events(
        self,
        timeout: float | None = 0.0,
        *,
        max_events: int | None = None,
    ) -> list[TaskEvent]:
        """Drain queued events, waiting up to ``timeout`` seconds for the first one."""

        drained: list[TaskEvent] = []
        try:
            if timeout is None or timeout > 0:
                drained.append(self._events.get(timeout=timeout))
            else:
                drained.append(self._events.get_nowait())
        except queue.Empty:
            return drained

        while max_events is None or len(drained) < max_events:
            try:
                drained.append(self._events.get_nowait())
            except queue.Empty:
                break
        return drained

    def is_alive(self, task_id: str) -> bool:
        with self._lock:
            supervised = self._processes.get(task_id)
        return supervised is not None and supervised.process.poll() is None

    def pid(self, task_id: str) -> int | None:
        with self._lock:
            supervised = self._processes.get(task_id)
        return supervised.process.pid if supervised is not None else None

    def running_task_ids(self) -> list[str]:
        with self._lock:
            candidates = list(self._processes.values())
        return sorted(item.task_id for item in candidates if item.process.poll() is None)

    def wait(self, task_id: str, timeout: float | None = None) -> bool:
        """Block until the task's reader has emitted its final event."""

        with self._lock:
            supervised = self._processes.get(task_id)
        if supervised is None or supervised.reader is None:
            return True
        supervised.reader.join(timeout)
        return not supervised.reader.is_alive()

    def shutdown(self, timeout: float | None = 5.0) -> None:
        """Cancel every running task and wait for readers to finish."""

        for task_id in self.running_task_ids():
            self.cancel_task(task_id)
        with self._lock:
            readers = [item.reader for item in self._processes.values() if item.reader is not None]
        for reader in readers:
            reader.join(timeout)

    def _child_env(self) -> dict[str, str]:
        env = dict(self._base_env) if self._base_env is not None else os.environ.copy()
        env.setdefault("TERM", "xterm")
        return env

    def _spawn_failed(
        self,
        task_id: str,
        message: str,
        cause: Exception | None = None,
    ) -> NoReturn:
        logger.warning("Task %s failed to start: %s", task_id, message)
        self._events.put(TaskFailed(task_id=task_id, error=f"spawn failed: {message}"))
        raise SpawnError(task_id, message) from cause

    def _supervise(self, supervised: _SupervisedProcess) -> None:
        task_id = supervised.task_id
        try:
            read_error = self._stream_output(supervised)
            if read_error is not None:
                _terminate_process_group(
                    supervised.process,
                    grace_seconds=self.cancel_grace_seconds,
                )
            returncode = supervised.process.wait()
        except Exception as error:  # noqa: BLE001
            logger.exception("Supervision of task %s crashed", task_id)
            self._events.put(TaskFailed(task_id=task_id, error=f"supervision error: {error}"))
            return

        if supervised.cancelled.is_set():
            self._events.put(TaskFailed(task_id=task_id, error=CANCELLED_ERROR))
        elif read_error is not None:
            message = f"output stream error: {read_error}"
            self._events.put(TaskFailed(task_id=task_id, error=message))
        else:
            exit_code = 128 - returncode if returncode < 0 else returncode
            self._events.put(TaskCompleted(task_id=task_id, exit_code=exit_code))
        logger.info("Task %s process exited with %d", task_id, returncode)

    def _stream_output(self, supervised: _SupervisedProcess) -> OSError | None:
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        pending = ""
        read_error: OSError | None = None
        drain_deadline: float | None = None
        try:
            while True:
                # Background children may keep the terminal open after the shell
                # exits; only what is already buffered is read past that point.
                timeout = 0.0 if drain_deadline is not None else _SELECT_INTERVAL_SECONDS
                readable, _, _ = select.select([supervised.master_fd], [], [], timeout)
                if not readable:
                    if drain_deadline is not None:
                        break
                    if supervised.process.poll() is not None:
                        drain_deadline = time.monotonic() + _EXIT_DRAIN_SECONDS
                    continue
                if drain_deadline is not None and time.monotonic() > drain_deadline:
                    break
                try:
                    chunk = os.read(supervised.master_fd, _READ_CHUNK_BYTES)
                except OSError as error:
                    # Linux reports EIO once every slave descriptor is closed.
                    if error.errno != errno.EIO:
                        read_error = error
                    break
                if not chunk:
                    break
                lines, pending = _split_lines(pending + decoder.decode(chunk))
                self._emit_lines(supervised.task_id, lines)
        finally:
            os.close(supervised.master_fd)

        pending = (pending + decoder.decode(b"", final=True)).rstrip("\r")
        if pending:
            self._emit_lines(supervised.task_id, [pending])
        return read_error

    def _emit_lines(self, task_id: str, lines: list[str]) -> None:
        for line in lines:
            self._events.put(TaskOutput(task_id=task_id, line=_ANSI_ESCAPE.sub("", line)))


def _split_lines(buffer: str) -> tuple[list[str], str]:
    """Split complete lines off ``buffer``; a trailing CR is held for a possible LF."""

    held = ""
    if buffer.endswith("\r"):
        buffer, held = buffer[:-1], "\r"
    parts = _LINE_BREAK.split(buffer)
    return parts[:-1], parts[-1] + held


def _terminate_process_group(process: subprocess.Popen[bytes], *, grace_seconds: float) -> None:
    try:
        os.killpg(process.pid, signal.SIGTERM)
    except (ProcessLookupError, PermissionError):
        return
    try:
        process.wait(timeout=grace_seconds)
    except subprocess.TimeoutExpired:
        try:
            os.killpg(process.pid, signal.SIGKILL)
        except (ProcessLookupError, PermissionError):
            return
        process.wait(timeout=grace_seconds)
