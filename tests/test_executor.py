from __future__ import annotations

import contextlib
import os
import signal
import time
from collections.abc import Callable
from pathlib import Path

import allure
import pytest

from gidterm.core.errors import SpawnError
from gidterm.core.events import TaskCompleted, TaskEvent, TaskFailed, TaskOutput, TaskStarted
from gidterm.core.executor import Executor, _split_lines

pytestmark = [
    allure.epic("Execution"),
    allure.feature("PTY Executor"),
]


def _collect(executor: Executor, task_ids: set[str], *, timeout: float = 20.0) -> list[TaskEvent]:
    """Poll until every task in ``task_ids`` has produced its terminal event."""

    events: list[TaskEvent] = []
    remaining = set(task_ids)
    deadline = time.monotonic() + timeout
    while remaining and time.monotonic() < deadline:
        for event in executor.poll_events(0.2):
            events.append(event)
            if isinstance(event, (TaskCompleted, TaskFailed)):
                remaining.discard(event.task_id)
    assert not remaining, f"no terminal event for {sorted(remaining)}"
    return events


def _lines(events: list[TaskEvent], task_id: str) -> list[str]:
    return [
        event.line
        for event in events
        if isinstance(event, TaskOutput) and event.task_id == task_id
    ]


def test_events_arrive_in_order_with_exit_code(python_command: Callable[[str], str]) -> None:
    executor = Executor()
    pid = executor.start_task("count", python_command("for i in range(5): print(f'line {i}')"))

    events = _collect(executor, {"count"})

    assert isinstance(events[0], TaskStarted)
    assert events[0].pid == pid
    assert _lines(events, "count") == [f"line {i}" for i in range(5)]
    assert events[-1] == TaskCompleted(task_id="count", exit_code=0)


def test_nonzero_exit_code_is_reported_not_interpreted(
    python_command: Callable[[str], str],
) -> None:
    executor = Executor()
    executor.start_task("broken", python_command("import sys; print('oops'); sys.exit(3)"))

    events = _collect(executor, {"broken"})

    assert events[-1] == TaskCompleted(task_id="broken", exit_code=3)


def test_signal_death_maps_to_128_plus_signum(python_command: Callable[[str], str]) -> None:
    executor = Executor()
    executor.start_task(
        "killed",
        python_command("import os, signal; os.kill(os.getpid(), signal.SIGTERM)"),
    )

    events = _collect(executor, {"killed"})

    assert events[-1] == TaskCompleted(task_id="killed", exit_code=143)


def test_carriage_returns_split_lines_and_partial_line_is_flushed(
    python_command: Callable[[str], str],
) -> None:
    executor = Executor()
    executor.start_task(
        "progress",
        python_command(
            "import sys; sys.stdout.write('10%\\r50%\\r100%\\n'); sys.stdout.write('tail')",
        ),
    )

    events = _collect(executor, {"progress"})

    assert _lines(events, "progress") == ["10%", "50%", "100%", "tail"]


def test_undecodable_bytes_are_replaced_and_ansi_is_stripped(
    python_command: Callable[[str], str],
) -> None:
    executor = Executor()
    executor.start_task(
        "bytes",
        python_command(
            "import os; os.write(1, b'bad \\xff byte\\n'); "
            "os.write(1, b'\\x1b[31mred\\x1b[0m\\n')",
        ),
    )

    events = _collect(executor, {"bytes"})

    assert _lines(events, "bytes") == ["bad \ufffd byte", "red"]


def test_stderr_shares_the_terminal(python_command: Callable[[str], str]) -> None:
    executor = Executor()
    executor.start_task(
        "mixed",
        python_command("import sys; print('out', flush=True); print('err', file=sys.stderr)"),
    )

    events = _collect(executor, {"mixed"})

    assert _lines(events, "mixed") == ["out", "err"]


def test_per_task_order_holds_with_concurrent_tasks(
    python_command: Callable[[str], str],
) -> None:
    executor = Executor()
    for name in ("a", "b", "c"):
        executor.start_task(name, python_command(f"for i in range(50): print('{name}', i)"))

    events = _collect(executor, {"a", "b", "c"})

    for name in ("a", "b", "c"):
        assert _lines(events, name) == [f"{name} {i}" for i in range(50)]


def test_spawn_failure_raises_and_queues_failed_event(tmp_path: Path) -> None:
    executor = Executor()

    with pytest.raises(SpawnError):
        executor.start_task("nowhere", "true", cwd=str(tmp_path / "missing"))

    events = executor.poll_events()
    assert len(events) == 1
    assert isinstance(events[0], TaskFailed)
    assert events[0].error.startswith("spawn failed")


def test_empty_command_is_a_spawn_failure() -> None:
    executor = Executor()

    with pytest.raises(SpawnError):
        executor.start_task("blank", "   ")

    assert [type(event) for event in executor.poll_events()] == [TaskFailed]


def test_cancel_terminates_process_group(python_command: Callable[[str], str]) -> None:
    executor = Executor(cancel_grace_seconds=1.0)
    executor.start_task(
        "sleeper",
        python_command("import time; print('up', flush=True); time.sleep(60)"),
    )
    started = time.monotonic()
    while not executor.is_alive("sleeper") and time.monotonic() - started < 5:
        time.sleep(0.05)

    assert executor.cancel_task("sleeper")
    events = _collect(executor, {"sleeper"}, timeout=10.0)

    assert events[-1] == TaskFailed(task_id="sleeper", error="cancelled")
    assert time.monotonic() - started < 10
    assert not executor.is_alive("sleeper")
    assert executor.running_task_ids() == []


def test_cancel_unknown_task_returns_false() -> None:
    assert Executor().cancel_task("ghost") is False


def test_poll_events_is_non_blocking_when_idle() -> None:
    executor = Executor()
    started = time.monotonic()

    assert executor.poll_events() == []
    assert time.monotonic() - started < 0.5


def test_split_lines_holds_trailing_carriage_return() -> None:
    assert _split_lines("a\r\nb\rc\nrest") == (["a", "b", "c"], "rest")
    assert _split_lines("half\r") == ([], "half\r")
    assert _split_lines("\n") == ([""], "")


def test_shutdown_cancels_everything_still_running(python_command: Callable[[str], str]) -> None:
    executor = Executor(cancel_grace_seconds=1.0)
    pids = {
        task_id: executor.start_task(task_id, python_command("import time; time.sleep(60)"))
        for task_id in ("one", "two")
    }

    assert executor.pid("one") == pids["one"]
    assert executor.pid("ghost") is None
    assert executor.running_task_ids() == ["one", "two"]

    executor.shutdown(timeout=10.0)
    events = executor.poll_events()

    failures = sorted(
        (event.task_id, event.error) for event in events if isinstance(event, TaskFailed)
    )
    assert failures == [("one", "cancelled"), ("two", "cancelled")]
    assert executor.running_task_ids() == []
    assert executor.wait("one", timeout=1.0)


def test_command_with_null_byte_is_a_spawn_failure() -> None:
    executor = Executor()

    with pytest.raises(SpawnError, match="null byte"):
        executor.start_task("nul", "echo hi\x00there")

    events = executor.poll_events()
    assert [type(event) for event in events] == [TaskFailed]
    assert events[0].error.startswith("spawn failed")
    assert executor.running_task_ids() == []


def test_completion_does_not_wait_for_background_children() -> None:
    executor = Executor()
    pid = executor.start_task("bg", "sleep 5 & echo parent-done")
    started = time.monotonic()
    try:
        events = _collect(executor, {"bg"}, timeout=10.0)
        elapsed = time.monotonic() - started
    finally:
        with contextlib.suppress(ProcessLookupError, PermissionError):
            os.killpg(pid, signal.SIGKILL)

    assert _lines(events, "bg") == ["parent-done"]
    assert events[-1] == TaskCompleted(task_id="bg", exit_code=0)
    assert elapsed < 3.0
