from __future__ import annotations

import os
from pathlib import Path

import allure
import pytest

from gidterm.agents.commands import (
    AgentTask,
    AgentType,
    build_agent_command,
    build_agent_command_string,
)
from gidterm.agents.detector import (
    AgentDetector,
    AgentProcess,
    ScanCache,
    is_process_alive,
    match_agent,
    parse_ps_output,
)
from gidterm.agents.status import RuntimeStatus
from gidterm.agents.tracker import RuntimeTracker
from gidterm.semantic.metrics import ParsedMetrics

pytestmark = [
    allure.epic("Agents"),
    allure.feature("Agent Commands and Detection"),
]

PS_OUTPUT = """\
    PID COMMAND
      1 /sbin/init
    412 node /usr/local/bin/claude --resume
    418 /opt/codex/bin/codex exec fix tests
    420 python -m pip install pi
    433 opencode
  junk line
"""


class _FakeClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


@pytest.mark.parametrize(
    ("name", "expected"),
    [
        ("claude", AgentType.CLAUDE),
        ("Claude-Code", AgentType.CLAUDE),
        ("claudecode", AgentType.CLAUDE),
        ("codex", AgentType.CODEX),
        ("open-code", AgentType.OPENCODE),
        ("pi", AgentType.PI),
        ("aider", AgentType.GENERIC),
    ],
)
def test_agent_type_from_name(name: str, expected: AgentType) -> None:
    assert AgentType.from_name(name) == expected


def test_claude_auto_approve_command() -> None:
    task = AgentTask(agent=AgentType.CLAUDE, prompt="fix the build", auto_approve=True)

    assert build_agent_command(task) == ["claude", "--auto-approve", "fix the build"]


def test_auto_approve_is_claude_only() -> None:
    task = AgentTask(agent=AgentType.CODEX, prompt="go", args=("exec",), auto_approve=True)

    assert build_agent_command(task) == ["codex", "exec", "go"]


def test_generic_agent_uses_args_as_command_head() -> None:
    task = AgentTask(agent=AgentType.GENERIC, prompt="write docs", args=("aider", "--yes"))

    assert build_agent_command(task) == ["aider", "--yes", "write docs"]


def test_command_string_quotes_prompt() -> None:
    task = AgentTask(agent=AgentType.CLAUDE, prompt="it's done")

    assert build_agent_command_string(task) == "claude 'it'\"'\"'s done'"


def test_agent_display_names() -> None:
    assert AgentType.CLAUDE.display_name == "Claude Code"
    assert AgentType.GENERIC.executable is None


@pytest.mark.parametrize(
    ("command", "expected"),
    [
        ("claude", AgentType.CLAUDE),
        ("/usr/bin/codex --help", AgentType.CODEX),
        ("node /usr/lib/node_modules/claude-code/cli.js", None),
        ("node /usr/local/bin/claude", AgentType.CLAUDE),
        ("vim claude.md", None),
        ("pip install pi", None),
        ("", None),
    ],
)
def test_match_agent(command: str, expected: AgentType | None) -> None:
    assert match_agent(command) == expected


def test_parse_ps_output_skips_header_and_non_agents() -> None:
    processes = parse_ps_output(PS_OUTPUT, cwd_lookup=lambda pid: f"/work/{pid}")

    assert processes == [
        AgentProcess(412, AgentType.CLAUDE, "node /usr/local/bin/claude --resume", "/work/412"),
        AgentProcess(418, AgentType.CODEX, "/opt/codex/bin/codex exec fix tests", "/work/418"),
        AgentProcess(433, AgentType.OPENCODE, "opencode", "/work/433"),
    ]


def test_scan_cache_expires_after_ttl() -> None:
    clock = _FakeClock()
    cache = ScanCache(5.0, clock=clock)
    assert cache.get() is None

    cache.store([AgentProcess(1, AgentType.PI, "pi")])
    clock.now += 4
    assert cache.get() == (AgentProcess(1, AgentType.PI, "pi"),)

    clock.now += 1
    assert cache.get() is None


def test_detector_scans_once_per_interval() -> None:
    clock = _FakeClock()
    calls: list[int] = []

    def runner() -> str:
        calls.append(1)
        return PS_OUTPUT

    detector = AgentDetector(
        cache=ScanCache(5.0, clock=clock),
        runner=runner,
        cwd_lookup=lambda pid: None,
    )

    assert len(detector.scan()) == 3
    assert len(detector.scan()) == 3
    assert len(calls) == 1

    clock.now += 10
    detector.scan()
    assert len(calls) == 2


def test_detector_finds_agent_by_directory(tmp_path: Path) -> None:
    project = tmp_path / "project"
    nested = project / "src"
    nested.mkdir(parents=True)
    nested = nested.resolve()
    cwds = {412: str(nested), 418: str(tmp_path / "elsewhere")}
    detector = AgentDetector(runner=lambda: PS_OUTPUT, cwd_lookup=cwds.get)

    found = detector.find_by_directory(project)

    assert found is not None
    assert found.pid == 412
    assert detector.find_by_directory(tmp_path / "missing") is None


def test_is_process_alive() -> None:
    assert is_process_alive(os.getpid())
    assert AgentDetector.is_process_alive(os.getpid())
    assert not is_process_alive(0)
    assert not is_process_alive(-5)


def test_tracker_follows_output_and_exit() -> None:
    tracker = RuntimeTracker(history_lines=3)
    tracker.mark_started("agent")
    assert tracker.status("agent") == RuntimeStatus.RUNNING

    status = tracker.record_output("agent", "Thinking...", process_alive=True)
    assert status == RuntimeStatus.THINKING
    tracker.record_output("agent", "step", process_alive=True)
    tracker.record_output("agent", "step", process_alive=True)
    tracker.record_output("agent", "step", process_alive=True)

    assert tracker.lines("agent") == ["step", "step", "step"]
    assert tracker.runtime("agent").line_count == 4
    assert tracker.status("agent") == RuntimeStatus.RUNNING
    assert tracker.mark_exited("agent", failed=False) == RuntimeStatus.COMPLETED


def test_tracker_failure_and_waiting_states() -> None:
    tracker = RuntimeTracker()
    tracker.record_output("ask", "Proceed? [y/n]", process_alive=True)
    assert tracker.mark_exited("ask", failed=False) == RuntimeStatus.WAITING_INPUT
    assert tracker.mark_exited("ask", failed=True) == RuntimeStatus.ERROR


def test_tracker_defaults_for_unknown_task() -> None:
    tracker = RuntimeTracker()
    tracker.record_metrics("t", ParsedMetrics(progress=0.5))

    assert tracker.metrics("t") == ParsedMetrics(progress=0.5)
    assert tracker.status("other") == RuntimeStatus.NOT_RUNNING
    assert tracker.metrics("other") is None
    assert tracker.lines("other") == []
