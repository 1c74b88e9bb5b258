from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import allure
import pytest
from click.testing import CliRunner

from gidterm import __version__, controllers
from gidterm.agents.detector import AgentDetector
from gidterm.main import gidterm

pytestmark = [
    allure.epic("Command Line"),
    allure.feature("gidterm CLI"),
]


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "GIDTERM_GRAPH_PATH",
        "GIDTERM_DB_PATH",
        "GIDTERM_LOG_LEVEL",
        "GIDTERM_MAX_PARALLEL",
        "GIDTERM_FAIL_ON_NONZERO_EXIT",
        "GIDTERM_POLL_INTERVAL_SECONDS",
    ):
        monkeypatch.delenv(name, raising=False)


def _session_id(output: str) -> str:
    for line in output.splitlines():
        if line.startswith("Session: "):
            return line.removeprefix("Session: ").strip()
    raise AssertionError(f"no session id in output:\n{output}")


def test_version_option() -> None:
    result = CliRunner().invoke(gidterm, ["--version"])

    assert result.exit_code == 0
    assert __version__ in result.output


def test_run_graph_and_inspect_session(
    tmp_path: Path,
    write_graph: Callable[..., Path],
    python_command: Callable[[str], str],
) -> None:
    graph_path = write_graph(
        {
            "metadata": {"project": "demo"},
            "tasks": {
                "hello": {"command": python_command("print('hi')")},
                "group": {"depends_on": ["hello"]},
                "after": {
                    "command": python_command("print('bye')"),
                    "depends_on": ["group"],
                },
            },
        },
    )
    db_path = tmp_path / "state" / "sessions.db"
    runner = CliRunner()

    result = runner.invoke(gidterm, ["run", str(graph_path), "--db-path", str(db_path)])

    assert result.exit_code == 0, result.output
    assert "Running 3 tasks from demo" in result.output
    assert "[hello] hi" in result.output
    assert "[exit] hello code=0" in result.output
    assert "[after] bye" in result.output
    assert "Run finished." in result.output
    assert "  done: 3" in result.output
    session_id = _session_id(result.output)

    listing = runner.invoke(gidterm, ["sessions", "--db-path", str(db_path)])
    assert listing.exit_code == 0, listing.output
    assert session_id in listing.output
    assert "finished" in listing.output
    assert "demo (2 tasks)" in listing.output

    detail = runner.invoke(
        gidterm,
        ["sessions", "--db-path", str(db_path), "--session-id", session_id, "--tail", "1"],
    )
    assert detail.exit_code == 0, detail.output
    assert "hello: done exit=0 lines=1" in detail.output
    assert "    hi" in detail.output


def test_run_fails_on_nonzero_exit_when_asked(
    tmp_path: Path,
    write_graph: Callable[..., Path],
    python_command: Callable[[str], str],
) -> None:
    graph_path = write_graph(
        {
            "tasks": {
                "broken": {"command": python_command("import sys; sys.exit(3)")},
                "next": {"command": python_command("print('never')"), "depends_on": ["broken"]},
            },
        },
    )

    result = CliRunner().invoke(
        gidterm,
        ["run", str(graph_path), "--no-session", "--fail-on-nonzero-exit"],
    )

    assert result.exit_code == 1
    assert "[exit] broken code=3" in result.output
    assert "  failed: 1" in result.output
    assert "  skipped: 1" in result.output
    assert "  broken: exit code 3" in result.output
    assert "never" not in result.output
    assert "Session:" not in result.output


def test_run_with_missing_graph_is_a_usage_error(tmp_path: Path) -> None:
    result = CliRunner().invoke(gidterm, ["run", str(tmp_path / "missing.yml"), "--no-session"])

    assert result.exit_code == 1
    assert "Graph file not found" in result.output


def test_run_rejects_invalid_environment(
    monkeypatch: pytest.MonkeyPatch,
    write_graph: Callable[..., Path],
) -> None:
    graph_path = write_graph({"tasks": {"a": {"command": "true"}}})
    monkeypatch.setenv("GIDTERM_POLL_INTERVAL_SECONDS", "0")

    result = CliRunner().invoke(gidterm, ["run", str(graph_path), "--no-session"])

    assert result.exit_code == 1
    assert "GIDTERM_POLL_INTERVAL_SECONDS" in result.output


def test_ready_resolves_commandless_tasks(write_graph: Callable[..., Path]) -> None:
    graph_path = write_graph(
        {
            "tasks": {
                "setup": {},
                "build": {"command": "make", "depends_on": ["setup"]},
                "deploy": {"command": "make deploy", "depends_on": ["build"]},
            },
        },
    )

    result = CliRunner().invoke(gidterm, ["ready", str(graph_path)])

    assert result.exit_code == 0, result.output
    assert "Ready tasks (1):" in result.output
    assert "  build: make" in result.output
    assert "deploy" not in result.output


def test_ready_reports_nothing_to_do(write_graph: Callable[..., Path]) -> None:
    graph_path = write_graph({"tasks": {"a": {"command": "true", "status": "done"}}})

    result = CliRunner().invoke(gidterm, ["ready", str(graph_path)])

    assert result.exit_code == 0
    assert "No ready tasks." in result.output


def test_ready_in_workspace_uses_namespaced_ids(
    tmp_path: Path,
    write_graph: Callable[..., Path],
) -> None:
    write_graph({"tasks": {"build": {"command": "cargo build"}}}, directory=tmp_path / "api")
    write_graph({"tasks": {"build": {"command": "npm run build"}}}, directory=tmp_path / "web")

    result = CliRunner().invoke(gidterm, ["ready", "--workspace", str(tmp_path)])

    assert result.exit_code == 0, result.output
    assert "Ready tasks (2):" in result.output
    assert "  api:build: cargo build" in result.output
    assert "  web:build: npm run build" in result.output


def test_parse_training_log(tmp_path: Path) -> None:
    log = tmp_path / "train.log"
    log.write_text("Epoch 5/10\nloss: 0.5\n", encoding="utf-8")

    result = CliRunner().invoke(gidterm, ["parse", str(log), "--type", "ml_training"])

    assert result.exit_code == 0, result.output
    assert "Parser: ml_training" in result.output
    assert "Progress: 50.0%" in result.output
    assert "Phase: Training" in result.output
    assert "  epoch: 5" in result.output
    assert "  loss: 0.5" in result.output


def test_parse_without_matching_parser(tmp_path: Path) -> None:
    log = tmp_path / "plain.log"
    log.write_text("hello\n", encoding="utf-8")

    result = CliRunner().invoke(gidterm, ["parse", str(log)])

    assert result.exit_code == 0
    assert "Parser: none" in result.output
    assert "Progress: 0.0%" in result.output
    assert "Error: No suitable parser found" in result.output


def test_classify_output_file(tmp_path: Path) -> None:
    log = tmp_path / "agent.log"
    log.write_text("Reading files\nError: cannot open config\n", encoding="utf-8")
    runner = CliRunner()

    alive = runner.invoke(gidterm, ["classify", str(log)])
    exited = runner.invoke(gidterm, ["classify", str(log), "--exited"])

    assert alive.exit_code == 0
    assert "Status: error" in alive.output
    assert "Rule: error" in alive.output
    assert "Line: Error: cannot open config" in alive.output
    assert "Status: not running" in exited.output
    assert "Rule: not_alive" in exited.output


def test_agents_lists_detected_processes(monkeypatch: pytest.MonkeyPatch) -> None:
    ps_output = "PID COMMAND\n  42 claude --resume\n  43 bash\n"
    monkeypatch.setattr(
        controllers,
        "AgentDetector",
        lambda cache: AgentDetector(
            cache=cache,
            runner=lambda: ps_output,
            cwd_lookup=lambda pid: "/work/repo",
        ),
    )

    result = CliRunner().invoke(gidterm, ["agents"])

    assert result.exit_code == 0, result.output
    assert "42" in result.output
    assert "Claude Code" in result.output
    assert "/work/repo" in result.output
    assert "bash" not in result.output


def test_agents_without_processes(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        controllers,
        "AgentDetector",
        lambda cache: AgentDetector(cache=cache, runner=lambda: "", cwd_lookup=lambda pid: None),
    )

    result = CliRunner().invoke(gidterm, ["agents"])

    assert result.exit_code == 0
    assert "No agent processes found." in result.output


def test_sessions_on_fresh_database(tmp_path: Path) -> None:
    result = CliRunner().invoke(gidterm, ["sessions", "--db-path", str(tmp_path / "s.db")])

    assert result.exit_code == 0, result.output
    assert "No sessions recorded." in result.output
