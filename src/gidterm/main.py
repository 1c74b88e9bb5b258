"""CLI entrypoint for gidterm."""

import logging
from collections.abc import Iterable
from pathlib import Path

import rich_click as click

from gidterm import __version__
from gidterm.controllers import (
    ClassifyCommand,
    GidtermCliController,
    ParseCommand,
    ReadyCommand,
    RunGraphCommand,
    RunReport,
    SessionsCommand,
)
from gidterm.core.errors import GidtermError

click.rich_click.USE_MARKDOWN = True
CONTROLLER = GidtermCliController()

_LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


@click.group()
@click.version_option(version=__version__, prog_name="gidterm")
@click.option(
    "--log-level",
    type=click.Choice(_LOG_LEVELS, case_sensitive=False),
    envvar="GIDTERM_LOG_LEVEL",
    default="WARNING",
    show_default=True,
    help="Root logger level.",
)
def gidterm(log_level: str) -> None:
    """Run task graphs as supervised processes and watch their output."""

    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@gidterm.command("run")
@click.argument("graph_path", required=False, type=click.Path(path_type=Path))
@click.option(
    "--workspace",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Directory whose subprojects each contain `.gid/graph.yml`.",
)
@click.option(
    "--max-parallel",
    type=click.IntRange(min=0),
    default=None,
    help="Maximum concurrently running tasks (0 = unbounded).",
)
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="Session DB path.")
@click.option(
    "--fail-on-nonzero-exit/--no-fail-on-nonzero-exit",
    default=None,
    help="Treat a non-zero exit code as task failure.",
)
@click.option("--no-session", is_flag=True, default=False, help="Do not record a session.")
def run(  # noqa: PLR0913
    graph_path: Path | None,
    workspace: Path | None,
    max_parallel: int | None,
    db_path: Path | None,
    fail_on_nonzero_exit: bool | None,
    no_session: bool,
) -> None:
    """Run every task of the graph to completion."""

    report = RunReport()
    _guarded_emit(
        CONTROLLER.run_graph(
            RunGraphCommand(
                graph_path=graph_path,
                workspace=workspace,
                db_path=db_path,
                max_parallel=max_parallel,
                fail_on_nonzero_exit=fail_on_nonzero_exit,
                record_session=not no_session,
            ),
            report,
        ),
    )
    if not report.succeeded:
        raise click.ClickException("Run did not complete successfully.")


@gidterm.command("ready")
@click.argument("graph_path", required=False, type=click.Path(path_type=Path))
@click.option(
    "--workspace",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Directory whose subprojects each contain `.gid/graph.yml`.",
)
def ready(graph_path: Path | None, workspace: Path | None) -> None:
    """Show tasks that are ready to start."""

    _guarded_emit(CONTROLLER.ready_tasks(ReadyCommand(graph_path=graph_path, workspace=workspace)))


@gidterm.command("parse")
@click.argument("file_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--type", "task_type", default=None, help="Task type hint, e.g. `ml_training`.")
def parse(file_path: Path, task_type: str | None) -> None:
    """Extract progress and metrics from captured output."""

    _guarded_emit(CONTROLLER.parse_output(ParseCommand(file_path=file_path, task_type=task_type)))


@gidterm.command("classify")
@click.argument("file_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--exited",
    is_flag=True,
    default=False,
    help="Classify as if the producing process had already exited.",
)
def classify(file_path: Path, exited: bool) -> None:
    """Classify the runtime status of captured output."""

    _guarded_emit(
        CONTROLLER.classify_output(ClassifyCommand(file_path=file_path, process_alive=not exited)),
    )


@gidterm.command("agents")
def agents() -> None:
    """List running coding-agent processes."""

    _guarded_emit(CONTROLLER.list_agents())


@gidterm.command("sessions")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="Session DB path.")
@click.option(
    "--limit",
    type=click.IntRange(min=1),
    default=20,
    show_default=True,
    help="Number of recent sessions to list.",
)
@click.option("--session-id", default=None, help="Show the tasks of one session.")
@click.option(
    "--tail",
    type=click.IntRange(min=0),
    default=5,
    show_default=True,
    help="Output lines per task with --session-id.",
)
def sessions(db_path: Path | None, limit: int, session_id: str | None, tail: int) -> None:
    """List recorded run sessions."""

    _guarded_emit(
        CONTROLLER.list_sessions(
            SessionsCommand(db_path=db_path, limit=limit, session_id=session_id, tail=tail),
        ),
    )


def _guarded_emit(lines: Iterable[str]) -> None:
    try:
        _emit_lines(lines)
    except (GidtermError, ValueError) as error:
        raise click.ClickException(str(error)) from error


def _emit_lines(lines: Iterable[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    gidterm()
