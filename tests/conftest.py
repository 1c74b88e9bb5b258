"""Shared test fixtures."""

from __future__ import annotations

import shlex
import sys
from collections.abc import Callable
from pathlib import Path

import pytest
import yaml


@pytest.fixture()
def python_command() -> Callable[[str], str]:
    """Shell command running a snippet with the current interpreter."""

    def _command(code: str) -> str:
        return f"{shlex.quote(sys.executable)} -c {shlex.quote(code)}"

    return _command


@pytest.fixture()
def write_graph(tmp_path: Path) -> Callable[..., Path]:
    """Write a graph document to ``<dir>/.gid/graph.yml`` and return its path."""

    def _write(document: dict[str, object], *, directory: Path | None = None) -> Path:
        root = directory or tmp_path
        graph_path = root / ".gid" / "graph.yml"
        graph_path.parent.mkdir(parents=True, exist_ok=True)
        graph_path.write_text(yaml.safe_dump(document, sort_keys=False), encoding="utf-8")
        return graph_path

    return _write
