"""Known coding agents and how to launch them."""

from __future__ import annotations

import shlex
from dataclasses import dataclass
from enum import Enum


class AgentType(str, Enum):
    CLAUDE = "claude"
    CODEX = "codex"
    OPENCODE = "opencode"
    PI = "pi"
    GENERIC = "generic"

    @classmethod
    def from_name(cls, name: str) -> AgentType:
        """Resolve a user-facing agent name; unknown names map to ``GENERIC``."""

        return _ALIASES.get(name.strip().lower(), cls.GENERIC)

    @property
    def process_patterns(self) -> tuple[str, ...]:
        return _PROCESS_PATTERNS[self]

    @property
    def display_name(self) -> str:
        return _DISPLAY_NAMES[self]

    @property
    def executable(self) -> str | None:
        return None if self == AgentType.GENERIC else self.value


_ALIASES = {
    "claude": AgentType.CLAUDE,
    "claude-code": AgentType.CLAUDE,
    "claudecode": AgentType.CLAUDE,
    "codex": AgentType.CODEX,
    "opencode": AgentType.OPENCODE,
    "open-code": AgentType.OPENCODE,
    "pi": AgentType.PI,
}
_PROCESS_PATTERNS: dict[AgentType, tuple[str, ...]] = {
    AgentType.CLAUDE: ("claude", "claude-code"),
    AgentType.CODEX: ("codex",),
    AgentType.OPENCODE: ("opencode",),
    AgentType.PI: ("pi",),
    AgentType.GENERIC: (),
}
_DISPLAY_NAMES = {
    AgentType.CLAUDE: "Claude Code",
    AgentType.CODEX: "Codex",
    AgentType.OPENCODE: "OpenCode",
    AgentType.PI: "Pi",
    AgentType.GENERIC: "Agent",
}

DETECTABLE_AGENTS: tuple[AgentType, ...] = (
    AgentType.CLAUDE,
    AgentType.CODEX,
    AgentType.OPENCODE,
    AgentType.PI,
)


@dataclass(slots=True)
class AgentTask:
    """Agent launch definition attached to a graph task."""

    agent: AgentType
    prompt: str
    args: tuple[str, ...] = ()
    auto_approve: bool = False
    cwd: str | None = None


def build_agent_command(task: AgentTask) -> list[str]:
    """Argument vector for launching ``task``; the prompt always comes last.

    A generic agent has no executable of its own, so its ``args`` carry the
    command head.
    """

    executable = task.agent.executable
    argv = [executable] if executable is not None else []
    if task.agent == AgentType.CLAUDE and task.auto_approve:
        argv.append("--auto-approve")
    argv.extend(task.args)
    argv.append(task.prompt)
    return argv


def build_agent_command_string(task: AgentTask) -> str:
    return shlex.join(build_agent_command(task))
