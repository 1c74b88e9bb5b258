"""Coding-agent launch, discovery and runtime status."""

from gidterm.agents.commands import (
    AgentTask,
    AgentType,
    build_agent_command,
    build_agent_command_string,
)
from gidterm.agents.detector import AgentDetector, AgentProcess, ScanCache, is_process_alive
from gidterm.agents.status import (
    OutputHistory,
    RuntimeClassification,
    RuntimeStatus,
    classify_runtime_status,
    explain_runtime_status,
)
from gidterm.agents.tracker import RuntimeTracker, TaskRuntime

__all__ = [
    "AgentDetector",
    "AgentProcess",
    "AgentTask",
    "AgentType",
    "OutputHistory",
    "RuntimeClassification",
    "RuntimeStatus",
    "RuntimeTracker",
    "ScanCache",
    "TaskRuntime",
    "build_agent_command",
    "build_agent_command_string",
    "classify_runtime_status",
    "explain_runtime_status",
    "is_process_alive",
]
