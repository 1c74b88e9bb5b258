"""YAML graph files and multi-project workspaces."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from gidterm.agents.commands import AgentTask, AgentType, build_agent_command_string
from gidterm.core.errors import GraphFormatError
from gidterm.core.graph import TaskGraph
from gidterm.core.models import GraphMetadata, GraphNode, GraphSource, Task, TaskStatus

logger = logging.getLogger(__name__)

GRAPH_RELATIVE_PATH = Path(".gid") / "graph.yml"
NAMESPACE_SEPARATOR = ":"

_STATUS_ALIASES = {
    "todo": TaskStatus.PENDING,
    "planned": TaskStatus.PENDING,
    "completed": TaskStatus.DONE,
}


def load_graph_source(path: Path) -> GraphSource:
    """Read and structurally validate one graph file."""

    if not path.exists():
        raise GraphFormatError(f"Graph file not found: {path}")
    try:
        with path.open(encoding="utf-8") as handle:
            document = yaml.safe_load(handle)
    except yaml.YAMLError as error:
        raise GraphFormatError(f"Invalid YAML in {path}: {error}") from error
    except OSError as error:
        raise GraphFormatError(f"Cannot read graph file {path}: {error}") from error

    if document is None:
        logger.warning("Empty graph file: %s", path)
        document = {}
    return parse_graph_document(document, base_dir=_project_root(path), origin=str(path))


def load_graph(path: Path) -> TaskGraph:
    return TaskGraph.from_source(load_graph_source(path))


def parse_graph_document(
    document: object,
    *,
    base_dir: Path | None = None,
    origin: str = "<graph>",
) -> GraphSource:
    """Convert a decoded YAML document into a ``GraphSource``.

    Relative agent working directories are resolved against ``base_dir``.
    """

    root = _require_mapping(document, f"{origin}: top level")
    metadata = _parse_metadata(root.get("metadata"), origin)

    nodes: dict[str, GraphNode] = {}
    for node_id, raw in _require_mapping(root.get("nodes") or {}, f"{origin}: nodes").items():
        nodes[str(node_id)] = _parse_node(str(node_id), raw, origin)

    tasks: dict[str, Task] = {}
    for task_id, raw in _require_mapping(root.get("tasks") or {}, f"{origin}: tasks").items():
        tasks[str(task_id)] = _parse_task(str(task_id), raw, base_dir=base_dir, origin=origin)

    return GraphSource(tasks=tasks, metadata=metadata, nodes=nodes)


def _parse_metadata(raw: object, origin: str) -> GraphMetadata | None:
    if raw is None:
        return None
    data = _require_mapping(raw, f"{origin}: metadata")
    project = data.get("project")
    if not isinstance(project, str) or not project:
        raise GraphFormatError(f"{origin}: metadata.project must be a non-empty string")
    return GraphMetadata(
        project=project,
        version=_optional_str(data.get("version")),
        description=_optional_str(data.get("description")),
    )


def _parse_node(node_id: str, raw: object, origin: str) -> GraphNode:
    data = _require_mapping(raw, f"{origin}: node {node_id!r}")
    return GraphNode(
        node_type=str(data.get("type", "component")),
        description=str(data.get("description", "")),
        layer=_optional_str(data.get("layer")),
        status=str(data.get("status", "planned")),
        priority=_optional_str(data.get("priority")),
        depends_on=_string_tuple(data.get("depends_on"), f"{origin}: node {node_id!r} depends_on"),
        path=_optional_str(data.get("path")),
    )


def _parse_task(task_id: str, raw: object, *, base_dir: Path | None, origin: str) -> Task:
    where = f"{origin}: task {task_id!r}"
    data = _require_mapping(raw, where)

    command = _optional_str(data.get("command"))
    cwd: str | None = None
    agent_block = data.get("agent")
    if agent_block is not None:
        agent_task = _parse_agent(agent_block, where)
        if command is None:
            command = build_agent_command_string(agent_task)
        cwd = agent_task.cwd
    if cwd is not None and base_dir is not None and not Path(cwd).is_absolute():
        cwd = str(base_dir / cwd)

    estimated_hours = data.get("estimated_hours")
    if estimated_hours is not None and not isinstance(estimated_hours, int):
        raise GraphFormatError(f"{where}: estimated_hours must be an integer")

    return Task(
        task_id=task_id,
        command=command,
        depends_on=_string_tuple(data.get("depends_on"), f"{where} depends_on"),
        status=_parse_status(data.get("status"), task_id, where),
        task_type=str(data.get("type", "generic")),
        description=str(data.get("description", "")),
        priority=_optional_str(data.get("priority")),
        tags=_string_tuple(data.get("tags"), f"{where} tags"),
        component=_optional_str(data.get("component")),
        estimated_hours=estimated_hours,
        cwd=cwd,
    )


def _parse_agent(raw: object, where: str) -> AgentTask:
    if isinstance(raw, str):
        raise GraphFormatError(f"{where}: agent must be a mapping with at least a prompt")
    data = _require_mapping(raw, f"{where} agent")
    prompt = data.get("prompt")
    if not isinstance(prompt, str) or not prompt.strip():
        raise GraphFormatError(f"{where}: agent.prompt must be a non-empty string")
    agent_type = AgentType.from_name(str(data.get("agent", "generic")))
    args = _string_tuple(data.get("args"), f"{where} agent.args")
    if agent_type == AgentType.GENERIC and not args:
        raise GraphFormatError(f"{where}: a generic agent needs args naming its command")
    return AgentTask(
        agent=agent_type,
        prompt=prompt,
        args=args,
        auto_approve=bool(data.get("auto_approve", False)),
        cwd=_optional_str(data.get("cwd")),
    )


def _parse_status(raw: object, task_id: str, where: str) -> TaskStatus:
    if raw is None:
        return TaskStatus.PENDING
    text = str(raw).strip().lower()
    status = _STATUS_ALIASES.get(text)
    if status is None:
        try:
            status = TaskStatus(text)
        except ValueError:
            raise GraphFormatError(f"{where}: unknown status {raw!r}") from None
    if status == TaskStatus.RUNNING:
        # Nothing is running at load time; the task gets another attempt.
        logger.info("Task %s was saved as running; resetting to pending", task_id)
        return TaskStatus.PENDING
    return status


def _require_mapping(value: object, where: str) -> Mapping[Any, Any]:
    if not isinstance(value, Mapping):
        raise GraphFormatError(f"{where} must be a mapping")
    return value


def _string_tuple(value: object, where: str) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str) or not isinstance(value, list):
        raise GraphFormatError(f"{where} must be a list")
    return tuple(str(item) for item in value)


def _optional_str(value: object) -> str | None:
    if value is None:
        return None
    return str(value)


def _project_root(graph_path: Path) -> Path:
    parent = graph_path.resolve().parent
    return parent.parent if parent.name == ".gid" else parent


def namespaced(project: str, task_id: str) -> str:
    return f"{project}{NAMESPACE_SEPARATOR}{task_id}"


def split_namespace(task_id: str) -> tuple[str | None, str]:
    project, separator, local_id = task_id.partition(NAMESPACE_SEPARATOR)
    if not separator:
        return None, task_id
    return project, local_id


@dataclass(slots=True)
class Workspace:
    """Directory whose immediate subdirectories each hold a ``.gid/graph.yml``."""

    root: Path
    projects: dict[str, GraphSource] = field(default_factory=dict)
    project_dirs: dict[str, Path] = field(default_factory=dict)

    @classmethod
    def discover(cls, root: Path) -> Workspace:
        if not root.is_dir():
            raise GraphFormatError(f"Workspace directory not found: {root}")
        workspace = cls(root=root)
        for child in sorted(root.iterdir()):
            graph_path = child / GRAPH_RELATIVE_PATH
            if not child.is_dir() or not graph_path.is_file():
                continue
            workspace.projects[child.name] = load_graph_source(graph_path)
            workspace.project_dirs[child.name] = child.resolve()
            logger.info("Workspace project %s loaded from %s", child.name, graph_path)
        if not workspace.projects:
            raise GraphFormatError(f"No projects with {GRAPH_RELATIVE_PATH} under {root}")
        return workspace

    def project_names(self) -> list[str]:
        return sorted(self.projects)

    def to_unified_source(self) -> GraphSource:
        """Merge every project under ``project:task`` ids.

        Dependencies stay inside their project. Commands run from the project
        directory unless the task names its own working directory.
        """

        tasks: dict[str, Task] = {}
        nodes: dict[str, GraphNode] = {}
        for project in self.project_names():
            source = self.projects[project]
            project_dir = self.project_dirs.get(project)
            for task_id, task in source.tasks.items():
                unified_id = namespaced(project, task_id)
                tasks[unified_id] = Task(
                    task_id=unified_id,
                    command=task.command,
                    depends_on=tuple(namespaced(project, dep) for dep in task.depends_on),
                    status=task.status,
                    task_type=task.task_type,
                    description=task.description,
                    priority=task.priority,
                    tags=task.tags,
                    component=task.component,
                    estimated_hours=task.estimated_hours,
                    cwd=task.cwd or (str(project_dir) if project_dir is not None else None),
                )
            for node_id, node in source.nodes.items():
                nodes[namespaced(project, node_id)] = node
        metadata = GraphMetadata(
            project="workspace",
            description=f"{len(self.projects)} projects under {self.root}",
        )
        return GraphSource(tasks=tasks, metadata=metadata, nodes=nodes)

    def to_graph(self) -> TaskGraph:
        return TaskGraph.from_source(self.to_unified_source())
