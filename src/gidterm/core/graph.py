"""Validated task DAG with a reverse-dependency index."""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from types import MappingProxyType

from gidterm.core.errors import CycleError, UnknownDependencyError
from gidterm.core.models import GraphMetadata, GraphNode, GraphSource, Task, TaskStatus

_VISITING = 1
_VISITED = 2


class TaskGraph:
    """Task DAG whose topology is frozen at construction.

    Only per-task status changes after load, and only through ``set_status``,
    which the scheduler owns.
    """

    def __init__(
        self,
        tasks: Mapping[str, Task],
        *,
        metadata: GraphMetadata | None = None,
        nodes: Mapping[str, GraphNode] | None = None,
    ) -> None:
        self._tasks: dict[str, Task] = {}
        for task_id, task in tasks.items():
            if task.task_id != task_id:
                raise ValueError(
                    f"Task key {task_id!r} does not match task id {task.task_id!r}",
                )
            task.depends_on = tuple(dict.fromkeys(task.depends_on))
            self._tasks[task_id] = task

        self.metadata = metadata
        self.nodes: Mapping[str, GraphNode] = MappingProxyType(dict(nodes or {}))

        _validate_dependencies(self._tasks)
        self._order = _topological_order(self._tasks)
        self._dependents = _build_dependents(self._tasks)

    @classmethod
    def from_source(cls, source: GraphSource) -> TaskGraph:
        """Build and validate a graph from deserialized graph contents."""

        return cls(source.tasks, metadata=source.metadata, nodes=source.nodes)

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._tasks

    def __len__(self) -> int:
        return len(self._tasks)

    def __iter__(self) -> Iterator[Task]:
        for task_id in sorted(self._tasks):
            yield self._tasks[task_id]

    @property
    def project_name(self) -> str:
        return self.metadata.project if self.metadata is not None else "unknown"

    @property
    def topological_order(self) -> tuple[str, ...]:
        """Task ids with every dependency listed before its dependents."""

        return self._order

    def task(self, task_id: str) -> Task:
        try:
            return self._tasks[task_id]
        except KeyError:
            raise KeyError(f"Unknown task: {task_id!r}") from None

    def all_tasks(self) -> Mapping[str, Task]:
        return MappingProxyType(self._tasks)

    def task_ids(self) -> list[str]:
        return sorted(self._tasks)

    def dependencies(self, task_id: str) -> tuple[str, ...]:
        return self.task(task_id).depends_on

    def dependents(self, task_id: str) -> frozenset[str]:
        """Tasks that list ``task_id`` as a direct dependency."""

        self.task(task_id)
        return self._dependents.get(task_id, frozenset())

    def status(self, task_id: str) -> TaskStatus:
        return self.task(task_id).status

    def set_status(self, task_id: str, status: TaskStatus) -> None:
        self.task(task_id).status = status


def _validate_dependencies(tasks: Mapping[str, Task]) -> None:
    for task_id in sorted(tasks):
        for dependency in tasks[task_id].depends_on:
            if dependency not in tasks:
                raise UnknownDependencyError(task_id, dependency)


def _topological_order(tasks: Mapping[str, Task]) -> tuple[str, ...]:
    """Depth-first post-order walk; raises ``CycleError`` on a back edge."""

    state: dict[str, int] = {}
    order: list[str] = []

    for root in sorted(tasks):
        if root in state:
            continue
        state[root] = _VISITING
        path = [root]
        stack = [iter(tasks[root].depends_on)]

        while stack:
            dependency = next(stack[-1], None)
            if dependency is None:
                stack.pop()
                finished = path.pop()
                state[finished] = _VISITED
                order.append(finished)
                continue

            mark = state.get(dependency)
            if mark == _VISITED:
                continue
            if mark == _VISITING:
                start = path.index(dependency)
                raise CycleError([*path[start:], dependency])

            state[dependency] = _VISITING
            path.append(dependency)
            stack.append(iter(tasks[dependency].depends_on))

    return tuple(order)


def _build_dependents(tasks: Mapping[str, Task]) -> dict[str, frozenset[str]]:
    reverse: dict[str, set[str]] = {}
    for task_id, task in tasks.items():
        for dependency in task.depends_on:
            reverse.setdefault(dependency, set()).add(task_id)
    return {task_id: frozenset(dependents) for task_id, dependents in reverse.items()}
