"""Readiness computation and task state machine."""

from __future__ import annotations

import logging
from collections import deque

from gidterm.core.errors import InvalidTransitionError
from gidterm.core.graph import TaskGraph
from gidterm.core.models import TaskStatus

logger = logging.getLogger(__name__)


class Scheduler:
    """Owns status transitions of one ``TaskGraph``.

    Readiness is recomputed from current statuses on every call; there is no
    cached ready queue to invalidate. All mutating methods must be called from
    the single coordinating loop.
    """

    def __init__(self, graph: TaskGraph) -> None:
        self._graph = graph
        for task_id in graph.topological_order:
            if graph.status(task_id) == TaskStatus.FAILED:
                self._propagate_failure(task_id)

    @property
    def graph(self) -> TaskGraph:
        return self._graph

    def ready_tasks(self) -> list[str]:
        """Pending tasks whose dependencies are all done or skipped, sorted by id."""

        return [
            task.task_id
            for task in self._graph
            if task.status == TaskStatus.PENDING and self._dependencies_satisfied(task.task_id)
        ]

    def schedule_next(self) -> list[str]:
        """Resolve ready pass-through tasks, then return runnable ready tasks.

        Pass-through completions can unblock further tasks, so resolution is
        repeated until no commandless task is ready.
        """

        while True:
            ready = self.ready_tasks()
            pass_through = [
                task_id for task_id in ready if self._graph.task(task_id).is_pass_through
            ]
            if not pass_through:
                return ready
            for task_id in pass_through:
                self.mark_done(task_id)

    def mark_started(self, task_id: str) -> None:
        current = self._graph.status(task_id)
        if current != TaskStatus.PENDING:
            raise InvalidTransitionError(task_id, current.value, TaskStatus.RUNNING.value)
        self._graph.set_status(task_id, TaskStatus.RUNNING)
        logger.info("Task %s started", task_id)

    def mark_done(self, task_id: str) -> None:
        task = self._graph.task(task_id)
        allowed = task.status == TaskStatus.RUNNING or (
            task.status == TaskStatus.PENDING and task.is_pass_through
        )
        if not allowed:
            raise InvalidTransitionError(task_id, task.status.value, TaskStatus.DONE.value)
        self._graph.set_status(task_id, TaskStatus.DONE)
        logger.info("Task %s done", task_id)

    def mark_failed(self, task_id: str) -> list[str]:
        """Fail a running task and skip every pending transitive dependent.

        Re-failing an already failed task only re-runs propagation, which is a
        no-op once dependents are skipped. Returns ids newly skipped by this call.
        """

        current = self._graph.status(task_id)
        if current not in (TaskStatus.RUNNING, TaskStatus.FAILED):
            raise InvalidTransitionError(task_id, current.value, TaskStatus.FAILED.value)
        if current == TaskStatus.RUNNING:
            self._graph.set_status(task_id, TaskStatus.FAILED)
            logger.info("Task %s failed", task_id)

        skipped = self._propagate_failure(task_id)
        if skipped:
            logger.info("Skipped %d dependents of %s: %s", len(skipped), task_id, skipped)
        return skipped

    def get_running(self) -> list[str]:
        return [task.task_id for task in self._graph if task.status == TaskStatus.RUNNING]

    def counts(self) -> dict[TaskStatus, int]:
        tally = dict.fromkeys(TaskStatus, 0)
        for task in self._graph:
            tally[task.status] += 1
        return tally

    def is_finished(self) -> bool:
        """No task can make further progress."""

        if self.get_running():
            return False
        return not self.ready_tasks()

    def has_failures(self) -> bool:
        return any(task.status == TaskStatus.FAILED for task in self._graph)

    def _dependencies_satisfied(self, task_id: str) -> bool:
        return all(
            self._graph.status(dependency).satisfies_dependents
            for dependency in self._graph.dependencies(task_id)
        )

    def _propagate_failure(self, failed_id: str) -> list[str]:
        skipped: list[str] = []
        seen = {failed_id}
        frontier = deque(sorted(self._graph.dependents(failed_id)))
        while frontier:
            current = frontier.popleft()
            if current in seen:
                continue
            seen.add(current)
            if self._graph.status(current) == TaskStatus.PENDING:
                self._graph.set_status(current, TaskStatus.SKIPPED)
                skipped.append(current)
            frontier.extend(sorted(self._graph.dependents(current)))
        return skipped
