"""
Collaborator Protocols

Capability interfaces consumed by the lifecycle service. Concrete adapters
are injected at construction; no inheritance is required.
"""

from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol
from uuid import UUID

from task_lifecycle.models import Task, TaskStatus


class TaskRepository(Protocol):
    """Durable storage of Task records with optimistic versioning."""

    async def find_by_id(self, task_id: UUID) -> Task:
        """
        Load a task.

        Raises:
            TaskNotFoundError: If no task has this id
            StoreUnavailableError: If the store cannot be reached
        """
        ...

    async def save(self, task: Task, expected_version: Optional[int]) -> Task:
        """
        Persist a task.

        Inserts when ``expected_version`` is None or 0, otherwise writes only
        if the stored version equals ``expected_version``.

        Raises:
            VersionConflictError: On a stale version or a duplicate insert
            TaskNotFoundError: On update of a missing task
            StoreUnavailableError: If the store cannot be reached
        """
        ...

    async def list_dependency_statuses(self, task_ids: Iterable[UUID]) -> Dict[UUID, TaskStatus]:
        """
        Map each id to its current status.

        Raises:
            TaskNotFoundError: If any id is missing
        """
        ...

    async def list_tasks(
        self,
        status: Optional[TaskStatus] = None,
        assigned_user_id: Optional[str] = None,
    ) -> List[Task]:
        """List tasks, optionally filtered, ordered by creation time."""
        ...


class EventEmitter(Protocol):
    """Best-effort publication of domain events."""

    async def publish(self, topic: str, payload: Mapping[str, Any]) -> None:
        """
        Publish one event.

        Raises:
            Exception: Any failure; the dispatcher logs and retries it
        """
        ...
