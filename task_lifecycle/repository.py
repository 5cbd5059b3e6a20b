"""
In-Memory Task Repository

Reference implementation of the TaskRepository protocol. Stores deep copies
so callers never alias stored records. Compare-and-set on ``version`` runs
under an asyncio lock.

Test hooks:
- ``latency``: seconds to sleep inside each call, to force interleavings
- ``set_available(False)``: every call raises StoreUnavailableError
"""

import asyncio
from typing import Dict, Iterable, List, Optional
from uuid import UUID

from task_lifecycle.exceptions import (
    StoreUnavailableError,
    TaskNotFoundError,
    VersionConflictError,
)
from task_lifecycle.logging_config import get_logger
from task_lifecycle.models import Task, TaskStatus

logger = get_logger("repository.memory")


class InMemoryTaskRepository:
    """Dictionary-backed task store with optimistic versioning."""

    def __init__(self, latency: float = 0.0) -> None:
        self._tasks: Dict[UUID, Task] = {}
        self._lock = asyncio.Lock()
        self.latency = latency
        self._available = True
        self.stats = {"reads": 0, "writes": 0, "conflicts": 0}

    def set_available(self, available: bool) -> None:
        self._available = available

    async def _io(self, operation: str) -> None:
        if not self._available:
            raise StoreUnavailableError("store is offline", operation=operation)
        if self.latency:
            await asyncio.sleep(self.latency)

    # ============================================================================
    # PROTOCOL OPERATIONS
    # ============================================================================

    async def find_by_id(self, task_id: UUID) -> Task:
        await self._io("find_by_id")
        self.stats["reads"] += 1
        task = self._tasks.get(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task.model_copy(deep=True)

    async def save(self, task: Task, expected_version: Optional[int]) -> Task:
        await self._io("save")
        async with self._lock:
            stored = self._tasks.get(task.id)

            if not expected_version:
                if stored is not None:
                    self.stats["conflicts"] += 1
                    raise VersionConflictError(None, stored.version, task_id=task.id)
            else:
                if stored is None:
                    raise TaskNotFoundError(task.id)
                if stored.version != expected_version:
                    self.stats["conflicts"] += 1
                    logger.debug(
                        "Rejected stale write",
                        task_id=str(task.id),
                        expected=expected_version,
                        actual=stored.version,
                    )
                    raise VersionConflictError(expected_version, stored.version, task_id=task.id)

            self._tasks[task.id] = task.model_copy(deep=True)
            self.stats["writes"] += 1
            return task.model_copy(deep=True)

    async def list_dependency_statuses(self, task_ids: Iterable[UUID]) -> Dict[UUID, TaskStatus]:
        await self._io("list_dependency_statuses")
        statuses: Dict[UUID, TaskStatus] = {}
        for task_id in task_ids:
            task = self._tasks.get(task_id)
            if task is None:
                raise TaskNotFoundError(task_id)
            statuses[task_id] = task.status
        return statuses

    async def list_tasks(
        self,
        status: Optional[TaskStatus] = None,
        assigned_user_id: Optional[str] = None,
    ) -> List[Task]:
        await self._io("list_tasks")
        tasks = [
            task.model_copy(deep=True)
            for task in self._tasks.values()
            if (status is None or task.status == status)
            and (assigned_user_id is None or task.assigned_user_id == assigned_user_id)
        ]
        tasks.sort(key=lambda t: (t.created_at, str(t.id)))
        return tasks

    def __len__(self) -> int:
        return len(self._tasks)
