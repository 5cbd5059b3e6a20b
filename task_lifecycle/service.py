"""
Lifecycle Service - Task Dependency & Lifecycle Engine

Orchestrates every task mutation: load current state, validate against the
dependency graph and the status state machine, persist with an optimistic
version check, then hand the domain event(s) to the outbox dispatcher.

Key Features:
- Optimistic concurrency on every write (expected version compare-and-set)
- Single writer lock for dependency graph mutations
- Deadline on every repository call (timeout -> StoreUnavailableError)
- Events emitted only after a successful commit, never on failure
- Read-only queries: ready tasks, dependents, execution order, status counts
"""

import asyncio
from datetime import datetime
from typing import Any, Awaitable, Dict, FrozenSet, List, Mapping, Optional, TypeVar, Union
from uuid import UUID

from pydantic import ValidationError as PydanticValidationError

from task_lifecycle.config import LifecycleConfig
from task_lifecycle.events import EventDispatcher, EventTopic, TaskEvent
from task_lifecycle.exceptions import (
    SelfDependencyError,
    StoreUnavailableError,
    UnresolvedDependenciesError,
    ValidationError,
    VersionConflictError,
)
from task_lifecycle.graph import DependencyGraph
from task_lifecycle.logging_config import get_logger
from task_lifecycle.models import Task, TaskCreate, TaskStatus, utcnow
from task_lifecycle.protocols import EventEmitter, TaskRepository
from task_lifecycle.state_machine import StatusStateMachine

logger = get_logger("service")

T = TypeVar("T")


def _coerce_uuid(value: Union[UUID, str], field: str) -> UUID:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except (TypeError, ValueError):
        raise ValidationError(field, "not a valid task identifier", value=value)


def _coerce_status(value: Union[TaskStatus, str]) -> TaskStatus:
    try:
        return TaskStatus(value)
    except ValueError:
        allowed = ", ".join(status.value for status in TaskStatus)
        raise ValidationError("status", f"must be one of {allowed}", value=value)


class LifecycleService:
    """
    Task lifecycle orchestrator.

    Call ``start()`` before use (or use ``async with``). ``start()`` loads the
    dependency graph from the repository and starts the event worker.
    """

    def __init__(
        self,
        repository: TaskRepository,
        emitter: Optional[EventEmitter] = None,
        dispatcher: Optional[EventDispatcher] = None,
        state_machine: Optional[StatusStateMachine] = None,
        config: Optional[LifecycleConfig] = None,
    ):
        self.config = config or LifecycleConfig()
        self.repository = repository
        self.state_machine = state_machine or StatusStateMachine()

        if dispatcher is None and emitter is not None and self.config.events.enabled:
            events = self.config.events
            dispatcher = EventDispatcher(
                emitter,
                max_queue_size=events.queue_size,
                publish_timeout=events.publish_timeout_seconds,
                max_retries=events.max_retries,
                retry_delay=events.retry_delay_seconds,
            )
        self.dispatcher = dispatcher

        # Runtime state
        self._graph: Optional[DependencyGraph] = None
        self._graph_stale = True
        self._graph_lock = asyncio.Lock()

    # ============================================================================
    # LIFECYCLE
    # ============================================================================

    async def start(self) -> None:
        """Load the dependency graph and start event dispatch."""
        await self.reload_graph()
        if self.dispatcher is not None:
            await self.dispatcher.start()
        logger.info("Lifecycle service started", tasks=len(self._graph or ()))

    async def stop(self) -> None:
        """Drain pending events and stop the worker."""
        if self.dispatcher is not None:
            await self.dispatcher.stop(drain=True)
        logger.info("Lifecycle service stopped")

    async def __aenter__(self) -> "LifecycleService":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.stop()

    async def flush_events(self) -> None:
        """Wait until every event emitted so far has been handled."""
        if self.dispatcher is not None:
            await self.dispatcher.flush()

    async def reload_graph(self, timeout: Optional[float] = None) -> DependencyGraph:
        """
        Rebuild the in-memory graph from the repository.

        Raises:
            GraphCorruptedError: If stored dependencies contain a cycle
        """
        async with self._graph_lock:
            return await self._load_graph(timeout)

    async def _load_graph(self, timeout: Optional[float]) -> DependencyGraph:
        tasks = await self._store(self.repository.list_tasks(), "list_tasks", timeout)
        self._graph = DependencyGraph.from_tasks(tasks)
        self._graph_stale = False
        logger.debug("Dependency graph loaded", vertices=len(self._graph))
        return self._graph

    async def _writable_graph(self, timeout: Optional[float]) -> DependencyGraph:
        # caller holds _graph_lock
        if self._graph is None or self._graph_stale:
            return await self._load_graph(timeout)
        return self._graph

    # ============================================================================
    # MUTATIONS
    # ============================================================================

    async def create_task(
        self,
        fields: Union[TaskCreate, Mapping[str, Any]],
        *,
        timeout: Optional[float] = None,
    ) -> Task:
        """
        Create a pending task at version 1.

        Raises:
            ValidationError: If a field is missing or not a recognized value
            StoreUnavailableError: If the store fails or times out
        """
        if not isinstance(fields, TaskCreate):
            try:
                data = dict(fields)
            except (TypeError, ValueError):
                raise ValidationError("fields", "must be a mapping of task fields", value=fields)
            try:
                fields = TaskCreate.model_validate(data)
            except PydanticValidationError as e:
                error = e.errors()[0]
                field = ".".join(str(part) for part in error["loc"]) or "fields"
                raise ValidationError(field, error["msg"], value=error.get("input")) from e

        task = Task.new(fields)
        saved = await self._store(self.repository.save(task, None), "save", timeout)

        if self._graph is not None:
            self._graph.add_vertex(saved.id)

        logger.info("Task created", task_id=str(saved.id), name=saved.name)
        self._emit(
            EventTopic.CREATED,
            saved,
            {
                "name": saved.name,
                "context": saved.context.value,
                "priority": saved.priority.value,
                "complexity": saved.complexity.value,
                "assigned_user_id": saved.assigned_user_id,
            },
        )
        return saved

    async def update_status(
        self,
        task_id: Union[UUID, str],
        new_status: Union[TaskStatus, str],
        expected_version: int,
        *,
        timeout: Optional[float] = None,
    ) -> Task:
        """
        Move a task to ``new_status``.

        Raises:
            TaskNotFoundError: If the task does not exist
            ValidationError: If ``expected_version`` is not a positive integer
            VersionConflictError: If ``expected_version`` is stale
            InvalidTransitionError: If the transition table forbids it
            UnresolvedDependenciesError: If completing with open dependencies
            StoreUnavailableError: If the store fails or times out
        """
        task_id = _coerce_uuid(task_id, "task_id")
        target = _coerce_status(new_status)
        if isinstance(expected_version, bool) or not isinstance(expected_version, int) or expected_version < 1:
            raise ValidationError(
                "expected_version", "must be a positive integer", value=expected_version
            )

        task = await self._store(self.repository.find_by_id(task_id), "find_by_id", timeout)
        self._check_version(task, expected_version)

        dependency_statuses: Dict[UUID, TaskStatus] = {}
        if target == TaskStatus.COMPLETED and task.dependencies:
            dependency_statuses = await self._store(
                self.repository.list_dependency_statuses(task.dependencies),
                "list_dependency_statuses",
                timeout,
            )

        self.state_machine.validate(task.status, target, dependency_statuses)

        now = utcnow()
        updated = task.evolve(
            status=target,
            completed_at=now if target == TaskStatus.COMPLETED else None,
            started_at=task.started_at or (now if target == TaskStatus.IN_PROGRESS else None),
            updated_at=now,
            version=task.version + 1,
        )
        saved = await self._store(self.repository.save(updated, task.version), "save", timeout)

        logger.info(
            "Task status changed",
            task_id=str(saved.id),
            previous_status=task.status.value,
            new_status=saved.status.value,
            version=saved.version,
        )
        self._emit(
            EventTopic.STATUS_CHANGED,
            saved,
            {"previous_status": task.status.value, "new_status": saved.status.value},
        )
        if saved.status == TaskStatus.COMPLETED:
            self._emit(
                EventTopic.COMPLETED,
                saved,
                {"completed_at": saved.completed_at.isoformat()},
            )
        return saved

    async def add_dependency(
        self,
        task_id: Union[UUID, str],
        depends_on_id: Union[UUID, str],
        expected_version: Optional[int] = None,
        *,
        timeout: Optional[float] = None,
    ) -> Task:
        """
        Record that ``task_id`` depends on ``depends_on_id``.

        Adding an edge that already exists returns the task unchanged.

        Raises:
            TaskNotFoundError: If either task does not exist
            SelfDependencyError: If both ids are the same
            CycleDetectedError: If the edge would close a cycle
            UnresolvedDependenciesError: If the task is completed and the new
                dependency is not
            VersionConflictError: If the task changed concurrently
            StoreUnavailableError: If the store fails or times out
        """
        task_id = _coerce_uuid(task_id, "task_id")
        depends_on_id = _coerce_uuid(depends_on_id, "depends_on_id")
        if task_id == depends_on_id:
            raise SelfDependencyError(task_id)

        async with self._graph_lock:
            graph = await self._writable_graph(timeout)
            task = await self._store(self.repository.find_by_id(task_id), "find_by_id", timeout)
            dependency = await self._store(
                self.repository.find_by_id(depends_on_id), "find_by_id", timeout
            )
            self._check_version(task, expected_version)

            if task.depends_on(depends_on_id):
                return task

            inserted = graph.add_edge(task_id, depends_on_id)
            try:
                if task.status == TaskStatus.COMPLETED and dependency.status != TaskStatus.COMPLETED:
                    raise UnresolvedDependenciesError([depends_on_id])

                updated = task.evolve(
                    dependencies=task.dependencies | {depends_on_id},
                    updated_at=utcnow(),
                    version=task.version + 1,
                )
                saved = await self._store(
                    self.repository.save(updated, task.version), "save", timeout
                )
            except BaseException as e:
                if inserted:
                    graph.remove_edge(task_id, depends_on_id)
                if isinstance(e, (StoreUnavailableError, asyncio.CancelledError)):
                    self._graph_stale = True
                raise

        logger.info(
            "Dependency added",
            task_id=str(task_id),
            depends_on_id=str(depends_on_id),
            version=saved.version,
        )
        self._emit(EventTopic.DEPENDENCY_ADDED, saved, {"depends_on_id": str(depends_on_id)})
        return saved

    async def remove_dependency(
        self,
        task_id: Union[UUID, str],
        depends_on_id: Union[UUID, str],
        expected_version: Optional[int] = None,
        *,
        timeout: Optional[float] = None,
    ) -> Task:
        """
        Remove the edge ``task_id -> depends_on_id``.

        Idempotent: if the edge is absent the task is returned unchanged,
        with no version change and no event.
        """
        task_id = _coerce_uuid(task_id, "task_id")
        depends_on_id = _coerce_uuid(depends_on_id, "depends_on_id")

        async with self._graph_lock:
            graph = await self._writable_graph(timeout)
            task = await self._store(self.repository.find_by_id(task_id), "find_by_id", timeout)
            self._check_version(task, expected_version)

            if not task.depends_on(depends_on_id):
                return task

            updated = task.evolve(
                dependencies=task.dependencies - {depends_on_id},
                updated_at=utcnow(),
                version=task.version + 1,
            )
            try:
                saved = await self._store(
                    self.repository.save(updated, task.version), "save", timeout
                )
            except (StoreUnavailableError, asyncio.CancelledError):
                self._graph_stale = True
                raise
            graph.remove_edge(task_id, depends_on_id)

        logger.info(
            "Dependency removed",
            task_id=str(task_id),
            depends_on_id=str(depends_on_id),
            version=saved.version,
        )
        self._emit(EventTopic.DEPENDENCY_REMOVED, saved, {"depends_on_id": str(depends_on_id)})
        return saved

    async def assign_user(
        self,
        task_id: Union[UUID, str],
        user_id: str,
        expected_version: Optional[int] = None,
        *,
        timeout: Optional[float] = None,
    ) -> Task:
        """Assign ``user_id``, replacing any previous assignee."""
        task_id = _coerce_uuid(task_id, "task_id")
        if not isinstance(user_id, str) or not user_id.strip():
            raise ValidationError("user_id", "must be a non-empty string", value=user_id)
        user_id = user_id.strip()

        task = await self._store(self.repository.find_by_id(task_id), "find_by_id", timeout)
        self._check_version(task, expected_version)

        updated = task.evolve(
            assigned_user_id=user_id,
            updated_at=utcnow(),
            version=task.version + 1,
        )
        saved = await self._store(self.repository.save(updated, task.version), "save", timeout)

        logger.info("Task assigned", task_id=str(saved.id), user_id=user_id, version=saved.version)
        self._emit(
            EventTopic.ASSIGNED,
            saved,
            {"user_id": user_id, "previous_user_id": task.assigned_user_id},
        )
        return saved

    async def unassign_user(
        self,
        task_id: Union[UUID, str],
        expected_version: Optional[int] = None,
        *,
        timeout: Optional[float] = None,
    ) -> Task:
        """Clear the assignee. No-op if the task is unassigned."""
        task_id = _coerce_uuid(task_id, "task_id")

        task = await self._store(self.repository.find_by_id(task_id), "find_by_id", timeout)
        self._check_version(task, expected_version)
        if task.assigned_user_id is None:
            return task

        updated = task.evolve(
            assigned_user_id=None,
            updated_at=utcnow(),
            version=task.version + 1,
        )
        saved = await self._store(self.repository.save(updated, task.version), "save", timeout)

        logger.info("Task unassigned", task_id=str(saved.id), version=saved.version)
        self._emit(EventTopic.UNASSIGNED, saved, {"previous_user_id": task.assigned_user_id})
        return saved

    # ============================================================================
    # QUERIES
    # ============================================================================

    async def get_task(self, task_id: Union[UUID, str], *, timeout: Optional[float] = None) -> Task:
        task_id = _coerce_uuid(task_id, "task_id")
        return await self._store(self.repository.find_by_id(task_id), "find_by_id", timeout)

    async def list_tasks(
        self,
        status: Optional[Union[TaskStatus, str]] = None,
        assigned_user_id: Optional[str] = None,
        *,
        timeout: Optional[float] = None,
    ) -> List[Task]:
        if status is not None:
            status = _coerce_status(status)
        return await self._store(
            self.repository.list_tasks(status=status, assigned_user_id=assigned_user_id),
            "list_tasks",
            timeout,
        )

    async def get_dependencies(self, task_id: Union[UUID, str], *, timeout: Optional[float] = None) -> List[Task]:
        """Tasks that ``task_id`` depends on."""
        task = await self.get_task(task_id, timeout=timeout)
        return [
            await self.get_task(dep_id, timeout=timeout)
            for dep_id in sorted(task.dependencies, key=str)
        ]

    async def get_dependents(self, task_id: Union[UUID, str], *, timeout: Optional[float] = None) -> List[Task]:
        """Tasks blocked by ``task_id`` (tasks that depend on it)."""
        task_id = _coerce_uuid(task_id, "task_id")
        tasks = await self.list_tasks(timeout=timeout)
        return [task for task in tasks if task.depends_on(task_id)]

    async def get_ready_tasks(self, *, timeout: Optional[float] = None) -> List[Task]:
        """Pending tasks whose dependencies are all completed."""
        tasks = await self.list_tasks(timeout=timeout)
        completed = {task.id for task in tasks if task.status == TaskStatus.COMPLETED}
        return [
            task
            for task in tasks
            if task.status == TaskStatus.PENDING and task.dependencies <= completed
        ]

    async def get_overdue_tasks(
        self,
        now: Optional[datetime] = None,
        *,
        timeout: Optional[float] = None,
    ) -> List[Task]:
        tasks = await self.list_tasks(timeout=timeout)
        return [task for task in tasks if task.is_overdue(now)]

    async def execution_order(self, *, timeout: Optional[float] = None) -> List[UUID]:
        """Task ids ordered so that every dependency comes first."""
        tasks = await self.list_tasks(timeout=timeout)
        return DependencyGraph.from_tasks(tasks).topological_order()

    async def status_counts(self, *, timeout: Optional[float] = None) -> Dict[TaskStatus, int]:
        tasks = await self.list_tasks(timeout=timeout)
        counts = {status: 0 for status in TaskStatus}
        for task in tasks:
            counts[task.status] += 1
        return counts

    async def allowed_transitions(
        self,
        task_id: Union[UUID, str],
        *,
        timeout: Optional[float] = None,
    ) -> FrozenSet[TaskStatus]:
        task = await self.get_task(task_id, timeout=timeout)
        return self.state_machine.allowed_targets(task.status)

    # ============================================================================
    # HELPER METHODS
    # ============================================================================

    async def _store(self, call: Awaitable[T], operation: str, timeout: Optional[float]) -> T:
        """Run a repository call under a deadline."""
        deadline = timeout if timeout is not None else self.config.store.timeout_seconds
        try:
            return await asyncio.wait_for(call, timeout=deadline)
        except asyncio.TimeoutError:
            logger.warning("Repository call timed out", operation=operation, timeout=deadline)
            raise StoreUnavailableError(f"timed out after {deadline}s", operation=operation)

    @staticmethod
    def _check_version(task: Task, expected_version: Optional[int]) -> None:
        if expected_version is not None and task.version != expected_version:
            raise VersionConflictError(expected_version, task.version, task_id=task.id)

    def _emit(self, topic: EventTopic, task: Task, data: Dict[str, Any]) -> None:
        if self.dispatcher is None:
            return
        self.dispatcher.submit(
            TaskEvent(
                topic=topic,
                task_id=task.id,
                version=task.version,
                occurred_at=task.updated_at,
                data=data,
            )
        )
