"""
SQL Task Repository - SQLAlchemy Integration

Async implementation of the TaskRepository protocol on SQLAlchemy 2.0 Core
with the aiosqlite dialect.

Key Features:
- Single ``tasks`` table with a ``version`` column
- Optimistic writes: ``UPDATE ... WHERE id = :id AND version = :expected``
- Dependencies persisted as a JSON list of task ids
- Driver errors surface as StoreUnavailableError
"""

import contextlib
from pathlib import Path
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional
from uuid import UUID

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Column,
    DateTime,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    and_,
    insert,
    select,
    update,
)
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine
from sqlalchemy.pool import StaticPool

from task_lifecycle.config import DatabaseConfig
from task_lifecycle.exceptions import (
    StoreUnavailableError,
    TaskNotFoundError,
    VersionConflictError,
)
from task_lifecycle.logging_config import get_logger
from task_lifecycle.models import Task, TaskStatus

logger = get_logger("repository.sql")

metadata = MetaData()

_STATUS_VALUES = ", ".join(f"'{status.value}'" for status in TaskStatus)

tasks_table = Table(
    "tasks",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("name", String(200), nullable=False),
    Column("description", Text),
    Column(
        "status",
        String(20),
        CheckConstraint(f"status IN ({_STATUS_VALUES})"),
        nullable=False,
    ),
    Column("context", String(20), nullable=False),
    Column("priority", String(20), nullable=False),
    Column("complexity", String(20), nullable=False),
    Column("assigned_user_id", String(100)),
    Column("dependencies", JSON, nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
    Column("started_at", DateTime(timezone=True)),
    Column("completed_at", DateTime(timezone=True)),
    Column("due_date", DateTime(timezone=True)),
    Column("version", Integer, CheckConstraint("version >= 1"), nullable=False),
)

Index("idx_tasks_status", tasks_table.c.status)
Index("idx_tasks_assignee", tasks_table.c.assigned_user_id)


class SQLTaskRepository:
    """
    SQLAlchemy-backed task repository.

    Call ``initialize()`` before use and ``close()`` on shutdown.
    """

    def __init__(
        self,
        engine: Optional[AsyncEngine] = None,
        db_path: Optional[str] = None,
        echo: bool = False,
    ):
        self.engine = engine
        self.db_path = db_path
        self.echo = echo

    @classmethod
    def from_config(cls, config: DatabaseConfig) -> "SQLTaskRepository":
        return cls(db_path=config.db_path, echo=config.echo)

    async def initialize(self) -> None:
        """Create the engine (unless injected) and the schema."""
        if self.engine is None:
            if not self.db_path:
                raise StoreUnavailableError("no database path configured", operation="initialize")

            engine_kwargs: Dict[str, Any] = {
                "echo": self.echo,
                "connect_args": {"check_same_thread": False},
            }
            if self.db_path == ":memory:":
                engine_kwargs["poolclass"] = StaticPool
            else:
                Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

            self.engine = create_async_engine(f"sqlite+aiosqlite:///{self.db_path}", **engine_kwargs)

        async with self.engine.begin() as conn:
            await conn.run_sync(metadata.create_all)

        logger.info("SQL task repository initialized", db_path=self.db_path)

    async def close(self) -> None:
        if self.engine:
            await self.engine.dispose()
            logger.info("SQL task repository closed")

    @contextlib.asynccontextmanager
    async def _connection(self, operation: str, write: bool = False) -> AsyncIterator[AsyncConnection]:
        if self.engine is None:
            raise StoreUnavailableError("repository not initialized", operation=operation)

        try:
            context = self.engine.begin() if write else self.engine.connect()
            async with context as conn:
                yield conn
        except IntegrityError:
            raise
        except SQLAlchemyError as e:
            logger.error("Task store operation failed", operation=operation, error=str(e))
            raise StoreUnavailableError(str(e), operation=operation) from e

    # ============================================================================
    # PROTOCOL OPERATIONS
    # ============================================================================

    async def find_by_id(self, task_id: UUID) -> Task:
        async with self._connection("find_by_id") as conn:
            result = await conn.execute(
                select(tasks_table).where(tasks_table.c.id == str(task_id))
            )
            row = result.fetchone()

        if row is None:
            raise TaskNotFoundError(task_id)
        return self._row_to_task(row)

    async def save(self, task: Task, expected_version: Optional[int]) -> Task:
        row = self._task_to_row(task)

        if not expected_version:
            try:
                async with self._connection("save", write=True) as conn:
                    await conn.execute(insert(tasks_table).values(**row))
            except IntegrityError:
                actual = await self._current_version(task.id)
                raise VersionConflictError(None, actual, task_id=task.id)
            return task

        async with self._connection("save", write=True) as conn:
            result = await conn.execute(
                update(tasks_table)
                .where(
                    and_(
                        tasks_table.c.id == str(task.id),
                        tasks_table.c.version == expected_version,
                    )
                )
                .values(**{k: v for k, v in row.items() if k != "id"})
            )
            updated = result.rowcount

        if updated == 0:
            actual = await self._current_version(task.id)
            if actual is None:
                raise TaskNotFoundError(task.id)
            raise VersionConflictError(expected_version, actual, task_id=task.id)
        return task

    async def list_dependency_statuses(self, task_ids: Iterable[UUID]) -> Dict[UUID, TaskStatus]:
        wanted = {UUID(str(task_id)) for task_id in task_ids}
        if not wanted:
            return {}

        async with self._connection("list_dependency_statuses") as conn:
            result = await conn.execute(
                select(tasks_table.c.id, tasks_table.c.status).where(
                    tasks_table.c.id.in_([str(task_id) for task_id in wanted])
                )
            )
            rows = result.fetchall()

        statuses = {UUID(row.id): TaskStatus(row.status) for row in rows}
        missing = sorted(wanted - set(statuses), key=str)
        if missing:
            raise TaskNotFoundError(missing[0])
        return statuses

    async def list_tasks(
        self,
        status: Optional[TaskStatus] = None,
        assigned_user_id: Optional[str] = None,
    ) -> List[Task]:
        query = select(tasks_table)
        if status is not None:
            query = query.where(tasks_table.c.status == TaskStatus(status).value)
        if assigned_user_id is not None:
            query = query.where(tasks_table.c.assigned_user_id == assigned_user_id)
        query = query.order_by(tasks_table.c.created_at, tasks_table.c.id)

        async with self._connection("list_tasks") as conn:
            result = await conn.execute(query)
            rows = result.fetchall()

        return [self._row_to_task(row) for row in rows]

    # ============================================================================
    # HELPER METHODS
    # ============================================================================

    async def _current_version(self, task_id: UUID) -> Optional[int]:
        async with self._connection("current_version") as conn:
            result = await conn.execute(
                select(tasks_table.c.version).where(tasks_table.c.id == str(task_id))
            )
            return result.scalar()

    def _task_to_row(self, task: Task) -> Dict[str, Any]:
        """Convert Task model to database row"""
        return {
            "id": str(task.id),
            "name": task.name,
            "description": task.description,
            "status": task.status.value,
            "context": task.context.value,
            "priority": task.priority.value,
            "complexity": task.complexity.value,
            "assigned_user_id": task.assigned_user_id,
            "dependencies": sorted(str(dep_id) for dep_id in task.dependencies),
            "created_at": task.created_at,
            "updated_at": task.updated_at,
            "started_at": task.started_at,
            "completed_at": task.completed_at,
            "due_date": task.due_date,
            "version": task.version,
        }

    def _row_to_task(self, row) -> Task:
        """Convert database row to Task model"""
        return Task(
            id=UUID(row.id),
            name=row.name,
            description=row.description,
            status=TaskStatus(row.status),
            context=row.context,
            priority=row.priority,
            complexity=row.complexity,
            assigned_user_id=row.assigned_user_id,
            dependencies={UUID(dep_id) for dep_id in (row.dependencies or [])},
            created_at=row.created_at,
            updated_at=row.updated_at,
            started_at=row.started_at,
            completed_at=row.completed_at,
            due_date=row.due_date,
            version=row.version,
        )
