"""Tests for the SQLAlchemy task repository."""

from datetime import datetime, timedelta, timezone

import pytest

from task_lifecycle.config import DatabaseConfig
from task_lifecycle.exceptions import (
    CycleDetectedError,
    StoreUnavailableError,
    TaskNotFoundError,
    VersionConflictError,
)
from task_lifecycle.models import Task, TaskPriority, TaskStatus
from task_lifecycle.service import LifecycleService
from task_lifecycle.sql_repository import SQLTaskRepository


@pytest.fixture
async def sql_repo(tmp_path):
    repository = SQLTaskRepository.from_config(DatabaseConfig(db_path=str(tmp_path / "db" / "tasks.db")))
    await repository.initialize()
    yield repository
    await repository.close()


class TestSQLTaskRepository:
    """Persistence round trips and conditional updates."""

    @pytest.mark.asyncio
    async def test_round_trip(self, sql_repo):
        dep = Task(name="dependency")
        task = Task(
            name="main",
            description="with everything set",
            priority=TaskPriority.HIGH,
            assigned_user_id="alice",
            dependencies={dep.id},
            due_date=datetime(2030, 1, 1, 12, 0, tzinfo=timezone.utc),
        )
        await sql_repo.save(dep, None)
        await sql_repo.save(task, None)

        loaded = await sql_repo.find_by_id(task.id)
        assert loaded.model_dump() == task.model_dump()
        assert loaded.created_at.tzinfo is not None

    @pytest.mark.asyncio
    async def test_find_missing(self, sql_repo):
        with pytest.raises(TaskNotFoundError):
            await sql_repo.find_by_id(Task(name="ghost").id)

    @pytest.mark.asyncio
    async def test_duplicate_insert_conflicts(self, sql_repo):
        task = Task(name="once")
        await sql_repo.save(task, None)
        with pytest.raises(VersionConflictError) as exc_info:
            await sql_repo.save(task, None)
        assert exc_info.value.actual == 1

    @pytest.mark.asyncio
    async def test_conditional_update(self, sql_repo):
        task = Task(name="versioned")
        await sql_repo.save(task, None)

        await sql_repo.save(task.evolve(status=TaskStatus.IN_PROGRESS, version=2), 1)
        assert (await sql_repo.find_by_id(task.id)).version == 2

        with pytest.raises(VersionConflictError) as exc_info:
            await sql_repo.save(task.evolve(status=TaskStatus.CANCELLED, version=2), 1)
        assert exc_info.value.expected == 1
        assert exc_info.value.actual == 2
        assert (await sql_repo.find_by_id(task.id)).status == TaskStatus.IN_PROGRESS

    @pytest.mark.asyncio
    async def test_update_missing(self, sql_repo):
        with pytest.raises(TaskNotFoundError):
            await sql_repo.save(Task(name="ghost", version=2), 1)

    @pytest.mark.asyncio
    async def test_list_dependency_statuses(self, sql_repo):
        a = Task(name="a")
        b = Task(name="b", status=TaskStatus.CANCELLED)
        await sql_repo.save(a, None)
        await sql_repo.save(b, None)

        assert await sql_repo.list_dependency_statuses([a.id, b.id]) == {
            a.id: TaskStatus.PENDING,
            b.id: TaskStatus.CANCELLED,
        }
        assert await sql_repo.list_dependency_statuses([]) == {}
        with pytest.raises(TaskNotFoundError):
            await sql_repo.list_dependency_statuses([a.id, Task(name="ghost").id])

    @pytest.mark.asyncio
    async def test_list_tasks_ordered_and_filtered(self, sql_repo):
        now = datetime.now(timezone.utc)
        older = Task(name="older", created_at=now - timedelta(hours=1), assigned_user_id="bob")
        newer = Task(name="newer", created_at=now)
        await sql_repo.save(newer, None)
        await sql_repo.save(older, None)

        assert [t.name for t in await sql_repo.list_tasks()] == ["older", "newer"]
        assert [t.name for t in await sql_repo.list_tasks(assigned_user_id="bob")] == ["older"]
        assert await sql_repo.list_tasks(status=TaskStatus.COMPLETED) == []

    @pytest.mark.asyncio
    async def test_requires_initialize(self):
        repository = SQLTaskRepository(db_path=":memory:")
        with pytest.raises(StoreUnavailableError):
            await repository.list_tasks()


class TestServiceOverSQL:
    """The lifecycle service against the SQL adapter."""

    @pytest.mark.asyncio
    async def test_dependency_flow(self, sql_repo):
        async with LifecycleService(sql_repo) as service:
            x = await service.create_task({"name": "X"})
            y = await service.create_task({"name": "Y"})

            x = await service.add_dependency(x.id, y.id)
            with pytest.raises(CycleDetectedError):
                await service.add_dependency(y.id, x.id)

            stored = await sql_repo.find_by_id(x.id)
            assert stored.dependencies == {y.id}
            assert stored.version == 2

        # a fresh service reloads the same graph from the database
        async with LifecycleService(sql_repo) as reloaded:
            with pytest.raises(CycleDetectedError):
                await reloaded.add_dependency(y.id, x.id)
            assert await reloaded.execution_order() == [y.id, x.id]
