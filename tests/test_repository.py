"""Tests for the in-memory task repository."""

import asyncio

import pytest

from task_lifecycle.exceptions import (
    StoreUnavailableError,
    TaskNotFoundError,
    VersionConflictError,
)
from task_lifecycle.models import Task, TaskStatus
from task_lifecycle.repository import InMemoryTaskRepository


def make_task(name="task", **kwargs):
    return Task(name=name, **kwargs)


class TestInMemoryTaskRepository:
    """Compare-and-set semantics and copy isolation."""

    @pytest.mark.asyncio
    async def test_insert_and_find(self, repo):
        task = make_task()
        await repo.save(task, None)

        loaded = await repo.find_by_id(task.id)
        assert loaded == task
        assert loaded is not task
        assert len(repo) == 1

    @pytest.mark.asyncio
    async def test_find_missing(self, repo):
        with pytest.raises(TaskNotFoundError):
            await repo.find_by_id(make_task().id)

    @pytest.mark.asyncio
    async def test_duplicate_insert_conflicts(self, repo):
        task = make_task()
        await repo.save(task, None)
        with pytest.raises(VersionConflictError):
            await repo.save(task, 0)

    @pytest.mark.asyncio
    async def test_versioned_update(self, repo):
        task = make_task()
        await repo.save(task, None)

        updated = task.evolve(name="renamed", version=2)
        await repo.save(updated, 1)
        assert (await repo.find_by_id(task.id)).name == "renamed"

        with pytest.raises(VersionConflictError) as exc_info:
            await repo.save(task.evolve(version=2), 1)
        assert exc_info.value.expected == 1
        assert exc_info.value.actual == 2
        assert repo.stats["conflicts"] == 1

    @pytest.mark.asyncio
    async def test_update_missing(self, repo):
        with pytest.raises(TaskNotFoundError):
            await repo.save(make_task(version=2), 1)

    @pytest.mark.asyncio
    async def test_stored_copy_is_isolated(self, repo):
        task = make_task()
        await repo.save(task, None)
        task.dependencies.add(make_task().id)
        assert (await repo.find_by_id(task.id)).dependencies == set()

    @pytest.mark.asyncio
    async def test_list_dependency_statuses(self, repo):
        a = make_task("a")
        b = make_task("b")
        await repo.save(a, None)
        await repo.save(b, None)

        statuses = await repo.list_dependency_statuses([a.id, b.id])
        assert statuses == {a.id: TaskStatus.PENDING, b.id: TaskStatus.PENDING}

        with pytest.raises(TaskNotFoundError):
            await repo.list_dependency_statuses([a.id, make_task().id])

    @pytest.mark.asyncio
    async def test_list_tasks_filters(self, repo):
        a = make_task("a", assigned_user_id="alice")
        b = make_task("b", status=TaskStatus.IN_PROGRESS)
        await repo.save(a, None)
        await repo.save(b, None)

        expected = sorted([a, b], key=lambda t: (t.created_at, str(t.id)))
        assert [t.id for t in await repo.list_tasks()] == [t.id for t in expected]
        assert [t.id for t in await repo.list_tasks(status=TaskStatus.IN_PROGRESS)] == [b.id]
        assert [t.id for t in await repo.list_tasks(assigned_user_id="alice")] == [a.id]

    @pytest.mark.asyncio
    async def test_unavailable(self, repo):
        repo.set_available(False)
        with pytest.raises(StoreUnavailableError):
            await repo.list_tasks()
        repo.set_available(True)
        assert await repo.list_tasks() == []

    @pytest.mark.asyncio
    async def test_concurrent_writers_one_wins(self):
        repo = InMemoryTaskRepository(latency=0.01)
        task = make_task()
        await repo.save(task, None)

        results = await asyncio.gather(
            repo.save(task.evolve(name="first", version=2), 1),
            repo.save(task.evolve(name="second", version=2), 1),
            return_exceptions=True,
        )

        assert sum(isinstance(r, VersionConflictError) for r in results) == 1
        assert sum(isinstance(r, Task) for r in results) == 1
