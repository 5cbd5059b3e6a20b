"""Concurrent mutations against the lifecycle service."""

import asyncio
import itertools
import random

import pytest

from task_lifecycle.exceptions import CycleDetectedError, VersionConflictError
from task_lifecycle.graph import DependencyGraph
from task_lifecycle.models import Task, TaskStatus
from task_lifecycle.repository import InMemoryTaskRepository
from task_lifecycle.service import LifecycleService


@pytest.fixture
async def slow_service(emitter, config):
    svc = LifecycleService(InMemoryTaskRepository(latency=0.005), emitter=emitter, config=config)
    await svc.start()
    yield svc
    await svc.stop()


class TestConcurrentMutations:
    """Single writer for edges, optimistic versions for everything else."""

    @pytest.mark.asyncio
    async def test_opposite_edges_one_wins(self, slow_service):
        a = await slow_service.create_task({"name": "A"})
        b = await slow_service.create_task({"name": "B"})

        results = await asyncio.gather(
            slow_service.add_dependency(a.id, b.id),
            slow_service.add_dependency(b.id, a.id),
            return_exceptions=True,
        )

        successes = [r for r in results if isinstance(r, Task)]
        failures = [r for r in results if isinstance(r, (CycleDetectedError, VersionConflictError))]
        assert len(successes) == 1
        assert len(failures) == 1

        a = await slow_service.get_task(a.id)
        b = await slow_service.get_task(b.id)
        assert (b.id in a.dependencies) != (a.id in b.dependencies)

    @pytest.mark.asyncio
    async def test_concurrent_status_updates_conflict(self, slow_service, emitter):
        task = await slow_service.create_task({"name": "t"})

        results = await asyncio.gather(
            slow_service.update_status(task.id, TaskStatus.IN_PROGRESS, 1),
            slow_service.update_status(task.id, TaskStatus.CANCELLED, 1),
            return_exceptions=True,
        )

        assert sum(isinstance(r, Task) for r in results) == 1
        assert sum(isinstance(r, VersionConflictError) for r in results) == 1
        assert (await slow_service.get_task(task.id)).version == 2

        await slow_service.flush_events()
        assert len(emitter.for_task(task.id, "task.status_changed")) == 1

    @pytest.mark.asyncio
    async def test_concurrent_assign_and_edge(self, slow_service):
        a = await slow_service.create_task({"name": "A"})
        b = await slow_service.create_task({"name": "B"})

        results = await asyncio.gather(
            slow_service.assign_user(a.id, "alice"),
            slow_service.add_dependency(a.id, b.id),
            return_exceptions=True,
        )

        stored = await slow_service.get_task(a.id)
        conflicts = [r for r in results if isinstance(r, VersionConflictError)]
        assert len(conflicts) <= 1
        assert stored.version == 1 + sum(isinstance(r, Task) for r in results)

        # the in-memory graph matches the store whichever write won
        graph = await slow_service.reload_graph()
        assert graph.has_edge(a.id, b.id) == (b.id in stored.dependencies)

    @pytest.mark.asyncio
    async def test_random_edges_stay_acyclic(self, slow_service):
        tasks = [await slow_service.create_task({"name": f"t{i}"}) for i in range(5)]
        pairs = list(itertools.permutations([t.id for t in tasks], 2))
        random.Random(7).shuffle(pairs)

        results = await asyncio.gather(
            *(slow_service.add_dependency(a, b) for a, b in pairs),
            return_exceptions=True,
        )

        assert all(isinstance(r, (Task, CycleDetectedError)) for r in results)

        stored = await slow_service.list_tasks()
        graph = DependencyGraph.from_tasks(stored)
        assert graph.find_cycle() is None
        # every unordered pair ends up with exactly one direction
        for a, b in itertools.combinations([t.id for t in tasks], 2):
            assert graph.has_edge(a, b) != graph.has_edge(b, a)
        assert sorted(map(str, graph.topological_order())) == sorted(str(t.id) for t in tasks)
