"""Shared fixtures for the lifecycle engine tests."""

import pytest

from task_lifecycle.config import EventConfig, LifecycleConfig, StoreConfig
from task_lifecycle.events import InMemoryEventEmitter
from task_lifecycle.repository import InMemoryTaskRepository
from task_lifecycle.service import LifecycleService


@pytest.fixture
def config():
    return LifecycleConfig(
        environment="testing",
        store=StoreConfig(timeout_seconds=1.0),
        events=EventConfig(publish_timeout_seconds=0.5, max_retries=2, retry_delay_seconds=0.0),
    )


@pytest.fixture
def repo():
    return InMemoryTaskRepository()


@pytest.fixture
def emitter():
    return InMemoryEventEmitter()


@pytest.fixture
async def service(repo, emitter, config):
    """Started service over the in-memory repository; stopped on teardown."""
    svc = LifecycleService(repo, emitter=emitter, config=config)
    await svc.start()
    yield svc
    await svc.stop()
