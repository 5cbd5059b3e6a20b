"""
Domain Events

Topics, the event envelope, an in-memory emitter and the outbox dispatcher.

Events are handed to the dispatcher only after the corresponding write has
been committed. The dispatcher owns a bounded queue drained by a single
worker task; publish failures are retried, then logged and dropped. They
never reach the mutation that produced the event.
"""

import asyncio
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from task_lifecycle.exceptions import EventPublishError
from task_lifecycle.logging_config import get_logger
from task_lifecycle.models import utcnow
from task_lifecycle.protocols import EventEmitter

logger = get_logger("events")


class EventTopic(str, Enum):
    """Published topics"""
    CREATED = "task.created"
    STATUS_CHANGED = "task.status_changed"
    COMPLETED = "task.completed"
    DEPENDENCY_ADDED = "task.dependency_added"
    DEPENDENCY_REMOVED = "task.dependency_removed"
    ASSIGNED = "task.assigned"
    UNASSIGNED = "task.unassigned"


class TaskEvent(BaseModel):
    """Envelope for every published event."""

    event_id: UUID = Field(default_factory=uuid4, description="Unique event identifier")
    topic: EventTopic = Field(..., description="Event topic")
    task_id: UUID = Field(..., description="Task the event refers to")
    version: int = Field(..., ge=1, description="Task version after the mutation")
    occurred_at: datetime = Field(default_factory=utcnow, description="Commit time")
    data: Dict[str, Any] = Field(default_factory=dict, description="Topic-specific payload")

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


class InMemoryEventEmitter:
    """Records published events; can be switched to fail for tests."""

    def __init__(self) -> None:
        self.published: List[Tuple[str, Dict[str, Any]]] = []
        self.fail_with: Optional[Exception] = None
        self.attempts = 0

    async def publish(self, topic: str, payload: Mapping[str, Any]) -> None:
        self.attempts += 1
        if self.fail_with is not None:
            raise self.fail_with
        self.published.append((topic, dict(payload)))

    def topics(self) -> List[str]:
        return [topic for topic, _ in self.published]

    def for_task(self, task_id: UUID, topic: Optional[str] = None) -> List[Dict[str, Any]]:
        return [
            payload
            for published_topic, payload in self.published
            if payload.get("task_id") == str(task_id)
            and (topic is None or published_topic == topic)
        ]


class EventDispatcher:
    """
    Bounded outbox feeding an EventEmitter from a background worker.

    ``submit`` never blocks and never raises: a full queue drops the event.
    """

    def __init__(
        self,
        emitter: EventEmitter,
        max_queue_size: int = 1000,
        publish_timeout: float = 5.0,
        max_retries: int = 3,
        retry_delay: float = 0.1,
    ):
        self.emitter = emitter
        self.publish_timeout = publish_timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay

        self._queue: "asyncio.Queue[TaskEvent]" = asyncio.Queue(maxsize=max_queue_size)
        self._worker: Optional["asyncio.Task[None]"] = None
        self.stats = {"submitted": 0, "published": 0, "failed": 0, "dropped": 0}

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    async def start(self) -> None:
        if self.running:
            return
        self._worker = asyncio.create_task(self._run(), name="task-lifecycle-events")
        logger.info("Event dispatcher started", queue_size=self._queue.maxsize)

    async def stop(self, drain: bool = True) -> None:
        """Stop the worker, publishing queued events first when ``drain`` is set."""
        if self._worker is None:
            return
        if drain and not self._worker.done():
            await self._queue.join()
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None
        logger.info("Event dispatcher stopped", stats=self.stats)

    def submit(self, event: TaskEvent) -> bool:
        """Enqueue an event for publication. Returns False if it was dropped."""
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.stats["dropped"] += 1
            logger.warning(
                "Event queue full, dropping event",
                topic=event.topic.value,
                task_id=str(event.task_id),
            )
            return False
        self.stats["submitted"] += 1
        return True

    async def flush(self) -> None:
        """Wait until every queued event has been handled."""
        if not self.running:
            raise RuntimeError("Event dispatcher is not running")
        await self._queue.join()

    def pending(self) -> int:
        return self._queue.qsize()

    async def _run(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self._deliver(event)
            except EventPublishError as e:
                self.stats["failed"] += 1
                logger.error(
                    "Event dropped after retries",
                    topic=e.topic,
                    task_id=str(event.task_id),
                    error=e.reason,
                )
            finally:
                self._queue.task_done()

    async def _deliver(self, event: TaskEvent) -> None:
        topic = event.topic.value
        payload = event.to_payload()
        last_error = "unknown error"

        for attempt in range(self.max_retries + 1):
            try:
                await asyncio.wait_for(
                    self.emitter.publish(topic, payload), timeout=self.publish_timeout
                )
                self.stats["published"] += 1
                logger.debug("Event published", topic=topic, task_id=str(event.task_id))
                return
            except asyncio.TimeoutError:
                last_error = f"publish timed out after {self.publish_timeout}s"
            except Exception as e:
                last_error = str(e) or e.__class__.__name__

            logger.warning(
                "Event publish attempt failed",
                topic=topic,
                attempt=attempt + 1,
                error=last_error,
            )
            if attempt < self.max_retries and self.retry_delay:
                await asyncio.sleep(self.retry_delay * (2 ** attempt))

        raise EventPublishError(topic, last_error)
