"""
Task Lifecycle Models

Core data model for the lifecycle engine:
- Task: unit of work with identity, status, dependency edges and a version stamp
- TaskCreate: validated input for task creation
- TaskStatus / TaskContext / TaskPriority / TaskComplexity: closed enums

Dependencies are stored as a set of task identifiers, never as references
between Task objects.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Set
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (SQLite drops tzinfo)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class TaskStatus(str, Enum):
    """Task lifecycle status"""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    ON_HOLD = "on_hold"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.CANCELLED)


class TaskContext(str, Enum):
    """Task context categories"""
    WORK = "work"
    PERSONAL = "personal"
    LEARNING = "learning"
    MAINTENANCE = "maintenance"
    RESEARCH = "research"


class TaskPriority(str, Enum):
    """Task priority levels"""
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    WISH = "wish"


class TaskComplexity(str, Enum):
    """Task complexity levels"""
    TRIVIAL = "trivial"
    SIMPLE = "simple"
    MEDIUM = "medium"
    COMPLEX = "complex"
    VERY_COMPLEX = "very_complex"


def _clean_name(value: str) -> str:
    value = value.strip()
    if not value:
        raise ValueError("name must not be blank")
    return value


class TaskCreate(BaseModel):
    """Fields accepted when creating a task."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1, max_length=200, description="Task name")
    description: Optional[str] = Field(None, max_length=5000, description="Task description")
    context: TaskContext = Field(default=TaskContext.WORK, description="Task context category")
    priority: TaskPriority = Field(default=TaskPriority.MEDIUM, description="Task priority")
    complexity: TaskComplexity = Field(default=TaskComplexity.MEDIUM, description="Task complexity")
    assigned_user_id: Optional[str] = Field(None, min_length=1, max_length=100, description="Initial assignee")
    due_date: Optional[datetime] = Field(None, description="Optional due date")

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        return _clean_name(v)

    @field_validator("due_date")
    @classmethod
    def normalize_due_date(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v)


class Task(BaseModel):
    """
    Unit of work tracked by the lifecycle engine.

    ``version`` starts at 1 and increases by exactly one per committed
    mutation. ``completed_at`` is set if and only if ``status`` is completed.
    """

    # Core Identity
    id: UUID = Field(default_factory=uuid4, description="Unique task identifier")
    name: str = Field(..., min_length=1, max_length=200, description="Task name")
    description: Optional[str] = Field(None, max_length=5000, description="Task description")

    # Classification
    status: TaskStatus = Field(default=TaskStatus.PENDING, description="Current task status")
    context: TaskContext = Field(default=TaskContext.WORK, description="Task context category")
    priority: TaskPriority = Field(default=TaskPriority.MEDIUM, description="Task priority")
    complexity: TaskComplexity = Field(default=TaskComplexity.MEDIUM, description="Task complexity")

    # Assignment and dependencies
    assigned_user_id: Optional[str] = Field(None, description="Assigned user identifier")
    dependencies: Set[UUID] = Field(default_factory=set, description="Tasks this task depends on")

    # Timestamps
    created_at: datetime = Field(default_factory=utcnow, description="Creation timestamp")
    updated_at: datetime = Field(default_factory=utcnow, description="Last update timestamp")
    started_at: Optional[datetime] = Field(None, description="First time the task entered in_progress")
    completed_at: Optional[datetime] = Field(None, description="Completion timestamp")
    due_date: Optional[datetime] = Field(None, description="Optional due date")

    # Optimistic concurrency
    version: int = Field(default=1, ge=1, description="Version stamp")

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        return _clean_name(v)

    @field_validator("created_at", "updated_at", "started_at", "completed_at", "due_date")
    @classmethod
    def normalize_timestamps(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v)

    @model_validator(mode="after")
    def validate_invariants(self) -> "Task":
        """completed_at iff completed; no self edge."""
        if self.status == TaskStatus.COMPLETED and self.completed_at is None:
            raise ValueError("completed task must have completed_at")
        if self.status != TaskStatus.COMPLETED and self.completed_at is not None:
            raise ValueError("completed_at is only allowed on completed tasks")
        if self.id in self.dependencies:
            raise ValueError("task cannot depend on itself")
        return self

    @classmethod
    def new(cls, fields: TaskCreate) -> "Task":
        """Build a fresh pending task at version 1."""
        now = utcnow()
        return cls(
            name=fields.name,
            description=fields.description,
            context=fields.context,
            priority=fields.priority,
            complexity=fields.complexity,
            assigned_user_id=fields.assigned_user_id,
            due_date=fields.due_date,
            created_at=now,
            updated_at=now,
        )

    def evolve(self, **changes: Any) -> "Task":
        """Return a validated copy with ``changes`` applied."""
        data = self.model_dump()
        data.update(changes)
        return Task.model_validate(data)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def depends_on(self, task_id: UUID) -> bool:
        return task_id in self.dependencies

    def is_overdue(self, now: Optional[datetime] = None) -> bool:
        """Due date has passed and the task is still open."""
        if self.due_date is None or self.is_terminal:
            return False
        return self.due_date < (ensure_utc(now) or utcnow())
