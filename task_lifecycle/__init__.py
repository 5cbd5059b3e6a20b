"""
Task Dependency & Lifecycle Engine

Tracks tasks, their dependency edges and their status lifecycle, rejecting
any mutation that would break the dependency graph or the status rules.

Key Components:
- Task / TaskCreate: task record and creation input
- DependencyGraph: acyclic adjacency mapping with cycle reporting
- StatusStateMachine: transition table and completion gate
- LifecycleService: orchestration with optimistic versioning and events
- InMemoryTaskRepository / SQLTaskRepository: storage adapters
- EventDispatcher: bounded outbox publishing to an EventEmitter
"""

from .models import (
    # Core Models
    Task,
    TaskCreate,

    # Enums
    TaskStatus,
    TaskContext,
    TaskPriority,
    TaskComplexity,
)

from .exceptions import (
    LifecycleError,
    BusinessRuleError,
    TransientError,
    ValidationError,
    TaskNotFoundError,
    SelfDependencyError,
    CycleDetectedError,
    GraphCorruptedError,
    InvalidTransitionError,
    UnresolvedDependenciesError,
    VersionConflictError,
    StoreUnavailableError,
    EventPublishError,
)

from .graph import DependencyGraph
from .state_machine import DEFAULT_TRANSITIONS, StatusStateMachine
from .protocols import EventEmitter, TaskRepository
from .repository import InMemoryTaskRepository
from .sql_repository import SQLTaskRepository
from .events import EventDispatcher, EventTopic, InMemoryEventEmitter, TaskEvent
from .config import (
    DatabaseConfig,
    EventConfig,
    LifecycleConfig,
    LoggingConfig,
    StoreConfig,
)
from .logging_config import configure_logging, get_logger
from .service import LifecycleService

__version__ = "0.1.0"

__all__ = [
    # Models
    "Task",
    "TaskCreate",
    "TaskStatus",
    "TaskContext",
    "TaskPriority",
    "TaskComplexity",

    # Errors
    "LifecycleError",
    "BusinessRuleError",
    "TransientError",
    "ValidationError",
    "TaskNotFoundError",
    "SelfDependencyError",
    "CycleDetectedError",
    "GraphCorruptedError",
    "InvalidTransitionError",
    "UnresolvedDependenciesError",
    "VersionConflictError",
    "StoreUnavailableError",
    "EventPublishError",

    # Core
    "DependencyGraph",
    "StatusStateMachine",
    "DEFAULT_TRANSITIONS",
    "LifecycleService",

    # Collaborators
    "TaskRepository",
    "EventEmitter",
    "InMemoryTaskRepository",
    "SQLTaskRepository",
    "EventDispatcher",
    "EventTopic",
    "InMemoryEventEmitter",
    "TaskEvent",

    # Configuration
    "LifecycleConfig",
    "StoreConfig",
    "EventConfig",
    "DatabaseConfig",
    "LoggingConfig",
    "configure_logging",
    "get_logger",
]
