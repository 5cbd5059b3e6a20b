"""
Exception hierarchy for the task lifecycle engine.

Hierarchy:
- LifecycleError (base)
  ├── BusinessRuleError (deterministic, never retried)
  │   ├── ValidationError
  │   ├── SelfDependencyError
  │   ├── CycleDetectedError
  │   ├── InvalidTransitionError
  │   └── UnresolvedDependenciesError
  ├── TaskNotFoundError
  ├── GraphCorruptedError
  ├── TransientError (caller may re-read and retry)
  │   ├── VersionConflictError
  │   └── StoreUnavailableError
  └── EventPublishError (non-fatal)

Every error carries a ``status_code`` hint for a transport layer.
"""

from typing import Any, Dict, Hashable, Iterable, List, Optional


class LifecycleError(Exception):
    """Base exception for all lifecycle engine errors."""

    status_code: int = 500
    retryable: bool = False

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.context = context or {}

    def __str__(self) -> str:
        base_msg = self.message
        if self.error_code:
            base_msg = f"[{self.error_code}] {base_msg}"
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            base_msg = f"{base_msg} (Context: {context_str})"
        return base_msg

    def to_dict(self) -> Dict[str, Any]:
        """Serializable form for the transport layer."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "context": {k: _jsonable(v) for k, v in self.context.items()},
            "retryable": self.retryable,
        }


def _jsonable(value: Any) -> Any:
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    return str(value)


class BusinessRuleError(LifecycleError):
    """Deterministic rejection of a request; retrying cannot help."""

    status_code = 409


class TransientError(LifecycleError):
    """Infrastructure or concurrency failure; safe to retry after re-reading."""

    retryable = True


class ValidationError(BusinessRuleError):
    """Input field failed validation."""

    status_code = 400

    def __init__(self, field: str, reason: str, value: Optional[Any] = None) -> None:
        context: Dict[str, Any] = {"field": field}
        if value is not None:
            context["value"] = str(value)[:100]
        super().__init__(
            f"Invalid value for '{field}': {reason}",
            error_code="VALIDATION_ERROR",
            context=context,
        )
        self.field = field
        self.reason = reason


class TaskNotFoundError(LifecycleError):
    """Requested task does not exist in the repository."""

    status_code = 404

    def __init__(self, task_id: Hashable) -> None:
        super().__init__(
            f"Task {task_id} not found",
            error_code="TASK_NOT_FOUND",
            context={"task_id": task_id},
        )
        self.task_id = task_id


class SelfDependencyError(BusinessRuleError):
    """A task was asked to depend on itself."""

    def __init__(self, task_id: Hashable) -> None:
        super().__init__(
            f"Task {task_id} cannot depend on itself",
            error_code="SELF_DEPENDENCY",
            context={"task_id": task_id},
        )
        self.task_id = task_id


class CycleDetectedError(BusinessRuleError):
    """Adding an edge would close a cycle; ``path`` starts and ends on the same node."""

    def __init__(self, path: Iterable[Hashable]) -> None:
        self.path: List[Hashable] = list(path)
        super().__init__(
            "Dependency would create a cycle: " + " -> ".join(str(p) for p in self.path),
            error_code="CYCLE_DETECTED",
            context={"path": self.path},
        )


class GraphCorruptedError(LifecycleError):
    """Persisted dependency data already contains a cycle."""

    def __init__(self, path: Iterable[Hashable]) -> None:
        self.path: List[Hashable] = list(path)
        super().__init__(
            "Stored dependency graph contains a cycle: "
            + " -> ".join(str(p) for p in self.path),
            error_code="GRAPH_CORRUPTED",
            context={"path": self.path},
        )


class InvalidTransitionError(BusinessRuleError):
    """Status change not permitted by the transition table."""

    def __init__(self, from_status: Any, to_status: Any) -> None:
        from_value = getattr(from_status, "value", from_status)
        to_value = getattr(to_status, "value", to_status)
        super().__init__(
            f"Cannot transition from {from_value} to {to_value}",
            error_code="INVALID_TRANSITION",
            context={"from_status": from_value, "to_status": to_value},
        )
        self.from_status = from_status
        self.to_status = to_status


class UnresolvedDependenciesError(BusinessRuleError):
    """Completion requested while some dependencies are not completed."""

    def __init__(self, task_ids: Iterable[Hashable]) -> None:
        self.task_ids: List[Hashable] = sorted(task_ids, key=str)
        super().__init__(
            f"{len(self.task_ids)} dependencies are not completed",
            error_code="UNRESOLVED_DEPENDENCIES",
            context={"task_ids": self.task_ids},
        )


class VersionConflictError(TransientError):
    """Stored version differs from the version the caller read."""

    status_code = 409

    def __init__(self, expected: Optional[int], actual: Optional[int], task_id: Optional[Hashable] = None) -> None:
        context: Dict[str, Any] = {"expected": expected, "actual": actual}
        if task_id is not None:
            context["task_id"] = task_id
        super().__init__(
            f"Version conflict: expected {expected}, found {actual}",
            error_code="VERSION_CONFLICT",
            context=context,
        )
        self.expected = expected
        self.actual = actual
        self.task_id = task_id


class StoreUnavailableError(TransientError):
    """Repository could not be reached or did not answer in time."""

    status_code = 503

    def __init__(self, reason: str, operation: Optional[str] = None) -> None:
        context: Dict[str, Any] = {}
        if operation:
            context["operation"] = operation
        super().__init__(
            f"Task store unavailable: {reason}",
            error_code="STORE_UNAVAILABLE",
            context=context,
        )
        self.reason = reason
        self.operation = operation


class EventPublishError(LifecycleError):
    """Event could not be delivered; logged, never propagated to the mutation."""

    retryable = True

    def __init__(self, topic: str, reason: str) -> None:
        super().__init__(
            f"Failed to publish event on {topic}: {reason}",
            error_code="EVENT_PUBLISH_FAILED",
            context={"topic": topic},
        )
        self.topic = topic
        self.reason = reason
