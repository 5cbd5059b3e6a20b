"""
Status State Machine

Decides whether a status transition is legal. Pure: no I/O, no mutation.

    pending     -> in_progress, cancelled
    in_progress -> completed, on_hold, cancelled
    on_hold     -> in_progress, cancelled

completed and cancelled are terminal. Entering completed additionally
requires every dependency to be completed.
"""

from typing import Dict, FrozenSet, Hashable, Mapping, Optional

from task_lifecycle.exceptions import InvalidTransitionError, UnresolvedDependenciesError
from task_lifecycle.models import TaskStatus


DEFAULT_TRANSITIONS: Dict[TaskStatus, FrozenSet[TaskStatus]] = {
    TaskStatus.PENDING: frozenset({TaskStatus.IN_PROGRESS, TaskStatus.CANCELLED}),
    TaskStatus.IN_PROGRESS: frozenset(
        {TaskStatus.COMPLETED, TaskStatus.ON_HOLD, TaskStatus.CANCELLED}
    ),
    TaskStatus.ON_HOLD: frozenset({TaskStatus.IN_PROGRESS, TaskStatus.CANCELLED}),
    TaskStatus.COMPLETED: frozenset(),
    TaskStatus.CANCELLED: frozenset(),
}


class StatusStateMachine:
    """Transition table plus the completion gate."""

    def __init__(self, transitions: Optional[Mapping[TaskStatus, FrozenSet[TaskStatus]]] = None) -> None:
        self._transitions = dict(transitions or DEFAULT_TRANSITIONS)

    def allowed_targets(self, current: TaskStatus) -> FrozenSet[TaskStatus]:
        return self._transitions.get(TaskStatus(current), frozenset())

    def can_transition(self, current: TaskStatus, target: TaskStatus) -> bool:
        return TaskStatus(target) in self.allowed_targets(current)

    def is_terminal(self, status: TaskStatus) -> bool:
        return not self.allowed_targets(status)

    def validate(
        self,
        current: TaskStatus,
        target: TaskStatus,
        dependency_statuses: Optional[Mapping[Hashable, TaskStatus]] = None,
    ) -> None:
        """
        Validate a transition.

        Args:
            current: Status the task is in now
            target: Requested status
            dependency_statuses: Status of every dependency; consulted only
                when ``target`` is completed

        Raises:
            InvalidTransitionError: If the table does not allow the transition
            UnresolvedDependenciesError: If completing with open dependencies
        """
        current = TaskStatus(current)
        target = TaskStatus(target)

        if not self.can_transition(current, target):
            raise InvalidTransitionError(current, target)

        if target == TaskStatus.COMPLETED and dependency_statuses:
            unresolved = [
                dep_id
                for dep_id, status in dependency_statuses.items()
                if TaskStatus(status) != TaskStatus.COMPLETED
            ]
            if unresolved:
                raise UnresolvedDependenciesError(unresolved)
