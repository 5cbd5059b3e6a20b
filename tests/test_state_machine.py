"""Tests for the status state machine."""

import itertools

import pytest

from task_lifecycle.exceptions import InvalidTransitionError, UnresolvedDependenciesError
from task_lifecycle.models import TaskStatus
from task_lifecycle.state_machine import DEFAULT_TRANSITIONS, StatusStateMachine

ALLOWED = {
    (TaskStatus.PENDING, TaskStatus.IN_PROGRESS),
    (TaskStatus.PENDING, TaskStatus.CANCELLED),
    (TaskStatus.IN_PROGRESS, TaskStatus.COMPLETED),
    (TaskStatus.IN_PROGRESS, TaskStatus.ON_HOLD),
    (TaskStatus.IN_PROGRESS, TaskStatus.CANCELLED),
    (TaskStatus.ON_HOLD, TaskStatus.IN_PROGRESS),
    (TaskStatus.ON_HOLD, TaskStatus.CANCELLED),
}


@pytest.fixture
def machine():
    return StatusStateMachine()


class TestTransitionTable:
    """Every (from, to) pair against the table."""

    @pytest.mark.parametrize("current,target", list(itertools.product(TaskStatus, TaskStatus)))
    def test_table_conformance(self, machine, current, target):
        if (current, target) in ALLOWED:
            machine.validate(current, target)
            assert machine.can_transition(current, target)
        else:
            with pytest.raises(InvalidTransitionError):
                machine.validate(current, target)
            assert not machine.can_transition(current, target)

    def test_terminal_statuses(self, machine):
        assert machine.is_terminal(TaskStatus.COMPLETED)
        assert machine.is_terminal(TaskStatus.CANCELLED)
        assert not machine.is_terminal(TaskStatus.ON_HOLD)
        assert TaskStatus.CANCELLED.is_terminal

    def test_allowed_targets(self, machine):
        assert machine.allowed_targets(TaskStatus.PENDING) == frozenset(
            {TaskStatus.IN_PROGRESS, TaskStatus.CANCELLED}
        )
        assert machine.allowed_targets(TaskStatus.COMPLETED) == frozenset()

    def test_accepts_string_values(self, machine):
        machine.validate("pending", "in_progress")

    def test_error_carries_statuses(self, machine):
        with pytest.raises(InvalidTransitionError) as exc_info:
            machine.validate(TaskStatus.PENDING, TaskStatus.COMPLETED)
        assert exc_info.value.context == {"from_status": "pending", "to_status": "completed"}
        assert exc_info.value.status_code == 409

    def test_custom_table(self):
        transitions = dict(DEFAULT_TRANSITIONS)
        transitions[TaskStatus.PENDING] = frozenset({TaskStatus.COMPLETED})
        machine = StatusStateMachine(transitions)
        machine.validate(TaskStatus.PENDING, TaskStatus.COMPLETED)
        with pytest.raises(InvalidTransitionError):
            machine.validate(TaskStatus.PENDING, TaskStatus.IN_PROGRESS)


class TestCompletionGate:
    """Completion requires every dependency completed."""

    def test_all_completed(self, machine):
        machine.validate(
            TaskStatus.IN_PROGRESS,
            TaskStatus.COMPLETED,
            {"a": TaskStatus.COMPLETED, "b": TaskStatus.COMPLETED},
        )

    def test_lists_exactly_unresolved(self, machine):
        with pytest.raises(UnresolvedDependenciesError) as exc_info:
            machine.validate(
                TaskStatus.IN_PROGRESS,
                TaskStatus.COMPLETED,
                {
                    "c": TaskStatus.PENDING,
                    "a": TaskStatus.COMPLETED,
                    "b": TaskStatus.CANCELLED,
                },
            )
        assert exc_info.value.task_ids == ["b", "c"]

    def test_transition_checked_before_dependencies(self, machine):
        with pytest.raises(InvalidTransitionError):
            machine.validate(TaskStatus.PENDING, TaskStatus.COMPLETED, {"a": TaskStatus.PENDING})

    def test_dependencies_ignored_for_other_targets(self, machine):
        machine.validate(TaskStatus.IN_PROGRESS, TaskStatus.ON_HOLD, {"a": TaskStatus.PENDING})
