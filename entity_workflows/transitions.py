"""
Instance Transitions

Pure state-machine functions. Each takes an instance plus an intent and
returns a new instance together with the status changes it went through;
the input instance is never modified. Preconditions are checked before
anything is copied, so a rejected intent has no effect at all.

    pending --(assign | first complete_step)--> in_progress
    in_progress --(complete_step on last step, completed/skipped)--> completed
    pending/in_progress --(complete_step failed)--> failed
    pending/in_progress --(cancel)--> cancelled

completed, failed and cancelled are absorbing.
"""

import copy
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from .models import (
    WorkflowInstance, WorkflowStatus, WorkflowStep, StepExecution, StepStatus, StepOutcome,
    coerce_enum
)
from .exceptions import InvalidTransition, StepMismatch


@dataclass(frozen=True)
class StatusChange:
    from_status: WorkflowStatus
    to_status: WorkflowStatus
    timestamp: datetime


@dataclass
class TransitionResult:
    instance: WorkflowInstance
    status_changes: List[StatusChange] = field(default_factory=list)


def _require_open(instance: WorkflowInstance, action: str) -> None:
    if instance.is_terminal:
        raise InvalidTransition(instance.id, instance.status.value, action)


def _begin(instance: WorkflowInstance, now: datetime) -> TransitionResult:
    updated = copy.deepcopy(instance)
    updated.updated_at = now
    return TransitionResult(updated)


def _move(result: TransitionResult, to_status: WorkflowStatus, now: datetime) -> None:
    instance = result.instance
    if instance.status == to_status:
        return
    result.status_changes.append(StatusChange(instance.status, to_status, now))
    instance.status = to_status


def _open_execution(instance: WorkflowInstance, step: WorkflowStep, now: datetime) -> StepExecution:
    """Return the history entry for step, creating it on first touch"""
    execution = instance.execution_for(step.id)
    if execution is None:
        execution = StepExecution(
            step_id=step.id,
            step_name=step.name,
            started_at=now,
            status=StepStatus.IN_PROGRESS,
            assigned_to=instance.assigned_to
        )
        instance.step_history.append(execution)
    return execution


def _start(result: TransitionResult, now: datetime) -> None:
    if result.instance.status == WorkflowStatus.PENDING:
        _move(result, WorkflowStatus.IN_PROGRESS, now)
        _open_execution(result.instance, result.instance.expected_step(), now)


def assign(instance: WorkflowInstance, assignee_id: str, now: datetime) -> TransitionResult:
    """Bind an actor; a pending instance starts as a side effect"""
    _require_open(instance, "assign")

    result = _begin(instance, now)
    updated = result.instance
    updated.assigned_to = assignee_id

    if updated.status == WorkflowStatus.PENDING:
        _start(result, now)

    current = updated.execution_for(updated.expected_step().id)
    if current is not None and current.is_open:
        current.assigned_to = assignee_id

    return result


def complete_step(instance: WorkflowInstance, step_id: str, outcome: Any, now: datetime,
                  notes: Optional[str] = None, outputs: Optional[Dict[str, Any]] = None,
                  actor: Optional[str] = None) -> TransitionResult:
    """Record the outcome of the current step and advance or terminate"""
    outcome = coerce_enum(StepOutcome, outcome, 'outcome')
    _require_open(instance, "complete a step of")

    expected = instance.expected_step()
    if step_id != expected.id:
        raise StepMismatch(instance.id, expected.id, step_id)

    result = _begin(instance, now)
    updated = result.instance

    _start(result, now)

    execution = _open_execution(updated, expected, now)
    execution.status = outcome.step_status
    execution.completed_at = now
    execution.notes = notes
    execution.outputs = outputs
    if actor and not execution.assigned_to:
        execution.assigned_to = actor

    if not outcome.advances:
        _move(result, WorkflowStatus.FAILED, now)
    elif updated.current_step < updated.step_count:
        updated.current_step += 1
        _open_execution(updated, updated.expected_step(), now)
    else:
        _move(result, WorkflowStatus.COMPLETED, now)
        updated.completed_at = now

    return result


def cancel(instance: WorkflowInstance, now: datetime, reason: Optional[str] = None) -> TransitionResult:
    """Stop tracking; external work already under way is not affected"""
    _require_open(instance, "cancel")

    result = _begin(instance, now)
    updated = result.instance
    _move(result, WorkflowStatus.CANCELLED, now)
    updated.cancelled_at = now

    current = updated.execution_for(updated.expected_step().id)
    if current is not None and current.is_open:
        current.status = StepStatus.CANCELLED
        current.completed_at = now
        if reason and not current.notes:
            current.notes = reason

    if reason:
        updated.metadata['cancellation_reason'] = reason
    return result


def escalate(instance: WorkflowInstance, now: datetime, reason: Optional[str] = None) -> TransitionResult:
    """Raise priority one level and record why; status is unchanged"""
    _require_open(instance, "escalate")

    result = _begin(instance, now)
    updated = result.instance
    previous = updated.priority
    updated.priority = previous.escalated()
    updated.metadata.setdefault('escalations', []).append({
        'at': now.isoformat(),
        'from_priority': previous.value,
        'to_priority': updated.priority.value,
        'reason': reason
    })
    return result


def annotate(instance: WorkflowInstance, key: str, value: Any, now: datetime) -> TransitionResult:
    """Attach audit metadata; permitted on terminal instances"""
    result = _begin(instance, now)
    result.instance.metadata[key] = value
    return result
