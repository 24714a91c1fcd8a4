"""
Step Engine

Creates workflow instances from templates and drives them through their
steps. Every mutation follows the same cycle under the instance's lock:

    load from store -> pure transition -> versioned save -> publish events

If the versioned save loses a race with another process, the instance is
re-read and the same intent is applied again; a transition that no longer
makes sense on the fresh state raises instead (e.g. StepMismatch when the
step was already completed by the other writer).
"""

import copy
import logging
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from . import transitions
from .transitions import TransitionResult
from .catalog import WorkflowTemplateCatalog
from .instance_store import WorkflowInstanceStore
from .clock import Clock, SystemClock
from .sla import SLAClock
from .progress import ProgressCalculator
from .events import EventDispatcher, WorkflowEvent
from .audit import AuditTrail, AuditEventType
from .directories import EntityDirectory
from .logging_config import log_action
from .models import (
    WorkflowInstance, WorkflowStatus, Priority, StepOutcome, TemplateCategory, coerce_enum
)
from .exceptions import (
    TemplateNotFound, EntityNotFound, ConcurrencyConflict, InvalidTransition, StepMismatch
)


logger = logging.getLogger("entity_workflows.engine")

Transition = Callable[[WorkflowInstance, datetime], TransitionResult]

STEP_AUDIT_EVENTS = {
    StepOutcome.COMPLETED: AuditEventType.STEP_COMPLETED,
    StepOutcome.SKIPPED: AuditEventType.STEP_SKIPPED,
    StepOutcome.FAILED: AuditEventType.STEP_FAILED,
}


class StepEngine:
    """Workflow instance state machine"""

    def __init__(self, catalog: WorkflowTemplateCatalog, store: WorkflowInstanceStore,
                 clock: Optional[Clock] = None,
                 events: Optional[EventDispatcher] = None,
                 audit: Optional[AuditTrail] = None,
                 entities: Optional[EntityDirectory] = None,
                 max_save_retries: int = 3,
                 default_priority: Priority = Priority.MEDIUM):
        self.catalog = catalog
        self.store = store
        self.clock = clock or SystemClock()
        self.sla = SLAClock(self.clock)
        self.progress_calculator = ProgressCalculator()
        self.events = events or EventDispatcher()
        self.audit = audit
        self.entities = entities
        self.max_save_retries = max_save_retries
        self.default_priority = default_priority

    # Instance creation

    def instantiate(self, template_id: str, entity_id: Optional[str] = None,
                    priority: Any = None, user_id: str = "system",
                    metadata: Optional[Dict[str, Any]] = None) -> str:
        """Create a pending instance of an active template; returns its id"""
        priority = coerce_enum(Priority, priority or self.default_priority, 'priority')

        template = self.catalog.get(template_id)
        if not template.is_active:
            raise TemplateNotFound(template_id, f"Workflow template {template_id} is not active")

        if entity_id and self.entities is not None and not self.entities.exists(entity_id):
            raise EntityNotFound(entity_id)

        now = self.clock.now()
        instance = WorkflowInstance(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            template_id=template.id,
            template_name=template.name,
            user_id=user_id,
            status=WorkflowStatus.PENDING,
            priority=priority,
            started_at=now,
            due_date=self.sla.due_date(now, template),
            steps=copy.deepcopy(template.steps),
            entity_id=entity_id,
            metadata=dict(metadata or {})
        )

        self.store.save(instance)
        self.catalog.lock(template.id)

        log_action(logger, "info", f"Workflow instance {instance.id} created from {template.name}",
                   actor=user_id, action="instantiate", resource=f"workflow_instance:{instance.id}",
                   extra={'template_id': template.id, 'priority': priority.value})
        self._audit(AuditEventType.INSTANCE_CREATED, instance.id, {
            'template_id': template.id,
            'template_name': template.name,
            'entity_id': entity_id,
            'priority': priority.value,
            'due_date': instance.due_date
        }, user_id)

        return instance.id

    # Step actions

    def complete_step(self, instance_id: str, step_id: str, outcome: Any,
                      notes: Optional[str] = None, outputs: Optional[Dict[str, Any]] = None,
                      actor: Optional[str] = None) -> WorkflowInstance:
        """Report the outcome (completed, skipped or failed) of the current step"""
        outcome = coerce_enum(StepOutcome, outcome, 'outcome')
        result = self.apply_transition(
            instance_id,
            lambda instance, now: transitions.complete_step(
                instance, step_id, outcome, now, notes=notes, outputs=outputs, actor=actor
            ),
            action="complete_step",
            actor=actor
        )

        instance = result.instance
        self._audit(STEP_AUDIT_EVENTS[outcome], instance_id, {
            'step_id': step_id,
            'notes': notes,
            'outputs': outputs,
            'current_step': instance.current_step
        }, actor)
        return instance

    def cancel(self, instance_id: str, reason: Optional[str] = None,
               actor: Optional[str] = None) -> WorkflowInstance:
        """Stop tracking a non-terminal instance"""
        result = self.apply_transition(
            instance_id,
            lambda instance, now: transitions.cancel(instance, now, reason),
            action="cancel",
            actor=actor
        )
        return result.instance

    def escalate(self, instance_id: str, reason: Optional[str] = None,
                 actor: Optional[str] = None) -> WorkflowInstance:
        """Bump priority of a non-terminal instance, typically because it is overdue"""
        result = self.apply_transition(
            instance_id,
            lambda instance, now: transitions.escalate(instance, now, reason),
            action="escalate",
            actor=actor
        )
        instance = result.instance
        self._audit(AuditEventType.INSTANCE_ESCALATED, instance_id, {
            'priority': instance.priority.value,
            'reason': reason
        }, actor)
        return instance

    def annotate(self, instance_id: str, key: str, value: Any,
                 actor: Optional[str] = None) -> WorkflowInstance:
        """Attach audit metadata; allowed on terminal instances"""
        result = self.apply_transition(
            instance_id,
            lambda instance, now: transitions.annotate(instance, key, value, now),
            action="annotate",
            actor=actor
        )
        self._audit(AuditEventType.INSTANCE_ANNOTATED, instance_id, {'key': key}, actor)
        return result.instance

    def apply_transition(self, instance_id: str, transition: Transition,
                         action: str, actor: Optional[str] = None) -> TransitionResult:
        """Run one transition under the instance lock and persist it"""
        attempts = self.max_save_retries + 1
        for attempt in range(1, attempts + 1):
            with self.store.lock(instance_id):
                instance = self.store.get(instance_id)
                try:
                    result = transition(instance, self.clock.now())
                except (InvalidTransition, StepMismatch) as e:
                    log_action(logger, "warning", f"Rejected {action} on workflow instance {instance_id}: {e}",
                               actor=actor, action=action, resource=f"workflow_instance:{instance_id}")
                    raise

                try:
                    self.store.save(result.instance)
                except ConcurrencyConflict:
                    if attempt == attempts:
                        logger.error(f"Giving up {action} on workflow instance {instance_id} "
                                     f"after {attempts} conflicting saves")
                        raise
                    logger.warning(f"Concurrent modification of workflow instance {instance_id}, "
                                   f"retrying {action} ({attempt}/{self.max_save_retries})")
                    continue

                self._announce(result, actor)
                return result

    # Queries

    def get_instance(self, instance_id: str) -> WorkflowInstance:
        return self.store.get(instance_id)

    def list_instances(self, status: Optional[WorkflowStatus] = None,
                       template_id: Optional[str] = None,
                       entity_id: Optional[str] = None,
                       assigned_to: Optional[str] = None) -> List[WorkflowInstance]:
        return self.store.list(status=status, template_id=template_id,
                               entity_id=entity_id, assigned_to=assigned_to)

    def list_by_category(self, category: TemplateCategory) -> List[WorkflowInstance]:
        template_ids = {t.id for t in self.catalog.list_templates(category)}
        return [i for i in self.store.list() if i.template_id in template_ids]

    def progress(self, instance_id: str) -> int:
        return self.progress_calculator.progress(self.store.get(instance_id))

    def is_overdue(self, instance_id: str, now: Optional[datetime] = None) -> bool:
        return self.sla.is_overdue(self.store.get(instance_id), now)

    def overdue_instances(self, now: Optional[datetime] = None) -> List[WorkflowInstance]:
        return self.sla.overdue(self.store.list(), now)

    # Private helper methods

    def _announce(self, result: TransitionResult, actor: Optional[str]) -> None:
        instance = result.instance
        for change in result.status_changes:
            log_action(logger, "info",
                       f"Workflow instance {instance.id}: {change.from_status.value} -> {change.to_status.value}",
                       actor=actor, action="status_change", resource=f"workflow_instance:{instance.id}")
            self._audit(AuditEventType.INSTANCE_STATUS_CHANGED, instance.id, {
                'from_status': change.from_status.value,
                'to_status': change.to_status.value,
                'current_step': instance.current_step
            }, actor)
            self.events.publish(WorkflowEvent(
                instance_id=instance.id,
                from_status=change.from_status,
                to_status=change.to_status,
                timestamp=change.timestamp,
                template_id=instance.template_id,
                actor=actor
            ))

    def _audit(self, event_type: AuditEventType, instance_id: str,
               metadata: Dict[str, Any], actor: Optional[str]) -> None:
        if self.audit:
            self.audit.log_event(event_type, 'workflow_instance', instance_id, metadata, actor or 'system')
