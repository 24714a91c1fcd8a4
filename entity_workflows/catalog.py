"""
Workflow Template Catalog

Validates, stores and serves workflow templates. A template is locked the
first time an instance is created from it; a locked template can still be
activated or deactivated but its definition can no longer be replaced.
"""

from typing import List, Optional
import logging
import math
import threading
import uuid

from .storage import StorageInterface
from .audit import AuditTrail, AuditEventType
from .clock import Clock, SystemClock
from .models import WorkflowTemplate, TemplateCategory
from .exceptions import InvalidTemplate, TemplateNotFound


logger = logging.getLogger("entity_workflows.catalog")

TEMPLATES_TABLE = "workflow_templates"

# Ten years; keeps started_at + sla_hours inside the datetime range
MAX_SLA_HOURS = 24 * 366 * 10


def validate_template(template: WorkflowTemplate) -> None:
    """Raise InvalidTemplate listing every problem with the template"""
    errors = []

    if not template.name or not template.name.strip():
        errors.append("Template name is required")

    sla_hours = template.sla_hours
    if sla_hours is None or not math.isfinite(sla_hours) or not sla_hours > 0:
        errors.append("sla_hours must be a finite number greater than zero")
    elif sla_hours > MAX_SLA_HOURS:
        errors.append(f"sla_hours must not exceed {MAX_SLA_HOURS}")

    if not template.steps:
        errors.append("Template must have at least one step")
    else:
        step_orders = [step.step_order for step in template.steps]
        if len(set(step_orders)) != len(step_orders):
            errors.append("Step order values must be unique")
        elif sorted(step_orders) != list(range(1, len(step_orders) + 1)):
            errors.append(f"Step order values must be exactly 1..{len(step_orders)} with no gaps")

        step_ids = [step.id for step in template.steps]
        if any(not step_id for step_id in step_ids):
            errors.append("Every step needs an id")
        elif len(set(step_ids)) != len(step_ids):
            errors.append("Step ids must be unique")

        for step in template.steps:
            if step.estimated_duration_hours is not None and step.estimated_duration_hours < 0:
                errors.append(f"Step {step.id} has a negative estimated duration")

    if errors:
        raise InvalidTemplate("; ".join(errors), errors=errors)


class WorkflowTemplateCatalog:
    """Holds workflow template definitions"""

    def __init__(self, storage: StorageInterface, audit: Optional[AuditTrail] = None,
                 clock: Optional[Clock] = None):
        self.storage = storage
        self.clock = clock or SystemClock()
        self.audit = audit
        # Serializes every read-modify-write of a stored template
        self._write_lock = threading.Lock()

    def register(self, template: WorkflowTemplate) -> str:
        """Validate and store a template; returns its id"""
        validate_template(template)

        if not template.id:
            template.id = str(uuid.uuid4())

        with self._write_lock:
            existing = self.storage.load(TEMPLATES_TABLE, template.id)
            if existing and existing.get('is_locked'):
                raise InvalidTemplate(
                    f"Template {template.id} is referenced by workflow instances and cannot be modified"
                )

            now = self.clock.now()
            if existing:
                template.created_at = WorkflowTemplate.from_dict(existing).created_at
            else:
                template.created_at = now
            template.updated_at = now
            template.is_locked = False
            template.steps = sorted(template.steps, key=lambda step: step.step_order)

            self.storage.save(TEMPLATES_TABLE, template.id, template.to_dict())

        logger.info(f"Registered workflow template {template.id} ({template.name})")

        self._audit(AuditEventType.TEMPLATE_REGISTERED, template.id, {
            'name': template.name,
            'category': template.category.value,
            'steps': len(template.steps),
            'replaced': existing is not None
        }, template.created_by or None)

        return template.id

    def get(self, template_id: str) -> WorkflowTemplate:
        data = self.storage.load(TEMPLATES_TABLE, template_id)
        if not data:
            raise TemplateNotFound(template_id)
        return WorkflowTemplate.from_dict(data)

    def exists(self, template_id: str) -> bool:
        return self.storage.exists(TEMPLATES_TABLE, template_id)

    def list_templates(self, category: Optional[TemplateCategory] = None) -> List[WorkflowTemplate]:
        templates = [WorkflowTemplate.from_dict(data) for data in self.storage.load_all(TEMPLATES_TABLE)]
        if category:
            templates = [t for t in templates if t.category == category]
        return sorted(templates, key=lambda t: t.name)

    def list_active(self) -> List[WorkflowTemplate]:
        return [t for t in self.list_templates() if t.is_active]

    def activate(self, template_id: str) -> WorkflowTemplate:
        return self._set_active(template_id, True)

    def deactivate(self, template_id: str) -> WorkflowTemplate:
        return self._set_active(template_id, False)

    def lock(self, template_id: str) -> WorkflowTemplate:
        """Mark a template as referenced; its definition is frozen from now on"""
        with self._write_lock:
            template = self.get(template_id)
            if template.is_locked:
                return template
            template.is_locked = True
            template.updated_at = self.clock.now()
            self.storage.save(TEMPLATES_TABLE, template_id, template.to_dict())
        self._audit(AuditEventType.TEMPLATE_LOCKED, template_id, {'name': template.name})
        return template

    def _set_active(self, template_id: str, active: bool) -> WorkflowTemplate:
        with self._write_lock:
            template = self.get(template_id)
            template.is_active = active
            template.updated_at = self.clock.now()
            self.storage.save(TEMPLATES_TABLE, template_id, template.to_dict())
        logger.info(f"Workflow template {template_id} {'activated' if active else 'deactivated'}")
        self._audit(
            AuditEventType.TEMPLATE_ACTIVATED if active else AuditEventType.TEMPLATE_DEACTIVATED,
            template_id, {'name': template.name}
        )
        return template

    def _audit(self, event_type: AuditEventType, template_id: str, metadata: dict,
               actor: Optional[str] = None) -> None:
        if self.audit:
            self.audit.log_event(event_type, 'workflow_template', template_id, metadata, actor or 'system')
