"""
Shared fixtures for the workflow engine test suite
"""

import pytest
from datetime import datetime, timezone

from entity_workflows.clock import FrozenClock
from entity_workflows.storage import InMemoryStorage
from entity_workflows.audit import AuditTrail
from entity_workflows.events import EventDispatcher, EventRecorder
from entity_workflows.catalog import WorkflowTemplateCatalog
from entity_workflows.instance_store import WorkflowInstanceStore
from entity_workflows.engine import StepEngine
from entity_workflows.assignment import AssignmentResolver
from entity_workflows.models import (
    WorkflowTemplate, WorkflowStep, TemplateCategory, AssigneeRole, ActionType
)


START = datetime(2024, 1, 7, 10, 0, tzinfo=timezone.utc)


@pytest.fixture
def clock():
    """Frozen clock starting at a known instant"""
    return FrozenClock(START)


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def audit_trail(storage, clock):
    return AuditTrail(storage, clock=clock)


@pytest.fixture
def events():
    return EventDispatcher()


@pytest.fixture
def recorder(events):
    """Records every published workflow event"""
    recorder = EventRecorder()
    events.subscribe_all(recorder)
    return recorder


@pytest.fixture
def catalog(storage, audit_trail, clock):
    return WorkflowTemplateCatalog(storage, audit_trail, clock)


@pytest.fixture
def store(storage):
    return WorkflowInstanceStore(storage)


@pytest.fixture
def engine(catalog, store, clock, events, audit_trail):
    return StepEngine(catalog, store, clock=clock, events=events, audit=audit_trail)


@pytest.fixture
def resolver(engine):
    return AssignmentResolver(engine)


@pytest.fixture
def make_template():
    """Factory for templates with N generic steps"""
    def _make(template_id="", name="Entity Formation", step_count=4, sla_hours=72,
              category=TemplateCategory.ENTITY_FORMATION, step_orders=None, **overrides):
        orders = step_orders or list(range(1, step_count + 1))
        steps = [
            WorkflowStep(
                id=f"s{order}",
                name=f"Step {order}",
                step_order=order,
                assignee_role=AssigneeRole.AGENT,
                action_type=ActionType.PROCESS,
                estimated_duration_hours=2
            )
            for order in orders
        ]
        fields = dict(
            id=template_id,
            created_at=START,
            updated_at=START,
            name=name,
            description=f"{name} workflow",
            category=category,
            steps=steps,
            sla_hours=sla_hours
        )
        fields.update(overrides)
        return WorkflowTemplate(**fields)
    return _make


@pytest.fixture
def formation_template(catalog, make_template):
    """Registered 4-step template with a 72 hour SLA"""
    template = make_template(template_id="formation")
    catalog.register(template)
    return catalog.get("formation")
