"""
Tests for the step engine

Covers instantiation, strict step ordering, the status state machine,
cancellation, escalation and the events published on every transition.
"""

import pytest
from datetime import datetime, timedelta, timezone

from entity_workflows.engine import StepEngine
from entity_workflows.directories import InMemoryDirectory
from entity_workflows.models import WorkflowStatus, StepStatus, Priority, TemplateCategory
from entity_workflows.exceptions import (
    TemplateNotFound, InstanceNotFound, EntityNotFound, InvalidTransition, StepMismatch, ValidationError
)

START = datetime(2024, 1, 7, 10, 0, tzinfo=timezone.utc)


class TestInstantiate:
    """Creating instances from templates"""

    def test_new_instance_is_pending(self, engine, formation_template):
        """A fresh instance waits on its first step"""
        instance_id = engine.instantiate(formation_template.id, entity_id="ent-1", user_id="admin_1")

        instance = engine.get_instance(instance_id)
        assert instance.status == WorkflowStatus.PENDING
        assert instance.current_step == 1
        assert instance.template_id == "formation"
        assert instance.template_name == "Entity Formation"
        assert instance.entity_id == "ent-1"
        assert instance.user_id == "admin_1"
        assert instance.priority == Priority.MEDIUM
        assert instance.assigned_to is None
        assert instance.step_history == []
        assert instance.version == 1

    def test_due_date_from_sla(self, engine, formation_template):
        instance = engine.get_instance(engine.instantiate(formation_template.id))

        assert instance.started_at == START
        assert instance.due_date == START + timedelta(hours=72)

    def test_steps_are_snapshotted(self, engine, formation_template):
        """The instance keeps its own copy of the template steps"""
        instance = engine.get_instance(engine.instantiate(formation_template.id))

        assert [s.id for s in instance.steps] == ["s1", "s2", "s3", "s4"]
        assert instance.step_count == 4
        assert instance.expected_step().id == "s1"

    def test_explicit_priority_and_metadata(self, engine, formation_template):
        instance_id = engine.instantiate(formation_template.id, priority="urgent",
                                         metadata={'source': 'intake_form'})

        instance = engine.get_instance(instance_id)
        assert instance.priority == Priority.URGENT
        assert instance.metadata == {'source': 'intake_form'}

    def test_invalid_priority(self, engine, formation_template):
        with pytest.raises(ValidationError, match="priority"):
            engine.instantiate(formation_template.id, priority="whenever")

    def test_unknown_template(self, engine):
        with pytest.raises(TemplateNotFound):
            engine.instantiate("missing")

    def test_inactive_template(self, engine, catalog, formation_template):
        catalog.deactivate(formation_template.id)

        with pytest.raises(TemplateNotFound, match="not active"):
            engine.instantiate(formation_template.id)

        assert engine.list_instances() == []

    def test_entity_directory_rejects_unknown_entity(self, catalog, store, clock, formation_template):
        engine = StepEngine(catalog, store, clock=clock, entities=InMemoryDirectory(["ent-1"]))

        with pytest.raises(EntityNotFound):
            engine.instantiate(formation_template.id, entity_id="ent-2")

        assert engine.instantiate(formation_template.id, entity_id="ent-1")
        assert engine.instantiate(formation_template.id)
        assert len(engine.list_instances()) == 2

    def test_instantiate_publishes_no_event(self, engine, recorder, formation_template):
        """Creation is not a status transition"""
        engine.instantiate(formation_template.id)
        assert recorder.events == []


class TestStepOrdering:
    """Steps complete strictly in template order"""

    def test_lifecycle_example(self, engine, resolver, recorder, clock, formation_template):
        """Assign, complete two steps, fail the third"""
        instance_id = engine.instantiate(formation_template.id)

        instance = resolver.assign(instance_id, "agent_1")
        assert instance.status == WorkflowStatus.IN_PROGRESS
        assert instance.assigned_to == "agent_1"

        clock.advance(hours=1)
        instance = engine.complete_step(instance_id, "s1", "completed")
        assert instance.current_step == 2
        assert engine.progress(instance_id) == 25

        clock.advance(hours=1)
        engine.complete_step(instance_id, "s2", "completed")
        assert engine.progress(instance_id) == 50

        clock.advance(hours=1)
        instance = engine.complete_step(instance_id, "s3", "failed", notes="State rejected filing")
        assert instance.status == WorkflowStatus.FAILED
        assert instance.current_step == 3
        assert engine.progress(instance_id) == 0

        with pytest.raises(InvalidTransition):
            engine.complete_step(instance_id, "s4", "completed")

        assert recorder.transitions(instance_id) == [
            ("pending", "in_progress"),
            ("in_progress", "failed"),
        ]

    def test_complete_all_steps(self, engine, recorder, clock, formation_template):
        instance_id = engine.instantiate(formation_template.id)

        for step_id in ("s1", "s2", "s3", "s4"):
            clock.advance(minutes=30)
            instance = engine.complete_step(instance_id, step_id, "completed")

        assert instance.status == WorkflowStatus.COMPLETED
        assert instance.completed_at == START + timedelta(hours=2)
        assert instance.current_step == 4
        assert engine.progress(instance_id) == 100
        assert recorder.transitions(instance_id) == [
            ("pending", "in_progress"),
            ("in_progress", "completed"),
        ]

    def test_first_completion_starts_pending_instance(self, engine, recorder, formation_template):
        """Completing step one without an assignment implies the start"""
        instance_id = engine.instantiate(formation_template.id)

        instance = engine.complete_step(instance_id, "s1", "completed", actor="agent_2")

        assert instance.status == WorkflowStatus.IN_PROGRESS
        assert instance.current_step == 2
        assert recorder.transitions(instance_id) == [("pending", "in_progress")]
        assert instance.execution_for("s1").assigned_to == "agent_2"

    def test_out_of_order_step_rejected(self, engine, recorder, formation_template):
        instance_id = engine.instantiate(formation_template.id)

        with pytest.raises(StepMismatch) as exc_info:
            engine.complete_step(instance_id, "s2", "completed")

        assert exc_info.value.expected_step_id == "s1"
        assert exc_info.value.actual_step_id == "s2"

        # Rejected calls leave no trace
        instance = engine.get_instance(instance_id)
        assert instance.status == WorkflowStatus.PENDING
        assert instance.current_step == 1
        assert instance.version == 1
        assert recorder.events == []

    def test_repeating_completed_step_rejected(self, engine, formation_template):
        instance_id = engine.instantiate(formation_template.id)
        engine.complete_step(instance_id, "s1", "completed")

        with pytest.raises(StepMismatch):
            engine.complete_step(instance_id, "s1", "completed")

        assert engine.get_instance(instance_id).current_step == 2

    def test_skipped_step_advances(self, engine, formation_template):
        instance_id = engine.instantiate(formation_template.id)

        instance = engine.complete_step(instance_id, "s1", "skipped")

        assert instance.current_step == 2
        assert instance.execution_for("s1").status == StepStatus.SKIPPED
        assert engine.progress(instance_id) == 25

    def test_skipping_last_step_completes(self, engine, catalog, make_template):
        catalog.register(make_template(template_id="single", step_count=1))
        instance_id = engine.instantiate("single")

        instance = engine.complete_step(instance_id, "s1", "skipped")

        assert instance.status == WorkflowStatus.COMPLETED
        assert engine.progress(instance_id) == 100

    def test_invalid_outcome(self, engine, formation_template):
        instance_id = engine.instantiate(formation_template.id)

        with pytest.raises(ValidationError, match="outcome"):
            engine.complete_step(instance_id, "s1", "done")

    def test_unknown_instance(self, engine):
        with pytest.raises(InstanceNotFound):
            engine.complete_step("missing", "s1", "completed")


class TestStepHistory:
    """Execution records kept on the instance"""

    def test_execution_records(self, engine, resolver, clock, formation_template):
        instance_id = engine.instantiate(formation_template.id)
        resolver.assign(instance_id, "agent_1")

        clock.advance(hours=2)
        instance = engine.complete_step(instance_id, "s1", "completed",
                                        notes="All documents received", outputs={'documents': 3})

        first, second = instance.step_history
        assert first.step_id == "s1"
        assert first.status == StepStatus.COMPLETED
        assert first.started_at == START
        assert first.completed_at == START + timedelta(hours=2)
        assert first.assigned_to == "agent_1"
        assert first.notes == "All documents received"
        assert first.outputs == {'documents': 3}

        # The next step opens as soon as the previous one closes
        assert second.step_id == "s2"
        assert second.is_open
        assert second.started_at == START + timedelta(hours=2)

    def test_failed_step_recorded(self, engine, formation_template):
        instance_id = engine.instantiate(formation_template.id)

        instance = engine.complete_step(instance_id, "s1", "failed")

        assert len(instance.step_history) == 1
        assert instance.step_history[0].status == StepStatus.FAILED


class TestCancelAndEscalate:
    """Cancellation, escalation and annotation"""

    def test_cancel_pending(self, engine, recorder, clock, formation_template):
        instance_id = engine.instantiate(formation_template.id)
        clock.advance(hours=5)

        instance = engine.cancel(instance_id, reason="Client withdrew", actor="admin_1")

        assert instance.status == WorkflowStatus.CANCELLED
        assert instance.cancelled_at == START + timedelta(hours=5)
        assert instance.metadata['cancellation_reason'] == "Client withdrew"
        assert engine.progress(instance_id) == 0
        assert recorder.transitions(instance_id) == [("pending", "cancelled")]
        assert recorder.events[0].actor == "admin_1"

    def test_cancel_in_progress_closes_open_step(self, engine, resolver, clock, formation_template):
        instance_id = engine.instantiate(formation_template.id)
        resolver.assign(instance_id, "agent_1")
        clock.advance(hours=1)

        instance = engine.cancel(instance_id)

        execution = instance.execution_for("s1")
        assert execution.status == StepStatus.CANCELLED
        assert execution.completed_at == START + timedelta(hours=1)
        assert engine.get_instance(instance_id).execution_for("s1").status == StepStatus.CANCELLED

    def test_cancelled_instance_is_absorbing(self, engine, resolver, formation_template):
        instance_id = engine.instantiate(formation_template.id)
        engine.cancel(instance_id)

        with pytest.raises(InvalidTransition):
            engine.cancel(instance_id)
        with pytest.raises(InvalidTransition):
            resolver.assign(instance_id, "agent_1")
        with pytest.raises(InvalidTransition):
            engine.complete_step(instance_id, "s1", "completed")
        with pytest.raises(InvalidTransition):
            engine.escalate(instance_id)

        assert engine.get_instance(instance_id).status == WorkflowStatus.CANCELLED

    def test_terminal_check_precedes_step_check(self, engine, formation_template):
        """A wrong step id on a terminal instance is still an invalid transition"""
        instance_id = engine.instantiate(formation_template.id)
        engine.cancel(instance_id)

        with pytest.raises(InvalidTransition):
            engine.complete_step(instance_id, "s3", "completed")

    def test_escalate_bumps_priority(self, engine, recorder, formation_template):
        instance_id = engine.instantiate(formation_template.id)
        due_date = engine.get_instance(instance_id).due_date

        instance = engine.escalate(instance_id, reason="SLA breached")

        assert instance.priority == Priority.HIGH
        assert instance.status == WorkflowStatus.PENDING
        assert instance.due_date == due_date
        assert instance.metadata['escalations'][0]['reason'] == "SLA breached"
        assert instance.metadata['escalations'][0]['from_priority'] == "medium"
        assert recorder.events == []

    def test_escalate_caps_at_urgent(self, engine, formation_template):
        instance_id = engine.instantiate(formation_template.id, priority="high")

        engine.escalate(instance_id)
        instance = engine.escalate(instance_id)

        assert instance.priority == Priority.URGENT
        assert len(instance.metadata['escalations']) == 2

    def test_annotate_terminal_instance(self, engine, recorder, formation_template):
        instance_id = engine.instantiate(formation_template.id)
        engine.cancel(instance_id)

        instance = engine.annotate(instance_id, 'refund_issued', True, actor="billing")

        assert instance.status == WorkflowStatus.CANCELLED
        assert instance.metadata['refund_issued'] is True
        assert recorder.transitions(instance_id) == [("pending", "cancelled")]


class TestQueries:
    """Listing, progress and overdue queries"""

    def test_list_filters(self, engine, resolver, formation_template):
        first = engine.instantiate(formation_template.id, entity_id="ent-1")
        second = engine.instantiate(formation_template.id, entity_id="ent-2")
        resolver.assign(second, "agent_1")

        assert {i.id for i in engine.list_instances()} == {first, second}
        assert [i.id for i in engine.list_instances(status=WorkflowStatus.PENDING)] == [first]
        assert [i.id for i in engine.list_instances(entity_id="ent-2")] == [second]
        assert [i.id for i in engine.list_instances(assigned_to="agent_1")] == [second]
        assert engine.list_instances(template_id="other") == []

    def test_list_by_category(self, engine, catalog, make_template, formation_template):
        catalog.register(make_template(template_id="review", name="Compliance Review",
                                       category=TemplateCategory.COMPLIANCE))
        engine.instantiate(formation_template.id)
        review_id = engine.instantiate("review")

        compliance = engine.list_by_category(TemplateCategory.COMPLIANCE)
        assert [i.id for i in compliance] == [review_id]

    def test_overdue_instances(self, engine, clock, formation_template):
        late = engine.instantiate(formation_template.id)
        done = engine.instantiate(formation_template.id)
        for step_id in ("s1", "s2", "s3", "s4"):
            engine.complete_step(done, step_id, "completed")

        clock.advance(hours=73)

        assert [i.id for i in engine.overdue_instances()] == [late]
        assert engine.is_overdue(late) is True
        assert engine.is_overdue(done) is False
