"""
Workflow Reporting

Read-only views for the admin dashboard: headline counts, the active and
recently completed lists, and the task queue of current steps.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from .engine import StepEngine
from .models import WorkflowInstance, WorkflowStatus, WorkflowStep, AssigneeRole


class WorkflowReporting:
    """Dashboard queries over workflow instances"""

    def __init__(self, engine: StepEngine):
        self.engine = engine

    def summary(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Headline counts across all instances"""
        instances = self.engine.list_instances()
        now = now or self.engine.clock.now()

        counts = {status.value: 0 for status in WorkflowStatus}
        for instance in instances:
            counts[instance.status.value] += 1

        total = len(instances)
        completed = counts[WorkflowStatus.COMPLETED.value]
        return {
            'total': total,
            'completed': completed,
            'active': counts[WorkflowStatus.PENDING.value] + counts[WorkflowStatus.IN_PROGRESS.value],
            'failed': counts[WorkflowStatus.FAILED.value],
            'cancelled': counts[WorkflowStatus.CANCELLED.value],
            'overdue': len(self.engine.sla.overdue(instances, now)),
            'by_status': counts,
            'completion_rate': round(completed / total * 100) if total else 0
        }

    def active_instances(self) -> List[WorkflowInstance]:
        """Everything not yet completed, newest first"""
        return [i for i in self.engine.list_instances() if i.status != WorkflowStatus.COMPLETED]

    def recently_completed(self, limit: int = 5) -> List[WorkflowInstance]:
        completed = self.engine.list_instances(status=WorkflowStatus.COMPLETED)
        completed.sort(key=lambda i: i.completed_at, reverse=True)
        return completed[:limit]

    @staticmethod
    def current_step(instance: WorkflowInstance) -> Optional[WorkflowStep]:
        if not instance.steps:
            return None
        return instance.expected_step()

    def pending_tasks(self, role: Optional[AssigneeRole] = None,
                      assignee: Optional[str] = None) -> List[Dict[str, Any]]:
        """Current step of every open instance, optionally filtered by role or assignee"""
        tasks = []
        for instance in self.engine.list_instances():
            if instance.is_terminal:
                continue
            step = self.current_step(instance)
            if step is None:
                continue
            if role and step.assignee_role != role:
                continue
            if assignee and instance.assigned_to != assignee:
                continue

            tasks.append({
                'instance_id': instance.id,
                'template_name': instance.template_name,
                'step_id': step.id,
                'step_name': step.name,
                'step_order': step.step_order,
                'step_count': instance.step_count,
                'assignee_role': step.assignee_role.value,
                'action_type': step.action_type.value,
                'assigned_to': instance.assigned_to,
                'priority': instance.priority.value,
                'due_date': instance.due_date,
                'overdue': self.engine.sla.is_overdue(instance),
                'progress': self.engine.progress_calculator.progress(instance)
            })
        return tasks
