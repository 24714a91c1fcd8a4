"""
SLA Clock

Due-date derivation and overdue queries. Nothing here mutates an instance;
an overdue instance stays in its status until someone calls cancel() or
escalate() on it.
"""

from datetime import datetime, timedelta
from typing import Iterable, List, Optional

from .clock import Clock, SystemClock
from .models import WorkflowInstance, WorkflowTemplate


class SLAClock:
    """Derives due dates from a template's SLA"""

    def __init__(self, clock: Optional[Clock] = None):
        self.clock = clock or SystemClock()

    @staticmethod
    def due_date(started_at: datetime, template: WorkflowTemplate) -> datetime:
        return started_at + timedelta(hours=template.sla_hours)

    def is_overdue(self, instance: WorkflowInstance, now: Optional[datetime] = None) -> bool:
        """True iff now is past the due date and the instance is still open"""
        now = now or self.clock.now()
        return not instance.is_terminal and now > instance.due_date

    def time_remaining(self, instance: WorkflowInstance, now: Optional[datetime] = None) -> timedelta:
        """Time left until the due date; negative once overdue"""
        now = now or self.clock.now()
        return instance.due_date - now

    def overdue(self, instances: Iterable[WorkflowInstance],
                now: Optional[datetime] = None) -> List[WorkflowInstance]:
        now = now or self.clock.now()
        return [instance for instance in instances if self.is_overdue(instance, now)]
