"""
Progress Calculator

Completion percentage shown on dashboards. Only steps that are fully done
(completed or skipped) count; the step in flight earns nothing, and a failed
or cancelled instance drops to zero.
"""

from .models import WorkflowInstance, WorkflowStatus


class ProgressCalculator:
    """Derives a 0-100 completion percentage from instance state"""

    def progress(self, instance: WorkflowInstance) -> int:
        if instance.status == WorkflowStatus.COMPLETED:
            return 100
        if instance.status in (WorkflowStatus.FAILED, WorkflowStatus.CANCELLED):
            return 0
        if not instance.step_count:
            return 0
        return (instance.current_step - 1) * 100 // instance.step_count
