"""
Assignment Resolver

Binds an actor to a workflow instance. Assigning a pending instance is what
starts it: the instance moves to in_progress and the first step's execution
record opens with the assignee on it.
"""

import logging
from typing import Optional

from . import transitions
from .engine import StepEngine
from .audit import AuditEventType
from .directories import ActorDirectory
from .models import WorkflowInstance
from .exceptions import ActorNotFound


logger = logging.getLogger("entity_workflows.assignment")


class AssignmentResolver:
    """Assigns instances to actors"""

    def __init__(self, engine: StepEngine, actors: Optional[ActorDirectory] = None):
        self.engine = engine
        self.actors = actors

    def assign(self, instance_id: str, assignee_id: str,
               assigned_by: Optional[str] = None) -> WorkflowInstance:
        """
        Set the instance's assignee.

        A pending instance transitions to in_progress; an in-progress one
        only changes hands.

        Raises:
            ActorNotFound: the actor directory does not know assignee_id
            InstanceNotFound: no such instance
            InvalidTransition: the instance is terminal
        """
        if self.actors is not None and not self.actors.exists(assignee_id):
            raise ActorNotFound(assignee_id)

        result = self.engine.apply_transition(
            instance_id,
            lambda instance, now: transitions.assign(instance, assignee_id, now),
            action="assign",
            actor=assigned_by or assignee_id
        )

        instance = result.instance
        logger.info(f"Workflow instance {instance_id} assigned to {assignee_id}")
        if self.engine.audit:
            self.engine.audit.log_event(
                AuditEventType.INSTANCE_ASSIGNED, 'workflow_instance', instance_id,
                {'assigned_to': assignee_id, 'status': instance.status.value},
                assigned_by or 'system'
            )
        return instance
