"""
Workflow Errors

Every error raised by the engine derives from WorkflowError, which is a
ValueError so callers that only care about "bad request" can catch that.
"""

from typing import Any, List, Optional


class WorkflowError(ValueError):
    """Base class for all workflow engine errors"""

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(WorkflowError):
    """Malformed input rejected before anything is stored"""

    def __init__(self, message: str, errors: Optional[List[str]] = None, **details: Any):
        super().__init__(message, **details)
        self.errors = errors or [message]


class InvalidTemplate(ValidationError):
    """Template failed registration checks"""
    pass


class TemplateNotFound(WorkflowError):
    """Unknown or inactive template id"""

    def __init__(self, template_id: str, message: Optional[str] = None):
        super().__init__(message or f"Workflow template {template_id} not found", template_id=template_id)
        self.template_id = template_id


class InstanceNotFound(WorkflowError):
    """Unknown workflow instance id"""

    def __init__(self, instance_id: str):
        super().__init__(f"Workflow instance {instance_id} not found", instance_id=instance_id)
        self.instance_id = instance_id


class EntityNotFound(ValidationError):
    """Entity reference rejected by the entity directory"""

    def __init__(self, entity_id: str):
        super().__init__(f"Entity {entity_id} not found", entity_id=entity_id)
        self.entity_id = entity_id


class ActorNotFound(ValidationError):
    """Assignee rejected by the actor directory"""

    def __init__(self, actor_id: str):
        super().__init__(f"Actor {actor_id} not found", actor_id=actor_id)
        self.actor_id = actor_id


class InvalidTransition(WorkflowError):
    """Mutation attempted on an instance whose status does not allow it"""

    def __init__(self, instance_id: str, status: str, action: str):
        super().__init__(
            f"Cannot {action} workflow instance {instance_id} in status {status}",
            instance_id=instance_id, status=status, action=action
        )
        self.instance_id = instance_id
        self.status = status
        self.action = action


class StepMismatch(WorkflowError):
    """Step completed out of template order"""

    def __init__(self, instance_id: str, expected_step_id: str, actual_step_id: str):
        super().__init__(
            f"Workflow instance {instance_id} expects step {expected_step_id}, got {actual_step_id}",
            instance_id=instance_id, expected_step_id=expected_step_id, actual_step_id=actual_step_id
        )
        self.instance_id = instance_id
        self.expected_step_id = expected_step_id
        self.actual_step_id = actual_step_id


class ConcurrencyConflict(WorkflowError):
    """Stored version moved on since the instance was loaded"""

    def __init__(self, instance_id: str, expected_version: int, current_version: Optional[int]):
        super().__init__(
            f"Workflow instance {instance_id} was modified concurrently "
            f"(expected version {expected_version}, found {current_version})",
            instance_id=instance_id, expected_version=expected_version, current_version=current_version
        )
        self.instance_id = instance_id
        self.expected_version = expected_version
        self.current_version = current_version
