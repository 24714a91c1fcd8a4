"""
Workflow Models

Templates (ordered step definitions with an SLA), running instances and the
per-step execution records kept in an instance's history. Every closed
vocabulary is an Enum; string values are coerced on construction and unknown
values raise ValidationError.
"""

from datetime import datetime
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Any, Type, TypeVar
from enum import Enum

from .storage import StorageRecord, to_storable, parse_datetime
from .exceptions import ValidationError


class TemplateCategory(Enum):
    """Business process a template belongs to"""
    ENTITY_FORMATION = "entity_formation"
    COMPLIANCE = "compliance"
    DOCUMENT_REVIEW = "document_review"
    PAYMENT_PROCESSING = "payment_processing"
    USER_ONBOARDING = "user_onboarding"


class AssigneeRole(Enum):
    """Role expected to carry out a step"""
    ADMIN = "admin"
    MANAGER = "manager"
    AGENT = "agent"
    AUTO = "auto"


class ActionType(Enum):
    """Kind of work a step represents"""
    REVIEW = "review"
    APPROVE = "approve"
    PROCESS = "process"
    NOTIFY = "notify"
    INTEGRATE = "integrate"


class WorkflowStatus(Enum):
    """Status of a workflow instance"""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({WorkflowStatus.COMPLETED, WorkflowStatus.FAILED, WorkflowStatus.CANCELLED})


class StepStatus(Enum):
    """Status of a single step execution"""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED = "failed"
    CANCELLED = "cancelled"


class StepOutcome(Enum):
    """Result reported back for a step's external work"""
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def step_status(self) -> StepStatus:
        return StepStatus(self.value)

    @property
    def advances(self) -> bool:
        return self is not StepOutcome.FAILED


class Priority(Enum):
    """Instance priority, lowest first"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"

    def escalated(self) -> 'Priority':
        """Next priority level up; URGENT stays URGENT"""
        levels = list(Priority)
        index = levels.index(self)
        return levels[min(index + 1, len(levels) - 1)]


E = TypeVar('E', bound=Enum)


def coerce_enum(enum_cls: Type[E], value: Any, field_name: str) -> E:
    """Return value as a member of enum_cls or raise ValidationError"""
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ValidationError(f"Invalid {field_name} '{value}' (expected one of: {allowed})")


@dataclass
class WorkflowStep:
    """One ordered unit of work in a template"""
    id: str
    name: str
    step_order: int
    assignee_role: AssigneeRole
    action_type: ActionType
    description: str = ""
    conditions: Dict[str, Any] = field(default_factory=dict)
    automation_rules: Optional[Dict[str, Any]] = None
    estimated_duration_hours: float = 0

    def __post_init__(self):
        self.assignee_role = coerce_enum(AssigneeRole, self.assignee_role, 'assignee_role')
        self.action_type = coerce_enum(ActionType, self.action_type, 'action_type')

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'step_order': self.step_order,
            'assignee_role': self.assignee_role.value,
            'action_type': self.action_type.value,
            'conditions': to_storable(self.conditions),
            'automation_rules': to_storable(self.automation_rules),
            'estimated_duration_hours': self.estimated_duration_hours
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'WorkflowStep':
        return cls(
            id=data['id'],
            name=data['name'],
            description=data.get('description', ''),
            step_order=data['step_order'],
            assignee_role=data['assignee_role'],
            action_type=data['action_type'],
            conditions=data.get('conditions') or {},
            automation_rules=data.get('automation_rules'),
            estimated_duration_hours=data.get('estimated_duration_hours', 0)
        )


@dataclass
class WorkflowTemplate(StorageRecord):
    """Reusable ordered definition of a workflow's steps and SLA"""
    name: str
    description: str
    category: TemplateCategory
    steps: List[WorkflowStep]
    sla_hours: float
    approval_required: bool = False
    auto_assign: bool = False
    is_active: bool = True
    is_locked: bool = False
    created_by: str = ""

    def __post_init__(self):
        self.category = coerce_enum(TemplateCategory, self.category, 'category')
        self.steps = [
            step if isinstance(step, WorkflowStep) else WorkflowStep.from_dict(step)
            for step in self.steps
        ]

    def step_at(self, step_order: int) -> Optional[WorkflowStep]:
        for step in self.steps:
            if step.step_order == step_order:
                return step
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat(),
            'name': self.name,
            'description': self.description,
            'category': self.category.value,
            'steps': [step.to_dict() for step in self.steps],
            'sla_hours': self.sla_hours,
            'approval_required': self.approval_required,
            'auto_assign': self.auto_assign,
            'is_active': self.is_active,
            'is_locked': self.is_locked,
            'created_by': self.created_by
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'WorkflowTemplate':
        data = dict(data)
        data['created_at'] = parse_datetime(data['created_at'])
        data['updated_at'] = parse_datetime(data['updated_at'])
        data['steps'] = [WorkflowStep.from_dict(step) for step in data.get('steps', [])]
        return cls(**data)


@dataclass
class StepExecution:
    """Record of a step having been run within an instance"""
    step_id: str
    step_name: str
    started_at: datetime
    status: StepStatus = StepStatus.IN_PROGRESS
    completed_at: Optional[datetime] = None
    assigned_to: Optional[str] = None
    notes: Optional[str] = None
    outputs: Optional[Dict[str, Any]] = None

    def __post_init__(self):
        self.status = coerce_enum(StepStatus, self.status, 'step status')

    @property
    def is_open(self) -> bool:
        return self.status in (StepStatus.PENDING, StepStatus.IN_PROGRESS)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'step_id': self.step_id,
            'step_name': self.step_name,
            'started_at': self.started_at.isoformat(),
            'status': self.status.value,
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
            'assigned_to': self.assigned_to,
            'notes': self.notes,
            'outputs': to_storable(self.outputs)
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'StepExecution':
        return cls(
            step_id=data['step_id'],
            step_name=data['step_name'],
            started_at=parse_datetime(data['started_at']),
            status=data.get('status', StepStatus.IN_PROGRESS.value),
            completed_at=parse_datetime(data.get('completed_at')),
            assigned_to=data.get('assigned_to'),
            notes=data.get('notes'),
            outputs=data.get('outputs')
        )


@dataclass
class WorkflowInstance(StorageRecord):
    """One running execution of a template"""
    template_id: str
    template_name: str
    user_id: str
    status: WorkflowStatus
    priority: Priority
    started_at: datetime
    due_date: datetime
    steps: List[WorkflowStep] = field(default_factory=list)
    entity_id: Optional[str] = None
    current_step: int = 1
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    assigned_to: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    step_history: List[StepExecution] = field(default_factory=list)
    version: int = 0

    def __post_init__(self):
        self.status = coerce_enum(WorkflowStatus, self.status, 'status')
        self.priority = coerce_enum(Priority, self.priority, 'priority')

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def step_count(self) -> int:
        return len(self.steps)

    def expected_step(self) -> WorkflowStep:
        """The step that must be completed next"""
        return self.steps[self.current_step - 1]

    def execution_for(self, step_id: str) -> Optional[StepExecution]:
        for execution in self.step_history:
            if execution.step_id == step_id:
                return execution
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat(),
            'template_id': self.template_id,
            'template_name': self.template_name,
            'user_id': self.user_id,
            'status': self.status.value,
            'priority': self.priority.value,
            'started_at': self.started_at.isoformat(),
            'due_date': self.due_date.isoformat(),
            'steps': [step.to_dict() for step in self.steps],
            'entity_id': self.entity_id,
            'current_step': self.current_step,
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
            'cancelled_at': self.cancelled_at.isoformat() if self.cancelled_at else None,
            'assigned_to': self.assigned_to,
            'metadata': to_storable(self.metadata),
            'step_history': [execution.to_dict() for execution in self.step_history],
            'version': self.version
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'WorkflowInstance':
        data = dict(data)
        for key in ('created_at', 'updated_at', 'started_at', 'due_date', 'completed_at', 'cancelled_at'):
            data[key] = parse_datetime(data.get(key))
        data['steps'] = [WorkflowStep.from_dict(step) for step in data.get('steps', [])]
        data['step_history'] = [StepExecution.from_dict(e) for e in data.get('step_history', [])]
        return cls(**data)
