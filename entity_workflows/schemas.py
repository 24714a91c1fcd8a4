"""
Pydantic request models for the workflow API
"""

from typing import Any, Dict, List, Optional
from datetime import datetime, timezone

from pydantic import BaseModel, Field

from .models import WorkflowTemplate, WorkflowStep


class StepModel(BaseModel):
    id: str
    name: str
    step_order: int = Field(..., description="1-based position in the template")
    assignee_role: str = Field(..., description="admin, manager, agent or auto")
    action_type: str = Field(..., description="review, approve, process, notify or integrate")
    description: str = ""
    conditions: Dict[str, Any] = Field(default_factory=dict)
    automation_rules: Optional[Dict[str, Any]] = None
    estimated_duration_hours: float = 0

    def to_step(self) -> WorkflowStep:
        return WorkflowStep(
            id=self.id,
            name=self.name,
            step_order=self.step_order,
            assignee_role=self.assignee_role,
            action_type=self.action_type,
            description=self.description,
            conditions=self.conditions,
            automation_rules=self.automation_rules,
            estimated_duration_hours=self.estimated_duration_hours
        )


class CreateTemplateRequest(BaseModel):
    id: Optional[str] = None
    name: str
    description: str = ""
    category: str = Field(..., description="entity_formation, compliance, document_review, "
                                           "payment_processing or user_onboarding")
    steps: List[StepModel]
    sla_hours: float
    approval_required: bool = False
    auto_assign: bool = False
    is_active: bool = True
    created_by: str = ""

    def to_template(self) -> WorkflowTemplate:
        now = datetime.now(timezone.utc)
        return WorkflowTemplate(
            id=self.id or "",
            created_at=now,
            updated_at=now,
            name=self.name,
            description=self.description,
            category=self.category,
            steps=[step.to_step() for step in self.steps],
            sla_hours=self.sla_hours,
            approval_required=self.approval_required,
            auto_assign=self.auto_assign,
            is_active=self.is_active,
            created_by=self.created_by
        )


class StartWorkflowRequest(BaseModel):
    template_id: str
    entity_id: Optional[str] = None
    priority: Optional[str] = Field(None, description="low, medium, high or urgent")
    user_id: str = "system"
    metadata: Optional[Dict[str, Any]] = None


class CompleteStepRequest(BaseModel):
    outcome: str = Field("completed", description="completed, skipped or failed")
    notes: Optional[str] = None
    outputs: Optional[Dict[str, Any]] = None
    actor: Optional[str] = None


class AssignRequest(BaseModel):
    assignee_id: str
    assigned_by: Optional[str] = None


class CancelRequest(BaseModel):
    reason: Optional[str] = None
    actor: Optional[str] = None


class EscalateRequest(BaseModel):
    reason: Optional[str] = None
    actor: Optional[str] = None
