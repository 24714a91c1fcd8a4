"""
Built-in Workflow Templates

The standard processes every deployment starts with: entity formation,
quarterly compliance review and new user onboarding.

Run with: python -m entity_workflows.seed  (prints the templates as JSON)
"""

import json
from datetime import datetime, timezone
from typing import List, Optional

from .catalog import WorkflowTemplateCatalog
from .models import WorkflowTemplate, WorkflowStep, TemplateCategory, AssigneeRole, ActionType


ENTITY_FORMATION_ID = "entity-formation"
COMPLIANCE_REVIEW_ID = "compliance-review"
USER_ONBOARDING_ID = "user-onboarding"


def builtin_templates(now: Optional[datetime] = None) -> List[WorkflowTemplate]:
    now = now or datetime.now(timezone.utc)

    entity_formation = WorkflowTemplate(
        id=ENTITY_FORMATION_ID,
        created_at=now,
        updated_at=now,
        name="Entity Formation Process",
        description="Complete entity formation workflow with document review and filing",
        category=TemplateCategory.ENTITY_FORMATION,
        approval_required=True,
        auto_assign=True,
        sla_hours=72,
        created_by="system",
        steps=[
            WorkflowStep(
                id="s1", name="Document Collection", step_order=1,
                description="Collect all required formation documents",
                assignee_role=AssigneeRole.AUTO, action_type=ActionType.PROCESS,
                conditions={'documents_required': ['articles', 'bylaws', 'ein_application']},
                estimated_duration_hours=2
            ),
            WorkflowStep(
                id="s2", name="Legal Review", step_order=2,
                description="Review documents for completeness and accuracy",
                assignee_role=AssigneeRole.AGENT, action_type=ActionType.REVIEW,
                conditions={'review_checklist': True},
                estimated_duration_hours=4
            ),
            WorkflowStep(
                id="s3", name="State Filing", step_order=3,
                description="Submit formation documents to state authority",
                assignee_role=AssigneeRole.ADMIN, action_type=ActionType.PROCESS,
                conditions={'payment_confirmed': True},
                estimated_duration_hours=24
            ),
            WorkflowStep(
                id="s4", name="Completion Notification", step_order=4,
                description="Notify client of successful formation",
                assignee_role=AssigneeRole.AUTO, action_type=ActionType.NOTIFY,
                estimated_duration_hours=1
            ),
        ]
    )

    compliance_review = WorkflowTemplate(
        id=COMPLIANCE_REVIEW_ID,
        created_at=now,
        updated_at=now,
        name="Compliance Review Process",
        description="Quarterly compliance review and filing workflow",
        category=TemplateCategory.COMPLIANCE,
        auto_assign=True,
        sla_hours=168,
        created_by="system",
        steps=[
            WorkflowStep(
                id="c1", name="Compliance Assessment", step_order=1,
                description="Assess current compliance status",
                assignee_role=AssigneeRole.AGENT, action_type=ActionType.REVIEW,
                conditions={'assessment_criteria': ['annual_report', 'tax_status', 'licenses']},
                estimated_duration_hours=3
            ),
            WorkflowStep(
                id="c2", name="Document Preparation", step_order=2,
                description="Prepare required compliance documents",
                assignee_role=AssigneeRole.AGENT, action_type=ActionType.PROCESS,
                conditions={'template_generation': True},
                estimated_duration_hours=6
            ),
            WorkflowStep(
                id="c3", name="Filing Submission", step_order=3,
                description="Submit compliance filings to authorities",
                assignee_role=AssigneeRole.ADMIN, action_type=ActionType.PROCESS,
                conditions={'authorization_required': True},
                estimated_duration_hours=2
            ),
        ]
    )

    user_onboarding = WorkflowTemplate(
        id=USER_ONBOARDING_ID,
        created_at=now,
        updated_at=now,
        name="User Onboarding",
        description="Complete new user onboarding and account setup",
        category=TemplateCategory.USER_ONBOARDING,
        auto_assign=True,
        sla_hours=24,
        created_by="system",
        steps=[
            WorkflowStep(
                id="u1", name="Account Verification", step_order=1,
                description="Verify user identity and contact information",
                assignee_role=AssigneeRole.AUTO, action_type=ActionType.PROCESS,
                conditions={'verification_methods': ['email', 'phone']},
                estimated_duration_hours=1
            ),
            WorkflowStep(
                id="u2", name="Profile Setup", step_order=2,
                description="Guide user through profile completion",
                assignee_role=AssigneeRole.AUTO, action_type=ActionType.PROCESS,
                conditions={'profile_completeness': 80},
                estimated_duration_hours=2
            ),
            WorkflowStep(
                id="u3", name="Welcome Sequence", step_order=3,
                description="Send welcome emails and training materials",
                assignee_role=AssigneeRole.AUTO, action_type=ActionType.NOTIFY,
                conditions={'email_sequence': ['welcome', 'getting_started', 'features']},
                estimated_duration_hours=1
            ),
        ]
    )

    return [entity_formation, compliance_review, user_onboarding]


def seed_catalog(catalog: WorkflowTemplateCatalog) -> List[str]:
    """Register built-in templates that are not in the catalog yet"""
    registered = []
    for template in builtin_templates(catalog.clock.now()):
        if not catalog.exists(template.id):
            registered.append(catalog.register(template))
    return registered


if __name__ == "__main__":
    print(json.dumps([t.to_dict() for t in builtin_templates()], indent=2))
