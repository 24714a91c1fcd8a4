"""
FastAPI REST API Module

JSON endpoints over the workflow engine: template catalog, instance
lifecycle, progress/SLA queries and the dashboard summary.
"""

from typing import Any, Dict, Optional

from fastapi import FastAPI, Depends, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import uvicorn

from . import __version__
from .system import WorkflowSystem
from .config import get_config
from .logging_config import setup_logging
from .models import WorkflowInstance, WorkflowStatus, TemplateCategory, AssigneeRole, coerce_enum
from .exceptions import (
    WorkflowError, ValidationError, TemplateNotFound, InstanceNotFound,
    InvalidTransition, StepMismatch, ConcurrencyConflict
)
from .schemas import (
    CreateTemplateRequest, StartWorkflowRequest, CompleteStepRequest,
    AssignRequest, CancelRequest, EscalateRequest
)


ERROR_STATUS = [
    (TemplateNotFound, status.HTTP_404_NOT_FOUND),
    (InstanceNotFound, status.HTTP_404_NOT_FOUND),
    (InvalidTransition, status.HTTP_409_CONFLICT),
    (StepMismatch, status.HTTP_409_CONFLICT),
    (ConcurrencyConflict, status.HTTP_409_CONFLICT),
    (ValidationError, status.HTTP_400_BAD_REQUEST),
]


def get_workflow_system(request: Request) -> WorkflowSystem:
    return request.app.state.workflow_system


def instance_to_response(system: WorkflowSystem, instance: WorkflowInstance) -> Dict[str, Any]:
    data = instance.to_dict()
    data['progress'] = system.engine.progress_calculator.progress(instance)
    data['is_overdue'] = system.engine.sla.is_overdue(instance)
    return data


def create_app(system: Optional[WorkflowSystem] = None) -> FastAPI:
    """Create and configure the FastAPI application"""
    config = get_config()
    app = FastAPI(
        title=config.api_title,
        description="Workflow orchestration for entity formation, compliance and onboarding",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc"
    )
    app.state.workflow_system = system or WorkflowSystem(config)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(WorkflowError)
    async def workflow_error_handler(request: Request, exc: WorkflowError):
        status_code = status.HTTP_400_BAD_REQUEST
        for error_type, code in ERROR_STATUS:
            if isinstance(exc, error_type):
                status_code = code
                break
        return JSONResponse(
            status_code=status_code,
            content={'detail': exc.message, 'error': type(exc).__name__}
        )

    @app.get("/health")
    async def health_check():
        return {"status": "healthy", "service": "entity_workflows", "version": __version__}

    # Templates

    @app.get("/templates", tags=["Templates"])
    async def list_templates(category: Optional[str] = None, active_only: bool = False,
                             system: WorkflowSystem = Depends(get_workflow_system)):
        if active_only:
            templates = system.catalog.list_active()
        else:
            category_filter = coerce_enum(TemplateCategory, category, 'category') if category else None
            templates = system.catalog.list_templates(category_filter)
        return {"templates": [t.to_dict() for t in templates]}

    @app.post("/templates", status_code=status.HTTP_201_CREATED, tags=["Templates"])
    async def register_template(request: CreateTemplateRequest,
                                system: WorkflowSystem = Depends(get_workflow_system)):
        template_id = system.catalog.register(request.to_template())
        return {"template_id": template_id, "message": "Workflow template registered successfully"}

    @app.get("/templates/{template_id}", tags=["Templates"])
    async def get_template(template_id: str, system: WorkflowSystem = Depends(get_workflow_system)):
        return system.catalog.get(template_id).to_dict()

    @app.post("/templates/{template_id}/activate", tags=["Templates"])
    async def activate_template(template_id: str, system: WorkflowSystem = Depends(get_workflow_system)):
        return system.catalog.activate(template_id).to_dict()

    @app.post("/templates/{template_id}/deactivate", tags=["Templates"])
    async def deactivate_template(template_id: str, system: WorkflowSystem = Depends(get_workflow_system)):
        return system.catalog.deactivate(template_id).to_dict()

    # Instances

    @app.post("/instances", status_code=status.HTTP_201_CREATED, tags=["Instances"])
    async def start_workflow(request: StartWorkflowRequest,
                             system: WorkflowSystem = Depends(get_workflow_system)):
        instance_id = system.engine.instantiate(
            request.template_id,
            entity_id=request.entity_id,
            priority=request.priority,
            user_id=request.user_id,
            metadata=request.metadata
        )
        return instance_to_response(system, system.engine.get_instance(instance_id))

    @app.get("/instances", tags=["Instances"])
    async def list_instances(status_filter: Optional[str] = Query(None, alias="status"),
                             template_id: Optional[str] = None,
                             entity_id: Optional[str] = None, assigned_to: Optional[str] = None,
                             system: WorkflowSystem = Depends(get_workflow_system)):
        status_value = coerce_enum(WorkflowStatus, status_filter, 'status') if status_filter else None
        instances = system.engine.list_instances(
            status=status_value, template_id=template_id, entity_id=entity_id, assigned_to=assigned_to
        )
        return {"instances": [instance_to_response(system, i) for i in instances]}

    @app.get("/instances/overdue", tags=["Instances"])
    async def list_overdue(system: WorkflowSystem = Depends(get_workflow_system)):
        return {"instances": [instance_to_response(system, i) for i in system.engine.overdue_instances()]}

    @app.get("/instances/{instance_id}", tags=["Instances"])
    async def get_instance(instance_id: str, system: WorkflowSystem = Depends(get_workflow_system)):
        return instance_to_response(system, system.engine.get_instance(instance_id))

    @app.get("/instances/{instance_id}/progress", tags=["Instances"])
    async def get_progress(instance_id: str, system: WorkflowSystem = Depends(get_workflow_system)):
        instance = system.engine.get_instance(instance_id)
        return {
            "instance_id": instance_id,
            "status": instance.status.value,
            "current_step": instance.current_step,
            "step_count": instance.step_count,
            "progress": system.engine.progress_calculator.progress(instance),
            "is_overdue": system.engine.sla.is_overdue(instance),
            "due_date": instance.due_date.isoformat()
        }

    @app.post("/instances/{instance_id}/steps/{step_id}", tags=["Instances"])
    async def complete_step(instance_id: str, step_id: str, request: CompleteStepRequest,
                            system: WorkflowSystem = Depends(get_workflow_system)):
        instance = system.engine.complete_step(
            instance_id, step_id, request.outcome,
            notes=request.notes, outputs=request.outputs, actor=request.actor
        )
        return instance_to_response(system, instance)

    @app.post("/instances/{instance_id}/assign", tags=["Instances"])
    async def assign_instance(instance_id: str, request: AssignRequest,
                              system: WorkflowSystem = Depends(get_workflow_system)):
        instance = system.assignments.assign(instance_id, request.assignee_id, request.assigned_by)
        return instance_to_response(system, instance)

    @app.post("/instances/{instance_id}/cancel", tags=["Instances"])
    async def cancel_instance(instance_id: str, request: CancelRequest,
                              system: WorkflowSystem = Depends(get_workflow_system)):
        instance = system.engine.cancel(instance_id, reason=request.reason, actor=request.actor)
        return instance_to_response(system, instance)

    @app.post("/instances/{instance_id}/escalate", tags=["Instances"])
    async def escalate_instance(instance_id: str, request: EscalateRequest,
                                system: WorkflowSystem = Depends(get_workflow_system)):
        instance = system.engine.escalate(instance_id, reason=request.reason, actor=request.actor)
        return instance_to_response(system, instance)

    # Dashboard

    @app.get("/dashboard/summary", tags=["Dashboard"])
    async def dashboard_summary(system: WorkflowSystem = Depends(get_workflow_system)):
        return system.reporting.summary()

    @app.get("/dashboard/tasks", tags=["Dashboard"])
    async def pending_tasks(role: Optional[str] = None, assignee: Optional[str] = None,
                            system: WorkflowSystem = Depends(get_workflow_system)):
        role_filter = coerce_enum(AssigneeRole, role, 'role') if role else None
        tasks = system.reporting.pending_tasks(role=role_filter, assignee=assignee)
        for task in tasks:
            task['due_date'] = task['due_date'].isoformat()
        return {"tasks": tasks}

    return app


def run_server(host: Optional[str] = None, port: Optional[int] = None, debug: bool = False):
    """Run the FastAPI server"""
    config = get_config()
    setup_logging(config.log_level, log_format=config.log_format, log_file=config.log_file)
    uvicorn.run(
        create_app(),
        host=host or config.api_host,
        port=port or config.api_port,
        reload=False,
        log_level="debug" if debug else "info"
    )
