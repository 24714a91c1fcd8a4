"""
Workflow System

Composes storage, catalog, engine, assignment, reporting, events and audit
into one object the API and scripts share.
"""

import logging
from typing import Optional

from .config import WorkflowConfig, get_config
from .storage import StorageInterface, create_storage
from .clock import Clock, SystemClock
from .audit import AuditTrail
from .events import EventDispatcher
from .catalog import WorkflowTemplateCatalog
from .instance_store import WorkflowInstanceStore
from .engine import StepEngine
from .assignment import AssignmentResolver
from .reporting import WorkflowReporting
from .directories import EntityDirectory, ActorDirectory
from .models import Priority, coerce_enum
from .seed import seed_catalog


logger = logging.getLogger("entity_workflows.system")


class WorkflowSystem:
    """Workflow orchestration with all components initialized"""

    def __init__(self, config: Optional[WorkflowConfig] = None,
                 storage: Optional[StorageInterface] = None,
                 clock: Optional[Clock] = None,
                 entities: Optional[EntityDirectory] = None,
                 actors: Optional[ActorDirectory] = None):
        self.config = config or get_config()
        self.clock = clock or SystemClock()
        self.storage = storage or create_storage(self.config.storage_backend, self.config.sqlite_path)

        self.audit_trail = AuditTrail(self.storage, clock=self.clock) if self.config.enable_audit_logging else None
        self.events = EventDispatcher()

        self.catalog = WorkflowTemplateCatalog(self.storage, self.audit_trail, self.clock)
        self.instance_store = WorkflowInstanceStore(self.storage)
        self.engine = StepEngine(
            self.catalog, self.instance_store,
            clock=self.clock,
            events=self.events,
            audit=self.audit_trail,
            entities=entities if self.config.validate_entities else None,
            max_save_retries=self.config.max_save_retries,
            default_priority=coerce_enum(Priority, self.config.default_priority, 'default_priority')
        )
        self.assignments = AssignmentResolver(
            self.engine, actors if self.config.validate_actors else None
        )
        self.reporting = WorkflowReporting(self.engine)

        if self.config.seed_builtin_templates:
            seeded = seed_catalog(self.catalog)
            if seeded:
                logger.info(f"Seeded built-in workflow templates: {', '.join(seeded)}")

    def close(self) -> None:
        self.storage.close()
