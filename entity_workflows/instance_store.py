"""
Workflow Instance Store

Persistence boundary for workflow instances. Two guards keep writers from
clobbering each other:

- a per-instance lock, held by the engine for the whole
  load -> transition -> save cycle inside one process;
- an optimistic version number, checked on every save, which catches
  writers in other processes sharing the same database.
"""

from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional
import threading

from .storage import StorageInterface
from .models import WorkflowInstance, WorkflowStatus, Priority
from .exceptions import InstanceNotFound, ConcurrencyConflict


INSTANCES_TABLE = "workflow_instances"


class WorkflowInstanceStore:
    """Keyed store of workflow instances"""

    def __init__(self, storage: StorageInterface, table_name: str = INSTANCES_TABLE):
        self.storage = storage
        self.table_name = table_name
        # instance id -> [lock, number of holders and waiters]
        self._locks: Dict[str, list] = {}
        self._registry_lock = threading.Lock()
        self._save_lock = threading.Lock()

    @contextmanager
    def lock(self, instance_id: str) -> Iterator[None]:
        """Hold the single-writer lock for one instance"""
        with self._registry_lock:
            entry = self._locks.get(instance_id)
            if entry is None:
                entry = self._locks[instance_id] = [threading.RLock(), 0]
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._registry_lock:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[instance_id]

    @property
    def active_locks(self) -> int:
        """Instances currently locked or waited on"""
        with self._registry_lock:
            return len(self._locks)

    def find(self, instance_id: str) -> Optional[WorkflowInstance]:
        data = self.storage.load(self.table_name, instance_id)
        if not data:
            return None
        return WorkflowInstance.from_dict(data)

    def get(self, instance_id: str) -> WorkflowInstance:
        instance = self.find(instance_id)
        if instance is None:
            raise InstanceNotFound(instance_id)
        return instance

    def exists(self, instance_id: str) -> bool:
        return self.storage.exists(self.table_name, instance_id)

    def save(self, instance: WorkflowInstance) -> WorkflowInstance:
        """
        Persist the instance if nobody else saved it since it was loaded.

        instance.version must be the version that was read; on success it is
        bumped by one. A brand-new instance carries version 0.

        Raises:
            ConcurrencyConflict: the stored version differs from instance.version
        """
        with self._save_lock:
            with self.storage.atomic():
                current = self.storage.load(self.table_name, instance.id)
                current_version = current.get('version', 0) if current else None
                expected = instance.version
                if (current is None and expected != 0) or (current is not None and current_version != expected):
                    raise ConcurrencyConflict(instance.id, expected, current_version)

                data = instance.to_dict()
                data['version'] = expected + 1
                self.storage.save(self.table_name, instance.id, data)

        instance.version = expected + 1
        return instance

    def list(self, status: Optional[WorkflowStatus] = None,
             template_id: Optional[str] = None,
             entity_id: Optional[str] = None,
             assigned_to: Optional[str] = None,
             priority: Optional[Priority] = None) -> List[WorkflowInstance]:
        """Instances matching every given filter, newest first"""
        filters = {}
        if status:
            filters['status'] = status.value
        if template_id:
            filters['template_id'] = template_id
        if entity_id:
            filters['entity_id'] = entity_id
        if assigned_to:
            filters['assigned_to'] = assigned_to
        if priority:
            filters['priority'] = priority.value

        instances = [WorkflowInstance.from_dict(data) for data in self.storage.find(self.table_name, filters)]
        return sorted(instances, key=lambda i: i.started_at, reverse=True)

    def count(self) -> int:
        return self.storage.count(self.table_name)
