"""
Directory Interfaces

Lookups into systems the engine does not own: the entity registry (checked
when an instance is created for an entity) and the actor registry (checked
when an instance is assigned).
"""

from abc import ABC, abstractmethod
from typing import Iterable, Optional, Set
import threading


class EntityDirectory(ABC):
    """Answers whether an entity id refers to a real entity"""

    @abstractmethod
    def exists(self, entity_id: str) -> bool:
        pass


class ActorDirectory(ABC):
    """Answers whether an actor id refers to a real user or agent"""

    @abstractmethod
    def exists(self, actor_id: str) -> bool:
        pass


class InMemoryDirectory(EntityDirectory, ActorDirectory):
    """Set-backed directory usable for either role"""

    def __init__(self, ids: Optional[Iterable[str]] = None):
        self._ids: Set[str] = set(ids or [])
        self._lock = threading.Lock()

    def add(self, record_id: str) -> None:
        with self._lock:
            self._ids.add(record_id)

    def remove(self, record_id: str) -> None:
        with self._lock:
            self._ids.discard(record_id)

    def exists(self, record_id: str) -> bool:
        with self._lock:
            return record_id in self._ids


class AllowAllDirectory(EntityDirectory, ActorDirectory):
    """Accepts every id; used when validation is switched off"""

    def exists(self, record_id: str) -> bool:
        return True
