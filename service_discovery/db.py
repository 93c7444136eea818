"""In-memory service store.

The store is the single source of truth for registered services. It is
shared by every request handler, so all access goes through one
reader/writer lock: reads run concurrently, a write excludes everything.
Records are copied on the way in and out, callers never hold a reference
into the store.
"""

import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List

from service_discovery.errors import ServiceAlreadyExistsError, ServiceNotFoundError
from service_discovery.models import Service


class ReadWriteLock:
    """Shared-read / exclusive-write lock. Waiting writers block new readers."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class ServiceStore:
    """Thread-safe, dict-backed store of services keyed by id"""

    def __init__(self) -> None:
        self._lock = ReadWriteLock()
        self._services: Dict[str, Service] = {}

    def create(self, service: Service) -> None:
        with self._lock.write():
            if service.id in self._services:
                raise ServiceAlreadyExistsError()
            self._services[service.id] = service.model_copy(deep=True)

    def get_by_id(self, service_id: str) -> Service:
        with self._lock.read():
            service = self._services.get(service_id)
            if service is None:
                raise ServiceNotFoundError()
            return service.model_copy(deep=True)

    def get_all(self) -> List[Service]:
        """Snapshot of all services, in no particular order"""
        with self._lock.read():
            return [service.model_copy(deep=True) for service in self._services.values()]

    def update(self, service: Service) -> None:
        """Replace the stored record wholesale. Merging is the caller's job."""
        with self._lock.write():
            if service.id not in self._services:
                raise ServiceNotFoundError()
            self._services[service.id] = service.model_copy(deep=True)

    def delete(self, service_id: str) -> None:
        with self._lock.write():
            if service_id not in self._services:
                raise ServiceNotFoundError()
            del self._services[service_id]

    def exists(self, service_id: str) -> bool:
        with self._lock.read():
            return service_id in self._services

    def __len__(self) -> int:
        with self._lock.read():
            return len(self._services)
