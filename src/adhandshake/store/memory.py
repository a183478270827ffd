"""
adhandshake Object Store

Interface of the configuration record store, plus an in-memory backend.

The in-memory backend applies optimistic concurrency the way a versioned
object API does: an update must carry the resource version it was read
at, and every successful write bumps the version.
"""

from __future__ import annotations

import threading
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Protocol

import attrs
import structlog

from adhandshake.core.exceptions import ConflictError, RecordNotFound
from adhandshake.core.types import ActiveDirectoryConfig, DirectoryConfig, ObjectMeta


class ObjectStore(Protocol):
    """Versioned store for configuration records."""

    def get(self, name: str) -> ActiveDirectoryConfig:
        """
        Load a record with its current metadata.

        Raises:
            RecordNotFound: If no record exists under name
        """
        ...

    def update(self, name: str, record: ActiveDirectoryConfig) -> ActiveDirectoryConfig:
        """
        Replace an existing record.

        Raises:
            RecordNotFound: If no record exists under name
            ConflictError: If record.metadata.resource_version is stale
        """
        ...


@attrs.define
class InMemoryObjectStore:
    """
    Thread-safe in-memory ObjectStore.

    Example:
        store = InMemoryObjectStore()
        store.create(ActiveDirectoryConfig(metadata=ObjectMeta(name="activedirectory")))
        record = store.get("activedirectory")
    """

    _records: Dict[str, ActiveDirectoryConfig] = attrs.Factory(dict)
    _lock: Any = attrs.Factory(threading.Lock)
    _logger: Any = attrs.Factory(lambda: structlog.get_logger())

    def create(self, record: ActiveDirectoryConfig) -> ActiveDirectoryConfig:
        """
        Register a record, as done once when the provider is registered.

        Raises:
            ConflictError: If a record with the same name exists
        """
        name = record.metadata.name
        with self._lock:
            if name in self._records:
                existing = self._records[name].metadata.resource_version
                raise ConflictError(name, record.metadata.resource_version, existing)
            stored = attrs.evolve(
                record,
                metadata=attrs.evolve(
                    record.metadata,
                    resource_version="1",
                    uid=record.metadata.uid or str(uuid.uuid4()),
                    creation_timestamp=record.metadata.creation_timestamp
                    or datetime.now(timezone.utc),
                ),
            )
            self._records[name] = stored
        self._logger.debug("record_created", name=name)
        return stored

    def get(self, name: str) -> ActiveDirectoryConfig:
        with self._lock:
            try:
                return self._records[name]
            except KeyError:
                raise RecordNotFound(name) from None

    def update(self, name: str, record: ActiveDirectoryConfig) -> ActiveDirectoryConfig:
        with self._lock:
            if name not in self._records:
                raise RecordNotFound(name)
            current = self._records[name]
            expected = record.metadata.resource_version
            actual = current.metadata.resource_version
            if expected != actual or record.metadata.uid != current.metadata.uid:
                raise ConflictError(name, expected, actual)
            stored = attrs.evolve(
                record,
                metadata=attrs.evolve(current.metadata, resource_version=str(int(actual) + 1)),
            )
            self._records[name] = stored
        self._logger.debug("record_updated", name=name, resource_version=stored.metadata.resource_version)
        return stored

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


def seed_store(name: str, directory: DirectoryConfig = DirectoryConfig()) -> InMemoryObjectStore:
    """In-memory store holding one registered, disabled provider record."""
    store = InMemoryObjectStore()
    store.create(ActiveDirectoryConfig(metadata=ObjectMeta(name=name), directory=directory))
    return store
