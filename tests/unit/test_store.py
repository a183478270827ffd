"""
Unit tests for adhandshake.store (object store and config persister).
"""

import attrs
import pytest

from adhandshake.core.context import RequestContext
from adhandshake.core.exceptions import (
    ConflictError,
    ErrorKind,
    PersistenceError,
    RecordNotFound,
    RequestTimeout,
    StoreError,
)
from adhandshake.core.types import (
    API_VERSION,
    ActiveDirectoryConfig,
    DirectoryConfig,
    ObjectMeta,
)
from adhandshake.store.memory import InMemoryObjectStore, seed_store
from adhandshake.store.persister import ConfigPersister


class FailingStore:
    """ObjectStore whose writes always fail."""

    def __init__(self, record: ActiveDirectoryConfig, error: Exception):
        self.record = record
        self.error = error

    def get(self, name):
        return self.record

    def update(self, name, record):
        raise self.error


class TestInMemoryObjectStore:
    """Tests for the in-memory backend."""

    def test_create_assigns_metadata(self):
        store = InMemoryObjectStore()
        stored = store.create(ActiveDirectoryConfig(metadata=ObjectMeta(name="ad")))
        assert stored.metadata.resource_version == "1"
        assert stored.metadata.uid
        assert stored.metadata.creation_timestamp is not None
        assert len(store) == 1

    def test_create_duplicate(self):
        store = seed_store("ad")
        with pytest.raises(ConflictError):
            store.create(ActiveDirectoryConfig(metadata=ObjectMeta(name="ad")))

    def test_get_missing(self):
        with pytest.raises(RecordNotFound):
            InMemoryObjectStore().get("ad")

    def test_update_bumps_version(self):
        store = seed_store("ad")
        current = store.get("ad")
        updated = store.update("ad", attrs.evolve(current, directory=DirectoryConfig(enabled=True)))
        assert updated.metadata.resource_version == "2"
        assert updated.metadata.uid == current.metadata.uid
        assert store.get("ad").enabled is True

    def test_stale_update_conflicts(self):
        store = seed_store("ad")
        stale = store.get("ad")
        store.update("ad", stale)
        with pytest.raises(ConflictError) as exc_info:
            store.update("ad", stale)
        assert exc_info.value.expected == "1"
        assert exc_info.value.actual == "2"

    def test_update_missing(self):
        with pytest.raises(RecordNotFound):
            InMemoryObjectStore().update(
                "ad", ActiveDirectoryConfig(metadata=ObjectMeta(name="ad"))
            )


class TestConfigPersister:
    """Tests for ConfigPersister."""

    def test_apply_updates_in_place(self):
        store = seed_store("activedirectory")
        original = store.get("activedirectory")
        directory = DirectoryConfig(servers=("dc1",), enabled=True)

        written = ConfigPersister(store).apply(directory)

        assert written.directory == directory
        assert written.metadata.uid == original.metadata.uid
        assert written.metadata.creation_timestamp == original.metadata.creation_timestamp
        assert written.metadata.resource_version == "2"
        assert written.api_version == API_VERSION
        assert written.kind == "AuthConfig"
        assert written.type == "activeDirectoryConfig"
        assert len(store) == 1

    def test_apply_without_record(self):
        with pytest.raises(PersistenceError, match="no activedirectory config registered"):
            ConfigPersister(InMemoryObjectStore()).apply(DirectoryConfig())

    def test_custom_record_name(self):
        store = seed_store("corp-ad")
        written = ConfigPersister(store, record_name="corp-ad").apply(DirectoryConfig(enabled=True))
        assert written.name == "corp-ad"

    def test_conflict_maps_to_409(self):
        record = seed_store("activedirectory").get("activedirectory")
        store = FailingStore(record, ConflictError("activedirectory", "1", "2"))
        with pytest.raises(PersistenceError) as exc_info:
            ConfigPersister(store).apply(DirectoryConfig())
        assert exc_info.value.status_code == 409
        assert exc_info.value.kind is ErrorKind.PERSISTENCE

    def test_store_failure(self):
        record = seed_store("activedirectory").get("activedirectory")
        store = FailingStore(record, StoreError("disk full"))
        with pytest.raises(PersistenceError, match="Failed to save activedirectory config: disk full"):
            ConfigPersister(store).apply(DirectoryConfig())

    def test_disable_keeps_settings(self):
        store = seed_store(
            "activedirectory", DirectoryConfig(servers=("dc1",), port=636, enabled=True)
        )
        written = ConfigPersister(store).disable()
        assert written.enabled is False
        assert written.directory.servers == ("dc1",)
        assert written.directory.port == 636

    def test_load(self):
        store = seed_store("activedirectory")
        assert ConfigPersister(store).load().name == "activedirectory"

    def test_live_request_writes(self):
        store = seed_store("activedirectory")
        written = ConfigPersister(store).apply(
            DirectoryConfig(enabled=True), RequestContext.with_timeout(30)
        )
        assert written.enabled is True

    @pytest.mark.parametrize("operation", ["apply", "disable"])
    def test_abandoned_request_never_writes(self, operation):
        store = seed_store("activedirectory", DirectoryConfig(servers=("dc1",), enabled=True))
        before = store.get("activedirectory")
        request = RequestContext()
        request.cancel()
        persister = ConfigPersister(store)

        with pytest.raises(RequestTimeout, match="config update"):
            if operation == "apply":
                persister.apply(DirectoryConfig(servers=("dc2",)), request)
            else:
                persister.disable(request)

        assert store.get("activedirectory") == before

    def test_expired_request_never_writes(self):
        store = seed_store("activedirectory")
        before = store.get("activedirectory")
        with pytest.raises(RequestTimeout):
            ConfigPersister(store).apply(DirectoryConfig(enabled=True), RequestContext.with_timeout(0))
        assert store.get("activedirectory") == before
