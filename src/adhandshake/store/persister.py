"""
adhandshake Config Persister

Commits a proven directory configuration as the active provider record.

The record is expected to exist already (it is created when the provider
is registered). This path only ever updates it in place, keeping the
stored identity and version metadata, so concurrent writers are detected
by the store instead of creating a second record.
"""

from __future__ import annotations

from typing import Any, Optional

import attrs
import structlog

from adhandshake.core.context import RequestContext
from adhandshake.core.exceptions import (
    ConflictError,
    PersistenceError,
    RecordNotFound,
    StoreError,
)
from adhandshake.core.types import (
    ACTIVE_DIRECTORY_CONFIG_TYPE,
    API_VERSION,
    AUTH_CONFIG_KIND,
    PROVIDER_NAME,
    ActiveDirectoryConfig,
    DirectoryConfig,
)
from adhandshake.store.memory import ObjectStore


@attrs.define
class ConfigPersister:
    """
    Update-in-place writer for the provider configuration record.

    Attributes:
        store: Object store holding the record
        record_name: Name of the provider record
    """

    store: ObjectStore
    record_name: str = PROVIDER_NAME

    _logger: Any = attrs.Factory(lambda: structlog.get_logger())

    def load(self) -> ActiveDirectoryConfig:
        """
        Read the stored record.

        Raises:
            PersistenceError: If the record is missing or unreadable
        """
        try:
            return self.store.get(self.record_name)
        except RecordNotFound as e:
            raise PersistenceError(
                f"no {self.record_name} config registered: {e}"
            ) from e
        except StoreError as e:
            raise PersistenceError(f"Failed to load {self.record_name} config: {e}") from e

    def apply(
        self, directory: DirectoryConfig, request: Optional[RequestContext] = None
    ) -> ActiveDirectoryConfig:
        """
        Store a directory configuration as the active one.

        Args:
            directory: Configuration proven by a successful login
            request: Request whose deadline and cancellation gate the write

        Returns:
            The record as written

        Raises:
            PersistenceError: Missing record, concurrent update or store failure
            RequestTimeout: The request expired or was cancelled before the write
        """
        stored = self.load()
        record = ActiveDirectoryConfig(
            metadata=stored.metadata,
            directory=directory,
            api_version=API_VERSION,
            kind=AUTH_CONFIG_KIND,
            type=ACTIVE_DIRECTORY_CONFIG_TYPE,
        )
        return self._write(record, request)

    def disable(self, request: Optional[RequestContext] = None) -> ActiveDirectoryConfig:
        """
        Turn the provider off, leaving every other setting as stored.

        Raises:
            PersistenceError: Missing record, concurrent update or store failure
            RequestTimeout: The request expired or was cancelled before the write
        """
        stored = self.load()
        record = attrs.evolve(stored, directory=attrs.evolve(stored.directory, enabled=False))
        return self._write(record, request)

    def _write(
        self, record: ActiveDirectoryConfig, request: Optional[RequestContext] = None
    ) -> ActiveDirectoryConfig:
        # The read may have outlived the request; an abandoned request must
        # not reach the store.
        if request is not None:
            request.check("config update")
        self._logger.debug(
            "updating_config",
            name=self.record_name,
            resource_version=record.metadata.resource_version,
            enabled=record.enabled,
        )
        try:
            written = self.store.update(self.record_name, record)
        except ConflictError as e:
            self._logger.warning("config_update_conflict", name=self.record_name, error=str(e))
            raise PersistenceError(
                f"Failed to save {self.record_name} config: {e}", code=409
            ) from e
        except StoreError as e:
            self._logger.error("config_update_failed", name=self.record_name, error=str(e))
            raise PersistenceError(f"Failed to save {self.record_name} config: {e}") from e

        self._logger.info(
            "config_updated",
            name=self.record_name,
            resource_version=written.metadata.resource_version,
            enabled=written.enabled,
        )
        return written
