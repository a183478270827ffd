"""
adhandshake Config Validator

Structural checks on a proposed configuration, run before any network
call is attempted.

Only a single directory server is supported. Several servers are rejected
outright rather than silently using the first one, so callers never assume
failover that does not exist.
"""

from __future__ import annotations

from typing import Any

import attrs
import structlog

from adhandshake.core.exceptions import ValidationError
from adhandshake.core.types import Credentials, ProposedConfig


@attrs.define
class ConfigValidator:
    """Rejects malformed or unsupported proposed configurations."""

    _logger: Any = attrs.Factory(lambda: structlog.get_logger())

    def validate(self, proposed: ProposedConfig) -> None:
        """
        Check a proposed configuration.

        Raises:
            ValidationError: On zero or several servers, a blank server
                address, conflicting TLS settings or no search base
        """
        directory = proposed.directory

        if len(directory.servers) < 1:
            raise self._reject("must supply a server")
        if len(directory.servers) > 1:
            raise self._reject("multiple servers not yet supported")
        if not directory.server.strip():
            raise self._reject("server address must not be blank")
        if directory.tls and directory.start_tls:
            raise self._reject("tls and startTLS are mutually exclusive")
        if not directory.user_search_base and not directory.default_login_domain:
            raise self._reject("must supply userSearchBase or defaultLoginDomain")

    def validate_credentials(self, credentials: Credentials) -> None:
        """
        Check login credentials are present.

        Raises:
            ValidationError: If the username is empty
        """
        if not credentials.username.strip():
            raise self._reject("must supply a username")

    def _reject(self, message: str) -> ValidationError:
        self._logger.info("config_rejected", reason=message)
        return ValidationError(message)
