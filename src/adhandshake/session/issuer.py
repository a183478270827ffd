"""
adhandshake Session Issuer

Binds the resolved principal to the caller's account, then mints a session
carrying the principal, its groups and the provider metadata.
"""

from __future__ import annotations

from typing import Any

import attrs
import structlog

from adhandshake.core.exceptions import HandshakeError, InternalError
from adhandshake.core.types import AuthenticatedIdentity, Caller, Session
from adhandshake.session.memory import AccountManager, SessionManager

DEFAULT_SESSION_DESCRIPTION = "Token via AD Configuration"


@attrs.define
class SessionIssuer:
    """
    Principal binding and session minting.

    Attributes:
        accounts: Account collaborator
        sessions: Session collaborator
    """

    accounts: AccountManager
    sessions: SessionManager

    _logger: Any = attrs.Factory(lambda: structlog.get_logger())

    def bind_and_issue(
        self,
        caller: Caller,
        identity: AuthenticatedIdentity,
        ttl: int = 0,
        description: str = DEFAULT_SESSION_DESCRIPTION,
    ) -> Session:
        """
        Bind identity.user to the caller's account and issue a session.

        Args:
            caller: Requesting identity and transport
            identity: Result of a successful directory login
            ttl: Session lifetime in seconds, 0 for session-scoped
            description: Stored with the session

        Returns:
            The issued session, also attached to the caller

        Raises:
            InternalError: If binding or minting fails
        """
        try:
            account = self.accounts.set_principal_on_caller_account(caller, identity.user)
        except HandshakeError:
            raise
        except Exception as e:
            self._logger.error(
                "principal_binding_failed",
                account=caller.account_name,
                principal=identity.user.id,
                error=str(e),
            )
            raise InternalError(f"Failed to bind principal to account: {e}") from e

        try:
            session = self.sessions.create_session_and_attach(
                account.name,
                identity.user,
                identity.groups,
                identity.provider_info,
                ttl,
                description,
                caller,
            )
        except HandshakeError:
            raise
        except Exception as e:
            self._logger.error("session_creation_failed", account=account.name, error=str(e))
            raise InternalError(f"Failed to create session: {e}") from e

        return session
