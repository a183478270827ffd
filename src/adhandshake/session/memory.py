"""
adhandshake Account and Session Collaborators

Interfaces the session issuer depends on, plus in-memory backends.
"""

from __future__ import annotations

import secrets
import threading
from typing import Any, Dict, List, Optional, Protocol, Sequence

import attrs
import structlog

from adhandshake.core.types import (
    Account,
    Caller,
    Principal,
    ProviderInfo,
    Session,
)


class AccountManager(Protocol):
    """Binds resolved principals to local accounts."""

    def set_principal_on_caller_account(self, caller: Caller, principal: Principal) -> Account:
        ...


class SessionManager(Protocol):
    """Mints sessions and attaches them to the caller's transport."""

    def create_session_and_attach(
        self,
        account_name: str,
        user_principal: Principal,
        group_principals: Sequence[Principal],
        provider_info: ProviderInfo,
        ttl: int,
        description: str,
        caller: Caller,
    ) -> Session:
        ...


class AccountBindingError(Exception):
    """A principal could not be bound to the caller's account."""

    pass


@attrs.define
class InMemoryAccountManager:
    """
    In-memory AccountManager.

    A principal id may belong to one account only; binding it to a second
    account is refused.
    """

    _accounts: Dict[str, Account] = attrs.Factory(dict)
    _lock: Any = attrs.Factory(threading.Lock)
    _logger: Any = attrs.Factory(lambda: structlog.get_logger())

    def add_account(self, name: str) -> Account:
        with self._lock:
            account = self._accounts.setdefault(name, Account(name=name))
        return account

    def get_account(self, name: str) -> Optional[Account]:
        with self._lock:
            return self._accounts.get(name)

    def set_principal_on_caller_account(self, caller: Caller, principal: Principal) -> Account:
        with self._lock:
            account = self._accounts.get(caller.account_name)
            if account is None:
                raise AccountBindingError(f"account {caller.account_name!r} not found")

            for other in self._accounts.values():
                if other.name != account.name and principal.id in other.principal_ids:
                    raise AccountBindingError(
                        f"principal {principal.id} is already bound to account {other.name!r}"
                    )

            if principal.id not in account.principal_ids:
                account = attrs.evolve(
                    account, principal_ids=account.principal_ids + (principal.id,)
                )
                self._accounts[account.name] = account

        self._logger.info("principal_bound", account=account.name, principal=principal.id)
        return account


@attrs.define
class InMemorySessionManager:
    """In-memory SessionManager issuing random opaque tokens."""

    token_bytes: int = 32

    _sessions: List[Session] = attrs.Factory(list)
    _lock: Any = attrs.Factory(threading.Lock)
    _logger: Any = attrs.Factory(lambda: structlog.get_logger())

    @property
    def sessions(self) -> List[Session]:
        with self._lock:
            return list(self._sessions)

    def create_session_and_attach(
        self,
        account_name: str,
        user_principal: Principal,
        group_principals: Sequence[Principal],
        provider_info: ProviderInfo,
        ttl: int,
        description: str,
        caller: Caller,
    ) -> Session:
        session = Session(
            token=secrets.token_urlsafe(self.token_bytes),
            account_name=account_name,
            user_principal=user_principal,
            group_principals=tuple(group_principals),
            provider_info=provider_info,
            ttl=ttl,
            description=description,
        )
        with self._lock:
            self._sessions.append(session)
        caller.attach_session(session)
        self._logger.info(
            "session_created",
            account=account_name,
            principal=user_principal.id,
            ttl=ttl,
        )
        return session
