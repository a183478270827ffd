"""
adhandshake Session Module

Components:
- memory: Account and session collaborator interfaces, in-memory backends
- issuer: SessionIssuer (principal binding and session minting)
"""

from adhandshake.session.memory import (
    AccountManager,
    InMemoryAccountManager,
    InMemorySessionManager,
    SessionManager,
)
from adhandshake.session.issuer import SessionIssuer

__all__ = [
    "AccountManager",
    "SessionManager",
    "InMemoryAccountManager",
    "InMemorySessionManager",
    "SessionIssuer",
]
