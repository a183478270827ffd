"""
adhandshake Core Module

Foundational types and abstractions used across the handshake.

Components:
- types: Data model (configs, principals, sessions)
- state_machine: Base state machine with invariant checking
- context: Request deadline and cancellation
- exceptions: Error taxonomy
"""

from adhandshake.core.types import (
    ActiveDirectoryConfig,
    Credentials,
    DirectoryConfig,
    ObjectMeta,
    Principal,
    PrincipalKind,
    ProposedConfig,
    ProviderInfo,
    Session,
)
from adhandshake.core.state_machine import StateMachineBase, Transition
from adhandshake.core.context import RequestContext
from adhandshake.core.exceptions import (
    AuthenticationError,
    AuthFailureReason,
    ErrorKind,
    HandshakeError,
    InternalError,
    PersistenceError,
    RequestTimeout,
    ValidationError,
)

__all__ = [
    # Types
    "ActiveDirectoryConfig",
    "Credentials",
    "DirectoryConfig",
    "ObjectMeta",
    "Principal",
    "PrincipalKind",
    "ProposedConfig",
    "ProviderInfo",
    "Session",
    # State Machine
    "StateMachineBase",
    "Transition",
    "RequestContext",
    # Exceptions
    "ErrorKind",
    "HandshakeError",
    "ValidationError",
    "AuthenticationError",
    "AuthFailureReason",
    "PersistenceError",
    "InternalError",
    "RequestTimeout",
]
