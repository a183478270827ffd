"""
adhandshake - Validate-then-commit handshake for Active Directory providers

Tests a proposed directory connection configuration against the live
server before persisting it as the active identity-provider configuration.

Pipeline:
- Validate the proposed configuration (exactly one server)
- Build TLS trust anchors from the optional PEM certificate
- Log in against the directory and resolve user and group principals
- Update the stored provider record in place
- Bind the principal to the caller's account and issue a session

Nothing is persisted, and no session is issued, unless the login succeeded
for exactly the configuration being committed.

Example Usage:
    from adhandshake import (
        Caller,
        HandshakeDependencies,
        TestAndApply,
        decode_test_and_apply_input,
    )

    deps = HandshakeDependencies.create(store, accounts, sessions)
    proposed, credentials = decode_test_and_apply_input(request_body)
    result = TestAndApply(deps).run(proposed, credentials, Caller("admin"))
"""

from adhandshake.core.types import (
    ActiveDirectoryConfig,
    AuthenticatedIdentity,
    Caller,
    Credentials,
    DirectoryConfig,
    Principal,
    PrincipalKind,
    ProposedConfig,
    ProviderInfo,
    Session,
)
from adhandshake.core.exceptions import (
    AuthenticationError,
    ErrorKind,
    HandshakeError,
    InternalError,
    PersistenceError,
    RequestTimeout,
    ValidationError,
)
from adhandshake.core.context import RequestContext
from adhandshake.config.schema import decode_test_and_apply_input
from adhandshake.config.settings import HandshakeSettings
from adhandshake.handshake.actions import ActionResponse, AuthConfigActions
from adhandshake.handshake.orchestrator import HandshakeDependencies, TestAndApply

__version__ = "0.1.0"

__all__ = [
    # Main API
    "TestAndApply",
    "HandshakeDependencies",
    "AuthConfigActions",
    "ActionResponse",
    "HandshakeSettings",
    "RequestContext",
    "decode_test_and_apply_input",
    # Types
    "ActiveDirectoryConfig",
    "AuthenticatedIdentity",
    "Caller",
    "Credentials",
    "DirectoryConfig",
    "Principal",
    "PrincipalKind",
    "ProposedConfig",
    "ProviderInfo",
    "Session",
    # Errors
    "ErrorKind",
    "HandshakeError",
    "ValidationError",
    "AuthenticationError",
    "PersistenceError",
    "InternalError",
    "RequestTimeout",
    # Metadata
    "__version__",
]
