"""
adhandshake Exception Types

Typed errors for the test-and-apply handshake.

Every error carries its kind as a class attribute and is constructed at
the point of detection. Callers translate errors into protocol responses
by reading ``kind`` and ``status_code``; nothing is inferred later from
the exception's origin.
"""

from enum import Enum, auto
from typing import Optional


class ErrorKind(Enum):
    """Error taxonomy for the handshake."""

    VALIDATION = auto()
    AUTHENTICATION = auto()
    PERSISTENCE = auto()
    INTERNAL = auto()
    TIMEOUT = auto()


class HandshakeError(Exception):
    """Base exception for all adhandshake errors."""

    kind: ErrorKind = ErrorKind.INTERNAL
    default_status: int = 500

    def __init__(self, message: str, code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code if code is not None else self.default_status

    @property
    def status_code(self) -> int:
        """Protocol status this error translates to."""
        return self.code


class ValidationError(HandshakeError):
    """
    Malformed input or unsupported shape.

    Raised before any network call is attempted: zero or multiple servers,
    missing fields, a certificate that does not parse.
    """

    kind = ErrorKind.VALIDATION
    default_status = 422


class AuthFailureReason(Enum):
    """Why a bind attempt was rejected."""

    INVALID_CREDENTIALS = auto()
    SERVICE_ACCOUNT_REJECTED = auto()
    USER_DISABLED = auto()
    SERVER_UNREACHABLE = auto()
    TLS_FAILURE = auto()
    DIRECTORY_ERROR = auto()


class AuthenticationError(HandshakeError):
    """
    Authentication against the directory failed.

    Either the credentials were rejected or the directory could not be
    reached. ``reason`` tells the two apart so that an unreachable server
    is not reported as a user mistake.
    """

    kind = ErrorKind.AUTHENTICATION
    default_status = 401

    def __init__(
        self,
        message: str,
        reason: AuthFailureReason = AuthFailureReason.INVALID_CREDENTIALS,
        code: Optional[int] = None,
    ) -> None:
        if code is None and reason in (
            AuthFailureReason.SERVER_UNREACHABLE,
            AuthFailureReason.TLS_FAILURE,
        ):
            code = 503
        super().__init__(message, code)
        self.reason = reason

    @property
    def is_user_error(self) -> bool:
        """True if retrying with other credentials could succeed."""
        return self.reason in (
            AuthFailureReason.INVALID_CREDENTIALS,
            AuthFailureReason.USER_DISABLED,
            AuthFailureReason.SERVICE_ACCOUNT_REJECTED,
        )


class PersistenceError(HandshakeError):
    """
    Storing the configuration failed after successful authentication.

    The prior stored configuration stays active. Callers retry the whole
    operation; authentication is not cached.
    """

    kind = ErrorKind.PERSISTENCE
    default_status = 500


class InternalError(HandshakeError):
    """Unexpected fault, wrapped with context."""

    kind = ErrorKind.INTERNAL
    default_status = 500


class RequestTimeout(HandshakeError):
    """The request deadline passed or the request was cancelled."""

    kind = ErrorKind.TIMEOUT
    default_status = 504


class InvariantViolation(InternalError):
    """
    Handshake invariant was violated.

    Raised by the state machine when a transition would, for example,
    persist a configuration without an authenticated identity.
    """

    pass


# =============================================================================
# STORE ERRORS
# =============================================================================


class StoreError(Exception):
    """Base for errors raised by object store backends."""

    pass


class RecordNotFound(StoreError):
    """No record exists under the requested name."""

    def __init__(self, name: str) -> None:
        super().__init__(f"record {name!r} not found")
        self.name = name


class ConflictError(StoreError):
    """Optimistic concurrency check failed on update."""

    def __init__(self, name: str, expected: str, actual: str) -> None:
        super().__init__(
            f"record {name!r} was modified concurrently "
            f"(resource version {expected!r}, stored {actual!r})"
        )
        self.name = name
        self.expected = expected
        self.actual = actual
