"""
adhandshake Handshake Types

States, events and context of the test-and-apply state machine.

State flow:
    VALIDATING -> BUILDING_TRUST -> AUTHENTICATING -> PERSISTING
        -> BINDING_SESSION -> ISSUED

FAILED is reachable from every non-terminal state.
"""

from __future__ import annotations

from enum import Enum, auto
from typing import Optional

import attrs
from attrs import field

from adhandshake.core.exceptions import HandshakeError
from adhandshake.core.types import (
    ActiveDirectoryConfig,
    AuthenticatedIdentity,
    Credentials,
    ProposedConfig,
    Session,
)
from adhandshake.tls.trust import TrustAnchorSet


class HandshakeState(Enum):
    """Test-and-apply pipeline states."""

    VALIDATING = auto()
    BUILDING_TRUST = auto()
    AUTHENTICATING = auto()
    PERSISTING = auto()
    BINDING_SESSION = auto()
    ISSUED = auto()
    FAILED = auto()

    @property
    def is_terminal(self) -> bool:
        return self in (HandshakeState.ISSUED, HandshakeState.FAILED)


@attrs.define
class HandshakeContext:
    """
    Request-scoped handshake data.

    Credentials and trust anchors are dropped once a terminal state is
    reached.
    """

    proposed: ProposedConfig
    credentials: Optional[Credentials] = field(default=None, repr=False)
    trust: Optional[TrustAnchorSet] = field(default=None, repr=False)
    identity: Optional[AuthenticatedIdentity] = None
    record: Optional[ActiveDirectoryConfig] = None
    session: Optional[Session] = None
    error: Optional[HandshakeError] = None
    failed_in: Optional[HandshakeState] = None


# =============================================================================
# EVENTS
# =============================================================================


@attrs.define(frozen=True, slots=True)
class ConfigValidated:
    """Structural checks passed."""

    pass


@attrs.define(frozen=True, slots=True)
class TrustBuilt:
    """Trust anchors ready for the login connection."""

    trust: TrustAnchorSet = field(repr=False)


@attrs.define(frozen=True, slots=True)
class Authenticated:
    """Directory login succeeded."""

    identity: AuthenticatedIdentity


@attrs.define(frozen=True, slots=True)
class ConfigPersisted:
    """Configuration record updated."""

    record: ActiveDirectoryConfig


@attrs.define(frozen=True, slots=True)
class SessionIssued:
    """Principal bound and session attached to the caller."""

    session: Session


@attrs.define(frozen=True, slots=True)
class StepFailed:
    """A step failed; the pipeline stops."""

    error: HandshakeError
    state: HandshakeState
