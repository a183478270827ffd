"""
adhandshake Handshake Module

Components:
- types: States, events and context of the handshake state machine
- orchestrator: TestAndApply pipeline and its dependencies
- actions: Action dispatch (testAndApply, disable)
"""

from adhandshake.handshake.types import HandshakeState
from adhandshake.handshake.orchestrator import (
    HANDSHAKE_TRANSITIONS,
    HandshakeDependencies,
    HandshakeStateMachine,
    TestAndApply,
)
from adhandshake.handshake.actions import ActionResponse, AuthConfigActions

__all__ = [
    "HandshakeState",
    "HandshakeStateMachine",
    "HANDSHAKE_TRANSITIONS",
    "HandshakeDependencies",
    "TestAndApply",
    "ActionResponse",
    "AuthConfigActions",
]
