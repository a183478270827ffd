"""
adhandshake Test-and-Apply Orchestrator

Sequences the handshake: validate, build trust, authenticate, persist,
bind the principal and issue a session. The first failure stops the
pipeline.

Guarantees (enforced as state machine invariants):
1. Persistence happens only after a successful login
2. The committed configuration is exactly the one that was proven
3. A session is issued only after persistence succeeded
4. Credentials and trust anchors do not outlive the request

There is no partial commit: if persistence fails after a successful
login, the prior stored configuration stays active and no session is
issued. Nothing is retried.
"""

from __future__ import annotations

from typing import Any, Dict, Optional, Tuple

import attrs
import structlog
from returns.result import Failure, Result, Success

from adhandshake.ad.authenticator import DirectoryAuthenticator
from adhandshake.config.settings import HandshakeSettings
from adhandshake.config.validator import ConfigValidator
from adhandshake.core.context import RequestContext
from adhandshake.core.exceptions import (
    HandshakeError,
    InternalError,
    PersistenceError,
)
from adhandshake.core.state_machine import StateMachineBase, TransitionEntry, verify_trace
from adhandshake.core.types import Caller, Credentials, ProposedConfig, Session
from adhandshake.handshake.types import (
    Authenticated,
    ConfigPersisted,
    ConfigValidated,
    HandshakeContext,
    HandshakeState,
    SessionIssued,
    StepFailed,
    TrustBuilt,
)
from adhandshake.session.issuer import SessionIssuer
from adhandshake.session.memory import AccountManager, SessionManager
from adhandshake.store.memory import ObjectStore
from adhandshake.store.persister import ConfigPersister
from adhandshake.tls.trust import TrustBuilder

logger = structlog.get_logger()


# =============================================================================
# INVARIANTS
# =============================================================================


def persist_requires_authentication(state: HandshakeState, ctx: HandshakeContext) -> bool:
    """Nothing is persisted for an unproven configuration."""
    if state in (HandshakeState.PERSISTING, HandshakeState.BINDING_SESSION, HandshakeState.ISSUED):
        return ctx.identity is not None
    return True


def committed_config_was_proven(state: HandshakeState, ctx: HandshakeContext) -> bool:
    """The stored directory config is the one the login ran against."""
    if ctx.record is None:
        return True
    return ctx.record.directory == ctx.proposed.to_commit()


def session_requires_persistence(state: HandshakeState, ctx: HandshakeContext) -> bool:
    if state in (HandshakeState.BINDING_SESSION, HandshakeState.ISSUED):
        if ctx.record is None:
            return False
    if state == HandshakeState.ISSUED:
        return ctx.session is not None
    return ctx.session is None


def terminal_drops_secrets(state: HandshakeState, ctx: HandshakeContext) -> bool:
    if state.is_terminal:
        return ctx.credentials is None and ctx.trust is None
    return True


def failure_carries_error(state: HandshakeState, ctx: HandshakeContext) -> bool:
    if state == HandshakeState.FAILED:
        return ctx.error is not None and ctx.session is None
    return ctx.error is None


# =============================================================================
# STATE MACHINE
# =============================================================================


_NON_TERMINAL = (
    HandshakeState.VALIDATING,
    HandshakeState.BUILDING_TRUST,
    HandshakeState.AUTHENTICATING,
    HandshakeState.PERSISTING,
    HandshakeState.BINDING_SESSION,
)

# (from_state, event) -> to_state, checked against every finished trace
HANDSHAKE_TRANSITIONS: Dict[Tuple[str, str], str] = {
    ("VALIDATING", "ConfigValidated"): "BUILDING_TRUST",
    ("BUILDING_TRUST", "TrustBuilt"): "AUTHENTICATING",
    ("AUTHENTICATING", "Authenticated"): "PERSISTING",
    ("PERSISTING", "ConfigPersisted"): "BINDING_SESSION",
    ("BINDING_SESSION", "SessionIssued"): "ISSUED",
    **{(state.name, "StepFailed"): "FAILED" for state in _NON_TERMINAL},
}


@attrs.define
class HandshakeStateMachine(
    StateMachineBase[HandshakeState, Any, HandshakeContext]
):
    """
    Test-and-apply state machine.

    One instance per request; it is discarded with the request.
    """

    def __attrs_post_init__(self) -> None:
        self.add_invariant("persist_requires_authentication", persist_requires_authentication)
        self.add_invariant("committed_config_was_proven", committed_config_was_proven)
        self.add_invariant("session_requires_persistence", session_requires_persistence)
        self.add_invariant("terminal_drops_secrets", terminal_drops_secrets)
        self.add_invariant("failure_carries_error", failure_carries_error)

    @classmethod
    def start(cls, proposed: ProposedConfig, credentials: Credentials) -> HandshakeStateMachine:
        return cls(
            _state=HandshakeState.VALIDATING,
            _context=HandshakeContext(proposed=proposed, credentials=credentials),
        )

    def initial_state(self) -> HandshakeState:
        return HandshakeState.VALIDATING

    def transition_table(
        self,
    ) -> Dict[Tuple[HandshakeState, type], TransitionEntry]:
        table: Dict[Tuple[HandshakeState, type], TransitionEntry] = {
            (HandshakeState.VALIDATING, ConfigValidated): (
                HandshakeState.BUILDING_TRUST,
                self._handle_validated,
            ),
            (HandshakeState.BUILDING_TRUST, TrustBuilt): (
                HandshakeState.AUTHENTICATING,
                self._handle_trust_built,
            ),
            (HandshakeState.AUTHENTICATING, Authenticated): (
                HandshakeState.PERSISTING,
                self._handle_authenticated,
            ),
            (HandshakeState.PERSISTING, ConfigPersisted): (
                HandshakeState.BINDING_SESSION,
                self._handle_persisted,
            ),
            (HandshakeState.BINDING_SESSION, SessionIssued): (
                HandshakeState.ISSUED,
                self._handle_session_issued,
            ),
        }
        for state in _NON_TERMINAL:
            table[(state, StepFailed)] = (HandshakeState.FAILED, self._handle_failed)
        return table

    def outcome(self) -> Result[Session, HandshakeError]:
        """
        Success(session) once issued, Failure(error) otherwise.

        A trace that does not follow HANDSHAKE_TRANSITIONS is never reported
        as a success.
        """
        errors = verify_trace(self.get_trace(), HANDSHAKE_TRANSITIONS)
        if errors:
            self._logger.error("handshake_trace_rejected", errors=errors)
            return Failure(InternalError(f"handshake trace rejected: {errors[0]}"))
        if self.state == HandshakeState.ISSUED and self.context.session is not None:
            return Success(self.context.session)
        if self.state == HandshakeState.FAILED and self.context.error is not None:
            return Failure(self.context.error)
        return Failure(InternalError(f"handshake stopped in state {self.state.name}"))

    @staticmethod
    def _handle_validated(event: ConfigValidated, ctx: HandshakeContext) -> HandshakeContext:
        return ctx

    @staticmethod
    def _handle_trust_built(event: TrustBuilt, ctx: HandshakeContext) -> HandshakeContext:
        return attrs.evolve(ctx, trust=event.trust)

    @staticmethod
    def _handle_authenticated(event: Authenticated, ctx: HandshakeContext) -> HandshakeContext:
        return attrs.evolve(ctx, identity=event.identity)

    @staticmethod
    def _handle_persisted(event: ConfigPersisted, ctx: HandshakeContext) -> HandshakeContext:
        return attrs.evolve(ctx, record=event.record)

    @staticmethod
    def _handle_session_issued(event: SessionIssued, ctx: HandshakeContext) -> HandshakeContext:
        return attrs.evolve(ctx, session=event.session, credentials=None, trust=None)

    @staticmethod
    def _handle_failed(event: StepFailed, ctx: HandshakeContext) -> HandshakeContext:
        return attrs.evolve(
            ctx,
            error=event.error,
            failed_in=event.state,
            session=None,
            credentials=None,
            trust=None,
        )


# =============================================================================
# DEPENDENCIES
# =============================================================================


@attrs.define(frozen=True)
class HandshakeDependencies:
    """
    Collaborators of the handshake, constructed once and shared.

    None of them keeps per-request state.
    """

    validator: ConfigValidator
    trust_builder: TrustBuilder
    authenticator: DirectoryAuthenticator
    persister: ConfigPersister
    issuer: SessionIssuer
    settings: HandshakeSettings = attrs.Factory(HandshakeSettings)

    @classmethod
    def create(
        cls,
        store: ObjectStore,
        accounts: AccountManager,
        sessions: SessionManager,
        settings: Optional[HandshakeSettings] = None,
        authenticator: Optional[DirectoryAuthenticator] = None,
    ) -> HandshakeDependencies:
        """
        Wire the default components around the given collaborators.

        Args:
            store: Object store holding the provider record
            accounts: Account collaborator
            sessions: Session collaborator
            settings: Handshake settings (defaults if None)
            authenticator: Directory authenticator override
        """
        settings = settings or HandshakeSettings()
        return cls(
            validator=ConfigValidator(),
            trust_builder=TrustBuilder(),
            authenticator=authenticator
            or DirectoryAuthenticator(provider_name=settings.provider_name),
            persister=ConfigPersister(store=store, record_name=settings.record_name),
            issuer=SessionIssuer(accounts=accounts, sessions=sessions),
            settings=settings,
        )


# =============================================================================
# ORCHESTRATOR
# =============================================================================


@attrs.define
class TestAndApply:
    """
    Test a proposed directory configuration live, then commit it.

    Example:
        deps = HandshakeDependencies.create(store, accounts, sessions)
        result = TestAndApply(deps).run(proposed, credentials, caller)
        if isinstance(result, Failure):
            error = result.failure()
            respond(error.status_code, error.message)
    """

    __test__ = False  # not a pytest test class

    deps: HandshakeDependencies

    _logger: Any = attrs.Factory(lambda: structlog.get_logger())

    def run(
        self,
        proposed: ProposedConfig,
        credentials: Credentials,
        caller: Caller,
        request: Optional[RequestContext] = None,
    ) -> Result[Session, HandshakeError]:
        """
        Run the handshake.

        Returns:
            Success(session) if the configuration was proven, stored and a
            session attached to the caller; Failure(error) otherwise
        """
        return self.execute(proposed, credentials, caller, request).outcome()

    def execute(
        self,
        proposed: ProposedConfig,
        credentials: Credentials,
        caller: Caller,
        request: Optional[RequestContext] = None,
    ) -> HandshakeStateMachine:
        """
        Run the handshake and return its request-scoped state machine.

        The machine ends in ISSUED or FAILED and holds the full trace.
        """
        settings = self.deps.settings
        if request is None:
            request = RequestContext.with_timeout(settings.request_timeout)

        machine = HandshakeStateMachine.start(proposed, credentials)
        self._logger.info(
            "handshake_start",
            server=proposed.directory.servers[0] if len(proposed.directory.servers) == 1 else None,
            servers=len(proposed.directory.servers),
            enabled=proposed.enabled,
            caller=caller.account_name,
        )

        try:
            self.deps.validator.validate(proposed)
            self.deps.validator.validate_credentials(credentials)
            self._advance(machine, ConfigValidated())

            request.check("building trust")
            trust = self.deps.trust_builder.build(proposed.directory.certificate)
            self._advance(machine, TrustBuilt(trust=trust))

            identity = request.run(
                "authentication",
                self.deps.authenticator.login,
                credentials,
                proposed.directory,
                trust,
                timeout=request.remaining(),
            )
            self._advance(machine, Authenticated(identity=identity))

            record = request.run(
                "persistence", self.deps.persister.apply, proposed.to_commit(), request
            )
            self._advance(machine, ConfigPersisted(record=record))

            request.check("session issuance")
            session = self.deps.issuer.bind_and_issue(
                caller,
                identity,
                ttl=settings.session_ttl,
                description=settings.session_description,
            )
            self._advance(machine, SessionIssued(session=session))

        except HandshakeError as e:
            self._fail(machine, e)
        except Exception as e:
            self._fail(machine, self._wrap(machine.state, e))

        if machine.state == HandshakeState.ISSUED:
            self._logger.info(
                "handshake_complete",
                caller=caller.account_name,
                principal=machine.context.identity.user.id if machine.context.identity else None,
                enabled=proposed.enabled,
            )
        return machine

    @staticmethod
    def _wrap(state: HandshakeState, error: Exception) -> HandshakeError:
        if state == HandshakeState.PERSISTING:
            return PersistenceError(f"Failed to save activedirectory config: {error}")
        if state == HandshakeState.AUTHENTICATING:
            return InternalError(f"server error while authenticating: {error}")
        return InternalError(f"{state.name.lower()} failed: {error}")

    def _advance(self, machine: HandshakeStateMachine, event: Any) -> None:
        result = machine.process_event(event)
        if isinstance(result, Failure):
            raise InternalError(f"handshake transition failed: {result.failure()}")

    def _fail(self, machine: HandshakeStateMachine, error: HandshakeError) -> None:
        state = machine.state
        self._logger.warning(
            "handshake_step_failed",
            state=state.name,
            kind=error.kind.name,
            status=error.status_code,
            error=error.message,
        )
        if state.is_terminal:
            return
        result = machine.process_event(StepFailed(error=error, state=state))
        if isinstance(result, Failure):
            self._logger.error("handshake_fail_transition_rejected", error=result.failure())
