"""
adhandshake Auth Config Actions

Action dispatch for the provider's configuration resource. Routing and
request decoding happen outside; this module maps an action name and a
request body to the typed operations and translates errors into protocol
responses.

Actions:
- testAndApply: prove a proposed configuration and commit it
- disable: turn the provider off
"""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Mapping, Optional, Union

import attrs
import structlog
from returns.result import Failure

from adhandshake.config.schema import decode_test_and_apply_input, encode_record
from adhandshake.core.context import RequestContext
from adhandshake.core.exceptions import HandshakeError, PersistenceError
from adhandshake.core.types import Caller
from adhandshake.handshake.orchestrator import TestAndApply

ACTION_TEST_AND_APPLY = "testAndApply"
ACTION_DISABLE = "disable"

# status -> protocol error code
ERROR_CODES = {
    401: "Unauthorized",
    403: "PermissionDenied",
    404: "ActionNotAvailable",
    409: "Conflict",
    422: "InvalidBodyContent",
    500: "ServerError",
    503: "ServiceUnavailable",
    504: "GatewayTimeout",
}

Body = Union[str, bytes, Mapping[str, Any], None]


@attrs.define(frozen=True, slots=True)
class ActionResponse:
    """Protocol-level outcome of an action."""

    status_code: int
    body: Dict[str, Any] = attrs.Factory(dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    @classmethod
    def from_error(cls, error: HandshakeError) -> ActionResponse:
        status = error.status_code
        return cls(
            status_code=status,
            body={
                "type": "error",
                "status": status,
                "code": ERROR_CODES.get(status, "ServerError"),
                "kind": error.kind.name,
                "message": error.message,
            },
        )

    @classmethod
    def not_available(cls, action_name: str) -> ActionResponse:
        return cls(
            status_code=404,
            body={
                "type": "error",
                "status": 404,
                "code": ERROR_CODES[404],
                "message": f"action {action_name!r} not available",
            },
        )


ActionHandler = Callable[[Body, Caller, Optional[RequestContext]], ActionResponse]


@attrs.define
class AuthConfigActions:
    """
    Dispatch table for the provider's configuration actions.

    Example:
        actions = AuthConfigActions(TestAndApply(deps))
        response = actions.handle("testAndApply", request_body, caller)
        send(response.status_code, response.body)
    """

    handshake: TestAndApply

    _logger: Any = attrs.Factory(lambda: structlog.get_logger())

    def available_actions(self) -> List[str]:
        """Action names to advertise on the configuration resource."""
        return sorted(self._table())

    def handle(
        self,
        action_name: str,
        body: Body,
        caller: Caller,
        request: Optional[RequestContext] = None,
    ) -> ActionResponse:
        """
        Run an action by name.

        Unknown names answer 404; handshake errors become error responses
        carrying their status and kind.
        """
        handler = self._table().get(action_name)
        if handler is None:
            self._logger.info("action_not_available", action=action_name)
            return ActionResponse.not_available(action_name)

        self._logger.debug("action_dispatch", action=action_name, caller=caller.account_name)
        try:
            return handler(body, caller, request)
        except HandshakeError as e:
            return ActionResponse.from_error(e)

    def _table(self) -> Dict[str, ActionHandler]:
        return {
            ACTION_TEST_AND_APPLY: self._test_and_apply,
            ACTION_DISABLE: self._disable,
        }

    def _test_and_apply(
        self, body: Body, caller: Caller, request: Optional[RequestContext]
    ) -> ActionResponse:
        proposed, credentials = decode_test_and_apply_input(body if body is not None else b"")
        result = self.handshake.run(proposed, credentials, caller, request)
        if isinstance(result, Failure):
            return ActionResponse.from_error(result.failure())

        session = result.unwrap()
        return ActionResponse(
            status_code=200,
            body={
                "type": "testAndApplyOutput",
                "enabled": proposed.enabled,
                "principalId": session.user_principal.id,
                "groupPrincipalIds": [g.id for g in session.group_principals],
                "provider": session.provider_info.to_dict(),
            },
        )

    def _disable(
        self, body: Body, caller: Caller, request: Optional[RequestContext]
    ) -> ActionResponse:
        persister = self.handshake.deps.persister
        try:
            if request is None:
                record = persister.disable()
            else:
                record = request.run("disable", persister.disable, request)
        except HandshakeError:
            raise
        except Exception as e:
            self._logger.error("provider_disable_failed", error=str(e))
            raise PersistenceError(f"Failed to save {persister.record_name} config: {e}") from e
        self._logger.info("provider_disabled", name=record.name, caller=caller.account_name)
        return ActionResponse(status_code=200, body=encode_record(record))
