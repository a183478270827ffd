"""
adhandshake Settings

Process-level defaults for the handshake, read once at startup.

Environment variables (all optional):
    ADHANDSHAKE_RECORD_NAME          Name of the stored provider record
    ADHANDSHAKE_PROVIDER_NAME        Provider name carried in provider info
    ADHANDSHAKE_SESSION_TTL          Session lifetime in seconds (0 = session-scoped)
    ADHANDSHAKE_SESSION_DESCRIPTION  Description stored on issued sessions
    ADHANDSHAKE_REQUEST_TIMEOUT      Per-request deadline in seconds (empty = none)
"""

from __future__ import annotations

import os
from typing import Mapping, Optional

import attrs
from attrs import field, validators

from adhandshake.core.exceptions import ValidationError
from adhandshake.core.types import PROVIDER_NAME

ENV_PREFIX = "ADHANDSHAKE_"


def _optional_float(value: Optional[str]) -> Optional[float]:
    if value is None or not value.strip():
        return None
    return float(value)


@attrs.define(frozen=True)
class HandshakeSettings:
    """
    Handshake configuration.

    Attributes:
        record_name: Name of the stored configuration record
        provider_name: Provider name reported in provider info
        session_ttl: Lifetime of issued sessions in seconds, 0 for none
        session_description: Description attached to issued sessions
        request_timeout: Default request deadline in seconds
    """

    record_name: str = field(default=PROVIDER_NAME, validator=validators.min_len(1))
    provider_name: str = field(default=PROVIDER_NAME, validator=validators.min_len(1))
    session_ttl: int = field(default=0, validator=validators.ge(0))
    session_description: str = "Token via AD Configuration"
    request_timeout: Optional[float] = field(
        default=None,
        validator=validators.optional(validators.gt(0)),
    )

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> HandshakeSettings:
        """
        Build settings from ``ADHANDSHAKE_*`` environment variables.

        Raises:
            ValidationError: If a variable does not parse
        """
        env = os.environ if environ is None else environ
        kwargs = {}

        try:
            if f"{ENV_PREFIX}RECORD_NAME" in env:
                kwargs["record_name"] = env[f"{ENV_PREFIX}RECORD_NAME"]
            if f"{ENV_PREFIX}PROVIDER_NAME" in env:
                kwargs["provider_name"] = env[f"{ENV_PREFIX}PROVIDER_NAME"]
            if f"{ENV_PREFIX}SESSION_TTL" in env:
                kwargs["session_ttl"] = int(env[f"{ENV_PREFIX}SESSION_TTL"])
            if f"{ENV_PREFIX}SESSION_DESCRIPTION" in env:
                kwargs["session_description"] = env[f"{ENV_PREFIX}SESSION_DESCRIPTION"]
            if f"{ENV_PREFIX}REQUEST_TIMEOUT" in env:
                kwargs["request_timeout"] = _optional_float(env[f"{ENV_PREFIX}REQUEST_TIMEOUT"])
            return cls(**kwargs)
        except ValueError as e:
            raise ValidationError(f"invalid handshake settings: {e}") from e
