"""
adhandshake Core Types

Data model for the test-and-apply handshake: the proposed configuration,
the persisted record, resolved principals and issued sessions.

Design Principles:
- Immutable: value types use frozen attrs
- Validated: constraints enforced at construction
- Transient: credentials and trust material never leave a request
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple

import attrs
from attrs import field, validators


PROVIDER_NAME = "activedirectory"
USER_PRINCIPAL_SCHEME = "activedirectory_user"
GROUP_PRINCIPAL_SCHEME = "activedirectory_group"

API_VERSION = "management.cattle.io/v3"
AUTH_CONFIG_KIND = "AuthConfig"
ACTIVE_DIRECTORY_CONFIG_TYPE = "activeDirectoryConfig"


# =============================================================================
# ENUMS
# =============================================================================


class PrincipalKind(Enum):
    """Kind of resolved identity."""

    USER = "user"
    GROUP = "group"

    @property
    def scheme(self) -> str:
        """Principal id scheme for this kind."""
        if self is PrincipalKind.USER:
            return USER_PRINCIPAL_SCHEME
        return GROUP_PRINCIPAL_SCHEME


class AccessMode(Enum):
    """Who may log in once the provider is enabled."""

    UNRESTRICTED = "unrestricted"
    REQUIRED = "required"
    RESTRICTED = "restricted"


# =============================================================================
# CONFIGURATION TYPES
# =============================================================================


def _positive(instance: Any, attribute: attrs.Attribute, value: int) -> None:
    if value <= 0:
        raise ValueError(f"{attribute.name} must be positive, got {value}")


@attrs.define(frozen=True, slots=True)
class DirectoryConfig:
    """
    Directory connection parameters.

    This is the subset of a proposed configuration that gets persisted.
    Defaults match a stock Active Directory schema.

    INVARIANT: port and connection_timeout are positive
    """

    servers: Tuple[str, ...] = field(factory=tuple, converter=tuple)
    port: int = field(default=389, validator=[validators.instance_of(int), _positive])
    tls: bool = False
    start_tls: bool = False
    certificate: str = ""
    # milliseconds
    connection_timeout: int = field(
        default=5000, validator=[validators.instance_of(int), _positive]
    )
    default_login_domain: str = ""
    service_account_username: str = ""
    service_account_password: str = field(default="", repr=False)
    user_search_base: str = ""
    user_search_filter: str = ""
    user_login_attribute: str = "sAMAccountName"
    user_object_class: str = "person"
    user_name_attribute: str = "name"
    user_enabled_attribute: str = "userAccountControl"
    user_disabled_bit_mask: int = 2
    group_search_base: str = ""
    group_object_class: str = "group"
    group_name_attribute: str = "name"
    group_dn_attribute: str = "distinguishedName"
    nested_group_membership_enabled: bool = False
    access_mode: AccessMode = field(
        default=AccessMode.UNRESTRICTED, converter=AccessMode
    )
    allowed_principal_ids: Tuple[str, ...] = field(factory=tuple, converter=tuple)
    enabled: bool = False

    @property
    def server(self) -> str:
        """The single configured server."""
        return self.servers[0]

    @property
    def connection_timeout_seconds(self) -> float:
        return self.connection_timeout / 1000.0


@attrs.define(frozen=True, slots=True)
class Credentials:
    """Login credentials scoped to a single handshake."""

    username: str = field(validator=validators.instance_of(str))
    password: str = field(validator=validators.instance_of(str), repr=False)


@attrs.define(frozen=True, slots=True)
class ProposedConfig:
    """
    Candidate configuration submitted for test-and-apply.

    Transient: only ``directory`` (with ``enabled`` stamped on it) is ever
    persisted, and only after authentication succeeded.
    """

    directory: DirectoryConfig
    enabled: bool = False

    def to_commit(self) -> DirectoryConfig:
        """Directory config as it will be stored."""
        return attrs.evolve(self.directory, enabled=self.enabled)


@attrs.define(frozen=True, slots=True)
class ObjectMeta:
    """Identity and versioning metadata of a stored record."""

    name: str = field(validator=[validators.instance_of(str), validators.min_len(1)])
    resource_version: str = "0"
    uid: str = ""
    creation_timestamp: Optional[datetime] = None


@attrs.define(frozen=True, slots=True)
class ActiveDirectoryConfig:
    """
    Persisted provider configuration record.

    INVARIANT: at most one record per provider name; updates keep the
    stored metadata.
    """

    metadata: ObjectMeta
    directory: DirectoryConfig = field(factory=DirectoryConfig)
    api_version: str = API_VERSION
    kind: str = AUTH_CONFIG_KIND
    type: str = ACTIVE_DIRECTORY_CONFIG_TYPE

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def enabled(self) -> bool:
        return self.directory.enabled


# =============================================================================
# IDENTITY TYPES
# =============================================================================


@attrs.define(frozen=True, slots=True)
class Principal:
    """
    Resolved identity returned by a directory login.

    Format of id: <scheme>://<distinguished name>
    (e.g., activedirectory_user://CN=jdoe,OU=Users,DC=example,DC=com)

    INVARIANT: id is non-empty
    """

    id: str = field(validator=[validators.instance_of(str), validators.min_len(1)])
    kind: PrincipalKind = field(validator=validators.instance_of(PrincipalKind))
    display_name: str = ""
    login_name: str = ""
    provider: str = PROVIDER_NAME
    me: bool = False
    member_of: bool = False

    @classmethod
    def from_dn(
        cls,
        dn: str,
        kind: PrincipalKind,
        display_name: str = "",
        login_name: str = "",
        **kwargs: Any,
    ) -> Principal:
        """Build a principal whose id wraps a distinguished name."""
        return cls(
            id=f"{kind.scheme}://{dn}",
            kind=kind,
            display_name=display_name,
            login_name=login_name,
            **kwargs,
        )

    @property
    def dn(self) -> str:
        """Distinguished name encoded in the id."""
        _, _, dn = self.id.partition("://")
        return dn

    def __str__(self) -> str:
        return self.id


@attrs.define(frozen=True, slots=True)
class ProviderInfo:
    """
    Metadata tagging which provider produced a principal.

    Opaque to session issuance; carried through unchanged.
    """

    provider: str = field(
        default=PROVIDER_NAME,
        validator=[validators.instance_of(str), validators.min_len(1)],
    )
    server: str = ""
    login_domain: str = ""

    def to_dict(self) -> Dict[str, str]:
        data = {"provider": self.provider}
        if self.server:
            data["server"] = self.server
        if self.login_domain:
            data["loginDomain"] = self.login_domain
        return data


@attrs.define(frozen=True, slots=True)
class AuthenticatedIdentity:
    """Successful login: user principal, ordered groups, provider info."""

    user: Principal
    groups: Tuple[Principal, ...] = field(factory=tuple, converter=tuple)
    provider_info: ProviderInfo = field(factory=ProviderInfo)

    def __attrs_post_init__(self) -> None:
        if self.user.kind is not PrincipalKind.USER:
            raise ValueError("Authenticated identity must be a user principal")


# =============================================================================
# ACCOUNT AND SESSION TYPES
# =============================================================================


@attrs.define(frozen=True, slots=True)
class Account:
    """Local account a principal gets bound to."""

    name: str = field(validator=[validators.instance_of(str), validators.min_len(1)])
    principal_ids: Tuple[str, ...] = field(factory=tuple, converter=tuple)


@attrs.define(frozen=True, slots=True)
class Session:
    """
    Session credential bound to an account and a resolved principal.

    ttl is in seconds; 0 means session-scoped (no fixed expiry).

    INVARIANT: expires_at is None exactly when ttl is 0
    """

    token: str = field(repr=False)
    account_name: str
    user_principal: Principal
    group_principals: Tuple[Principal, ...] = field(factory=tuple, converter=tuple)
    provider_info: ProviderInfo = field(factory=ProviderInfo)
    ttl: int = field(default=0, validator=validators.ge(0))
    description: str = ""
    created_at: datetime = field(factory=lambda: datetime.now(timezone.utc))

    @property
    def expires_at(self) -> Optional[datetime]:
        if self.ttl == 0:
            return None
        return self.created_at + timedelta(seconds=self.ttl)

    def is_expired(self, time: Optional[datetime] = None) -> bool:
        """Check if the session has expired at given time (default: now)."""
        expires_at = self.expires_at
        if expires_at is None:
            return False
        if time is None:
            time = datetime.now(timezone.utc)
        return time >= expires_at


@attrs.define
class Caller:
    """
    The requesting identity and its transport.

    A minted session is attached here as a side effect of a successful
    test-and-apply.
    """

    account_name: str
    session: Optional[Session] = None

    def attach_session(self, session: Session) -> None:
        self.session = session
