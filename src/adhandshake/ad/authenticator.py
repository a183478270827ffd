"""
adhandshake Directory Authenticator

Performs a login against exactly one configured Active Directory / LDAP
server and resolves the authenticated entry into a user principal and its
group principals.

Login sequence:
1. Connect (LDAPS or StartTLS with the request's trust anchors)
2. Bind as the service account
3. Search the user entry by login attribute
4. Reject disabled accounts
5. Bind as the user's DN with the supplied password
6. Resolve group memberships

Error classification:
- Rejected binds, unknown users, disabled users: AuthenticationError
- Unreachable server, TLS failures: AuthenticationError with a reason
  that does not blame the user
- Anything that is not an LDAP failure: InternalError
"""

from __future__ import annotations

from typing import Any, Callable, List, Mapping, Optional, Tuple

import attrs
import structlog
from ldap3 import BASE, NONE, SUBTREE, SYNC, Connection, Server
from ldap3.core.exceptions import (
    LDAPCommunicationError,
    LDAPException,
    LDAPSSLConfigurationError,
    LDAPStartTLSError,
)

from adhandshake.ad import ldap_utils
from adhandshake.core.exceptions import (
    AuthenticationError,
    AuthFailureReason,
    HandshakeError,
    InternalError,
)
from adhandshake.core.types import (
    PROVIDER_NAME,
    AuthenticatedIdentity,
    Credentials,
    DirectoryConfig,
    Principal,
    PrincipalKind,
    ProviderInfo,
)
from adhandshake.tls.trust import TrustAnchorSet

logger = structlog.get_logger()

INVALID_LOGIN_MESSAGE = "invalid username or password"

ServerFactory = Callable[..., Server]
ConnectionFactory = Callable[..., Connection]


def default_server_factory(
    host: str,
    port: int,
    use_ssl: bool,
    tls: Any,
    connect_timeout: Optional[float],
) -> Server:
    return Server(
        host=host,
        port=port,
        use_ssl=use_ssl,
        tls=tls,
        connect_timeout=connect_timeout,
        get_info=NONE,
    )


@attrs.define
class DirectoryAuthenticator:
    """
    Directory login against a single server.

    Attributes:
        provider_name: Provider name reported in provider info
        client_strategy: ldap3 client strategy (MOCK_SYNC in tests)
        server_factory: Builds the ldap3 Server for a connection
        connection_factory: Builds ldap3 Connections on that server

    Example:
        authenticator = DirectoryAuthenticator()
        identity = authenticator.login(
            Credentials("jdoe", "secret"),
            config,
            TrustBuilder().build(config.certificate),
        )
        print(identity.user.id, [g.display_name for g in identity.groups])
    """

    provider_name: str = PROVIDER_NAME
    client_strategy: str = SYNC
    server_factory: ServerFactory = default_server_factory
    connection_factory: ConnectionFactory = Connection

    _logger: Any = attrs.Factory(lambda: structlog.get_logger())

    def login(
        self,
        credentials: Credentials,
        config: DirectoryConfig,
        trust: TrustAnchorSet,
        timeout: Optional[float] = None,
    ) -> AuthenticatedIdentity:
        """
        Authenticate credentials against the configured server.

        Args:
            credentials: Username and password to prove
            config: Directory parameters (exactly one server)
            trust: Trust anchors for LDAPS/StartTLS
            timeout: Remaining request time in seconds, if bounded

        Returns:
            AuthenticatedIdentity with user, groups and provider info

        Raises:
            AuthenticationError: Credentials rejected or server unreachable
            InternalError: Unexpected fault while authenticating
        """
        host = config.server
        io_timeout = config.connection_timeout_seconds
        if timeout is not None:
            io_timeout = min(io_timeout, timeout)

        self._logger.info(
            "directory_login_start",
            server=host,
            port=config.port,
            tls=config.tls,
            start_tls=config.start_tls,
            username=credentials.username,
            custom_trust=not trust.is_system_default,
        )

        if not credentials.password:
            # An empty password would be an unauthenticated bind, which
            # most servers accept.
            raise AuthenticationError(INVALID_LOGIN_MESSAGE)

        server = self.server_factory(
            host=host,
            port=config.port,
            use_ssl=config.tls,
            tls=trust.ldap_tls(host),
            connect_timeout=io_timeout,
        )

        lookup: Optional[Connection] = None
        try:
            lookup = self._bind_lookup(server, config, io_timeout, credentials)
            user_dn, attributes = self._find_user(lookup, config, credentials.username)

            if ldap_utils.is_disabled(attributes, config):
                self._logger.info("directory_login_user_disabled", user_dn=user_dn)
                raise AuthenticationError(
                    "user is disabled", AuthFailureReason.USER_DISABLED, code=403
                )

            self._verify_password(server, config, io_timeout, user_dn, credentials.password)

            user = Principal.from_dn(
                user_dn,
                PrincipalKind.USER,
                display_name=ldap_utils.first_value(attributes, config.user_name_attribute),
                login_name=ldap_utils.first_value(
                    attributes, config.user_login_attribute, ldap_utils.login_name(credentials.username)
                ),
                provider=self.provider_name,
                me=True,
            )
            groups = self._resolve_groups(lookup, config, user_dn, attributes)

        except HandshakeError:
            raise
        except (LDAPStartTLSError, LDAPSSLConfigurationError) as e:
            self._logger.warning("directory_login_tls_failed", server=host, error=str(e))
            raise AuthenticationError(
                f"TLS negotiation with {host} failed: {e}", AuthFailureReason.TLS_FAILURE
            ) from e
        except LDAPCommunicationError as e:
            self._logger.warning("directory_login_unreachable", server=host, error=str(e))
            reason = (
                AuthFailureReason.TLS_FAILURE
                if "ssl" in str(e).lower()
                else AuthFailureReason.SERVER_UNREACHABLE
            )
            raise AuthenticationError(f"could not reach {host}: {e}", reason) from e
        except LDAPException as e:
            self._logger.warning("directory_login_ldap_error", server=host, error=str(e))
            raise AuthenticationError(
                f"directory error: {e}", AuthFailureReason.DIRECTORY_ERROR
            ) from e
        except Exception as e:
            self._logger.error("directory_login_internal_error", server=host, error=str(e))
            raise InternalError(f"server error while authenticating: {e}") from e
        finally:
            _unbind(lookup)

        self._logger.info(
            "directory_login_success",
            server=host,
            user=user.id,
            groups=len(groups),
        )
        return AuthenticatedIdentity(
            user=user,
            groups=groups,
            provider_info=ProviderInfo(
                provider=self.provider_name,
                server=host,
                login_domain=config.default_login_domain,
            ),
        )

    # -------------------------------------------------------------------------
    # Connection handling
    # -------------------------------------------------------------------------

    def _connect(
        self,
        server: Server,
        config: DirectoryConfig,
        timeout: float,
        user: str,
        password: str,
    ) -> Connection:
        """Create an unbound connection, upgraded with StartTLS if configured."""
        conn = self.connection_factory(
            server,
            user=user,
            password=password,
            client_strategy=self.client_strategy,
            raise_exceptions=False,
            receive_timeout=timeout,
        )
        if config.start_tls and not config.tls:
            conn.open()
            if not conn.start_tls():
                description = _describe(conn)
                _unbind(conn)
                raise AuthenticationError(
                    f"StartTLS with {config.server} failed: {description}",
                    AuthFailureReason.TLS_FAILURE,
                )
        return conn

    def _bind_lookup(
        self,
        server: Server,
        config: DirectoryConfig,
        timeout: float,
        credentials: Credentials,
    ) -> Connection:
        """
        Bind the search connection.

        Binds as the service account if one is configured, otherwise as the
        user being tested.
        """
        if config.service_account_username:
            name = ldap_utils.qualify_account_name(
                config.service_account_username, config.default_login_domain
            )
            password = config.service_account_password
            reason = AuthFailureReason.SERVICE_ACCOUNT_REJECTED
        else:
            name = ldap_utils.qualify_account_name(
                credentials.username, config.default_login_domain
            )
            password = credentials.password
            reason = AuthFailureReason.INVALID_CREDENTIALS

        conn = self._connect(server, config, timeout, name, password)
        if conn.bind():
            return conn

        code = _result_code(conn)
        description = _describe(conn)
        _unbind(conn)
        self._logger.info("directory_bind_rejected", bind_name=name, result=code)
        if code == ldap_utils.RESULT_INVALID_CREDENTIALS:
            if reason is AuthFailureReason.SERVICE_ACCOUNT_REJECTED:
                raise AuthenticationError("service account credentials rejected", reason)
            raise AuthenticationError(INVALID_LOGIN_MESSAGE, reason)
        raise AuthenticationError(
            f"bind failed: {description}", AuthFailureReason.DIRECTORY_ERROR
        )

    def _find_user(
        self, conn: Connection, config: DirectoryConfig, username: str
    ) -> Tuple[str, Mapping[str, Any]]:
        search_base = ldap_utils.user_search_base(config)
        search_filter = ldap_utils.build_user_filter(config, username)
        attributes = [
            a
            for a in (
                config.user_login_attribute,
                config.user_name_attribute,
                config.user_enabled_attribute,
                "memberOf",
            )
            if a
        ]

        found = conn.search(
            search_base=search_base,
            search_filter=search_filter,
            search_scope=SUBTREE,
            attributes=attributes,
            size_limit=2,
        )
        entries = list(ldap_utils.search_entries(conn.response))

        if not found or len(entries) != 1:
            code = _result_code(conn)
            # sizeLimitExceeded means more than one match
            if code not in (
                ldap_utils.RESULT_SUCCESS,
                ldap_utils.RESULT_SIZE_LIMIT_EXCEEDED,
                ldap_utils.RESULT_NO_SUCH_OBJECT,
                None,
            ):
                raise AuthenticationError(
                    f"user search failed: {_describe(conn)}", AuthFailureReason.DIRECTORY_ERROR
                )
            # Zero or ambiguous matches look the same to the caller.
            self._logger.info(
                "directory_user_not_found",
                search_base=search_base,
                matches=len(entries),
            )
            raise AuthenticationError(INVALID_LOGIN_MESSAGE)

        return entries[0]

    def _verify_password(
        self,
        server: Server,
        config: DirectoryConfig,
        timeout: float,
        user_dn: str,
        password: str,
    ) -> None:
        conn: Optional[Connection] = None
        try:
            conn = self._connect(server, config, timeout, user_dn, password)
            if conn.bind():
                return
            code = _result_code(conn)
            self._logger.info("directory_user_bind_rejected", user_dn=user_dn, result=code)
            if code == ldap_utils.RESULT_INVALID_CREDENTIALS:
                raise AuthenticationError(INVALID_LOGIN_MESSAGE)
            raise AuthenticationError(
                f"bind failed: {_describe(conn)}", AuthFailureReason.DIRECTORY_ERROR
            )
        finally:
            _unbind(conn)

    # -------------------------------------------------------------------------
    # Group resolution
    # -------------------------------------------------------------------------

    def _resolve_groups(
        self,
        conn: Connection,
        config: DirectoryConfig,
        user_dn: str,
        attributes: Mapping[str, Any],
    ) -> Tuple[Principal, ...]:
        if config.nested_group_membership_enabled:
            found = self._nested_groups(conn, config, user_dn)
        else:
            found = self._direct_groups(conn, config, attributes)

        groups: List[Principal] = []
        seen = set()
        for dn, name in found:
            key = dn.lower()
            if key in seen:
                continue
            seen.add(key)
            groups.append(
                Principal.from_dn(
                    dn,
                    PrincipalKind.GROUP,
                    display_name=name,
                    provider=self.provider_name,
                    member_of=True,
                )
            )
        return tuple(groups)

    def _direct_groups(
        self,
        conn: Connection,
        config: DirectoryConfig,
        attributes: Mapping[str, Any],
    ) -> List[Tuple[str, str]]:
        base = config.group_search_base
        group_filter = ldap_utils.build_group_filter(config)
        out = []
        for group_dn in ldap_utils.attribute_values(attributes, "memberOf"):
            if not ldap_utils.is_under(group_dn, base):
                continue
            conn.search(
                search_base=group_dn,
                search_filter=group_filter,
                search_scope=BASE,
                attributes=[config.group_name_attribute],
            )
            for dn, group_attributes in ldap_utils.search_entries(conn.response):
                out.append(
                    (dn or group_dn, ldap_utils.first_value(group_attributes, config.group_name_attribute))
                )
        return out

    def _nested_groups(
        self, conn: Connection, config: DirectoryConfig, user_dn: str
    ) -> List[Tuple[str, str]]:
        conn.search(
            search_base=ldap_utils.group_search_base(config),
            search_filter=ldap_utils.build_nested_group_filter(config, user_dn),
            search_scope=SUBTREE,
            attributes=[config.group_name_attribute],
        )
        return [
            (dn, ldap_utils.first_value(attributes, config.group_name_attribute))
            for dn, attributes in ldap_utils.search_entries(conn.response)
        ]


# =============================================================================
# HELPERS
# =============================================================================


def _result_code(conn: Connection) -> Optional[int]:
    result = conn.result or {}
    return result.get("result")


def _describe(conn: Connection) -> str:
    result = conn.result or {}
    return str(result.get("message") or result.get("description") or "unknown error")


def _unbind(conn: Optional[Connection]) -> None:
    if conn is None:
        return
    try:
        conn.unbind()
    except LDAPException as e:
        logger.debug("directory_unbind_failed", error=str(e))
