"""
Pytest configuration and shared fixtures for adhandshake tests.
"""

import time

import pytest
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import attrs
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID
from ldap3 import BASE, MOCK_SYNC, NONE, Connection, Server

from adhandshake.ad.authenticator import DirectoryAuthenticator
from adhandshake.ad.ldap_utils import IN_CHAIN_RULE
from adhandshake.core.exceptions import AuthenticationError
from adhandshake.core.types import (
    AuthenticatedIdentity,
    Caller,
    Credentials,
    DirectoryConfig,
    Principal,
    PrincipalKind,
    ProposedConfig,
    ProviderInfo,
)
from adhandshake.handshake.orchestrator import HandshakeDependencies, TestAndApply
from adhandshake.session.memory import InMemoryAccountManager, InMemorySessionManager
from adhandshake.store.memory import InMemoryObjectStore, seed_store


# =============================================================================
# DIRECTORY LAYOUT
# =============================================================================

SERVER = "dc1.example.com"
BASE_DN = "DC=example,DC=com"
USERS_OU = "OU=Users,DC=example,DC=com"
GROUPS_OU = "OU=Groups,DC=example,DC=com"

SVC_DN = "CN=svc,OU=Users,DC=example,DC=com"
SVC_PASSWORD = "svc-pass"
JDOE_DN = "CN=jdoe,OU=Users,DC=example,DC=com"
JDOE_PASSWORD = "jdoe-pass"
MALLORY_DN = "CN=mallory,OU=Users,DC=example,DC=com"
MALLORY_PASSWORD = "mallory-pass"
ADMINS_DN = "CN=Admins,OU=Groups,DC=example,DC=com"
DEVS_DN = "CN=Devs,OU=Groups,DC=example,DC=com"
OUTSIDE_DN = "CN=Outside,OU=Other,DC=example,DC=com"


def _person(name: str, login: str, password: str, account_control: str, member_of=()) -> Dict[str, Any]:
    entry = {
        "objectClass": ["top", "person", "user"],
        "sAMAccountName": login,
        "name": name,
        "userPassword": password,
        "userAccountControl": account_control,
    }
    if member_of:
        entry["memberOf"] = list(member_of)
    return entry


DIRECTORY_ENTRIES: Dict[str, Dict[str, Any]] = {
    BASE_DN: {"objectClass": ["top", "domain"]},
    USERS_OU: {"objectClass": ["top", "organizationalUnit"]},
    GROUPS_OU: {"objectClass": ["top", "organizationalUnit"]},
    SVC_DN: _person("Service Account", "svc", SVC_PASSWORD, "512"),
    JDOE_DN: _person(
        "John Doe",
        "jdoe",
        JDOE_PASSWORD,
        "512",
        member_of=(ADMINS_DN, DEVS_DN, OUTSIDE_DN),
    ),
    # 514 = NORMAL_ACCOUNT | ACCOUNTDISABLE
    MALLORY_DN: _person("Mallory", "mallory", MALLORY_PASSWORD, "514"),
    ADMINS_DN: {"objectClass": ["top", "group"], "name": "Admins"},
    DEVS_DN: {"objectClass": ["top", "group"], "name": "Devs"},
}


# =============================================================================
# LDAP FIXTURES
# =============================================================================


@pytest.fixture
def mock_server() -> Server:
    """ldap3 server whose in-memory directory holds DIRECTORY_ENTRIES."""
    server = Server(SERVER, get_info=NONE)
    seeder = Connection(server, client_strategy=MOCK_SYNC)
    for dn, attributes in DIRECTORY_ENTRIES.items():
        seeder.strategy.add_entry(dn, attributes)
    return server


@pytest.fixture
def authenticator(mock_server: Server) -> DirectoryAuthenticator:
    """Authenticator talking to the mock directory."""
    return DirectoryAuthenticator(
        client_strategy=MOCK_SYNC,
        server_factory=lambda **kwargs: mock_server,
    )


@pytest.fixture
def directory_config() -> DirectoryConfig:
    """Directory parameters matching the mock directory."""
    return DirectoryConfig(
        servers=(SERVER,),
        default_login_domain="example.com",
        service_account_username=SVC_DN,
        service_account_password=SVC_PASSWORD,
        user_search_base=USERS_OU,
        group_search_base=GROUPS_OU,
    )


@pytest.fixture
def proposed(directory_config: DirectoryConfig) -> ProposedConfig:
    """Proposed config enabling the provider."""
    return ProposedConfig(directory=directory_config, enabled=True)


@pytest.fixture
def credentials() -> Credentials:
    """Valid credentials of an enabled user."""
    return Credentials(username="jdoe", password=JDOE_PASSWORD)


# =============================================================================
# STORE AND SESSION FIXTURES
# =============================================================================


@pytest.fixture
def store() -> InMemoryObjectStore:
    """Store holding the registered, disabled provider record."""
    return seed_store("activedirectory")


@pytest.fixture
def accounts() -> InMemoryAccountManager:
    manager = InMemoryAccountManager()
    manager.add_account("admin")
    return manager


@pytest.fixture
def sessions() -> InMemorySessionManager:
    return InMemorySessionManager()


@pytest.fixture
def caller() -> Caller:
    return Caller(account_name="admin")


@pytest.fixture
def deps(store, accounts, sessions, authenticator) -> HandshakeDependencies:
    """Handshake wired to the mock directory and in-memory backends."""
    return HandshakeDependencies.create(store, accounts, sessions, authenticator=authenticator)


@pytest.fixture
def handshake(deps: HandshakeDependencies) -> TestAndApply:
    return TestAndApply(deps)


# =============================================================================
# CERTIFICATE FIXTURES
# =============================================================================


def make_certificate_pem(common_name: str = "Example Test CA") -> str:
    """Helper to create a self-signed CA certificate in PEM form."""
    key = ec.generate_private_key(ec.SECP256R1())
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    now = datetime.now(timezone.utc)
    certificate = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=30))
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .sign(key, hashes.SHA256())
    )
    return certificate.public_bytes(serialization.Encoding.PEM).decode("ascii")


@pytest.fixture(scope="session")
def ca_pem() -> str:
    """Self-signed CA certificate."""
    return make_certificate_pem()


# =============================================================================
# TEST DOUBLES
# =============================================================================


def make_identity(user_dn: str = JDOE_DN, group_dns=(ADMINS_DN,)) -> AuthenticatedIdentity:
    """Helper to create an authenticated identity."""
    return AuthenticatedIdentity(
        user=Principal.from_dn(user_dn, PrincipalKind.USER, display_name="John Doe", me=True),
        groups=tuple(
            Principal.from_dn(dn, PrincipalKind.GROUP, member_of=True) for dn in group_dns
        ),
        provider_info=ProviderInfo(server=SERVER, login_domain="example.com"),
    )


@attrs.define
class StubAuthenticator:
    """
    Authenticator double recording every login call.

    Returns ``identity`` or raises ``error``.
    """

    identity: AuthenticatedIdentity = attrs.Factory(make_identity)
    error: Optional[Exception] = None
    delay: float = 0.0
    calls: List[Any] = attrs.Factory(list)

    def login(self, credentials, config, trust, timeout=None):
        self.calls.append((credentials, config, trust, timeout))
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.identity


@pytest.fixture
def stub_authenticator() -> StubAuthenticator:
    return StubAuthenticator()


@pytest.fixture
def stub_deps(store, accounts, sessions, stub_authenticator) -> HandshakeDependencies:
    """Handshake wired to a stub authenticator."""
    return HandshakeDependencies.create(
        store, accounts, sessions, authenticator=stub_authenticator
    )


def rejected_login() -> AuthenticationError:
    return AuthenticationError("invalid username or password")


@attrs.define
class ScriptedDirectory:
    """
    Connection factory for an ldap3-like fake directory.

    Supports the calls the authenticator makes: bind, search (user lookup,
    BASE group reads, in-chain group queries), start_tls and unbind.
    """

    passwords: Dict[str, str] = attrs.Factory(dict)
    entries: Dict[str, Dict[str, List[str]]] = attrs.Factory(dict)
    nested_groups: Dict[str, List[str]] = attrs.Factory(dict)
    start_tls_ok: bool = True
    bind_exception: Optional[Exception] = None
    connections: List["ScriptedConnection"] = attrs.Factory(list)

    def __call__(self, server, user=None, password=None, **kwargs) -> "ScriptedConnection":
        conn = ScriptedConnection(directory=self, user=user, password=password, options=kwargs)
        self.connections.append(conn)
        return conn

    def authenticator(self, **kwargs) -> DirectoryAuthenticator:
        return DirectoryAuthenticator(
            server_factory=lambda **kw: Server(SERVER, get_info=NONE),
            connection_factory=self,
            **kwargs,
        )


@attrs.define
class ScriptedConnection:
    directory: ScriptedDirectory
    user: Optional[str] = None
    password: Optional[str] = None
    options: Dict[str, Any] = attrs.Factory(dict)
    result: Dict[str, Any] = attrs.Factory(dict)
    response: List[Dict[str, Any]] = attrs.Factory(list)
    opened: bool = False
    tls_started: bool = False
    unbound: bool = False

    def open(self) -> None:
        self.opened = True

    def start_tls(self) -> bool:
        if self.directory.start_tls_ok:
            self.tls_started = True
            return True
        self.result = {"result": 52, "description": "unavailable", "message": "TLS not supported"}
        return False

    def bind(self) -> bool:
        if self.directory.bind_exception is not None:
            raise self.directory.bind_exception
        if self.directory.passwords.get(self.user) == self.password:
            self.result = {"result": 0, "description": "success"}
            return True
        self.result = {"result": 49, "description": "invalidCredentials"}
        return False

    def search(self, search_base, search_filter, search_scope, attributes=None, size_limit=0):
        if IN_CHAIN_RULE in search_filter:
            dns = [
                dn
                for user_dn, groups in self.directory.nested_groups.items()
                if f"={user_dn})" in search_filter
                for dn in groups
            ]
        elif search_scope == BASE:
            dns = [search_base] if search_base in self.directory.entries else []
        else:
            dns = [
                dn
                for dn, attrs_ in self.directory.entries.items()
                for login in attrs_.get("sAMAccountName", [])
                if f"(sAMAccountName={login})" in search_filter
            ]
        self.result = {"result": 0, "description": "success"}
        if size_limit and len(dns) > size_limit:
            # servers return the first entries with sizeLimitExceeded
            dns = dns[:size_limit]
            self.result = {"result": 4, "description": "sizeLimitExceeded"}
        self.response = [
            {"type": "searchResEntry", "dn": dn, "attributes": self.directory.entries.get(dn, {})}
            for dn in dns
        ]
        return bool(dns)

    def unbind(self) -> bool:
        self.unbound = True
        return True


@pytest.fixture
def scripted_directory() -> ScriptedDirectory:
    """Fake directory mirroring DIRECTORY_ENTRIES with nested groups."""
    entries = {}
    for dn, attributes in DIRECTORY_ENTRIES.items():
        entries[dn] = {
            key: list(value) if isinstance(value, list) else [value]
            for key, value in attributes.items()
            if key != "userPassword"
        }
    return ScriptedDirectory(
        passwords={SVC_DN: SVC_PASSWORD, JDOE_DN: JDOE_PASSWORD, MALLORY_DN: MALLORY_PASSWORD},
        entries=entries,
        nested_groups={JDOE_DN: [ADMINS_DN, DEVS_DN, ADMINS_DN.upper()]},
    )


# =============================================================================
# PYTEST MARKERS
# =============================================================================


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests requiring a real directory server"
    )
