#!/usr/bin/env python3
"""
Test-and-Apply Handshake Example

Demonstrates how to prove and commit an Active Directory configuration
with adhandshake, using ldap3's in-memory directory in place of a domain
controller.

Features:
1. Action dispatch (testAndApply, disable)
2. Rejection of unsupported configurations before any network call
3. Failed logins leaving the stored configuration untouched
4. State machine trace export
"""

import json

from ldap3 import MOCK_SYNC, NONE, Connection, Server

from adhandshake import (
    AuthConfigActions,
    Caller,
    Credentials,
    DirectoryConfig,
    HandshakeDependencies,
    ProposedConfig,
    TestAndApply,
)
from adhandshake.ad import DirectoryAuthenticator
from adhandshake.session import InMemoryAccountManager, InMemorySessionManager
from adhandshake.store.memory import seed_store


SERVER = "dc1.example.com"
SERVICE_DN = "CN=svc,OU=Users,DC=example,DC=com"
USER_DN = "CN=jdoe,OU=Users,DC=example,DC=com"
GROUP_DN = "CN=Admins,OU=Groups,DC=example,DC=com"


def build_directory() -> Server:
    """In-memory directory with a service account, one user and one group."""
    server = Server(SERVER, get_info=NONE)
    seeder = Connection(server, client_strategy=MOCK_SYNC)
    seeder.strategy.add_entry("DC=example,DC=com", {"objectClass": ["top", "domain"]})
    seeder.strategy.add_entry("OU=Users,DC=example,DC=com", {"objectClass": "organizationalUnit"})
    seeder.strategy.add_entry("OU=Groups,DC=example,DC=com", {"objectClass": "organizationalUnit"})
    seeder.strategy.add_entry(
        SERVICE_DN,
        {"objectClass": ["person", "user"], "sAMAccountName": "svc", "userPassword": "svc-pass"},
    )
    seeder.strategy.add_entry(
        USER_DN,
        {
            "objectClass": ["person", "user"],
            "sAMAccountName": "jdoe",
            "name": "John Doe",
            "userPassword": "jdoe-pass",
            "userAccountControl": "512",
            "memberOf": [GROUP_DN],
        },
    )
    seeder.strategy.add_entry(GROUP_DN, {"objectClass": "group", "name": "Admins"})
    return server


def main():
    """Demonstrate the test-and-apply handshake."""

    print("=" * 70)
    print("adhandshake - Test-and-Apply Handshake")
    print("=" * 70)
    print()

    directory = build_directory()
    store = seed_store("activedirectory")
    accounts = InMemoryAccountManager()
    accounts.add_account("admin")
    sessions = InMemorySessionManager()

    deps = HandshakeDependencies.create(
        store,
        accounts,
        sessions,
        authenticator=DirectoryAuthenticator(
            client_strategy=MOCK_SYNC,
            server_factory=lambda **kwargs: directory,
        ),
    )
    handshake = TestAndApply(deps)
    actions = AuthConfigActions(handshake)

    body = {
        "servers": [SERVER],
        "defaultLoginDomain": "example.com",
        "serviceAccountUsername": SERVICE_DN,
        "serviceAccountPassword": "svc-pass",
        "userSearchBase": "OU=Users,DC=example,DC=com",
        "groupSearchBase": "OU=Groups,DC=example,DC=com",
        "enabled": True,
        "username": "jdoe",
        "password": "jdoe-pass",
    }

    # ==========================================================================
    # EXAMPLE 1: Unsupported configuration
    # ==========================================================================
    print("1. Two servers (rejected before login)")
    print("-" * 40)

    response = actions.handle("testAndApply", dict(body, servers=[SERVER, "dc2.example.com"]), Caller("admin"))
    print(f"   Status:  {response.status_code}")
    print(f"   Message: {response.body['message']}")
    print()

    # ==========================================================================
    # EXAMPLE 2: Wrong password
    # ==========================================================================
    print("2. Wrong password (stored config untouched)")
    print("-" * 40)

    response = actions.handle("testAndApply", dict(body, password="wrong"), Caller("admin"))
    print(f"   Status:  {response.status_code}")
    print(f"   Enabled: {store.get('activedirectory').enabled}")
    print()

    # ==========================================================================
    # EXAMPLE 3: Successful test-and-apply
    # ==========================================================================
    print("3. Valid configuration and credentials")
    print("-" * 40)

    caller = Caller("admin")
    response = actions.handle("testAndApply", json.dumps(body), caller)
    record = store.get("activedirectory")
    print(f"   Status:    {response.status_code}")
    print(f"   Principal: {response.body['principalId']}")
    print(f"   Groups:    {response.body['groupPrincipalIds']}")
    print(f"   Enabled:   {record.enabled} (resource version {record.metadata.resource_version})")
    print(f"   Session:   {caller.session.description}")
    print()

    # ==========================================================================
    # EXAMPLE 4: Trace export
    # ==========================================================================
    print("4. State machine trace")
    print("-" * 40)

    proposed = ProposedConfig(
        directory=DirectoryConfig(
            servers=(SERVER,),
            default_login_domain="example.com",
            service_account_username=SERVICE_DN,
            service_account_password="svc-pass",
            user_search_base="OU=Users,DC=example,DC=com",
            group_search_base="OU=Groups,DC=example,DC=com",
        ),
        enabled=True,
    )
    machine = handshake.execute(proposed, Credentials("jdoe", "jdoe-pass"), Caller("admin"))
    for transition in machine.get_trace():
        print(f"   {transition.from_state.name} --[{transition.event_type}]--> {transition.to_state.name}")
    print()

    # ==========================================================================
    # EXAMPLE 5: Disable
    # ==========================================================================
    print("5. Disable the provider")
    print("-" * 40)

    response = actions.handle("disable", None, Caller("admin"))
    print(f"   Status:  {response.status_code}")
    print(f"   Enabled: {response.body['enabled']}")
    print(f"   Servers: {response.body['servers']}")
    print()


if __name__ == "__main__":
    main()
