"""
adhandshake Active Directory Module

Directory login against a single Active Directory / LDAP server.

Components:
- authenticator: DirectoryAuthenticator (bind, user lookup, groups)
- ldap_utils: Filter building, escaping and attribute helpers
"""

from adhandshake.ad.authenticator import DirectoryAuthenticator

__all__ = [
    "DirectoryAuthenticator",
]
