from __future__ import annotations

from typing import Any, Iterator, List, Mapping, Tuple

from ldap3.utils.conv import escape_filter_chars

from adhandshake.core.types import DirectoryConfig

# LDAP_MATCHING_RULE_IN_CHAIN
IN_CHAIN_RULE = "1.2.840.113556.1.4.1941"

RESULT_SUCCESS = 0
RESULT_SIZE_LIMIT_EXCEEDED = 4
RESULT_NO_SUCH_OBJECT = 32
RESULT_INVALID_CREDENTIALS = 49


def domain_to_base_dn(domain: str) -> str:
    """example.com -> dc=example,dc=com"""
    parts = [p for p in (domain or "").strip().strip(".").split(".") if p]
    return ",".join(f"dc={p}" for p in parts)


def is_dn(name: str) -> bool:
    return "=" in name and "," in name


def qualify_account_name(username: str, default_login_domain: str) -> str:
    """
    Name to bind with for a bare account name.

    DNs, UPNs (user@domain) and down-level names (DOMAIN\\user) are used
    as given; a bare name gets the default login domain prefixed.
    """
    username = (username or "").strip()
    if not username or is_dn(username) or "@" in username or "\\" in username:
        return username
    domain = (default_login_domain or "").strip()
    if not domain:
        return username
    return f"{domain}\\{username}"


def login_name(username: str) -> str:
    """Strip any DOMAIN\\ prefix or @domain suffix from a login."""
    name = (username or "").strip()
    if "\\" in name:
        name = name.split("\\", 1)[1]
    if "@" in name:
        name = name.split("@", 1)[0]
    return name


def _wrap(flt: str) -> str:
    flt = (flt or "").strip()
    if not flt:
        return ""
    if flt.startswith("(") and flt.endswith(")"):
        return flt
    return f"({flt})"


def user_search_base(config: DirectoryConfig) -> str:
    return config.user_search_base or domain_to_base_dn(config.default_login_domain)


def group_search_base(config: DirectoryConfig) -> str:
    return config.group_search_base or user_search_base(config)


def build_user_filter(config: DirectoryConfig, username: str) -> str:
    """
    (&(objectClass=<class>)(<login attr>=<escaped login>)<extra filter>)
    """
    return "(&(objectClass={cls})({attr}={value}){extra})".format(
        cls=escape_filter_chars(config.user_object_class),
        attr=config.user_login_attribute,
        value=escape_filter_chars(login_name(username)),
        extra=_wrap(config.user_search_filter),
    )


def build_group_filter(config: DirectoryConfig) -> str:
    return f"(objectClass={escape_filter_chars(config.group_object_class)})"


def build_nested_group_filter(config: DirectoryConfig, user_dn: str) -> str:
    """Groups the user belongs to, directly or through nesting (AD only)."""
    return "(&{groups}(member:{rule}:={dn}))".format(
        groups=build_group_filter(config),
        rule=IN_CHAIN_RULE,
        dn=escape_filter_chars(user_dn),
    )


def attribute_values(attributes: Mapping[str, Any], name: str) -> List[str]:
    """All values of an attribute as strings, whatever ldap3 returned."""
    value = attributes.get(name)
    if value is None:
        # ldap3 returns a CaseInsensitiveDict, plain mappings need a scan
        for key, candidate in attributes.items():
            if key.lower() == name.lower():
                value = candidate
                break
    if value is None:
        return []
    if not isinstance(value, (list, tuple)):
        value = [value]
    out = []
    for v in value:
        if isinstance(v, bytes):
            v = v.decode("utf-8", errors="replace")
        out.append(str(v))
    return out


def first_value(attributes: Mapping[str, Any], name: str, default: str = "") -> str:
    values = attribute_values(attributes, name)
    return values[0] if values else default


def is_disabled(attributes: Mapping[str, Any], config: DirectoryConfig) -> bool:
    """Check the enabled attribute against the disabled bit mask."""
    if not config.user_enabled_attribute or not config.user_disabled_bit_mask:
        return False
    raw = first_value(attributes, config.user_enabled_attribute)
    if not raw:
        return False
    try:
        flags = int(raw)
    except ValueError:
        return False
    return bool(flags & config.user_disabled_bit_mask)


def is_under(dn: str, base: str) -> bool:
    if not base:
        return True
    dn, base = dn.lower().replace(" ", ""), base.lower().replace(" ", "")
    return dn == base or dn.endswith("," + base)


def search_entries(response: Any) -> Iterator[Tuple[str, Mapping[str, Any]]]:
    """(dn, attributes) of the result entries in an ldap3 response."""
    for item in response or []:
        if item.get("type") != "searchResEntry":
            continue
        yield item.get("dn", ""), item.get("attributes") or {}
