"""
adhandshake Request Schema

Decoding of the test-and-apply request body.

Body shape (JSON):
    {
        "servers": ["dc1.example.com"],
        "certificate": "-----BEGIN CERTIFICATE-----...",
        "enabled": true,
        "username": "jdoe",
        "password": "secret",
        "port": 636,
        "tls": true,
        ...other directory parameters in camelCase...
    }

Directory parameters may also be nested under "activeDirectoryConfig".
"""

from __future__ import annotations

import json
from typing import Any, Dict, Mapping, Tuple, Union

from adhandshake.core.exceptions import ValidationError
from adhandshake.core.types import (
    ActiveDirectoryConfig,
    Credentials,
    DirectoryConfig,
    ProposedConfig,
)

# camelCase wire key -> DirectoryConfig attribute
FIELD_MAP: Dict[str, str] = {
    "servers": "servers",
    "port": "port",
    "tls": "tls",
    "startTLS": "start_tls",
    "certificate": "certificate",
    "connectionTimeout": "connection_timeout",
    "defaultLoginDomain": "default_login_domain",
    "serviceAccountUsername": "service_account_username",
    "serviceAccountPassword": "service_account_password",
    "userSearchBase": "user_search_base",
    "userSearchFilter": "user_search_filter",
    "userLoginAttribute": "user_login_attribute",
    "userObjectClass": "user_object_class",
    "userNameAttribute": "user_name_attribute",
    "userEnabledAttribute": "user_enabled_attribute",
    "userDisabledBitMask": "user_disabled_bit_mask",
    "groupSearchBase": "group_search_base",
    "groupObjectClass": "group_object_class",
    "groupNameAttribute": "group_name_attribute",
    "groupDNAttribute": "group_dn_attribute",
    "nestedGroupMembershipEnabled": "nested_group_membership_enabled",
    "accessMode": "access_mode",
    "allowedPrincipalIds": "allowed_principal_ids",
}

_BOOL_FIELDS = {"tls", "start_tls", "nested_group_membership_enabled"}
_INT_FIELDS = {"port", "connection_timeout", "user_disabled_bit_mask"}
_LIST_FIELDS = {"servers", "allowed_principal_ids"}


def _coerce(attr: str, value: Any) -> Any:
    if attr in _LIST_FIELDS:
        if value is None:
            return ()
        if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
            raise ValidationError(f"{attr} must be a list of strings")
        return tuple(value)
    if attr in _BOOL_FIELDS:
        if not isinstance(value, bool):
            raise ValidationError(f"{attr} must be a boolean")
        return value
    if attr in _INT_FIELDS:
        # bool is an int subclass
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValidationError(f"{attr} must be an integer")
        return value
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValidationError(f"{attr} must be a string")
    return value


def decode_directory_config(data: Mapping[str, Any]) -> DirectoryConfig:
    """
    Build a DirectoryConfig from camelCase wire data.

    Unknown keys are ignored.

    Raises:
        ValidationError: On wrongly typed or out-of-range values
    """
    kwargs = {}
    for key, attr in FIELD_MAP.items():
        if key in data:
            kwargs[attr] = _coerce(attr, data[key])
    try:
        return DirectoryConfig(**kwargs)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"invalid directory config: {e}") from e


def encode_directory_config(config: DirectoryConfig) -> Dict[str, Any]:
    """Render a DirectoryConfig as camelCase wire data, without secrets."""
    data: Dict[str, Any] = {}
    for key, attr in FIELD_MAP.items():
        if attr == "service_account_password":
            continue
        value = getattr(config, attr)
        if isinstance(value, tuple):
            value = list(value)
        elif attr == "access_mode":
            value = value.value
        data[key] = value
    data["enabled"] = config.enabled
    return data


def encode_record(record: ActiveDirectoryConfig) -> Dict[str, Any]:
    """Render a stored record for API responses."""
    data = encode_directory_config(record.directory)
    data.update(
        {
            "apiVersion": record.api_version,
            "kind": record.kind,
            "type": record.type,
            "metadata": {
                "name": record.metadata.name,
                "resourceVersion": record.metadata.resource_version,
            },
        }
    )
    return data


def decode_test_and_apply_input(
    body: Union[str, bytes, Mapping[str, Any]],
) -> Tuple[ProposedConfig, Credentials]:
    """
    Decode a test-and-apply request body.

    Args:
        body: Raw JSON text/bytes or an already decoded mapping

    Returns:
        (proposed config, credentials)

    Raises:
        ValidationError: If the body does not parse or has the wrong shape
    """
    if isinstance(body, (str, bytes)):
        try:
            body = json.loads(body)
        except ValueError as e:
            raise ValidationError(f"Failed to parse body: {e}") from e

    if not isinstance(body, Mapping):
        raise ValidationError("Failed to parse body: expected a JSON object")

    directory_data = body.get("activeDirectoryConfig", body)
    if not isinstance(directory_data, Mapping):
        raise ValidationError("Failed to parse body: activeDirectoryConfig must be an object")

    directory = decode_directory_config(directory_data)

    enabled = body.get("enabled", False)
    if not isinstance(enabled, bool):
        raise ValidationError("enabled must be a boolean")

    username = body.get("username", "")
    password = body.get("password", "")
    if not isinstance(username, str) or not isinstance(password, str):
        raise ValidationError("username and password must be strings")

    proposed = ProposedConfig(directory=directory, enabled=enabled)
    return proposed, Credentials(username=username, password=password)
