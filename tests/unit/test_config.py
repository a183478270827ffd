"""
Unit tests for the adhandshake.config package.

Covers structural validation, request body decoding and settings.
"""

import json

import pytest

from adhandshake.config.schema import (
    decode_directory_config,
    decode_test_and_apply_input,
    encode_directory_config,
    encode_record,
)
from adhandshake.config.settings import HandshakeSettings
from adhandshake.config.validator import ConfigValidator
from adhandshake.core.exceptions import ValidationError
from adhandshake.core.types import (
    AccessMode,
    ActiveDirectoryConfig,
    Credentials,
    DirectoryConfig,
    ObjectMeta,
    ProposedConfig,
)


def make_proposed(**overrides) -> ProposedConfig:
    """Helper to create a proposed config that passes validation."""
    fields = {"servers": ("dc1.example.com",), "default_login_domain": "example.com"}
    fields.update(overrides)
    return ProposedConfig(directory=DirectoryConfig(**fields), enabled=True)


# =============================================================================
# VALIDATOR
# =============================================================================


class TestConfigValidator:
    """Tests for ConfigValidator."""

    def test_valid_config(self):
        ConfigValidator().validate(make_proposed())

    def test_no_server(self):
        with pytest.raises(ValidationError, match="must supply a server"):
            ConfigValidator().validate(make_proposed(servers=()))

    def test_multiple_servers(self):
        with pytest.raises(ValidationError, match="multiple servers not yet supported"):
            ConfigValidator().validate(make_proposed(servers=("dc1", "dc2")))

    def test_blank_server(self):
        with pytest.raises(ValidationError, match="must not be blank"):
            ConfigValidator().validate(make_proposed(servers=("  ",)))

    def test_tls_and_start_tls(self):
        with pytest.raises(ValidationError, match="mutually exclusive"):
            ConfigValidator().validate(make_proposed(tls=True, start_tls=True))

    def test_search_base_or_domain_required(self):
        with pytest.raises(ValidationError, match="userSearchBase"):
            ConfigValidator().validate(make_proposed(default_login_domain=""))

    def test_search_base_alone_suffices(self):
        ConfigValidator().validate(
            make_proposed(default_login_domain="", user_search_base="DC=example,DC=com")
        )

    def test_validation_status(self):
        with pytest.raises(ValidationError) as exc_info:
            ConfigValidator().validate(make_proposed(servers=()))
        assert exc_info.value.status_code == 422

    def test_username_required(self):
        with pytest.raises(ValidationError, match="must supply a username"):
            ConfigValidator().validate_credentials(Credentials(username=" ", password="x"))


# =============================================================================
# SCHEMA
# =============================================================================


class TestDecodeDirectoryConfig:
    """Tests for camelCase wire decoding."""

    def test_camel_case_fields(self):
        config = decode_directory_config(
            {
                "servers": ["dc1.example.com"],
                "port": 636,
                "tls": True,
                "startTLS": False,
                "connectionTimeout": 3000,
                "defaultLoginDomain": "example.com",
                "serviceAccountUsername": "svc",
                "serviceAccountPassword": "pw",
                "userSearchBase": "OU=Users,DC=example,DC=com",
                "groupSearchBase": "OU=Groups,DC=example,DC=com",
                "nestedGroupMembershipEnabled": True,
                "accessMode": "required",
                "allowedPrincipalIds": ["activedirectory_user://CN=x"],
            }
        )
        assert config.servers == ("dc1.example.com",)
        assert config.port == 636
        assert config.tls is True
        assert config.connection_timeout == 3000
        assert config.service_account_password == "pw"
        assert config.nested_group_membership_enabled is True
        assert config.access_mode is AccessMode.REQUIRED
        assert config.allowed_principal_ids == ("activedirectory_user://CN=x",)

    def test_unknown_keys_ignored(self):
        config = decode_directory_config({"servers": ["dc1"], "colour": "blue"})
        assert config.servers == ("dc1",)

    def test_null_servers(self):
        assert decode_directory_config({"servers": None}).servers == ()

    @pytest.mark.parametrize(
        "data",
        [
            {"servers": "dc1"},
            {"servers": [1]},
            {"port": "389"},
            {"port": True},
            {"tls": "yes"},
            {"userSearchBase": 5},
        ],
    )
    def test_wrong_types(self, data):
        with pytest.raises(ValidationError):
            decode_directory_config(data)

    @pytest.mark.parametrize(
        "data",
        [{"port": 0}, {"connectionTimeout": -5}, {"accessMode": "sometimes"}],
    )
    def test_out_of_range(self, data):
        with pytest.raises(ValidationError, match="invalid directory config"):
            decode_directory_config(data)


class TestEncode:
    """Tests for wire encoding of configs and records."""

    def test_password_never_encoded(self):
        data = encode_directory_config(DirectoryConfig(service_account_password="pw"))
        assert "serviceAccountPassword" not in data
        assert "pw" not in json.dumps(data)

    def test_encode_decode_keeps_fields(self):
        config = DirectoryConfig(servers=("dc1",), port=636, access_mode=AccessMode.RESTRICTED)
        decoded = decode_directory_config(encode_directory_config(config))
        assert decoded.servers == config.servers
        assert decoded.port == 636
        assert decoded.access_mode is AccessMode.RESTRICTED

    def test_encode_record(self):
        record = ActiveDirectoryConfig(
            metadata=ObjectMeta(name="activedirectory", resource_version="7"),
            directory=DirectoryConfig(enabled=True),
        )
        data = encode_record(record)
        assert data["enabled"] is True
        assert data["kind"] == "AuthConfig"
        assert data["type"] == "activeDirectoryConfig"
        assert data["metadata"] == {"name": "activedirectory", "resourceVersion": "7"}


class TestDecodeTestAndApplyInput:
    """Tests for request body decoding."""

    def test_flat_body(self):
        body = json.dumps(
            {
                "servers": ["dc1.example.com"],
                "enabled": True,
                "username": "jdoe",
                "password": "pw",
            }
        )
        proposed, creds = decode_test_and_apply_input(body)
        assert proposed.enabled is True
        assert proposed.directory.servers == ("dc1.example.com",)
        assert creds.username == "jdoe"
        assert creds.password == "pw"

    def test_nested_body(self):
        body = {
            "activeDirectoryConfig": {"servers": ["dc1"], "port": 636},
            "enabled": False,
            "username": "jdoe",
            "password": "pw",
        }
        proposed, _ = decode_test_and_apply_input(body)
        assert proposed.directory.port == 636
        assert proposed.enabled is False

    def test_bytes_body(self):
        proposed, _ = decode_test_and_apply_input(b'{"servers": ["dc1"]}')
        assert proposed.directory.servers == ("dc1",)

    def test_defaults_when_missing(self):
        proposed, creds = decode_test_and_apply_input({})
        assert proposed.enabled is False
        assert creds.username == ""

    @pytest.mark.parametrize("body", ["{not json", b"", "[1, 2]", '"text"'])
    def test_unparseable(self, body):
        with pytest.raises(ValidationError, match="Failed to parse body"):
            decode_test_and_apply_input(body)

    def test_nested_not_object(self):
        with pytest.raises(ValidationError, match="activeDirectoryConfig"):
            decode_test_and_apply_input({"activeDirectoryConfig": []})

    def test_enabled_must_be_bool(self):
        with pytest.raises(ValidationError, match="enabled"):
            decode_test_and_apply_input({"enabled": "true"})

    def test_credentials_must_be_strings(self):
        with pytest.raises(ValidationError, match="username and password"):
            decode_test_and_apply_input({"username": "jdoe", "password": 1234})


# =============================================================================
# SETTINGS
# =============================================================================


class TestHandshakeSettings:
    """Tests for HandshakeSettings."""

    def test_defaults(self):
        settings = HandshakeSettings()
        assert settings.record_name == "activedirectory"
        assert settings.session_ttl == 0
        assert settings.session_description == "Token via AD Configuration"
        assert settings.request_timeout is None

    def test_from_env(self):
        settings = HandshakeSettings.from_env(
            {
                "ADHANDSHAKE_RECORD_NAME": "corp-ad",
                "ADHANDSHAKE_SESSION_TTL": "3600",
                "ADHANDSHAKE_REQUEST_TIMEOUT": "2.5",
                "UNRELATED": "x",
            }
        )
        assert settings.record_name == "corp-ad"
        assert settings.session_ttl == 3600
        assert settings.request_timeout == 2.5

    def test_empty_timeout_means_none(self):
        assert HandshakeSettings.from_env({"ADHANDSHAKE_REQUEST_TIMEOUT": " "}).request_timeout is None

    def test_reads_process_environment(self, monkeypatch):
        monkeypatch.setenv("ADHANDSHAKE_PROVIDER_NAME", "corp")
        assert HandshakeSettings.from_env().provider_name == "corp"

    @pytest.mark.parametrize(
        "env",
        [
            {"ADHANDSHAKE_SESSION_TTL": "soon"},
            {"ADHANDSHAKE_SESSION_TTL": "-1"},
            {"ADHANDSHAKE_REQUEST_TIMEOUT": "0"},
            {"ADHANDSHAKE_RECORD_NAME": ""},
        ],
    )
    def test_invalid_env(self, env):
        with pytest.raises(ValidationError, match="invalid handshake settings"):
            HandshakeSettings.from_env(env)
