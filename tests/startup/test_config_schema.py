"""Tests for stack configuration loading and validation."""

from __future__ import annotations

import os
from pathlib import Path
from unittest.mock import patch

from pydantic import ValidationError
from pydantic_settings import SettingsError
import pytest

from stackboot.startup.config_schema import ConfigValidation, LogLevel, StackConfig
from tests.fakes import REQUIRED_VALUES, make_config


def required_env() -> dict[str, str]:
    return {key.upper(): value for key, value in REQUIRED_VALUES.items()}


class TestLoading:
    """Resolving settings from environment and .env file."""

    def test_defaults(self) -> None:
        with patch.dict(os.environ, {}, clear=True):
            config, errors = StackConfig.validate_from_env(None)

        assert errors == []
        assert config is not None
        assert config.log_level == LogLevel.INFO
        assert config.poll_interval == 2.0
        assert config.startup_timeout == 300.0
        assert config.admin_role == "supabase_admin"
        assert config.analytics_database == "_supabase"
        assert config.admin_superuser
        assert config.compose_files == ()

    def test_environment_variables(self) -> None:
        env = {
            **required_env(),
            "HEALTH_CHECK_TIMEOUT": "120",
            "POSTGRES_PORT": "6543",
            "LOG_LEVEL": "DEBUG",
        }
        with patch.dict(os.environ, env, clear=True):
            config, errors = StackConfig.validate_from_env(None)

        assert errors == []
        assert config is not None
        assert config.startup_timeout == 120.0
        assert config.postgres_port == 6543
        assert config.log_level == LogLevel.DEBUG
        assert config.jwt_secret == REQUIRED_VALUES["jwt_secret"]

    def test_env_file(self, tmp_path: Path) -> None:
        """Values in the .env file are read when the environment lacks them."""
        env_file = tmp_path / ".env"
        env_file.write_text("JWT_SECRET=from-file\nSTACK_ADMIN_ROLE=admin_x\n")

        with patch.dict(os.environ, {}, clear=True):
            config, errors = StackConfig.validate_from_env(env_file)

        assert errors == []
        assert config is not None
        assert config.jwt_secret == "from-file"
        assert config.admin_role == "admin_x"

    def test_environment_wins_over_env_file(self, tmp_path: Path) -> None:
        env_file = tmp_path / ".env"
        env_file.write_text("JWT_SECRET=from-file\n")

        with patch.dict(os.environ, {"JWT_SECRET": "from-env"}, clear=True):
            config, _ = StackConfig.validate_from_env(env_file)

        assert config is not None
        assert config.jwt_secret == "from-env"

    def test_comma_separated_compose_files(self, tmp_path: Path) -> None:
        """Compose files are written the way docker compose -f lists them."""
        env_file = tmp_path / ".env"
        env_file.write_text(
            "COMPOSE_FILES=docker-compose.yml, docker-compose.optimized.yml\n"
        )

        with patch.dict(os.environ, {}, clear=True):
            config, errors = StackConfig.validate_from_env(env_file)

        assert errors == []
        assert config is not None
        assert config.compose_files == (
            "docker-compose.yml",
            "docker-compose.optimized.yml",
        )

    def test_json_list_compose_files(self) -> None:
        env = {
            "COMPOSE_FILES": '["docker-compose.yml", "dev.yml"]',
            "STACK_PLACEHOLDER_VALUES": "todo,tbd",
        }
        with patch.dict(os.environ, env, clear=True):
            config, errors = StackConfig.validate_from_env(None)

        assert errors == []
        assert config is not None
        assert config.compose_files == ("docker-compose.yml", "dev.yml")
        assert config.placeholder_values == ("todo", "tbd")

    def test_malformed_json_list_reported(self) -> None:
        with patch.dict(os.environ, {"COMPOSE_FILES": "[docker-compose.yml"}, clear=True):
            config, errors = StackConfig.validate_from_env(None)

        assert config is None
        assert "compose_files" in errors[0].lower()

    def test_settings_source_error_reported(self) -> None:
        """A settings source that cannot parse a value is reported, not raised."""
        failure = SettingsError(
            'error parsing value for field "compose_files" from source "EnvSettingsSource"'
        )
        with patch.object(StackConfig, "__init__", side_effect=failure):
            config, errors = StackConfig.validate_from_env(None)

        assert config is None
        assert errors == [str(failure)]

    def test_invalid_values_are_reported(self) -> None:
        """Type and range errors come back as a list, not an exception."""
        env = {"POLL_INTERVAL": "-1", "POSTGRES_PORT": "not-a-port"}
        with patch.dict(os.environ, env, clear=True):
            config, errors = StackConfig.validate_from_env(None)

        assert config is None
        assert len(errors) == 2
        joined = " ".join(errors).lower()
        assert "poll_interval" in joined
        assert "postgres_port" in joined

    def test_config_is_frozen(self) -> None:
        config = make_config()

        with pytest.raises(ValidationError):
            config.poll_interval = 5.0  # type: ignore[misc]

    def test_secrets_hidden_from_repr(self) -> None:
        config = make_config()

        assert REQUIRED_VALUES["postgres_password"] not in repr(config)


class TestIdentifiers:
    """Database object names."""

    @pytest.mark.parametrize("name", ["", 'bad"name', "x" * 64])
    def test_rejects_invalid_identifier(self, name: str) -> None:
        with pytest.raises(ValidationError, match="invalid database identifier"):
            make_config(admin_role=name)

    def test_accepts_custom_names(self) -> None:
        config = make_config(analytics_database="logs_db", publication_name="audit_pub")

        assert config.analytics_database == "logs_db"
        assert config.publication_name == "audit_pub"


class TestValidateRequired:
    """Presence and placeholder checks for required keys."""

    def test_all_set(self) -> None:
        validation = make_config().validate_required()

        assert validation.ok
        assert validation.missing_keys == []
        assert validation.placeholder_keys == []

    def test_missing_key(self) -> None:
        validation = make_config(jwt_secret="").validate_required()

        assert not validation.ok
        assert validation.missing_keys == ["JWT_SECRET"]

    def test_whitespace_counts_as_missing(self) -> None:
        validation = make_config(anon_key="   ").validate_required()

        assert validation.missing_keys == ["ANON_KEY"]

    @pytest.mark.parametrize("placeholder", ["your-value-here", "CHANGE-ME", " change-me "])
    def test_placeholder_value(self, placeholder: str) -> None:
        """Template values are rejected whatever their case or padding."""
        validation = make_config(vault_enc_key=placeholder).validate_required()

        assert not validation.ok
        assert validation.placeholder_keys == ["VAULT_ENC_KEY"]
        assert validation.missing_keys == []

    def test_custom_placeholders(self) -> None:
        config = make_config(placeholder_values=("todo",), jwt_secret="TODO")

        assert config.validate_required().placeholder_keys == ["JWT_SECRET"]

    def test_keys_reported_in_declared_order(self) -> None:
        validation = make_config(
            logflare_private_access_token="", postgres_password="", anon_key="change-me"
        ).validate_required()

        assert validation.missing_keys == [
            "POSTGRES_PASSWORD",
            "LOGFLARE_PRIVATE_ACCESS_TOKEN",
        ]
        assert validation.placeholder_keys == ["ANON_KEY"]

    def test_optional_keys_never_fail(self) -> None:
        """Unset optional integrations are reported but do not block bring-up."""
        validation = make_config(smtp_host="", openai_api_key="your-value-here").validate_required()

        assert validation.ok
        assert "SMTP_HOST" in validation.missing_optional_keys
        assert "OPENAI_API_KEY" in validation.missing_optional_keys

    def test_optional_key_set(self) -> None:
        validation = make_config(site_url="https://example.com").validate_required()

        assert "SITE_URL" not in validation.missing_optional_keys


class TestDescribe:
    def test_describe_ok(self) -> None:
        assert ConfigValidation(ok=True).describe() == "all required keys set"

    def test_describe_problems(self) -> None:
        validation = ConfigValidation(
            ok=False, missing_keys=["A", "B"], placeholder_keys=["C"]
        )

        assert validation.describe() == "missing: A, B; placeholder values: C"

    def test_summary_has_no_secrets(self) -> None:
        config = make_config()

        summary = config.summary()

        assert summary["postgres"] == "postgres@localhost:5432"
        assert REQUIRED_VALUES["postgres_password"] not in str(summary)
