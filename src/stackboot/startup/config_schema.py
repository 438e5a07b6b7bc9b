"""Stack configuration schema.

Pydantic-based settings loaded once from the environment and the project's
``.env`` file. The resulting :class:`StackConfig` is frozen and handed to every
component explicitly.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
import json
import logging
from pathlib import Path
from typing import Annotated, Any, ClassVar

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict, SettingsError

logger = logging.getLogger(__name__)


class LogLevel(StrEnum):
    """Valid log levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


@dataclass
class ConfigValidation:
    """Outcome of checking required and optional keys."""

    ok: bool
    missing_keys: list[str] = field(default_factory=list)
    placeholder_keys: list[str] = field(default_factory=list)
    missing_optional_keys: list[str] = field(default_factory=list)

    def describe(self) -> str:
        parts = []
        if self.missing_keys:
            parts.append(f"missing: {', '.join(self.missing_keys)}")
        if self.placeholder_keys:
            parts.append(f"placeholder values: {', '.join(self.placeholder_keys)}")
        return "; ".join(parts) or "all required keys set"


class StackConfig(BaseSettings):
    """Resolved settings for one bring-up run."""

    REQUIRED_KEYS: ClassVar[tuple[str, ...]] = (
        "POSTGRES_PASSWORD",
        "JWT_SECRET",
        "ANON_KEY",
        "SERVICE_ROLE_KEY",
        "DASHBOARD_USERNAME",
        "DASHBOARD_PASSWORD",
        "SECRET_KEY_BASE",
        "VAULT_ENC_KEY",
        "LOGFLARE_PUBLIC_ACCESS_TOKEN",
        "LOGFLARE_PRIVATE_ACCESS_TOKEN",
    )
    OPTIONAL_KEYS: ClassVar[tuple[str, ...]] = (
        "SITE_URL",
        "API_EXTERNAL_URL",
        "SUPABASE_PUBLIC_URL",
        "OPENAI_API_KEY",
        "SMTP_HOST",
        "SMTP_PORT",
        "SMTP_USER",
        "SMTP_PASS",
    )

    # Logging
    log_level: LogLevel = Field(default=LogLevel.INFO, alias="LOG_LEVEL")
    log_detailed: bool = Field(default=False, alias="LOG_DETAILED")

    # Container runtime
    project_dir: Path = Field(
        default=Path("."),
        description="Directory holding the compose project",
        alias="STACK_PROJECT_DIR",
    )
    compose_files: Annotated[tuple[str, ...], NoDecode] = Field(
        default=(),
        description="Compose files passed with -f, comma-separated or a JSON list",
        alias="COMPOSE_FILES",
    )
    docker_binary: str = Field(default="docker", alias="DOCKER_BIN")
    command_timeout: float = Field(
        default=300.0,
        description="Upper bound for a single docker command",
        gt=0,
        alias="COMMAND_TIMEOUT",
    )

    # Readiness polling
    poll_interval: float = Field(default=2.0, gt=0, le=60, alias="POLL_INTERVAL")
    startup_timeout: float = Field(
        default=300.0,
        description="Default per-service wait before giving up",
        gt=0,
        alias="HEALTH_CHECK_TIMEOUT",
    )
    http_probe_timeout: float = Field(default=5.0, gt=0, le=60, alias="HTTP_PROBE_TIMEOUT")
    kong_http_port: int = Field(default=8000, ge=1, le=65535, alias="KONG_HTTP_PORT")
    studio_port: int = Field(default=3000, ge=1, le=65535, alias="STUDIO_PORT")

    # Data store
    postgres_host: str = Field(default="localhost", alias="POSTGRES_HOST")
    postgres_port: int = Field(default=5432, ge=1, le=65535, alias="POSTGRES_PORT")
    postgres_user: str = Field(default="postgres", alias="POSTGRES_USER")
    postgres_db: str = Field(default="postgres", alias="POSTGRES_DB")
    admin_role: str = Field(default="supabase_admin", alias="STACK_ADMIN_ROLE")
    admin_superuser: bool = Field(default=True, alias="STACK_ADMIN_SUPERUSER")
    analytics_database: str = Field(default="_supabase", alias="STACK_ANALYTICS_DB")
    analytics_schema: str = Field(default="_analytics", alias="STACK_ANALYTICS_SCHEMA")
    publication_name: str = Field(default="logflare_pub", alias="STACK_PUBLICATION")
    stale_artifact_pattern: str = Field(
        default="%logflare%",
        description="LIKE pattern for publications and slots removed before recreation",
        alias="STACK_STALE_ARTIFACT_PATTERN",
    )
    bootstrap_lock_key: int = Field(default=5_432_001, alias="STACK_BOOTSTRAP_LOCK_KEY")

    # Required secrets
    postgres_password: str = Field(default="", alias="POSTGRES_PASSWORD", repr=False)
    jwt_secret: str = Field(default="", alias="JWT_SECRET", repr=False)
    anon_key: str = Field(default="", alias="ANON_KEY", repr=False)
    service_role_key: str = Field(default="", alias="SERVICE_ROLE_KEY", repr=False)
    dashboard_username: str = Field(default="", alias="DASHBOARD_USERNAME")
    dashboard_password: str = Field(default="", alias="DASHBOARD_PASSWORD", repr=False)
    secret_key_base: str = Field(default="", alias="SECRET_KEY_BASE", repr=False)
    vault_enc_key: str = Field(default="", alias="VAULT_ENC_KEY", repr=False)
    logflare_public_access_token: str = Field(
        default="", alias="LOGFLARE_PUBLIC_ACCESS_TOKEN", repr=False
    )
    logflare_private_access_token: str = Field(
        default="", alias="LOGFLARE_PRIVATE_ACCESS_TOKEN", repr=False
    )

    # Optional integrations
    site_url: str = Field(default="", alias="SITE_URL")
    api_external_url: str = Field(default="", alias="API_EXTERNAL_URL")
    supabase_public_url: str = Field(default="", alias="SUPABASE_PUBLIC_URL")
    openai_api_key: str = Field(default="", alias="OPENAI_API_KEY", repr=False)
    smtp_host: str = Field(default="", alias="SMTP_HOST")
    smtp_port: str = Field(default="", alias="SMTP_PORT")
    smtp_user: str = Field(default="", alias="SMTP_USER")
    smtp_pass: str = Field(default="", alias="SMTP_PASS", repr=False)

    placeholder_values: Annotated[tuple[str, ...], NoDecode] = Field(
        default=("your-value-here", "change-me"),
        alias="STACK_PLACEHOLDER_VALUES",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
        frozen=True,
    )

    @field_validator(
        "admin_role", "analytics_database", "analytics_schema", "publication_name"
    )
    @classmethod
    def validate_identifier(cls, v: str) -> str:
        """Store object names are quoted, but must still be non-empty and sane."""
        if not v or len(v) > 63 or '"' in v or "\x00" in v:
            msg = f"invalid database identifier: {v!r}"
            raise ValueError(msg)
        return v

    @field_validator("compose_files", "placeholder_values", mode="before")
    @classmethod
    def split_list(cls, v: Any) -> Any:
        """Accept ``a.yml,b.yml`` as well as a JSON list from the environment."""
        if not isinstance(v, str):
            return v
        text = v.strip()
        if text.startswith("["):
            return json.loads(text)
        return tuple(item.strip() for item in text.split(",") if item.strip())

    def value_for(self, key: str) -> str:
        """Return the raw value of an environment-style key such as ``ANON_KEY``."""
        return str(getattr(self, key.lower(), "") or "")

    def is_placeholder(self, value: str) -> bool:
        stripped = value.strip()
        if not stripped:
            return True
        return stripped.lower() in {p.lower() for p in self.placeholder_values}

    def validate_required(self) -> ConfigValidation:
        """Check required keys for presence and placeholder values.

        Returns:
            ConfigValidation with ``ok`` False when any required key is
            unusable. Optional keys never affect ``ok``.
        """
        missing: list[str] = []
        placeholders: list[str] = []
        for key in self.REQUIRED_KEYS:
            value = self.value_for(key)
            if not value.strip():
                missing.append(key)
            elif self.is_placeholder(value):
                placeholders.append(key)

        missing_optional = [
            key for key in self.OPTIONAL_KEYS if self.is_placeholder(self.value_for(key))
        ]
        if missing_optional:
            logger.debug("Optional keys not set: %s", ", ".join(missing_optional))

        return ConfigValidation(
            ok=not missing and not placeholders,
            missing_keys=missing,
            placeholder_keys=placeholders,
            missing_optional_keys=missing_optional,
        )

    def summary(self) -> dict[str, Any]:
        """Non-secret settings worth showing in a dry-run report."""
        return {
            "project_dir": str(self.project_dir),
            "compose_files": list(self.compose_files),
            "poll_interval": self.poll_interval,
            "startup_timeout": self.startup_timeout,
            "postgres": f"{self.postgres_user}@{self.postgres_host}:{self.postgres_port}",
            "admin_role": self.admin_role,
            "analytics_database": self.analytics_database,
            "log_level": self.log_level.value,
        }

    @classmethod
    def validate_from_env(
        cls, env_file: Path | str | None = ".env"
    ) -> tuple[StackConfig | None, list[str]]:
        """Build the configuration from the environment.

        Returns:
            Tuple of (config, errors). Config is None if validation fails.
        """
        try:
            return cls(_env_file=env_file), []  # type: ignore[call-arg]
        except ValidationError as e:
            errors = []
            for error in e.errors():
                field_path = ".".join(str(loc) for loc in error["loc"])
                errors.append(f"{field_path}: {error['msg']}")
            return None, errors
        except SettingsError as e:
            return None, [str(e)]
