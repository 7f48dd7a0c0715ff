"""Application settings with Pydantic Settings validation.

Secrets (database password) are loaded from the environment or .env file.
Non-sensitive configuration is loaded from config/main.yaml and any other
config/*.yaml files, validated against config/schemas/*.schema.json and
merged. Values set through the environment win over YAML.
"""

import json
from datetime import time
from pathlib import Path
from typing import Any, Final, Literal, cast

import yaml
from jsonschema import ValidationError as JSONSchemaValidationError
from jsonschema import validate
from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from src.config.logging_config import get_logger
from src.domain.scoring_constants import (
    DEFAULT_BADGE_CYCLE_WINDOW_END,
    DEFAULT_BADGE_CYCLE_WINDOW_START,
    DEFAULT_BREAK_GRACE_MINUTES,
    DEFAULT_BUSINESS_TIMEZONE_OFFSET_HOURS,
    DEFAULT_CLIENT_HERO_POINTS,
    DEFAULT_DUPLICATE_GUARD_WINDOW_SECONDS,
    DEFAULT_DUPLICATE_SUBJECT_LOOKBACK_DAYS,
    DEFAULT_DUPLICATE_SUBJECT_SIMILARITY,
    DEFAULT_MILESTONE_BONUS_POINTS,
    DEFAULT_MILESTONE_THRESHOLDS,
    DEFAULT_PERFECT_DAY_POINTS,
    DEFAULT_SELF_ASSIGN_MIN_AGE_HOURS,
    DEFAULT_SHIFT_EARLY_WINDOW_MINUTES,
    DEFAULT_SHIFT_LATE_THRESHOLD_MINUTES,
    DEFAULT_SHIFT_ON_TIME_GRACE_MINUTES,
    DEFAULT_TICKET_OPENED_FLAT_POINTS,
)

POSTGRES_MIN_CONNECTIONS_DEFAULT: Final[int] = 1
POSTGRES_MAX_CONNECTIONS_DEFAULT: Final[int] = 10
POSTGRES_STATEMENT_TIMEOUT_MS_DEFAULT: Final[int] = 10_000
POSTGRES_CONNECT_TIMEOUT_SECONDS_DEFAULT: Final[int] = 10
POSTGRES_APPLICATION_NAME_DEFAULT: Final[str] = "bpal_scoring"
SQLITE_BUSY_TIMEOUT_SECONDS_DEFAULT: Final[float] = 30.0

logger = cast(Any, get_logger(__name__))


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Deep merge two dictionaries.

    Args:
        base: Base dictionary
        override: Dictionary to merge into base (takes precedence)

    Returns:
        Merged dictionary
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def load_schema(schema_name: str, config_dir: Path) -> dict[str, Any]:
    """Load JSON Schema from <config_dir>/schemas/.

    Args:
        schema_name: Schema name without extension (e.g., "main")
        config_dir: Configuration directory

    Returns:
        JSON Schema dictionary or empty dict if not found
    """
    schema_path = config_dir / "schemas" / f"{schema_name}.schema.json"
    if not schema_path.exists():
        return {}

    try:
        with open(schema_path, encoding="utf-8") as f:
            return cast(dict[str, Any], json.load(f))
    except (json.JSONDecodeError, OSError) as e:
        logger.warning(
            "config_schema_load_failed",
            schema=schema_name,
            error=str(e),
        )
        return {}


def validate_config_section(
    config: dict[str, Any],
    schema_name: str,
    file_path: str = "",
    config_dir: Path = Path("config"),
) -> None:
    """Validate config section against JSON Schema.

    Args:
        config: Configuration dictionary to validate
        schema_name: Name of schema to validate against
        file_path: Optional file path for error messages
        config_dir: Directory holding the schemas/ folder

    Raises:
        ValueError: If validation fails
    """
    schema = load_schema(schema_name, config_dir)
    if not schema:
        # No schema available, skip validation
        return

    try:
        validate(instance=config, schema=schema)
        logger.debug("config_validation_succeeded", schema=schema_name)
    except JSONSchemaValidationError as e:
        error_msg = f"Config validation failed for {schema_name}"
        if file_path:
            error_msg += f" (file: {file_path})"
        error_msg += f": {e.message}"
        raise ValueError(error_msg) from e


def load_all_configs(config_dir: Path = Path("config")) -> dict[str, Any]:
    """Load and merge all YAML configs from the config directory.

    Loading order (later overrides earlier):
    1. config/main.yaml
    2. All other config/*.yaml files (sorted alphabetically)

    Each file is validated against the schema named after its stem.

    Returns:
        Merged configuration dictionary

    Raises:
        ValueError: If a file fails schema validation
    """
    merged_config: dict[str, Any] = {}
    loaded = 0

    main_path = config_dir / "main.yaml"
    yaml_files: list[Path] = []
    if config_dir.exists() and config_dir.is_dir():
        yaml_files = sorted(
            f for f in config_dir.glob("*.yaml") if f.name != "main.yaml"
        )
    if main_path.exists():
        yaml_files.insert(0, main_path)

    for yaml_file in yaml_files:
        schema_name = yaml_file.stem
        try:
            with open(yaml_file, encoding="utf-8") as f:
                file_config = yaml.safe_load(f) or {}
        except (yaml.YAMLError, OSError) as e:
            logger.warning(
                "config_file_load_failed",
                path=str(yaml_file),
                error=str(e),
            )
            continue

        try:
            validate_config_section(
                file_config, schema_name, str(yaml_file), config_dir
            )
        except ValueError as e:
            logger.error(
                "config_validation_failed",
                path=str(yaml_file),
                schema=schema_name,
                error=str(e),
            )
            raise

        merged_config = deep_merge(merged_config, file_config)
        loaded += 1
        logger.debug("config_file_loaded", path=str(yaml_file), schema=schema_name)

    logger.info("config_load_complete", file_count=loaded)
    return merged_config


def _parse_clock(value: str) -> time:
    hours, minutes = value.split(":", 1)
    return time(int(hours), int(minutes))


class Settings(BaseSettings):
    """Application settings.

    Secrets are loaded from the environment / .env file.
    Non-sensitive config is loaded from config/*.yaml with fallback to defaults.
    """

    model_config = SettingsConfigDict(
        env_file=".env" if Path(".env").exists() else None,
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # === SECRETS (from .env) ===

    postgres_password: SecretStr | None = Field(
        default=None, description="PostgreSQL password (from .env, optional)"
    )

    # === NON-SENSITIVE CONFIG (from config/*.yaml or defaults) ===

    def __init__(self, **data: Any):
        """Initialize settings with auto-loaded configs from all YAML files."""
        config = load_all_configs()

        super().__init__(**data)
        self._apply_yaml_defaults(config)

    def _apply_yaml_defaults(self, config: dict[str, Any]) -> None:
        """Apply YAML-sourced defaults without overriding env-provided values."""

        fields_from_env = set(self.model_fields_set)

        def _assign(field_name: str, value: Any) -> None:
            if value is None:
                return
            if field_name in fields_from_env:
                return

            object.__setattr__(self, field_name, value)
            self.model_fields_set.add(field_name)

        database_config = config.get("database") or {}
        _assign("database_type", database_config.get("type"))
        _assign("db_path", database_config.get("path"))

        postgres_config = config.get("postgres") or {}
        _assign("postgres_host", postgres_config.get("host"))
        _assign("postgres_port", postgres_config.get("port"))
        _assign("postgres_database", postgres_config.get("database"))
        _assign("postgres_user", postgres_config.get("user"))
        _assign("postgres_ssl_mode", postgres_config.get("ssl_mode"))

        business_config = config.get("business_time") or {}
        _assign(
            "business_timezone_offset_hours",
            business_config.get("timezone_offset_hours"),
        )

        guard_config = config.get("duplicate_guard") or {}
        _assign("duplicate_guard_window_seconds", guard_config.get("window_seconds"))

        tickets_config = config.get("tickets") or {}
        _assign("ticket_opened_flat_points", tickets_config.get("opened_flat_points"))
        _assign(
            "duplicate_subject_similarity",
            tickets_config.get("duplicate_subject_similarity"),
        )
        _assign(
            "duplicate_subject_lookback_days",
            tickets_config.get("duplicate_subject_lookback_days"),
        )
        _assign(
            "self_assign_min_age_hours",
            tickets_config.get("self_assign_min_age_hours"),
        )

        milestone_config = config.get("milestones") or {}
        _assign("milestone_thresholds", milestone_config.get("thresholds"))
        _assign("milestone_bonus_points", milestone_config.get("bonus_points"))

        shift_config = config.get("shifts") or {}
        _assign("shift_early_window_minutes", shift_config.get("early_window_minutes"))
        _assign(
            "shift_on_time_grace_minutes", shift_config.get("on_time_grace_minutes")
        )
        _assign(
            "shift_late_threshold_minutes", shift_config.get("late_threshold_minutes")
        )

        break_config = config.get("breaks") or {}
        _assign("break_grace_minutes", break_config.get("grace_minutes"))

        cycle_config = config.get("badge_cycle") or {}
        _assign("badge_cycle_window_start", cycle_config.get("window_start"))
        _assign("badge_cycle_window_end", cycle_config.get("window_end"))
        _assign("client_hero_points", cycle_config.get("client_hero_points"))
        _assign("perfect_day_points", cycle_config.get("perfect_day_points"))

        api_config = config.get("api") or {}
        _assign("cors_origins", api_config.get("cors_origins"))

        logging_config = config.get("logging") or {}
        _assign("log_level", logging_config.get("level"))
        _assign("json_logs", logging_config.get("json"))

    # Database configuration
    database_type: Literal["sqlite", "postgres"] = Field(
        default="sqlite", description="Database type: sqlite or postgres"
    )
    db_path: str = Field(
        default="data/bpal_scoring.db", description="SQLite database path"
    )
    sqlite_busy_timeout_seconds: float = Field(
        default=SQLITE_BUSY_TIMEOUT_SECONDS_DEFAULT,
        gt=0,
        description="How long a SQLite writer waits for the database lock",
    )
    postgres_host: str = Field(default="localhost", description="PostgreSQL host")
    postgres_port: int = Field(default=5432, description="PostgreSQL port")
    postgres_database: str = Field(
        default="bpal", description="PostgreSQL database name"
    )
    postgres_user: str = Field(default="postgres", description="PostgreSQL user")
    postgres_min_connections: int = Field(
        default=POSTGRES_MIN_CONNECTIONS_DEFAULT,
        description="Minimum pooled PostgreSQL connections",
    )
    postgres_max_connections: int = Field(
        default=POSTGRES_MAX_CONNECTIONS_DEFAULT,
        description="Maximum pooled PostgreSQL connections",
    )
    postgres_statement_timeout_ms: int = Field(
        default=POSTGRES_STATEMENT_TIMEOUT_MS_DEFAULT,
        description="Statement timeout applied to each pooled connection",
    )
    postgres_connect_timeout_seconds: int = Field(
        default=POSTGRES_CONNECT_TIMEOUT_SECONDS_DEFAULT,
        description="Connection timeout when opening new connections",
    )
    postgres_application_name: str = Field(
        default=POSTGRES_APPLICATION_NAME_DEFAULT,
        description="application_name reported to PostgreSQL",
    )
    postgres_ssl_mode: str | None = Field(
        default=None, description="Optional sslmode for PostgreSQL connections"
    )

    # Business time
    business_timezone_offset_hours: float = Field(
        default=DEFAULT_BUSINESS_TIMEZONE_OFFSET_HOURS,
        ge=-12,
        le=14,
        description="Fixed UTC offset of the business timezone",
    )

    # Request guard
    duplicate_guard_window_seconds: float = Field(
        default=DEFAULT_DUPLICATE_GUARD_WINDOW_SECONDS,
        gt=0,
        description="Identical requests inside this window are no-ops",
    )

    # Ticket rules
    ticket_opened_flat_points: int = Field(
        default=DEFAULT_TICKET_OPENED_FLAT_POINTS,
        description="Flat bonus added to priority points on ticket creation",
    )
    duplicate_subject_similarity: float = Field(
        default=DEFAULT_DUPLICATE_SUBJECT_SIMILARITY,
        ge=0.0,
        le=1.0,
        description="Subject similarity at which a new ticket counts as duplicate",
    )
    duplicate_subject_lookback_days: int = Field(
        default=DEFAULT_DUPLICATE_SUBJECT_LOOKBACK_DAYS,
        ge=0,
        description="Days of tickets compared for duplicate subjects",
    )
    self_assign_min_age_hours: float = Field(
        default=DEFAULT_SELF_ASSIGN_MIN_AGE_HOURS,
        ge=0,
        description="Minimum ticket age before self-assignment earns points",
    )

    # Milestones
    milestone_thresholds: list[int] = Field(
        default_factory=lambda: list(DEFAULT_MILESTONE_THRESHOLDS),
        description="Daily ticket counts that earn a one-time bonus",
    )
    milestone_bonus_points: int = Field(
        default=DEFAULT_MILESTONE_BONUS_POINTS, description="Points per milestone"
    )

    # Shifts and breaks
    shift_early_window_minutes: int = Field(
        default=DEFAULT_SHIFT_EARLY_WINDOW_MINUTES, ge=0
    )
    shift_on_time_grace_minutes: int = Field(
        default=DEFAULT_SHIFT_ON_TIME_GRACE_MINUTES, ge=0
    )
    shift_late_threshold_minutes: int = Field(
        default=DEFAULT_SHIFT_LATE_THRESHOLD_MINUTES, ge=0
    )
    break_grace_minutes: float = Field(default=DEFAULT_BREAK_GRACE_MINUTES, ge=0)

    # Daily badge cycle
    badge_cycle_window_start: str = Field(
        default=DEFAULT_BADGE_CYCLE_WINDOW_START,
        description="Business-local HH:MM from which the cycle scores today",
    )
    badge_cycle_window_end: str = Field(
        default=DEFAULT_BADGE_CYCLE_WINDOW_END,
        description="Business-local HH:MM until which the cycle scores today",
    )
    client_hero_points: int = Field(default=DEFAULT_CLIENT_HERO_POINTS)
    perfect_day_points: int = Field(default=DEFAULT_PERFECT_DAY_POINTS)

    # HTTP API
    cors_origins: list[str] = Field(
        default_factory=lambda: ["*"], description="Allowed CORS origins"
    )

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    json_logs: bool = Field(default=False, description="Emit JSON log lines")

    @field_validator("milestone_thresholds")
    @classmethod
    def _sorted_thresholds(cls, v: list[int]) -> list[int]:
        if any(threshold <= 0 for threshold in v):
            raise ValueError("milestone thresholds must be positive")
        return sorted(set(v))

    @field_validator("badge_cycle_window_start", "badge_cycle_window_end")
    @classmethod
    def _valid_clock(cls, v: str) -> str:
        try:
            _parse_clock(v)
        except ValueError as e:
            raise ValueError(f"expected HH:MM, got {v!r}") from e
        return v

    @property
    def badge_cycle_window(self) -> tuple[time, time]:
        """Business-local [start, end] of the end-of-day cycle window."""
        return (
            _parse_clock(self.badge_cycle_window_start),
            _parse_clock(self.badge_cycle_window_end),
        )


# Global settings instance
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get or create global settings instance.

    Returns:
        Settings instance
    """
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
