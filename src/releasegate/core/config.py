"""
Configuration schema and loading for releasegate.

Uses Pydantic for validation and Dynaconf for multi-source loading.
Settings are frozen (immutable) after construction. Every section has
defaults, so an empty settings file is valid.
"""

import os
import re
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator


class RetrySettings(BaseModel):
    """Retry behavior for side-effecting activities."""

    model_config = {"frozen": True}

    max_attempts: int = Field(default=3, gt=0, description="Total attempts, including the first")
    initial_delay_seconds: float = Field(default=1.0, gt=0, description="Initial backoff delay")
    max_delay_seconds: float = Field(default=60.0, gt=0, description="Maximum backoff delay")
    exponential_base: float = Field(default=2.0, gt=1.0, description="Exponential backoff base")


class ActivitySettings(BaseModel):
    """Execution limits for a single activity attempt."""

    model_config = {"frozen": True}

    start_to_close_seconds: float = Field(
        default=300.0,
        gt=0,
        description="Maximum duration of one attempt before it counts as failed",
    )


class GateSettings(BaseModel):
    """Gate behavior that is not carried by the stage catalog."""

    model_config = {"frozen": True}

    test_timeout_hours: float = Field(
        default=96.0,
        gt=0,
        description="Fixed deadline for every test gate (stage timeouts are not used)",
    )


class CatalogSettings(BaseModel):
    """Where stage catalogs are looked up."""

    model_config = {"frozen": True}

    directory: Path | None = Field(
        default=None,
        description="Directory of <config_id>.json / .yaml catalog files",
    )
    default_config_id: str | None = Field(
        default=None,
        description="Catalog used when a request names none",
    )


class RuntimeSettings(BaseModel):
    """In-process durable runtime tuning."""

    model_config = {"frozen": True}

    poll_interval_seconds: float = Field(
        default=0.05,
        gt=0,
        description="Longest real-time sleep between clock checks while a run waits",
    )
    detached_workers: int = Field(default=4, gt=0, description="Worker threads for fire-and-forget activities")


class LoggingSettings(BaseModel):
    """Structured logging output."""

    model_config = {"frozen": True}

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    json_output: bool = False

    @field_validator("level", mode="before")
    @classmethod
    def normalize_level(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.upper()
        return v


class ReleaseGateSettings(BaseModel):
    """Top-level releasegate configuration."""

    model_config = {"frozen": True}

    retry: RetrySettings = Field(default_factory=RetrySettings)
    activity: ActivitySettings = Field(default_factory=ActivitySettings)
    gates: GateSettings = Field(default_factory=GateSettings)
    catalog: CatalogSettings = Field(default_factory=CatalogSettings)
    runtime: RuntimeSettings = Field(default_factory=RuntimeSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


# Regex pattern for ${VAR} or ${VAR:-default} syntax
_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Z_][A-Z0-9_]*)(?::-([^}]*))?\}")


def _expand_env_vars(config: dict[str, Any]) -> dict[str, Any]:
    """Recursively expand ${VAR} and ${VAR:-default} patterns in config values.

    Raises:
        ValueError: If a referenced environment variable is unset and has no default.
    """

    def _expand_string(value: str) -> str:
        def replacer(match: re.Match[str]) -> str:
            var_name = match.group(1)
            default = match.group(2)
            env_value = os.environ.get(var_name)
            if env_value is not None:
                return env_value
            if default is not None:
                return default
            raise ValueError(f"Required environment variable '{var_name}' is not set")

        return _ENV_VAR_PATTERN.sub(replacer, value)

    def _expand_value(value: Any) -> Any:
        if isinstance(value, str):
            return _expand_string(value)
        elif isinstance(value, dict):
            return {k: _expand_value(v) for k, v in value.items()}
        elif isinstance(value, list):
            return [_expand_value(item) for item in value]
        else:
            return value

    return {k: _expand_value(v) for k, v in config.items()}


def _lower_keys(value: Any) -> Any:
    """Lowercase dict keys recursively (Dynaconf uppercases env-provided keys)."""
    if isinstance(value, dict):
        return {str(k).lower(): _lower_keys(v) for k, v in value.items()}
    return value


def load_settings(config_path: Path) -> ReleaseGateSettings:
    """Load settings from YAML file with environment variable overrides.

    Precedence:
    1. Environment variables (RELEASEGATE_*) - highest priority
    2. Config file
    3. Defaults from the Pydantic schema - lowest priority

    Environment variable format: RELEASEGATE_RETRY__MAX_ATTEMPTS for nested keys.

    Raises:
        ValidationError: If configuration fails Pydantic validation
        FileNotFoundError: If config file doesn't exist
        ValueError: If a required ${VAR} reference is unset
    """
    from dynaconf import Dynaconf

    # Dynaconf silently accepts missing files
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    dynaconf_settings = Dynaconf(
        envvar_prefix="RELEASEGATE",
        settings_files=[str(config_path)],
        environments=False,
        load_dotenv=False,
        merge_enabled=True,
    )

    internal_keys = {"LOAD_DOTENV", "ENVIRONMENTS", "SETTINGS_FILES"}
    raw_config = {k: v for k, v in dynaconf_settings.as_dict().items() if k not in internal_keys}
    raw_config = _lower_keys(raw_config)
    raw_config = _expand_env_vars(raw_config)

    return ReleaseGateSettings(**raw_config)
