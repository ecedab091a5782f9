"""Tests for configuration schema and loading."""

from pathlib import Path

import pytest
from pydantic import ValidationError


class TestRetrySettings:
    """Retry configuration validation."""

    def test_defaults(self) -> None:
        from releasegate.core.config import RetrySettings

        settings = RetrySettings()
        assert settings.max_attempts == 3
        assert settings.initial_delay_seconds == 1.0
        assert settings.max_delay_seconds == 60.0
        assert settings.exponential_base == 2.0

    def test_max_attempts_must_be_positive(self) -> None:
        from releasegate.core.config import RetrySettings

        with pytest.raises(ValidationError):
            RetrySettings(max_attempts=0)

    def test_delays_must_be_positive(self) -> None:
        from releasegate.core.config import RetrySettings

        with pytest.raises(ValidationError):
            RetrySettings(initial_delay_seconds=-1.0)

    def test_settings_are_frozen(self) -> None:
        from releasegate.core.config import RetrySettings

        settings = RetrySettings()
        with pytest.raises(ValidationError):
            settings.max_attempts = 5  # type: ignore[misc]


class TestSectionDefaults:
    def test_gate_and_activity_defaults(self) -> None:
        from releasegate.core.config import ReleaseGateSettings

        settings = ReleaseGateSettings()
        assert settings.gates.test_timeout_hours == 96.0
        assert settings.activity.start_to_close_seconds == 300.0
        assert settings.runtime.detached_workers == 4
        assert settings.catalog.directory is None
        assert settings.logging.level == "INFO"

    def test_logging_level_normalized(self) -> None:
        from releasegate.core.config import LoggingSettings

        assert LoggingSettings(level="debug").level == "DEBUG"

    def test_logging_level_rejects_unknown(self) -> None:
        from releasegate.core.config import LoggingSettings

        with pytest.raises(ValidationError):
            LoggingSettings(level="verbose")

    def test_test_timeout_must_be_positive(self) -> None:
        from releasegate.core.config import GateSettings

        with pytest.raises(ValidationError):
            GateSettings(test_timeout_hours=0)


class TestLoadSettings:
    """Loading settings files through Dynaconf."""

    def test_load_from_yaml_file(self, tmp_path: Path) -> None:
        from releasegate.core.config import load_settings

        config_file = tmp_path / "settings.yaml"
        config_file.write_text(
            """
retry:
  max_attempts: 5
gates:
  test_timeout_hours: 48
catalog:
  directory: catalogs
  default_config_id: standard
"""
        )

        settings = load_settings(config_file)

        assert settings.retry.max_attempts == 5
        assert settings.retry.initial_delay_seconds == 1.0
        assert settings.gates.test_timeout_hours == 48
        assert settings.catalog.directory == Path("catalogs")
        assert settings.catalog.default_config_id == "standard"

    def test_empty_file_gives_defaults(self, tmp_path: Path) -> None:
        from releasegate.core.config import ReleaseGateSettings, load_settings

        config_file = tmp_path / "settings.yaml"
        config_file.write_text("")

        assert load_settings(config_file) == ReleaseGateSettings()

    def test_load_with_env_override(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        from releasegate.core.config import load_settings

        config_file = tmp_path / "settings.yaml"
        config_file.write_text("retry:\n  max_attempts: 5\n")
        monkeypatch.setenv("RELEASEGATE_RETRY__MAX_ATTEMPTS", "7")

        settings = load_settings(config_file)

        assert settings.retry.max_attempts == 7

    def test_env_var_expansion(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        from releasegate.core.config import load_settings

        config_file = tmp_path / "settings.yaml"
        config_file.write_text('catalog:\n  directory: "${CATALOG_DIR}"\n  default_config_id: "${DEFAULT_FLOW:-standard}"\n')
        monkeypatch.setenv("CATALOG_DIR", "/srv/catalogs")
        monkeypatch.delenv("DEFAULT_FLOW", raising=False)

        settings = load_settings(config_file)

        assert settings.catalog.directory == Path("/srv/catalogs")
        assert settings.catalog.default_config_id == "standard"

    def test_missing_env_var_raises(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        from releasegate.core.config import load_settings

        config_file = tmp_path / "settings.yaml"
        config_file.write_text('catalog:\n  directory: "${CATALOG_DIR_NOT_SET}"\n')
        monkeypatch.delenv("CATALOG_DIR_NOT_SET", raising=False)

        with pytest.raises(ValueError, match="CATALOG_DIR_NOT_SET"):
            load_settings(config_file)

    def test_load_validates_schema(self, tmp_path: Path) -> None:
        from releasegate.core.config import load_settings

        config_file = tmp_path / "settings.yaml"
        config_file.write_text("retry:\n  max_attempts: -1\n")

        with pytest.raises(ValidationError):
            load_settings(config_file)

    def test_load_missing_file_raises_file_not_found(self, tmp_path: Path) -> None:
        from releasegate.core.config import load_settings

        with pytest.raises(FileNotFoundError):
            load_settings(tmp_path / "nonexistent.yaml")
