"""Tests for stage catalogs: built-ins, record parsing, and sources."""

import json
from datetime import timedelta
from pathlib import Path
from typing import Any

import pytest

from releasegate.contracts import CatalogValidationError, ConfigFetchFailed, StageKind
from releasegate.core.catalog import (
    DirectoryCatalogSource,
    InMemoryCatalogSource,
    default_flow_config,
    flow_config_from_records,
    flow_config_to_records,
    full_flow_config,
    load_flow_config_file,
    parse_flow_config,
    stage_from_record,
)
from tests.fixtures.catalogs import approve_then_test_flow


def _record(**overrides: Any) -> dict[str, Any]:
    record: dict[str, Any] = {"key": "bte_confirm", "name": "BTE item confirmation", "type": "approval", "timeout": 72}
    record.update(overrides)
    return record


class TestBuiltinCatalogs:
    def test_default_catalog_sequence(self) -> None:
        config = default_flow_config()

        assert config.is_default
        assert [(s.key, s.kind, s.timeout / timedelta(hours=1), s.auto_pass) for s in config.enabled_stages()] == [
            ("bte_confirm", StageKind.APPROVAL, 72, False),
            ("bte_finalize", StageKind.APPROVAL, 48, False),
            ("bte_prepare", StageKind.PREPARE, 24, False),
            ("bte_test", StageKind.TEST, 96, False),
            ("prod_finalize", StageKind.APPROVAL, 48, False),
            ("prod_prepare", StageKind.PREPARE, 24, False),
            ("prod_test", StageKind.TEST, 96, False),
            ("close_confirm", StageKind.APPROVAL, 72, True),
            ("end_confirm", StageKind.APPROVAL, 48, True),
        ]

    def test_full_catalog_adds_gray_stages(self) -> None:
        keys = [s.key for s in full_flow_config().enabled_stages()]

        assert len(keys) == 13
        assert keys[4:8] == ["gray_confirm", "gray_finalize", "gray_prepare", "gray_test"]
        assert not full_flow_config().is_default


class TestStageFromRecord:
    """Field-by-field validation of persisted records."""

    def test_full_record(self) -> None:
        stage = stage_from_record(_record(enabled=False, auto_pass=True, order=8))

        assert stage.key == "bte_confirm"
        assert stage.kind is StageKind.APPROVAL
        assert stage.timeout == timedelta(hours=72)
        assert stage.enabled is False
        assert stage.auto_pass is True
        assert stage.order == 8

    def test_optional_fields_default(self) -> None:
        stage = stage_from_record({"key": "prod_test", "type": "test", "timeout": 96}, position=7)

        assert stage.name == "prod_test"
        assert stage.enabled is True
        assert stage.auto_pass is False
        assert stage.order == 7

    def test_fractional_hours(self) -> None:
        assert stage_from_record(_record(timeout=0.5)).timeout == timedelta(minutes=30)

    def test_type_is_case_insensitive(self) -> None:
        assert stage_from_record(_record(type="PREPARE")).kind is StageKind.PREPARE

    @pytest.mark.parametrize("missing", ["key", "type", "timeout"])
    def test_required_fields(self, missing: str) -> None:
        record = _record()
        del record[missing]

        with pytest.raises(CatalogValidationError, match=f"missing required field '{missing}'"):
            stage_from_record(record)

    def test_unknown_type_rejected(self) -> None:
        with pytest.raises(CatalogValidationError, match="unknown stage type 'deploy'"):
            stage_from_record(_record(type="deploy"))

    @pytest.mark.parametrize("timeout", [0, -24])
    def test_non_positive_timeout_rejected(self, timeout: int) -> None:
        with pytest.raises(CatalogValidationError, match="positive number of hours"):
            stage_from_record(_record(timeout=timeout))

    @pytest.mark.parametrize("timeout", [float("nan"), float("inf"), float("-inf")])
    def test_non_finite_timeout_rejected(self, timeout: float) -> None:
        with pytest.raises(CatalogValidationError, match="positive number of hours"):
            stage_from_record(_record(timeout=timeout))

    @pytest.mark.parametrize("timeout", [1e12, 10**20])
    def test_out_of_range_timeout_rejected(self, timeout: float) -> None:
        with pytest.raises(CatalogValidationError, match="out of range"):
            stage_from_record(_record(timeout=timeout))

    def test_boolean_timeout_rejected(self) -> None:
        with pytest.raises(CatalogValidationError, match="must not be a boolean"):
            stage_from_record(_record(timeout=True))

    def test_string_enabled_rejected(self) -> None:
        with pytest.raises(CatalogValidationError, match="'enabled' has invalid type str"):
            stage_from_record(_record(enabled="yes"))

    def test_non_mapping_rejected(self) -> None:
        with pytest.raises(CatalogValidationError, match="expected an object"):
            stage_from_record(["bte_confirm"])  # type: ignore[arg-type]


class TestParseFlowConfig:
    def test_array_form(self) -> None:
        config = parse_flow_config(
            [_record(order=2), {"key": "bte_test", "type": "test", "timeout": 96, "order": 1}],
            config_id="7",
        )

        assert config.config_id == "7"
        assert [s.key for s in config.enabled_stages()] == ["bte_test", "bte_confirm"]

    def test_object_form(self) -> None:
        config = parse_flow_config({"name": "hotfix", "stages": [_record()]})

        assert config.name == "hotfix"
        assert len(config.stages) == 1

    def test_object_without_stages_rejected(self) -> None:
        with pytest.raises(CatalogValidationError, match="'stages' array"):
            parse_flow_config({"name": "empty"})

    def test_string_is_not_a_stage_list(self) -> None:
        with pytest.raises(CatalogValidationError, match="must be an array"):
            flow_config_from_records("bte_confirm")  # type: ignore[arg-type]

    def test_duplicate_keys_rejected(self) -> None:
        with pytest.raises(CatalogValidationError, match="duplicate"):
            parse_flow_config([_record(), _record()])

    def test_records_round_trip_default_catalog(self) -> None:
        config = default_flow_config()

        assert parse_flow_config(flow_config_to_records(config), config_id=None).stages == config.stages

    def test_to_records_uses_hours(self) -> None:
        records = flow_config_to_records(approve_then_test_flow())

        assert records[0] == {
            "key": "bte_confirm",
            "name": "Bte Confirm",
            "type": "approval",
            "enabled": True,
            "timeout": 24,
            "auto_pass": False,
            "order": 1,
        }


class TestLoadFlowConfigFile:
    def test_json_file(self, tmp_path: Path) -> None:
        path = tmp_path / "standard.json"
        path.write_text(json.dumps([_record()]))

        config = load_flow_config_file(path)

        assert config.config_id == "standard"
        assert config.stages[0].key == "bte_confirm"

    def test_yaml_file(self, tmp_path: Path) -> None:
        path = tmp_path / "hotfix.yaml"
        path.write_text("name: hotfix\nstages:\n  - {key: prod_test, type: test, timeout: 96}\n")

        config = load_flow_config_file(path)

        assert config.name == "hotfix"
        assert config.stages[0].kind is StageKind.TEST

    def test_malformed_json(self, tmp_path: Path) -> None:
        path = tmp_path / "broken.json"
        path.write_text("[{")

        with pytest.raises(CatalogValidationError, match="cannot parse catalog"):
            load_flow_config_file(path)

    def test_undecodable_file(self, tmp_path: Path) -> None:
        path = tmp_path / "latin1.yaml"
        path.write_bytes(b"- {key: caf\xe9, type: test, timeout: 96}\n")

        with pytest.raises(CatalogValidationError, match="not valid UTF-8"):
            load_flow_config_file(path)


class TestInMemoryCatalogSource:
    def test_get_and_add(self) -> None:
        source = InMemoryCatalogSource()
        source.add("1", approve_then_test_flow())

        assert source.get("1") == approve_then_test_flow()

    def test_unknown_id(self) -> None:
        with pytest.raises(ConfigFetchFailed, match="no such catalog"):
            InMemoryCatalogSource().get("404")


class TestDirectoryCatalogSource:
    def test_finds_json_and_yaml(self, tmp_path: Path) -> None:
        (tmp_path / "1.json").write_text(json.dumps([_record()]))
        (tmp_path / "2.yml").write_text("- {key: prod_test, type: test, timeout: 96}\n")
        source = DirectoryCatalogSource(tmp_path)

        assert source.get("1").stages[0].key == "bte_confirm"
        assert source.get("2").stages[0].key == "prod_test"

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigFetchFailed, match="no catalog file"):
            DirectoryCatalogSource(tmp_path).get("missing")

    @pytest.mark.parametrize("config_id", ["../secrets", "a/b", "", ".hidden"])
    def test_path_like_ids_rejected(self, tmp_path: Path, config_id: str) -> None:
        with pytest.raises(ConfigFetchFailed, match="invalid catalog id"):
            DirectoryCatalogSource(tmp_path).get(config_id)

    def test_invalid_catalog_becomes_fetch_failure(self, tmp_path: Path) -> None:
        (tmp_path / "bad.json").write_text(json.dumps([{"key": "x", "type": "deploy", "timeout": 1}]))

        with pytest.raises(ConfigFetchFailed) as exc_info:
            DirectoryCatalogSource(tmp_path).get("bad")

        assert exc_info.value.config_id == "bad"
        assert "unknown stage type" in exc_info.value.reason
