"""Stage catalogs: built-in defaults, the persisted record format, and sources.

Persisted format (JSON or YAML): an array of stage records

    [{"key": "bte_confirm", "name": "BTE item confirmation", "type": "approval",
      "enabled": true, "timeout": 72, "auto_pass": false, "order": 1}, ...]

or an object {"name": "...", "stages": [...]}. "timeout" is in hours.

Records are external data, so they are validated field by field here and
never passed through to the engine as loose dicts.
"""

from __future__ import annotations

import json
import math
from collections.abc import Mapping, Sequence
from datetime import timedelta
from pathlib import Path
from typing import Any, Protocol

import yaml

from releasegate.contracts.enums import StageKind
from releasegate.contracts.errors import CatalogValidationError, ConfigFetchFailed
from releasegate.contracts.stages import (
    STAGE_BTE_CONFIRM,
    STAGE_BTE_FINALIZE,
    STAGE_BTE_PREPARE,
    STAGE_BTE_TEST,
    STAGE_CLOSE_CONFIRM,
    STAGE_END_CONFIRM,
    STAGE_GRAY_CONFIRM,
    STAGE_GRAY_FINALIZE,
    STAGE_GRAY_PREPARE,
    STAGE_GRAY_TEST,
    STAGE_PROD_FINALIZE,
    STAGE_PROD_PREPARE,
    STAGE_PROD_TEST,
    FlowConfig,
    StageSpec,
)

_CATALOG_SUFFIXES = (".json", ".yaml", ".yml")


def _stage(key: str, name: str, kind: StageKind, hours: int, order: int, *, auto_pass: bool = False) -> StageSpec:
    return StageSpec(
        key=key,
        name=name,
        kind=kind,
        enabled=True,
        timeout=timedelta(hours=hours),
        auto_pass=auto_pass,
        order=order,
    )


def default_flow_config() -> FlowConfig:
    """The built-in 9-stage catalog used when a catalog cannot be resolved."""
    return FlowConfig(
        name="default",
        is_default=True,
        stages=(
            _stage(STAGE_BTE_CONFIRM, "BTE item confirmation", StageKind.APPROVAL, 72, 1),
            _stage(STAGE_BTE_FINALIZE, "BTE finalization", StageKind.APPROVAL, 48, 2),
            _stage(STAGE_BTE_PREPARE, "BTE version preparation", StageKind.PREPARE, 24, 3),
            _stage(STAGE_BTE_TEST, "BTE testing", StageKind.TEST, 96, 4),
            _stage(STAGE_PROD_FINALIZE, "Production finalization", StageKind.APPROVAL, 48, 5),
            _stage(STAGE_PROD_PREPARE, "Production version preparation", StageKind.PREPARE, 24, 6),
            _stage(STAGE_PROD_TEST, "Production testing", StageKind.TEST, 96, 7),
            _stage(STAGE_CLOSE_CONFIRM, "Close confirmation", StageKind.APPROVAL, 72, 8, auto_pass=True),
            _stage(STAGE_END_CONFIRM, "End confirmation", StageKind.APPROVAL, 48, 9, auto_pass=True),
        ),
    )


def full_flow_config() -> FlowConfig:
    """The 13-stage catalog with gray (canary) stages between BTE and production."""
    return FlowConfig(
        name="full",
        stages=(
            _stage(STAGE_BTE_CONFIRM, "BTE item confirmation", StageKind.APPROVAL, 72, 1),
            _stage(STAGE_BTE_FINALIZE, "BTE finalization", StageKind.APPROVAL, 48, 2),
            _stage(STAGE_BTE_PREPARE, "BTE version preparation", StageKind.PREPARE, 24, 3),
            _stage(STAGE_BTE_TEST, "BTE testing", StageKind.TEST, 96, 4),
            _stage(STAGE_GRAY_CONFIRM, "Gray item confirmation", StageKind.APPROVAL, 48, 5),
            _stage(STAGE_GRAY_FINALIZE, "Gray finalization", StageKind.APPROVAL, 24, 6),
            _stage(STAGE_GRAY_PREPARE, "Gray version preparation", StageKind.PREPARE, 24, 7),
            _stage(STAGE_GRAY_TEST, "Gray testing", StageKind.TEST, 96, 8),
            _stage(STAGE_PROD_FINALIZE, "Production finalization", StageKind.APPROVAL, 48, 9),
            _stage(STAGE_PROD_PREPARE, "Production version preparation", StageKind.PREPARE, 24, 10),
            _stage(STAGE_PROD_TEST, "Production testing", StageKind.TEST, 96, 11),
            _stage(STAGE_CLOSE_CONFIRM, "Close confirmation", StageKind.APPROVAL, 72, 12, auto_pass=True),
            _stage(STAGE_END_CONFIRM, "End confirmation", StageKind.APPROVAL, 48, 13, auto_pass=True),
        ),
    )


# =============================================================================
# Persisted record format
# =============================================================================


def _require(record: Mapping[str, Any], field: str, expected: type | tuple[type, ...], where: str) -> Any:
    if field not in record:
        raise CatalogValidationError(f"{where}: missing required field {field!r}")
    return _typed(record[field], field, expected, where)


def _typed(value: Any, field: str, expected: type | tuple[type, ...], where: str) -> Any:
    # bool is an int subclass; never accept it where a number is expected
    if isinstance(value, bool) and bool not in (expected if isinstance(expected, tuple) else (expected,)):
        raise CatalogValidationError(f"{where}: field {field!r} must not be a boolean")
    if not isinstance(value, expected):
        raise CatalogValidationError(f"{where}: field {field!r} has invalid type {type(value).__name__}")
    return value


def stage_from_record(record: Mapping[str, Any], *, position: int = 0) -> StageSpec:
    """Build a StageSpec from one persisted stage record.

    Args:
        record: Mapping with the persisted fields
        position: 1-based position in the array, used for error messages and
            as the default "order"

    Raises:
        CatalogValidationError: On missing fields, wrong types, or unknown kinds
    """
    where = f"stage #{position}"
    if not isinstance(record, Mapping):
        raise CatalogValidationError(f"{where}: expected an object, got {type(record).__name__}")

    key = _require(record, "key", str, where)
    where = f"stage {key!r}"
    raw_kind = _require(record, "type", str, where)
    try:
        kind = StageKind(raw_kind.lower())
    except ValueError:
        allowed = ", ".join(k.value for k in StageKind)
        raise CatalogValidationError(f"{where}: unknown stage type {raw_kind!r} (expected one of {allowed})") from None

    hours = _require(record, "timeout", (int, float), where)
    if not math.isfinite(hours) or hours <= 0:
        raise CatalogValidationError(f"{where}: timeout must be a positive number of hours, got {hours}")
    try:
        timeout = timedelta(hours=hours)
    except (OverflowError, ValueError):
        raise CatalogValidationError(f"{where}: timeout of {hours} hours is out of range") from None

    return StageSpec(
        key=key,
        name=_typed(record.get("name", key), "name", str, where),
        kind=kind,
        enabled=_typed(record.get("enabled", True), "enabled", bool, where),
        timeout=timeout,
        auto_pass=_typed(record.get("auto_pass", False), "auto_pass", bool, where),
        order=_typed(record.get("order", position), "order", int, where),
    )


def flow_config_from_records(
    records: Sequence[Mapping[str, Any]],
    *,
    config_id: str | None = None,
    name: str = "",
) -> FlowConfig:
    """Build a FlowConfig from an array of persisted stage records."""
    if isinstance(records, (str, bytes)) or not isinstance(records, Sequence):
        raise CatalogValidationError(f"stage list must be an array, got {type(records).__name__}")
    stages = tuple(stage_from_record(record, position=index) for index, record in enumerate(records, start=1))
    return FlowConfig(stages=stages, name=name, config_id=config_id)


def parse_flow_config(data: Any, *, config_id: str | None = None) -> FlowConfig:
    """Parse decoded JSON/YAML in either the array or the {name, stages} form."""
    if isinstance(data, Mapping):
        if "stages" not in data:
            raise CatalogValidationError("catalog object must contain a 'stages' array")
        name = data.get("name", config_id or "")
        if not isinstance(name, str):
            raise CatalogValidationError("catalog 'name' must be a string")
        return flow_config_from_records(data["stages"], config_id=config_id, name=name)
    return flow_config_from_records(data, config_id=config_id, name=config_id or "")


def flow_config_to_records(config: FlowConfig) -> list[dict[str, Any]]:
    """Render a FlowConfig in the persisted record format (stored order)."""
    records = []
    for stage in config.stages:
        hours = stage.timeout / timedelta(hours=1)
        records.append(
            {
                "key": stage.key,
                "name": stage.name,
                "type": stage.kind.value,
                "enabled": stage.enabled,
                "timeout": int(hours) if hours.is_integer() else hours,
                "auto_pass": stage.auto_pass,
                "order": stage.order,
            }
        )
    return records


def load_flow_config_file(path: Path, *, config_id: str | None = None) -> FlowConfig:
    """Read and validate a catalog file (.json, .yaml or .yml).

    Raises:
        OSError: If the file cannot be read
        CatalogValidationError: If the content is malformed or invalid
    """
    try:
        text = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise CatalogValidationError(f"{path.name}: catalog is not valid UTF-8: {e}") from e
    try:
        if path.suffix == ".json":
            data = json.loads(text)
        else:
            data = yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise CatalogValidationError(f"{path.name}: cannot parse catalog: {e}") from e
    return parse_flow_config(data, config_id=config_id if config_id is not None else path.stem)


# =============================================================================
# Catalog sources
# =============================================================================


class CatalogSource(Protocol):
    """Lookup of stage catalogs by flow-config id."""

    def get(self, config_id: str) -> FlowConfig:
        """Return the catalog for config_id.

        Raises:
            ConfigFetchFailed: If the catalog does not exist or is invalid.
        """
        ...


class InMemoryCatalogSource:
    """Catalogs held in a dict; used by tests and embedded callers."""

    def __init__(self, catalogs: Mapping[str, FlowConfig] | None = None) -> None:
        self._catalogs = dict(catalogs or {})

    def add(self, config_id: str, config: FlowConfig) -> None:
        self._catalogs[config_id] = config

    def get(self, config_id: str) -> FlowConfig:
        try:
            return self._catalogs[config_id]
        except KeyError:
            raise ConfigFetchFailed(config_id, "no such catalog") from None


class DirectoryCatalogSource:
    """Catalogs stored as <config_id>.json / .yaml / .yml files in a directory."""

    def __init__(self, directory: Path) -> None:
        self._directory = directory

    def _find(self, config_id: str) -> Path:
        if not config_id or Path(config_id).name != config_id or config_id.startswith("."):
            raise ConfigFetchFailed(config_id, "invalid catalog id")
        for suffix in _CATALOG_SUFFIXES:
            candidate = self._directory / f"{config_id}{suffix}"
            if candidate.is_file():
                return candidate
        raise ConfigFetchFailed(config_id, f"no catalog file in {self._directory}")

    def get(self, config_id: str) -> FlowConfig:
        path = self._find(config_id)
        try:
            return load_flow_config_file(path, config_id=config_id)
        except (OSError, CatalogValidationError) as e:
            raise ConfigFetchFailed(config_id, str(e)) from e
