"""Stage catalog data model.

A FlowConfig is pure data: an ordered list of StageSpec records fetched once
at run start and never mutated for the lifetime of that run.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta

from releasegate.contracts.enums import StageKind
from releasegate.contracts.errors import CatalogValidationError

# Sentinel current_stage value once every enabled stage has resolved.
STAGE_COMPLETED = "completed"

# Well-known stage keys used by the built-in catalogs
STAGE_BTE_CONFIRM = "bte_confirm"
STAGE_BTE_FINALIZE = "bte_finalize"
STAGE_BTE_PREPARE = "bte_prepare"
STAGE_BTE_TEST = "bte_test"
STAGE_GRAY_CONFIRM = "gray_confirm"
STAGE_GRAY_FINALIZE = "gray_finalize"
STAGE_GRAY_PREPARE = "gray_prepare"
STAGE_GRAY_TEST = "gray_test"
STAGE_PROD_FINALIZE = "prod_finalize"
STAGE_PROD_PREPARE = "prod_prepare"
STAGE_PROD_TEST = "prod_test"
STAGE_CLOSE_CONFIRM = "close_confirm"
STAGE_END_CONFIRM = "end_confirm"


@dataclass(frozen=True, slots=True)
class StageSpec:
    """One gated unit of the upgrade pipeline.

    Attributes:
        key: Identifier, unique within a catalog; also names signal channels
        name: Human-readable stage name (used in notifications and messages)
        kind: Which gate resolves the stage
        enabled: Disabled stages are skipped entirely
        timeout: Gate deadline (ignored by test gates, which use a fixed one)
        auto_pass: An unanswered approval past its deadline counts as passed
        order: Position in the run; stages run in ascending order
    """

    key: str
    name: str
    kind: StageKind
    enabled: bool = True
    timeout: timedelta = timedelta(hours=24)
    auto_pass: bool = False
    order: int = 0

    def __post_init__(self) -> None:
        if not self.key:
            raise CatalogValidationError("stage key must not be empty")
        if self.key == STAGE_COMPLETED:
            raise CatalogValidationError(f"stage key {STAGE_COMPLETED!r} is reserved")
        if self.timeout <= timedelta(0):
            raise CatalogValidationError(f"stage {self.key}: timeout must be positive, got {self.timeout}")


@dataclass(frozen=True, slots=True)
class FlowConfig:
    """An ordered stage catalog.

    Stage keys must be unique. The stored sequence is preserved as given;
    enabled_stages() applies the execution order.
    """

    stages: tuple[StageSpec, ...]
    name: str = ""
    config_id: str | None = None
    is_default: bool = field(default=False, compare=False)

    def __post_init__(self) -> None:
        seen: set[str] = set()
        for stage in self.stages:
            if stage.key in seen:
                raise CatalogValidationError(f"duplicate stage key {stage.key!r}")
            seen.add(stage.key)

    def enabled_stages(self) -> list[StageSpec]:
        """Enabled stages in ascending order (stable for equal orders)."""
        return sorted((s for s in self.stages if s.enabled), key=lambda s: s.order)

    def get(self, key: str) -> StageSpec:
        for stage in self.stages:
            if stage.key == key:
                return stage
        raise KeyError(key)

    def next_stage_after(self, key: str) -> str:
        """Key of the enabled stage that follows `key`, or STAGE_COMPLETED."""
        enabled = self.enabled_stages()
        for index, stage in enumerate(enabled):
            if stage.key == key:
                if index + 1 < len(enabled):
                    return enabled[index + 1].key
                return STAGE_COMPLETED
        raise KeyError(key)
