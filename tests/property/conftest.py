# tests/property/conftest.py
"""Shared Hypothesis strategies for property-based tests.

Strategy Categories:
- Stage keys and stage specs
- Whole stage catalogs (unique keys, arbitrary orders, some disabled)
- Persisted catalog records, including malformed ones

Usage:
    from tests.property.conftest import flow_configs

    @given(config=flow_configs())
    def test_enabled_stages_sorted(config: FlowConfig) -> None:
        ...
"""

from __future__ import annotations

from datetime import timedelta

from hypothesis import strategies as st

from releasegate.contracts import STAGE_COMPLETED, FlowConfig, StageKind, StageSpec

# Keys double as signal channel prefixes, so keep them identifier-like
stage_keys = st.from_regex(r"[a-z][a-z0-9_]{0,15}", fullmatch=True).filter(lambda k: k != STAGE_COMPLETED)

stage_names = st.text(min_size=1, max_size=30)

stage_kinds = st.sampled_from(list(StageKind))

# Whole hours keep record rendering exact
timeout_hours = st.integers(min_value=1, max_value=24 * 30)

stage_orders = st.integers(min_value=-100, max_value=100)


@st.composite
def stage_specs(draw: st.DrawFn, key: str | None = None) -> StageSpec:
    return StageSpec(
        key=key if key is not None else draw(stage_keys),
        name=draw(stage_names),
        kind=draw(stage_kinds),
        enabled=draw(st.booleans()),
        timeout=timedelta(hours=draw(timeout_hours)),
        auto_pass=draw(st.booleans()),
        order=draw(stage_orders),
    )


@st.composite
def flow_configs(draw: st.DrawFn, min_size: int = 0, max_size: int = 12) -> FlowConfig:
    """Catalogs with unique keys in arbitrary stored order."""
    keys = draw(st.lists(stage_keys, min_size=min_size, max_size=max_size, unique=True))
    stages = tuple(draw(stage_specs(key=key)) for key in keys)
    return FlowConfig(stages=stages, name="generated", config_id="generated")


# Values that are never valid for a numeric "timeout" field
non_numeric_values = st.one_of(st.none(), st.booleans(), st.text(max_size=5), st.lists(st.integers(), max_size=2))

non_positive_hours = st.one_of(st.integers(max_value=0), st.floats(max_value=0.0, allow_nan=False, allow_infinity=False))
