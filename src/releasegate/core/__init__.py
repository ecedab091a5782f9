"""Core infrastructure: Configuration, Catalogs, Events, Logging."""

from releasegate.core.catalog import (
    CatalogSource,
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
from releasegate.core.config import (
    ActivitySettings,
    CatalogSettings,
    GateSettings,
    LoggingSettings,
    ReleaseGateSettings,
    RetrySettings,
    RuntimeSettings,
    load_settings,
)
from releasegate.core.events import (
    EventBus,
    EventBusProtocol,
    NullEventBus,
)
from releasegate.core.logging import configure_logging, get_logger

__all__ = [
    "ActivitySettings",
    "CatalogSettings",
    "CatalogSource",
    "DirectoryCatalogSource",
    "EventBus",
    "EventBusProtocol",
    "GateSettings",
    "InMemoryCatalogSource",
    "LoggingSettings",
    "NullEventBus",
    "ReleaseGateSettings",
    "RetrySettings",
    "RuntimeSettings",
    "configure_logging",
    "default_flow_config",
    "flow_config_from_records",
    "flow_config_to_records",
    "full_flow_config",
    "get_logger",
    "load_flow_config_file",
    "load_settings",
    "parse_flow_config",
    "stage_from_record",
]
