"""External-effects adapter: the side effects an upgrade run performs.

The orchestrator never talks to catalogs, notification channels, or the
archive directly. It runs these methods as activities through the runtime,
which applies the timeout and retry policy and turns an exhausted retry
budget into ActivityFailed.
"""

from __future__ import annotations

from typing import Protocol

import structlog

from releasegate.contracts.errors import ConfigFetchFailed
from releasegate.contracts.stages import FlowConfig
from releasegate.core.catalog import CatalogSource, InMemoryCatalogSource, default_flow_config


class Notifier(Protocol):
    """Delivers human-readable progress messages (chat, mail, SMS, ...)."""

    def send(self, message: str) -> None: ...


class Archiver(Protocol):
    """Archives the knowledge produced by a completed upgrade."""

    def archive(self, version_id: str) -> None: ...


class LoggingNotifier:
    """Notifier that writes messages to the structured log."""

    def __init__(self, logger: structlog.stdlib.BoundLogger | None = None) -> None:
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    def send(self, message: str) -> None:
        self._logger.info("notification sent", message=message)


class LoggingArchiver:
    """Archiver that records the archive request in the structured log."""

    def __init__(self, logger: structlog.stdlib.BoundLogger | None = None) -> None:
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    def archive(self, version_id: str) -> None:
        self._logger.info("upgrade archived", version_id=version_id)


class ExternalEffects:
    """Side-effecting operations invoked by the orchestrator.

    Example:
        effects = ExternalEffects(
            catalogs=DirectoryCatalogSource(Path("catalogs")),
            notifier=SlackNotifier(...),
        )
    """

    def __init__(
        self,
        *,
        catalogs: CatalogSource | None = None,
        notifier: Notifier | None = None,
        archiver: Archiver | None = None,
        default_config_id: str | None = None,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._catalogs: CatalogSource = catalogs if catalogs is not None else InMemoryCatalogSource()
        self._notifier: Notifier = notifier if notifier is not None else LoggingNotifier(self._logger)
        self._archiver: Archiver = archiver if archiver is not None else LoggingArchiver(self._logger)
        self._default_config_id = default_config_id

    def fetch_stage_catalog(self, config_id: str | None) -> FlowConfig:
        """Resolve the stage catalog for a run. Never fails.

        An unknown or invalid catalog is replaced by the built-in default
        catalog, so a bad config id degrades the run instead of aborting it.
        """
        effective_id = config_id if config_id is not None else self._default_config_id
        if effective_id is None:
            self._logger.info("no flow config requested, using default catalog")
            return default_flow_config()
        try:
            config = self._catalogs.get(effective_id)
        except ConfigFetchFailed as e:
            self._logger.warning(
                "flow config unavailable, using default catalog",
                config_id=effective_id,
                reason=e.reason,
            )
            return default_flow_config()
        self._logger.debug("flow config loaded", config_id=effective_id, stages=len(config.stages))
        return config

    def notify(self, message: str) -> None:
        self._notifier.send(message)

    def archive_run(self, version_id: str) -> None:
        self._archiver.archive(version_id)
