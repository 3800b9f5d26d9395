"""EventLogger: one structured record per pipeline stage transition.

Implementations never raise. Recording happens on the request path and an
unwritable log must not change the HTTP outcome.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable
from typing import Any

from src.audit.logger import AuditLogger
from src.models import PipelineEvent, Stage

logger = logging.getLogger(__name__)


class EventLogger(ABC):
    @abstractmethod
    def record(self, stage: Stage, outcome: str, metadata: dict[str, Any] | None = None) -> None:
        """Record a stage transition. Must not raise."""


class LoggingEventLogger(EventLogger):
    """Writes pipeline events to the standard library logger."""

    def __init__(self, name: str = "inbound_automation.pipeline") -> None:
        self._logger = logging.getLogger(name)

    def record(self, stage: Stage, outcome: str, metadata: dict[str, Any] | None = None) -> None:
        try:
            self._logger.info(
                "stage=%s outcome=%s %s",
                stage.value, outcome, _format_metadata(metadata),
            )
        except Exception:
            logger.debug("Failed to log pipeline event", exc_info=True)


class AuditEventLogger(EventLogger):
    """Appends pipeline events to a hash-chained audit file."""

    def __init__(self, audit_logger: AuditLogger) -> None:
        self._audit = audit_logger

    def record(self, stage: Stage, outcome: str, metadata: dict[str, Any] | None = None) -> None:
        metadata = dict(metadata or {})
        provider = metadata.pop("provider", None)
        try:
            self._audit.log(PipelineEvent(
                stage=stage,
                outcome=outcome,
                provider=_provider_name(provider),
                metadata=metadata or None,
            ))
        except Exception:
            logger.warning("Audit write failed for %s/%s", stage.value, outcome, exc_info=True)


class CompositeEventLogger(EventLogger):
    def __init__(self, loggers: Iterable[EventLogger]) -> None:
        self._loggers = list(loggers)

    def record(self, stage: Stage, outcome: str, metadata: dict[str, Any] | None = None) -> None:
        for event_logger in self._loggers:
            try:
                event_logger.record(stage, outcome, metadata)
            except Exception:
                logger.warning("Event logger %r failed", event_logger, exc_info=True)


class RecordingEventLogger(EventLogger):
    """Keeps events in memory; used by tests."""

    def __init__(self) -> None:
        self.events: list[PipelineEvent] = []

    def record(self, stage: Stage, outcome: str, metadata: dict[str, Any] | None = None) -> None:
        metadata = dict(metadata or {})
        provider = metadata.pop("provider", None)
        self.events.append(PipelineEvent(
            stage=stage,
            outcome=outcome,
            provider=_provider_name(provider),
            metadata=metadata or None,
        ))

    def outcomes(self, stage: Stage | None = None) -> list[str]:
        return [e.outcome for e in self.events if stage is None or e.stage == stage]


def _provider_name(provider: Any) -> str | None:
    if provider is None:
        return None
    return str(getattr(provider, "value", provider))


def _format_metadata(metadata: dict[str, Any] | None) -> str:
    if not metadata:
        return ""
    return " ".join(
        f"{key}={getattr(value, 'value', value)}" for key, value in sorted(metadata.items())
    )
