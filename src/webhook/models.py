"""Data models for the webhook dispatch pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from src.models import Provider


@dataclass(frozen=True)
class RawWebhookRequest:
    """Inbound webhook delivery exactly as it arrived."""

    provider: Provider
    body: bytes
    headers: dict[str, str] = field(default_factory=dict)
    url: str = ""


@dataclass
class WebhookResponse:
    """Pipeline response to return to the originating platform."""

    status_code: int
    message: str
    events: int = 0
    rules_executed: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status_code < 400

    def to_body(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "ok": self.ok,
            "status": self.status_code,
            "message": self.message,
            "events": self.events,
            "rules_executed": self.rules_executed,
        }
        if self.errors:
            body["errors"] = self.errors
        return body
