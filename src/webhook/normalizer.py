"""Payload normalization: provider JSON -> NormalizedEvent.

Parsing never raises anything but ParseError. Echo, read-receipt, delivery
and status sub-events are dropped here so they never reach workspace
resolution, rule matching or dedupe bookkeeping.
"""

from __future__ import annotations

import hashlib
import json
import logging
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from src.config import DEFAULT_DEDUPE_WINDOW_SECONDS
from src.models import NormalizedEvent, Provider

logger = logging.getLogger(__name__)

_SYNTHESIZED_ID = re.compile(r"^[a-z]+_[0-9a-f]{32}$")


class ParseErrorKind(str, Enum):
    MALFORMED_JSON = "malformed_json"
    UNSUPPORTED_SHAPE = "unsupported_shape"


class ParseError(Exception):
    """Raised when a webhook body cannot be turned into events."""

    def __init__(self, kind: ParseErrorKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind


@dataclass
class ParsedPayload:
    """Actionable events from one delivery plus the count of dropped sub-events."""

    events: list[NormalizedEvent] = field(default_factory=list)
    dropped: int = 0


@dataclass(frozen=True)
class ParseContext:
    received_at: datetime
    id_bucket_seconds: int


ProviderParser = Callable[[dict[str, Any], ParseContext], ParsedPayload]


def first_non_empty(payload: Mapping[str, Any], *names: str) -> str:
    """Return the first field among ``names`` holding a non-empty scalar value."""
    for name in names:
        value = payload.get(name)
        if value is None or isinstance(value, (dict, list)):
            continue
        text = str(value).strip()
        if text:
            return text
    return ""


def as_dict(value: object) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def as_list(value: object) -> list[Any]:
    return value if isinstance(value, list) else []


def content_hash(payload: object) -> str:
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def synthesize_event_id(prefix: str, payload: object, ctx: ParseContext) -> str:
    """Deterministic id from content hash and the ingestion-time bucket.

    Identical re-deliveries inside one bucket map to the same id.
    """
    bucket = int(ctx.received_at.timestamp()) // ctx.id_bucket_seconds
    digest = hashlib.sha256(f"{content_hash(payload)}:{bucket}".encode()).hexdigest()
    return f"{prefix}_{digest[:32]}"


def is_synthesized_event_id(event_id: str) -> bool:
    """True for ids built by synthesize_event_id rather than sent by the platform."""
    return bool(_SYNTHESIZED_ID.match(event_id))


class PayloadNormalizer:
    """Converts provider-specific webhook bodies into NormalizedEvents."""

    def __init__(self, id_bucket_seconds: int = DEFAULT_DEDUPE_WINDOW_SECONDS) -> None:
        self._id_bucket_seconds = id_bucket_seconds
        self._parsers = _parser_table()

    def decode(self, body: bytes) -> Any:
        try:
            return json.loads(body)
        except (ValueError, RecursionError) as exc:  # JSONDecodeError, UnicodeDecodeError
            raise ParseError(ParseErrorKind.MALFORMED_JSON, f"Invalid JSON: {exc}") from exc

    def normalize_batch(
        self,
        provider: Provider,
        body: bytes,
        received_at: datetime | None = None,
    ) -> ParsedPayload:
        """Parse every actionable event carried by one delivery."""
        payload = self.decode(body)
        if not isinstance(payload, dict):
            raise ParseError(
                ParseErrorKind.UNSUPPORTED_SHAPE,
                f"Expected a JSON object, got {type(payload).__name__}",
            )

        ctx = ParseContext(
            received_at=received_at or datetime.now(UTC),
            id_bucket_seconds=self._id_bucket_seconds,
        )
        parser = self._parsers[provider]
        try:
            parsed = parser(payload, ctx)
        except ParseError:
            raise
        except (TypeError, ValueError, AttributeError, KeyError) as exc:
            logger.warning("Unparseable %s payload: %s", provider.value, exc)
            raise ParseError(ParseErrorKind.UNSUPPORTED_SHAPE, str(exc)) from exc

        if parsed.dropped:
            logger.debug(
                "Dropped %d non-actionable %s sub-events", parsed.dropped, provider.value,
            )
        return parsed

    def normalize(
        self,
        provider: Provider,
        body: bytes,
        received_at: datetime | None = None,
    ) -> NormalizedEvent | None:
        """Return the first event of the delivery, or None if all were echoes."""
        parsed = self.normalize_batch(provider, body, received_at)
        return parsed.events[0] if parsed.events else None


def _parser_table() -> dict[Provider, ProviderParser]:
    from src.webhook.forms import parse_form_payload
    from src.webhook.graph import parse_facebook_payload, parse_instagram_payload
    from src.webhook.whatsapp import parse_whatsapp_payload

    return {
        Provider.FACEBOOK: parse_facebook_payload,
        Provider.INSTAGRAM: parse_instagram_payload,
        Provider.WHATSAPP: parse_whatsapp_payload,
        Provider.WEBSITE_FORM: parse_form_payload,
    }
