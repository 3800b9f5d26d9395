"""Website form submissions.

Form builders have posted several field-naming conventions over time; each
logical field is resolved from its canonical name first, then its aliases.
"""

from __future__ import annotations

from typing import Any

from src.models import EventKind, NormalizedEvent, Provider
from src.webhook.normalizer import ParseContext, ParsedPayload, first_non_empty, synthesize_event_id

ID_FIELDS = ("id", "submission_id", "submissionId")
EMAIL_FIELDS = ("email", "sender_email", "senderEmail")
NAME_FIELDS = ("name", "sender_name", "senderName")
MESSAGE_FIELDS = ("message", "body", "content", "text")
FORM_ID_FIELDS = ("form_id", "formId", "source")
TIMESTAMP_FIELDS = ("timestamp", "created_at")

# Used, in this order, to assemble a message when no message field is sent.
DESCRIPTIVE_FIELDS = (
    "subject",
    "title",
    "topic",
    "description",
    "details",
    "feedback",
    "comments",
    "question",
)

_ROUTING_FIELDS = ("workspace_id", "workspaceId", "agent_id", "agentId")

_KNOWN_FIELDS = frozenset(
    ID_FIELDS
    + EMAIL_FIELDS
    + NAME_FIELDS
    + MESSAGE_FIELDS
    + FORM_ID_FIELDS
    + TIMESTAMP_FIELDS
    + _ROUTING_FIELDS
)


def parse_form_payload(payload: dict[str, Any], ctx: ParseContext) -> ParsedPayload:
    text = first_non_empty(payload, *MESSAGE_FIELDS) or build_message(payload)
    email = first_non_empty(payload, *EMAIL_FIELDS)

    event = NormalizedEvent(
        provider=Provider.WEBSITE_FORM,
        event_kind=EventKind.FORM_SUBMISSION,
        external_event_id=(
            first_non_empty(payload, *ID_FIELDS) or synthesize_event_id("form", payload, ctx)
        ),
        platform_account_id=first_non_empty(payload, *FORM_ID_FIELDS),
        sender_id=email,
        sender_display_name=first_non_empty(payload, *NAME_FIELDS),
        sender_email=email,
        text=text,
        received_at=ctx.received_at,
        raw_metadata=_extra_fields(payload),
    )
    return ParsedPayload(events=[event])


def build_message(payload: dict[str, Any]) -> str:
    """Assemble ``field: value`` lines from descriptive and leftover string fields."""
    parts: list[str] = []
    for name in DESCRIPTIVE_FIELDS:
        value = first_non_empty(payload, name)
        if value:
            parts.append(f"{name}: {value}")

    used = _KNOWN_FIELDS | set(DESCRIPTIVE_FIELDS)
    for key, value in payload.items():
        if key not in used and isinstance(value, str) and value.strip():
            parts.append(f"{key}: {value}")
    return "\n".join(parts)


def _extra_fields(payload: dict[str, Any]) -> dict[str, Any]:
    return {
        key: value
        for key, value in payload.items()
        if key not in _KNOWN_FIELDS and not isinstance(value, (dict, list))
    }
