"""WhatsApp webhook payloads.

Two shapes are accepted:

* Cloud-API style nested JSON:
  ``entry[].changes[].value.messages[]`` with ``metadata.phone_number_id``.
* Twilio style flat JSON: ``MessageSid``, ``From``, ``To``, ``Body``.

Status updates (sent, delivered, read) and outbound echoes are dropped.
"""

from __future__ import annotations

from typing import Any

from src.models import EventKind, NormalizedEvent, Provider
from src.webhook.normalizer import (
    ParseContext,
    ParsedPayload,
    ParseError,
    ParseErrorKind,
    as_dict,
    as_list,
    first_non_empty,
    synthesize_event_id,
)

_MEDIA_PLACEHOLDERS = {
    "audio": "[Audio message]",
    "image": "[Image message]",
    "video": "[Video message]",
    "sticker": "[Sticker message]",
    "location": "[Location message]",
}

_TWILIO_PREFIX = "whatsapp:"


def parse_whatsapp_payload(payload: dict[str, Any], ctx: ParseContext) -> ParsedPayload:
    if "entry" in payload:
        return _parse_cloud_payload(payload, ctx)
    if first_non_empty(payload, "MessageSid", "SmsMessageSid", "SmsSid"):
        return _parse_twilio_payload(payload, ctx)
    raise ParseError(ParseErrorKind.UNSUPPORTED_SHAPE, "Unrecognized WhatsApp payload")


def _parse_cloud_payload(payload: dict[str, Any], ctx: ParseContext) -> ParsedPayload:
    parsed = ParsedPayload()
    for raw_entry in as_list(payload.get("entry")):
        entry = as_dict(raw_entry)
        for raw_change in as_list(entry.get("changes")):
            change = as_dict(raw_change)
            value = as_dict(change.get("value"))
            field_name = first_non_empty(change, "field")
            if field_name and field_name != "messages":
                parsed.events.append(_unknown_event(value, ctx, field_name))
                continue

            metadata = as_dict(value.get("metadata"))
            account_id = first_non_empty(metadata, "phone_number_id", "display_phone_number")
            names = _contact_names(value)

            parsed.dropped += len(as_list(value.get("statuses")))

            for raw_msg in as_list(value.get("messages")):
                msg = as_dict(raw_msg)
                if first_non_empty(msg, "direction").lower() == "outbound":
                    parsed.dropped += 1
                    continue
                sender = first_non_empty(msg, "from")
                parsed.events.append(NormalizedEvent(
                    provider=Provider.WHATSAPP,
                    event_kind=EventKind.DIRECT_MESSAGE,
                    external_event_id=(
                        first_non_empty(msg, "id") or synthesize_event_id("wa", msg, ctx)
                    ),
                    platform_account_id=account_id,
                    sender_id=sender,
                    sender_display_name=names.get(sender, ""),
                    text=_message_text(msg),
                    post_or_thread_id=sender or None,
                    received_at=ctx.received_at,
                    raw_metadata={
                        "message_type": first_non_empty(msg, "type") or "text",
                        "timestamp": msg.get("timestamp"),
                        "display_phone_number": metadata.get("display_phone_number"),
                    },
                ))
    return parsed


def _parse_twilio_payload(payload: dict[str, Any], ctx: ParseContext) -> ParsedPayload:
    parsed = ParsedPayload()
    status = first_non_empty(payload, "MessageStatus", "SmsStatus").lower()
    if status and status != "received":
        parsed.dropped += 1
        return parsed
    if first_non_empty(payload, "Direction").lower().startswith("outbound"):
        parsed.dropped += 1
        return parsed

    sender = _strip_channel(first_non_empty(payload, "From"))
    text = first_non_empty(payload, "Body")
    if not text and first_non_empty(payload, "NumMedia") not in ("", "0"):
        text = "[Media message]"

    parsed.events.append(NormalizedEvent(
        provider=Provider.WHATSAPP,
        event_kind=EventKind.DIRECT_MESSAGE,
        external_event_id=first_non_empty(payload, "MessageSid", "SmsMessageSid", "SmsSid"),
        platform_account_id=_strip_channel(first_non_empty(payload, "To")),
        sender_id=sender,
        sender_display_name=first_non_empty(payload, "ProfileName"),
        text=text,
        post_or_thread_id=sender or None,
        received_at=ctx.received_at,
        raw_metadata={
            "account_sid": payload.get("AccountSid"),
            "wa_id": payload.get("WaId"),
        },
    ))
    return parsed


def _message_text(msg: dict[str, Any]) -> str:
    msg_type = first_non_empty(msg, "type") or "text"
    if msg_type == "text":
        return first_non_empty(as_dict(msg.get("text")), "body")
    if msg_type == "button":
        return first_non_empty(as_dict(msg.get("button")), "text", "payload")
    if msg_type == "interactive":
        interactive = as_dict(msg.get("interactive"))
        reply = as_dict(interactive.get("button_reply")) or as_dict(interactive.get("list_reply"))
        return first_non_empty(reply, "title", "id")
    if msg_type == "document":
        filename = first_non_empty(as_dict(msg.get("document")), "filename") or "Unknown"
        return f"[Document: {filename}]"
    if msg_type in _MEDIA_PLACEHOLDERS:
        caption = first_non_empty(as_dict(msg.get(msg_type)), "caption")
        return caption or _MEDIA_PLACEHOLDERS[msg_type]
    return f"[{msg_type} message]"


def _contact_names(value: dict[str, Any]) -> dict[str, str]:
    names: dict[str, str] = {}
    for raw_contact in as_list(value.get("contacts")):
        contact = as_dict(raw_contact)
        wa_id = first_non_empty(contact, "wa_id")
        name = first_non_empty(as_dict(contact.get("profile")), "name")
        if wa_id and name:
            names[wa_id] = name
    return names


def _strip_channel(address: str) -> str:
    if address.lower().startswith(_TWILIO_PREFIX):
        return address[len(_TWILIO_PREFIX):]
    return address


def _unknown_event(value: dict[str, Any], ctx: ParseContext, reason: str) -> NormalizedEvent:
    metadata = as_dict(value.get("metadata"))
    return NormalizedEvent(
        provider=Provider.WHATSAPP,
        event_kind=EventKind.UNKNOWN,
        external_event_id=synthesize_event_id("unknown", value, ctx),
        platform_account_id=first_non_empty(metadata, "phone_number_id"),
        received_at=ctx.received_at,
        raw_metadata={"reason": reason},
    )
