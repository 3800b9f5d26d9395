"""Graph-API style payloads (Facebook Pages, Instagram).

Both providers batch events under ``entry[]``. Each entry carries either
``changes[]`` (feed / comments) or ``messaging[]`` (Messenger / IG Direct).
"""

from __future__ import annotations

import logging
from typing import Any

from src.models import EventKind, NormalizedEvent, Provider
from src.webhook.normalizer import (
    ParseContext,
    ParsedPayload,
    as_dict,
    as_list,
    first_non_empty,
    synthesize_event_id,
)

logger = logging.getLogger(__name__)

_FACEBOOK_OBJECTS = {"page"}
_INSTAGRAM_OBJECTS = {"instagram"}
_INSTAGRAM_COMMENT_FIELDS = {"comments", "live_comments"}
_ACTIONABLE_VERBS = {"", "add"}


def parse_facebook_payload(payload: dict[str, Any], ctx: ParseContext) -> ParsedPayload:
    return _parse_graph_payload(payload, ctx, Provider.FACEBOOK, _FACEBOOK_OBJECTS)


def parse_instagram_payload(payload: dict[str, Any], ctx: ParseContext) -> ParsedPayload:
    return _parse_graph_payload(payload, ctx, Provider.INSTAGRAM, _INSTAGRAM_OBJECTS)


def _parse_graph_payload(
    payload: dict[str, Any],
    ctx: ParseContext,
    provider: Provider,
    accepted_objects: set[str],
) -> ParsedPayload:
    parsed = ParsedPayload()
    obj = first_non_empty(payload, "object")
    entries = as_list(payload.get("entry"))

    if (obj and obj not in accepted_objects) or not entries:
        parsed.events.append(_unknown_event(provider, payload, "", ctx, reason=obj or "no_entries"))
        return parsed

    for raw_entry in entries:
        entry = as_dict(raw_entry)
        account_id = first_non_empty(entry, "id")

        for raw_change in as_list(entry.get("changes")):
            change = as_dict(raw_change)
            _collect(parsed, _parse_change(provider, account_id, change, ctx))

        for raw_messaging in as_list(entry.get("messaging")):
            messaging = as_dict(raw_messaging)
            _collect(parsed, _parse_messaging(provider, account_id, messaging, ctx))

        if not entry.get("changes") and not entry.get("messaging"):
            parsed.events.append(_unknown_event(provider, entry, account_id, ctx, reason="empty_entry"))

    return parsed


def _collect(parsed: ParsedPayload, event: NormalizedEvent | None) -> None:
    if event is None:
        parsed.dropped += 1
    else:
        parsed.events.append(event)


def _parse_change(
    provider: Provider,
    account_id: str,
    change: dict[str, Any],
    ctx: ParseContext,
) -> NormalizedEvent | None:
    field_name = first_non_empty(change, "field")
    value = as_dict(change.get("value"))

    is_comment = (
        (field_name == "feed" and first_non_empty(value, "item") == "comment")
        or (provider == Provider.INSTAGRAM and field_name in _INSTAGRAM_COMMENT_FIELDS)
    )
    if not is_comment:
        return _unknown_event(provider, change, account_id, ctx, reason=field_name or "no_field")

    verb = first_non_empty(value, "verb").lower()
    if verb not in _ACTIONABLE_VERBS:
        return _unknown_event(provider, change, account_id, ctx, reason=f"verb:{verb}")

    author = as_dict(value.get("from"))
    author_id = first_non_empty(author, "id")
    if author_id and author_id == account_id:
        # The page's own comment (e.g. our earlier auto-reply).
        return None

    comment_id = first_non_empty(value, "comment_id", "id")
    post_id = (
        first_non_empty(value, "post_id", "object_id")
        or first_non_empty(as_dict(value.get("media")), "id")
        or None
    )
    return NormalizedEvent(
        provider=provider,
        event_kind=EventKind.COMMENT,
        external_event_id=comment_id or synthesize_event_id("comment", value, ctx),
        platform_account_id=account_id,
        sender_id=author_id,
        sender_display_name=first_non_empty(author, "name", "username"),
        text=first_non_empty(value, "message", "text"),
        post_or_thread_id=post_id,
        received_at=ctx.received_at,
        raw_metadata={
            "field": field_name,
            "comment_id": comment_id or None,
            "verb": verb or None,
            "created_time": value.get("created_time"),
            "parent_id": value.get("parent_id"),
        },
    )


def _parse_messaging(
    provider: Provider,
    account_id: str,
    messaging: dict[str, Any],
    ctx: ParseContext,
) -> NormalizedEvent | None:
    if "read" in messaging or "delivery" in messaging:
        return None

    message = as_dict(messaging.get("message"))
    postback = as_dict(messaging.get("postback"))
    if message.get("is_echo"):
        return None
    if not message and not postback:
        return _unknown_event(provider, messaging, account_id, ctx, reason="messaging")

    sender_id = first_non_empty(as_dict(messaging.get("sender")), "id")
    recipient_id = first_non_empty(as_dict(messaging.get("recipient")), "id")
    if sender_id and sender_id == (account_id or recipient_id):
        return None

    if message:
        text = first_non_empty(message, "text")
        event_id = first_non_empty(message, "mid", "id")
    else:
        text = first_non_empty(postback, "title", "payload")
        event_id = first_non_empty(postback, "mid")

    return NormalizedEvent(
        provider=provider,
        event_kind=EventKind.DIRECT_MESSAGE,
        external_event_id=event_id or synthesize_event_id("dm", messaging, ctx),
        platform_account_id=account_id or recipient_id,
        sender_id=sender_id,
        text=text,
        post_or_thread_id=sender_id or None,
        received_at=ctx.received_at,
        raw_metadata={
            "timestamp": messaging.get("timestamp"),
            "postback": bool(postback) and not message,
            "attachments": len(as_list(message.get("attachments"))),
        },
    )


def _unknown_event(
    provider: Provider,
    fragment: dict[str, Any],
    account_id: str,
    ctx: ParseContext,
    reason: str,
) -> NormalizedEvent:
    logger.debug("Unrecognized %s sub-event: %s", provider.value, reason)
    return NormalizedEvent(
        provider=provider,
        event_kind=EventKind.UNKNOWN,
        external_event_id=synthesize_event_id("unknown", fragment, ctx),
        platform_account_id=account_id,
        received_at=ctx.received_at,
        raw_metadata={"reason": reason},
    )
