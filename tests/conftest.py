"""Shared test fixtures for the inbound automation pipeline."""

from __future__ import annotations

import json
from collections.abc import Iterator
from datetime import UTC, datetime
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.audit.events import RecordingEventLogger
from src.audit.logger import AuditLogger
from src.automation.sender import Sender
from src.automation.stores import (
    InMemoryRuleStore,
    InMemorySubscriptionGate,
    InMemoryTokenStore,
    TokenRecord,
)
from src.config import PipelineConfig
from src.models import (
    ActionType,
    AutomationRule,
    EventKind,
    NormalizedEvent,
    Provider,
    TriggerType,
    WorkspaceContext,
)
from src.webhook.dedupe import DeliveryDedupeStore

FB_SECRET = "fb-app-secret"
IG_SECRET = "ig-app-secret"
WA_TOKEN = "twilio-auth-token"
FORM_SECRET = "form-secret"
VERIFY_TOKEN = "verify-me"
WA_URL = "https://hooks.example.com/webhooks/whatsapp"

PAGE_ID = "PAGE_1"
WORKSPACE_ID = "ws_1"
AGENT_ID = "agent_1"

FIXED_NOW = datetime(2026, 3, 1, 12, 30, tzinfo=UTC)


@pytest.fixture
def mock_audit_logger() -> MagicMock:
    return MagicMock(spec=AuditLogger)


@pytest.fixture
def event_log() -> RecordingEventLogger:
    return RecordingEventLogger()


@pytest.fixture
def config() -> PipelineConfig:
    return make_config()


@pytest.fixture
def sender() -> AsyncMock:
    mock = AsyncMock(spec=Sender)
    mock.send_dm.return_value = "mid.dm"
    mock.send_public_reply.return_value = "comment_reply_1"
    mock.send_email.return_value = "email_1"
    mock.send_webhook.return_value = ""
    return mock


@pytest.fixture
def dedupe_store() -> Iterator[DeliveryDedupeStore]:
    store = DeliveryDedupeStore(":memory:")
    yield store
    store.close()


@pytest.fixture
def token_store() -> InMemoryTokenStore:
    store = InMemoryTokenStore()
    store.add(PAGE_ID, TokenRecord(WORKSPACE_ID, AGENT_ID, "page-token"))
    return store


@pytest.fixture
def subscription_gate() -> InMemorySubscriptionGate:
    return InMemorySubscriptionGate([WORKSPACE_ID])


@pytest.fixture
def rule_store() -> InMemoryRuleStore:
    return InMemoryRuleStore()


# --- Factory functions for test data ---


def make_config(**kwargs: Any) -> PipelineConfig:
    """Factory for PipelineConfig with every secret populated."""
    defaults: dict[str, Any] = {
        "facebook_app_secret": FB_SECRET,
        "instagram_app_secret": IG_SECRET,
        "meta_verify_token": VERIFY_TOKEN,
        "whatsapp_auth_token": WA_TOKEN,
        "whatsapp_verify_token": VERIFY_TOKEN,
        "whatsapp_webhook_url": WA_URL,
        "form_webhook_secret": FORM_SECRET,
    }
    defaults.update(kwargs)
    return PipelineConfig(**defaults)


def make_event(**kwargs: Any) -> NormalizedEvent:
    """Factory for NormalizedEvent with sensible defaults."""
    defaults: dict[str, Any] = {
        "provider": Provider.FACEBOOK,
        "event_kind": EventKind.COMMENT,
        "external_event_id": "comment_1",
        "platform_account_id": PAGE_ID,
        "sender_id": "user_1",
        "sender_display_name": "Ada",
        "text": "what's the price?",
        "post_or_thread_id": f"{PAGE_ID}_post_1",
        "received_at": FIXED_NOW,
        "raw_metadata": {"comment_id": "comment_1"},
    }
    defaults.update(kwargs)
    return NormalizedEvent(**defaults)


def make_rule(**kwargs: Any) -> AutomationRule:
    """Factory for AutomationRule with sensible defaults."""
    defaults: dict[str, Any] = {
        "id": "rule_1",
        "workspace_id": WORKSPACE_ID,
        "agent_id": AGENT_ID,
        "trigger_type": TriggerType.KEYWORD,
        "trigger_keywords": ("price",),
        "action_type": ActionType.SEND_PUBLIC_REPLY,
        "public_reply_template": "Hi {{sender_name}}, check your DMs!",
        "private_reply_template": "Hi {{sender_name}}, prices start at $10.",
        "created_at": "2026-01-01T00:00:00+00:00",
    }
    defaults.update(kwargs)
    return AutomationRule(**defaults)


def make_context(**kwargs: Any) -> WorkspaceContext:
    defaults: dict[str, Any] = {
        "workspace_id": WORKSPACE_ID,
        "agent_id": AGENT_ID,
        "credential": "page-token",
        "subscription_active": True,
    }
    defaults.update(kwargs)
    return WorkspaceContext(**defaults)


def make_facebook_comment(
    comment_id: str = "comment_1",
    text: str = "what's the price?",
    page_id: str = PAGE_ID,
    from_id: str = "user_1",
    verb: str = "add",
) -> dict[str, Any]:
    return {
        "object": "page",
        "entry": [
            {
                "id": page_id,
                "time": 1772368200,
                "changes": [
                    {
                        "field": "feed",
                        "value": {
                            "item": "comment",
                            "verb": verb,
                            "comment_id": comment_id,
                            "post_id": f"{page_id}_post_1",
                            "message": text,
                            "from": {"id": from_id, "name": "Ada"},
                        },
                    }
                ],
            }
        ],
    }


def make_messenger_dm(
    mid: str = "mid.1",
    text: str = "hello",
    page_id: str = PAGE_ID,
    sender_id: str = "user_1",
) -> dict[str, Any]:
    return {
        "object": "page",
        "entry": [
            {
                "id": page_id,
                "time": 1772368200,
                "messaging": [
                    {
                        "sender": {"id": sender_id},
                        "recipient": {"id": page_id},
                        "timestamp": 1772368200000,
                        "message": {"mid": mid, "text": text},
                    }
                ],
            }
        ],
    }


def dumps(payload: Any) -> bytes:
    return json.dumps(payload).encode()


def write_json(path: Path, payload: Any) -> Path:
    path.write_text(json.dumps(payload))
    return path
