"""Tests for shared Pydantic data models."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from src.models import (
    ActionErrorKind,
    ActionResult,
    ActionType,
    AutomationRule,
    EventKind,
    NormalizedEvent,
    PipelineEvent,
    Provider,
    Stage,
    TriggerType,
)
from src.webhook.models import WebhookResponse
from tests.conftest import make_event, make_rule


class TestNormalizedEvent:
    def test_null_text_becomes_empty(self):
        event = make_event(text=None)
        assert event.text == ""

    def test_frozen(self):
        event = make_event()
        with pytest.raises(ValidationError):
            event.text = "changed"

    def test_provider_serializes_lowercase(self):
        data = make_event(provider=Provider.WEBSITE_FORM).model_dump(mode="json")
        assert data["provider"] == "website_form"
        assert data["event_kind"] == "comment"

    def test_defaults(self):
        event = NormalizedEvent(
            provider=Provider.WHATSAPP,
            event_kind=EventKind.DIRECT_MESSAGE,
            external_event_id="SM1",
            platform_account_id="+15550001111",
        )
        assert event.sender_email == ""
        assert event.post_or_thread_id is None
        assert event.raw_metadata == {}
        assert event.received_at.tzinfo is not None


class TestAutomationRule:
    def test_trigger_words_alias(self):
        rule = AutomationRule.model_validate({
            "id": "r",
            "workspace_id": "ws",
            "agent_id": "a",
            "trigger_type": "keyword",
            "trigger_words": ["price", "cost"],
            "action_type": "send_dm",
        })
        assert rule.trigger_keywords == ("price", "cost")
        assert rule.trigger_type == TriggerType.KEYWORD
        assert rule.action_type == ActionType.SEND_DM

    def test_blank_terms_dropped(self):
        rule = make_rule(trigger_keywords=["price", "", "   "], skip_if_keyword_present=[" ", "x"])
        assert rule.trigger_keywords == ("price",)
        assert rule.skip_if_keyword_present == ("x",)

    def test_null_lists_become_empty(self):
        rule = make_rule(trigger_keywords=None, trigger_platforms=None)
        assert rule.trigger_keywords == ()
        assert rule.trigger_platforms == ()

    def test_website_platform_alias(self):
        rule = make_rule(trigger_platforms=["website", "instagram"])
        assert rule.trigger_platforms == (Provider.WEBSITE_FORM, Provider.INSTAGRAM)

    def test_unknown_platform_rejected(self):
        with pytest.raises(ValidationError):
            make_rule(trigger_platforms=["myspace"])

    def test_request_method_uppercased(self):
        assert make_rule(request_method="patch").request_method == "PATCH"
        assert make_rule(request_method="").request_method == "POST"

    def test_unknown_trigger_type_rejected(self):
        with pytest.raises(ValidationError):
            make_rule(trigger_type="teleport")


def test_action_result_error_kind_serializes():
    result = ActionResult(rule_id="r", success=False, error_kind=ActionErrorKind.TIMEOUT)
    assert result.model_dump(mode="json")["error_kind"] == "timeout"


def test_pipeline_event_serializes_stage():
    event = PipelineEvent(stage=Stage.DEDUPLICATED, outcome="duplicate", provider="facebook")
    data = event.model_dump(mode="json")
    assert data["stage"] == "deduplicated"
    assert "T" in data["timestamp"]


class TestWebhookModels:
    def test_response_body_omits_empty_errors(self):
        body = WebhookResponse(200, "processed", events=1, rules_executed=1).to_body()
        assert body == {
            "ok": True,
            "status": 200,
            "message": "processed",
            "events": 1,
            "rules_executed": 1,
        }

    def test_response_body_includes_errors(self):
        body = WebhookResponse(200, "processed", errors=["r1: timeout"]).to_body()
        assert body["errors"] == ["r1: timeout"]

    def test_error_status_not_ok(self):
        assert WebhookResponse(403, "invalid signature").to_body()["ok"] is False
