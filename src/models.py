"""Shared Pydantic data models for the inbound automation pipeline."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

# --- Enums ---


class Provider(str, Enum):
    FACEBOOK = "facebook"
    INSTAGRAM = "instagram"
    WHATSAPP = "whatsapp"
    WEBSITE_FORM = "website_form"


class EventKind(str, Enum):
    COMMENT = "comment"
    DIRECT_MESSAGE = "direct_message"
    FORM_SUBMISSION = "form_submission"
    UNKNOWN = "unknown"


class TriggerType(str, Enum):
    COMMENT = "comment"
    KEYWORD = "keyword"
    MANUAL = "manual"
    TIME = "time"  # scheduled elsewhere; never matches a webhook event


class ActionType(str, Enum):
    SEND_DM = "send_dm"
    SEND_PUBLIC_REPLY = "send_public_reply"
    SEND_EMAIL = "send_email"
    SEND_WEBHOOK = "send_webhook"


class ActionErrorKind(str, Enum):
    TRANSPORT_FAILURE = "transport_failure"
    MISSING_CONTACT_INFO = "missing_contact_info"
    TIMEOUT = "timeout"
    INVALID_CONFIGURATION = "invalid_configuration"


class Stage(str, Enum):
    RECEIVED = "received"
    VERIFIED = "verified"
    NORMALIZED = "normalized"
    RESOLVED = "resolved"
    DEDUPLICATED = "deduplicated"
    MATCHED = "matched"
    EXECUTED = "executed"
    RESPONDED = "responded"


def _now() -> datetime:
    return datetime.now(UTC)


def _now_iso() -> str:
    return _now().isoformat()


# Older rule rows stored the form provider as "website".
_PROVIDER_ALIASES = {"website": Provider.WEBSITE_FORM.value}


# --- Pipeline Models ---


class NormalizedEvent(BaseModel):
    """Provider-agnostic inbound event."""

    model_config = ConfigDict(frozen=True)

    provider: Provider
    event_kind: EventKind
    external_event_id: str
    platform_account_id: str
    sender_id: str = ""
    sender_display_name: str = ""
    sender_email: str = ""
    text: str = ""
    post_or_thread_id: str | None = None
    received_at: datetime = Field(default_factory=_now)
    raw_metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("text", mode="before")
    @classmethod
    def _text_never_null(cls, value: object) -> object:
        return "" if value is None else value


class WorkspaceContext(BaseModel):
    model_config = ConfigDict(frozen=True)

    workspace_id: str
    agent_id: str = ""
    credential: str = ""
    subscription_active: bool = False


class AutomationRule(BaseModel):
    """Tenant-owned automation rule, read-only inside the pipeline."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    workspace_id: str
    agent_id: str
    name: str = ""
    enabled: bool = True
    trigger_type: TriggerType
    trigger_keywords: tuple[str, ...] = Field(
        default=(),
        validation_alias=AliasChoices("trigger_keywords", "trigger_words"),
    )
    trigger_platforms: tuple[Provider, ...] = ()
    action_type: ActionType
    skip_if_keyword_present: tuple[str, ...] = ()
    private_reply_template: str | None = None
    public_reply_template: str | None = None
    subject_template: str | None = None
    body_template: str | None = None
    webhook_url: str | None = None
    request_method: str = "POST"
    headers: dict[str, str] = Field(default_factory=dict)
    created_at: str = Field(default_factory=_now_iso)

    @field_validator("trigger_keywords", "skip_if_keyword_present", mode="before")
    @classmethod
    def _drop_blank_terms(cls, value: object) -> object:
        if value is None:
            return ()
        if isinstance(value, (list, tuple, set, frozenset)):
            return tuple(str(v) for v in value if str(v).strip())
        return value

    @field_validator("trigger_platforms", mode="before")
    @classmethod
    def _normalize_platforms(cls, value: object) -> object:
        if value is None:
            return ()
        if isinstance(value, (list, tuple, set, frozenset)):
            return tuple(_PROVIDER_ALIASES.get(str(v), v) for v in value)
        return value

    @field_validator("request_method", mode="before")
    @classmethod
    def _upper_method(cls, value: object) -> object:
        if isinstance(value, str):
            return value.upper() or "POST"
        return value


class ActionResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    rule_id: str
    success: bool
    external_message_id: str | None = None
    error_kind: ActionErrorKind | None = None
    error_detail: str | None = None


class DeliveryDedupeRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    external_event_id: str
    workspace_id: str
    processed_at: float


# --- Audit Models ---


class PipelineEvent(BaseModel):
    """Structured record emitted on every pipeline stage transition."""

    timestamp: str = Field(default_factory=_now_iso)
    stage: Stage
    outcome: str
    provider: str | None = None
    metadata: dict[str, object] | None = None
