"""Pipeline configuration, threaded explicitly through construction."""

from __future__ import annotations

import os

from pydantic import BaseModel, ConfigDict, Field

from src.models import Provider

_TRUTHY = {"1", "true", "yes", "on"}

DEFAULT_DEDUPE_WINDOW_SECONDS = 24 * 60 * 60
DEFAULT_ACTION_TIMEOUT_SECONDS = 8.0
DEFAULT_MAX_BODY_BYTES = 10 * 1024 * 1024


class PipelineConfig(BaseModel):
    """Per-provider secrets and pipeline tunables.

    Mock mode can only be turned on here; nothing in an inbound request
    can enable it.
    """

    model_config = ConfigDict(frozen=True)

    facebook_app_secret: str = ""
    instagram_app_secret: str = ""
    meta_verify_token: str = ""
    whatsapp_auth_token: str = ""
    whatsapp_verify_token: str = ""
    whatsapp_webhook_url: str = ""
    form_webhook_secret: str = ""
    mock_mode: bool = False
    dedupe_window_seconds: int = Field(default=DEFAULT_DEDUPE_WINDOW_SECONDS, gt=0)
    action_timeout_seconds: float = Field(default=DEFAULT_ACTION_TIMEOUT_SECONDS, gt=0)
    outbound_webhook_secret: str = ""
    max_body_bytes: int = Field(default=DEFAULT_MAX_BODY_BYTES, gt=0)

    @classmethod
    def from_env(cls) -> PipelineConfig:
        """Create a PipelineConfig from environment variables."""
        facebook_secret = os.environ.get("META_APP_SECRET", "")
        return cls(
            facebook_app_secret=facebook_secret,
            instagram_app_secret=os.environ.get("INSTAGRAM_APP_SECRET", facebook_secret),
            meta_verify_token=os.environ.get("META_VERIFY_TOKEN", ""),
            whatsapp_auth_token=os.environ.get("WHATSAPP_AUTH_TOKEN", ""),
            whatsapp_verify_token=os.environ.get("WHATSAPP_VERIFY_TOKEN", ""),
            whatsapp_webhook_url=os.environ.get("WHATSAPP_WEBHOOK_URL", ""),
            form_webhook_secret=os.environ.get("FORM_WEBHOOK_SECRET", ""),
            mock_mode=os.environ.get("WEBHOOK_MOCK_MODE", "").strip().lower() in _TRUTHY,
            dedupe_window_seconds=int(
                os.environ.get("DEDUPE_WINDOW_SECONDS", str(DEFAULT_DEDUPE_WINDOW_SECONDS)),
            ),
            action_timeout_seconds=float(
                os.environ.get("ACTION_TIMEOUT_SECONDS", str(DEFAULT_ACTION_TIMEOUT_SECONDS)),
            ),
            outbound_webhook_secret=os.environ.get("AUTOMATION_WEBHOOK_SECRET", ""),
            max_body_bytes=int(
                os.environ.get("WEBHOOK_MAX_BODY_BYTES", str(DEFAULT_MAX_BODY_BYTES)),
            ),
        )

    def secret_for(self, provider: Provider) -> str:
        if provider == Provider.FACEBOOK:
            return self.facebook_app_secret
        if provider == Provider.INSTAGRAM:
            return self.instagram_app_secret or self.facebook_app_secret
        if provider == Provider.WHATSAPP:
            return self.whatsapp_auth_token
        return self.form_webhook_secret

    def verify_token_for(self, provider: Provider) -> str:
        if provider == Provider.WHATSAPP:
            return self.whatsapp_verify_token
        if provider in (Provider.FACEBOOK, Provider.INSTAGRAM):
            return self.meta_verify_token
        return ""
