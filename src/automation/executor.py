"""Action execution: run one matched rule against one event."""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import json
import logging
from datetime import UTC, datetime
from typing import Any

import httpx

from src.automation.sender import Sender, TransportError, UnsupportedActionError
from src.automation.templates import render, template_variables
from src.config import PipelineConfig
from src.models import (
    ActionErrorKind,
    ActionResult,
    ActionType,
    AutomationRule,
    EventKind,
    NormalizedEvent,
    WorkspaceContext,
)
from src.webhook.normalizer import is_synthesized_event_id

logger = logging.getLogger(__name__)

AUTOMATION_SIGNATURE_HEADER = "X-Automation-Signature"


class ActionConfigError(Exception):
    """The rule does not carry what its action type needs."""


class MissingContactError(Exception):
    """The event has no address to deliver to."""


def sign_envelope(body: bytes, secret: str) -> str:
    return "sha256=" + hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


class ActionExecutor:
    """Executes rule actions through a Sender.

    ``execute`` never raises: every failure becomes an ActionResult with an
    error kind.
    """

    def __init__(self, sender: Sender, config: PipelineConfig) -> None:
        self._sender = sender
        self._config = config

    async def execute(
        self,
        rule: AutomationRule,
        event: NormalizedEvent,
        ctx: WorkspaceContext,
    ) -> ActionResult:
        try:
            message_id = await asyncio.wait_for(
                self._run(rule, event, ctx),
                timeout=self._config.action_timeout_seconds,
            )
        except (TimeoutError, httpx.TimeoutException):
            return self._failure(rule, ActionErrorKind.TIMEOUT, "Action timed out")
        except MissingContactError as exc:
            return self._failure(rule, ActionErrorKind.MISSING_CONTACT_INFO, str(exc))
        except (ActionConfigError, UnsupportedActionError) as exc:
            return self._failure(rule, ActionErrorKind.INVALID_CONFIGURATION, str(exc))
        except (TransportError, httpx.HTTPError) as exc:
            return self._failure(rule, ActionErrorKind.TRANSPORT_FAILURE, str(exc))
        except Exception as exc:
            logger.exception("Unexpected failure executing rule %s", rule.id)
            return self._failure(rule, ActionErrorKind.TRANSPORT_FAILURE, str(exc))

        return ActionResult(rule_id=rule.id, success=True, external_message_id=message_id or None)

    async def _run(
        self,
        rule: AutomationRule,
        event: NormalizedEvent,
        ctx: WorkspaceContext,
    ) -> str:
        variables = template_variables(event)

        if rule.action_type == ActionType.SEND_DM:
            template = _require(rule.private_reply_template, "private_reply_template", rule)
            if not event.sender_id:
                raise MissingContactError("Event has no sender to message")
            return await self._sender.send_dm(
                event.provider,
                ctx.credential,
                event.sender_id,
                render(template, variables),
                account_id=event.platform_account_id,
            )

        if rule.action_type == ActionType.SEND_PUBLIC_REPLY:
            template = _require(rule.public_reply_template, "public_reply_template", rule)
            if event.event_kind != EventKind.COMMENT:
                raise ActionConfigError("Public replies need a comment to reply to")
            if is_synthesized_event_id(event.external_event_id):
                raise ActionConfigError("Comment has no platform id to reply to")
            return await self._sender.send_public_reply(
                event.provider,
                ctx.credential,
                event.external_event_id,
                render(template, variables),
            )

        if rule.action_type == ActionType.SEND_EMAIL:
            body_template = _require(rule.body_template, "body_template", rule)
            if not event.sender_email:
                raise MissingContactError("Event has no sender email")
            subject = render(rule.subject_template or "", variables)
            return await self._sender.send_email(
                event.sender_email,
                subject,
                render(body_template, variables),
            )

        url = _require(rule.webhook_url, "webhook_url", rule)
        envelope = self.build_envelope(rule, event, ctx)
        body = json.dumps(envelope, separators=(",", ":"), sort_keys=True).encode()
        headers = dict(rule.headers)
        if self._config.outbound_webhook_secret:
            headers[AUTOMATION_SIGNATURE_HEADER] = sign_envelope(
                body, self._config.outbound_webhook_secret,
            )
        return await self._sender.send_webhook(
            url, body, method=rule.request_method, headers=headers,
        )

    @staticmethod
    def build_envelope(
        rule: AutomationRule,
        event: NormalizedEvent,
        ctx: WorkspaceContext,
    ) -> dict[str, Any]:
        return {
            "event": json.loads(event.model_dump_json(exclude={"raw_metadata"})),
            "rule_id": rule.id,
            "workspace_id": ctx.workspace_id,
            "agent_id": ctx.agent_id,
            "sent_at": datetime.now(UTC).isoformat(),
        }

    @staticmethod
    def _failure(rule: AutomationRule, kind: ActionErrorKind, detail: str) -> ActionResult:
        logger.warning("Rule %s failed: %s (%s)", rule.id, kind.value, detail)
        return ActionResult(rule_id=rule.id, success=False, error_kind=kind, error_detail=detail)


def _require(value: str | None, field_name: str, rule: AutomationRule) -> str:
    if not value:
        raise ActionConfigError(f"Rule {rule.id} has no {field_name}")
    return value
