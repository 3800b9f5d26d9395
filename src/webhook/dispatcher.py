"""Webhook dispatch pipeline.

Runs one inbound delivery through the stages in order:

1. Received
2. Verified (per-provider signature, bypassed only by configured mock mode)
3. Normalized (provider JSON -> NormalizedEvent batch)
4. Resolved (platform account -> workspace, subscription gate)
5. Deduplicated (atomic claim of (external_event_id, workspace_id))
6. Matched (first matching rule)
7. Executed (one action per event; events of a batch run concurrently)
8. Responded

Only a missing secret (500), malformed JSON (400) and a bad signature (403)
surface as errors to the platform. Everything past verification answers 200
so the platform does not retry.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

from src.audit.events import EventLogger, LoggingEventLogger
from src.automation.executor import ActionExecutor
from src.automation.matcher import RuleMatcher
from src.automation.resolver import ResolutionError, WorkspaceResolver
from src.automation.stores import RuleStore
from src.config import PipelineConfig
from src.models import EventKind, NormalizedEvent, Provider, Stage
from src.webhook.dedupe import DeliveryDedupeStore
from src.webhook.models import RawWebhookRequest, WebhookResponse
from src.webhook.normalizer import ParseError, ParseErrorKind, PayloadNormalizer
from src.webhook.signatures import SignatureError, SignatureErrorKind, SignatureVerifier

logger = logging.getLogger(__name__)

_SIGNATURE_STATUS = {
    SignatureErrorKind.CONFIG_MISSING: 500,
    SignatureErrorKind.MISSING: 403,
    SignatureErrorKind.INVALID: 403,
}


@dataclass
class EventOutcome:
    executed: bool = False
    error: str | None = None


class WebhookDispatcher:
    """Orchestrates verification, normalization, resolution, dedupe, matching and execution."""

    def __init__(
        self,
        config: PipelineConfig,
        resolver: WorkspaceResolver,
        rule_store: RuleStore,
        executor: ActionExecutor,
        dedupe_store: DeliveryDedupeStore,
        event_logger: EventLogger | None = None,
        verifier: SignatureVerifier | None = None,
        normalizer: PayloadNormalizer | None = None,
        matcher: RuleMatcher | None = None,
    ) -> None:
        self._config = config
        self._resolver = resolver
        self._rules = rule_store
        self._executor = executor
        self._dedupe = dedupe_store
        self._events = event_logger or LoggingEventLogger()
        self._verifier = verifier or SignatureVerifier()
        self._normalizer = normalizer or PayloadNormalizer(config.dedupe_window_seconds)
        self._matcher = matcher or RuleMatcher()
        self._inflight: set[asyncio.Task[WebhookResponse]] = set()

    async def dispatch(self, request: RawWebhookRequest) -> WebhookResponse:
        """Process a delivery; keeps running if the caller is cancelled."""
        task = asyncio.create_task(self.process(request))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return await asyncio.shield(task)

    async def drain(self) -> None:
        """Wait for deliveries whose callers went away."""
        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)

    async def process(self, request: RawWebhookRequest) -> WebhookResponse:
        provider = request.provider
        self._events.record(Stage.RECEIVED, "ok", {"provider": provider, "bytes": len(request.body)})

        rejection = self._verify(request)
        if rejection is not None:
            return self._respond(provider, rejection)

        try:
            parsed = self._normalizer.normalize_batch(provider, request.body)
        except ParseError as exc:
            self._events.record(
                Stage.NORMALIZED, exc.kind.value, {"provider": provider, "error": str(exc)},
            )
            if exc.kind == ParseErrorKind.MALFORMED_JSON:
                return self._respond(provider, WebhookResponse(400, "Malformed JSON"))
            return self._respond(provider, WebhookResponse(200, "Unsupported payload ignored"))

        self._events.record(
            Stage.NORMALIZED,
            "ok",
            {"provider": provider, "events": len(parsed.events), "dropped": parsed.dropped},
        )

        # Events run concurrently so one action timeout bounds the whole delivery.
        outcomes = await asyncio.gather(*(self._handle_event(event) for event in parsed.events))
        response = WebhookResponse(200, "No actionable events")
        for outcome in outcomes:
            response.events += 1
            if outcome.executed:
                response.rules_executed += 1
            if outcome.error:
                response.errors.append(outcome.error)
        if response.events:
            response.message = "Processed"
        return self._respond(provider, response)

    def _verify(self, request: RawWebhookRequest) -> WebhookResponse | None:
        provider = request.provider
        if self._config.mock_mode:
            logger.warning("Mock mode: skipping %s signature verification", provider.value)
            self._events.record(Stage.VERIFIED, "mock_bypass", {"provider": provider})
            return None

        url = request.url
        if provider == Provider.WHATSAPP and self._config.whatsapp_webhook_url:
            url = self._config.whatsapp_webhook_url

        try:
            self._verifier.verify(
                provider,
                request.body,
                request.headers,
                self._config.secret_for(provider),
                url=url,
            )
        except SignatureError as exc:
            if exc.kind == SignatureErrorKind.CONFIG_MISSING:
                logger.error("%s", exc)
            else:
                logger.info("Rejected %s delivery: %s", provider.value, exc)
            self._events.record(Stage.VERIFIED, exc.kind.value, {"provider": provider})
            return WebhookResponse(_SIGNATURE_STATUS[exc.kind], str(exc))

        self._events.record(Stage.VERIFIED, "ok", {"provider": provider})
        return None

    async def _handle_event(self, event: NormalizedEvent) -> EventOutcome:
        meta: dict[str, Any] = {
            "provider": event.provider,
            "external_event_id": event.external_event_id,
            "event_kind": event.event_kind.value,
        }

        if event.event_kind == EventKind.UNKNOWN:
            self._events.record(Stage.RESOLVED, "unknown_event", meta)
            return EventOutcome()

        try:
            ctx = self._resolver.resolve(event)
        except ResolutionError as exc:
            self._events.record(
                Stage.RESOLVED, exc.kind.value, {**meta, "workspace_id": exc.workspace_id},
            )
            return EventOutcome()
        meta["workspace_id"] = ctx.workspace_id
        self._events.record(Stage.RESOLVED, "ok", meta)

        if not self._dedupe.claim(event.external_event_id, ctx.workspace_id):
            self._events.record(Stage.DEDUPLICATED, "duplicate", meta)
            return EventOutcome()
        self._events.record(Stage.DEDUPLICATED, "claimed", meta)

        rules = self._rules.rules_for(ctx.workspace_id, ctx.agent_id) if ctx.agent_id else []
        rule = self._matcher.match(event, ctx, rules)
        if rule is None:
            self._events.record(Stage.MATCHED, "no_match", {**meta, "candidates": len(rules)})
            return EventOutcome()
        meta["rule_id"] = rule.id
        self._events.record(Stage.MATCHED, "matched", meta)

        result = await self._executor.execute(rule, event, ctx)
        if result.success:
            self._events.record(
                Stage.EXECUTED,
                "success",
                {**meta, "action": rule.action_type.value,
                 "external_message_id": result.external_message_id},
            )
            return EventOutcome(executed=True)

        error_kind = result.error_kind.value if result.error_kind else "unknown"
        self._events.record(
            Stage.EXECUTED,
            error_kind,
            {**meta, "action": rule.action_type.value, "error": result.error_detail},
        )
        return EventOutcome(error=f"{rule.id}: {error_kind}")

    def _respond(self, provider: Provider, response: WebhookResponse) -> WebhookResponse:
        self._events.record(
            Stage.RESPONDED,
            str(response.status_code),
            {
                "provider": provider,
                "events": response.events,
                "rules_executed": response.rules_executed,
            },
        )
        return response
