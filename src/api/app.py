"""FastAPI application exposing the inbound webhook routes."""

from __future__ import annotations

import logging
import os

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse, PlainTextResponse

from src.api.middleware import BodySizeLimitMiddleware
from src.audit.events import (
    AuditEventLogger,
    CompositeEventLogger,
    EventLogger,
    LoggingEventLogger,
)
from src.audit.logger import AuditLogger
from src.automation.db import AutomationDB
from src.automation.executor import ActionExecutor
from src.automation.resolver import WorkspaceResolver
from src.automation.sender import HttpSender, Sender
from src.automation.sqlite_stores import SqliteRuleStore, SqliteSubscriptionGate, SqliteTokenStore
from src.automation.stores import RuleStore, SubscriptionGate, TokenStore
from src.config import PipelineConfig
from src.webhook.dedupe import DeliveryDedupeStore
from src.webhook.dispatcher import WebhookDispatcher
from src.webhook.models import RawWebhookRequest
from src.webhook.router import handle_verification, route_for

logger = logging.getLogger(__name__)


def create_app_from_env() -> FastAPI:
    """Factory for uvicorn --factory: reads config from environment variables."""
    config = PipelineConfig.from_env()
    db = AutomationDB(os.environ.get("AUTOMATION_DB_PATH", "data/automation.db"))
    dedupe_store = DeliveryDedupeStore(
        os.environ.get("DEDUPE_DB_PATH", "data/dedupe.db"),
        window_seconds=config.dedupe_window_seconds,
    )
    sender = HttpSender(
        email_api_url=os.environ.get("EMAIL_API_URL", ""),
        email_api_key=os.environ.get("EMAIL_API_KEY", ""),
        email_from=os.environ.get("EMAIL_FROM", ""),
        request_timeout=config.action_timeout_seconds,
    )

    event_loggers: list[EventLogger] = [LoggingEventLogger()]
    audit_log = os.environ.get("AUDIT_LOG_PATH")
    if audit_log:
        event_loggers.append(AuditEventLogger(AuditLogger.from_env(audit_log)))

    if config.mock_mode:
        logger.warning("WEBHOOK_MOCK_MODE is on: signatures are NOT verified")

    return create_app(
        config,
        token_store=SqliteTokenStore(db),
        rule_store=SqliteRuleStore(db),
        subscription_gate=SqliteSubscriptionGate(db),
        sender=sender,
        dedupe_store=dedupe_store,
        event_logger=CompositeEventLogger(event_loggers),
    )


def create_app(
    config: PipelineConfig,
    token_store: TokenStore,
    rule_store: RuleStore,
    subscription_gate: SubscriptionGate,
    sender: Sender,
    dedupe_store: DeliveryDedupeStore | None = None,
    event_logger: EventLogger | None = None,
) -> FastAPI:
    """Create the webhook ingestion app from explicit collaborators."""
    app = FastAPI(docs_url=None, redoc_url=None)
    app.add_middleware(BodySizeLimitMiddleware, max_bytes=config.max_body_bytes)

    dispatcher = WebhookDispatcher(
        config=config,
        resolver=WorkspaceResolver(token_store, subscription_gate),
        rule_store=rule_store,
        executor=ActionExecutor(sender, config),
        dedupe_store=dedupe_store or DeliveryDedupeStore(
            ":memory:", window_seconds=config.dedupe_window_seconds,
        ),
        event_logger=event_logger,
    )
    app.state.dispatcher = dispatcher

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/webhooks/{name}")
    async def verify_subscription(name: str, request: Request) -> Response:
        route = route_for(name)
        if route is None or not route.serves_challenge:
            return JSONResponse({"detail": "Not Found"}, status_code=404)
        result = handle_verification(
            dict(request.query_params), config.verify_token_for(route.provider),
        )
        if result.status_code != 200:
            logger.info("Subscription handshake for %s failed: %s", name, result.body)
        return PlainTextResponse(result.body, status_code=result.status_code)

    @app.post("/webhooks/{name}")
    async def receive(name: str, request: Request) -> Response:
        route = route_for(name)
        if route is None:
            return JSONResponse({"detail": "Not Found"}, status_code=404)
        raw = RawWebhookRequest(
            provider=route.provider,
            body=await request.body(),
            headers=dict(request.headers),
            url=str(request.url),
        )
        response = await dispatcher.dispatch(raw)
        return JSONResponse(response.to_body(), status_code=response.status_code)

    return app
