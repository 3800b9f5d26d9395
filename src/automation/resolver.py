"""Workspace resolution: platform account -> tenant context."""

from __future__ import annotations

import logging
from enum import Enum

from src.automation.stores import SubscriptionGate, TokenStore
from src.models import NormalizedEvent, WorkspaceContext

logger = logging.getLogger(__name__)


class ResolutionErrorKind(str, Enum):
    UNKNOWN_ACCOUNT = "unknown_account"
    SUBSCRIPTION_INACTIVE = "subscription_inactive"


class ResolutionError(Exception):
    """Raised when an event cannot be attributed to an active workspace."""

    def __init__(
        self,
        kind: ResolutionErrorKind,
        message: str,
        workspace_id: str | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.workspace_id = workspace_id


class WorkspaceResolver:
    def __init__(self, token_store: TokenStore, subscription_gate: SubscriptionGate) -> None:
        self._tokens = token_store
        self._gate = subscription_gate

    def resolve(self, event: NormalizedEvent) -> WorkspaceContext:
        record = self._tokens.lookup(event.platform_account_id)
        if record is None:
            logger.info(
                "No workspace for %s account %r",
                event.provider.value, event.platform_account_id,
            )
            raise ResolutionError(
                ResolutionErrorKind.UNKNOWN_ACCOUNT,
                f"Unknown {event.provider.value} account",
            )

        if not self._gate.is_active(record.workspace_id):
            raise ResolutionError(
                ResolutionErrorKind.SUBSCRIPTION_INACTIVE,
                "Subscription not active",
                workspace_id=record.workspace_id,
            )

        return WorkspaceContext(
            workspace_id=record.workspace_id,
            agent_id=record.agent_id,
            credential=record.credential,
            subscription_active=True,
        )
