"""Rule matching: first enabled, compatible, non-skipped rule wins.

There is no scoring. Tenants order their rules and rely on that order.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence

from src.models import AutomationRule, EventKind, NormalizedEvent, TriggerType, WorkspaceContext

logger = logging.getLogger(__name__)

_TRIGGER_EVENT_KINDS: dict[TriggerType, frozenset[EventKind]] = {
    TriggerType.COMMENT: frozenset({EventKind.COMMENT}),
    TriggerType.KEYWORD: frozenset(
        {EventKind.COMMENT, EventKind.DIRECT_MESSAGE, EventKind.FORM_SUBMISSION},
    ),
    TriggerType.MANUAL: frozenset(
        {EventKind.COMMENT, EventKind.DIRECT_MESSAGE, EventKind.FORM_SUBMISSION},
    ),
    TriggerType.TIME: frozenset(),
}


def contains_any(text: str, terms: Iterable[str]) -> bool:
    """Case-insensitive substring test."""
    lowered = text.lower()
    return any(term.lower() in lowered for term in terms if term)


class RuleMatcher:
    def match(
        self,
        event: NormalizedEvent,
        ctx: WorkspaceContext,
        rules: Sequence[AutomationRule],
    ) -> AutomationRule | None:
        if not ctx.agent_id:
            logger.info("Workspace %s has no agent for %s", ctx.workspace_id, event.provider.value)
            return None

        for rule in rules:
            if self._eligible(rule, event, ctx):
                return rule
        return None

    def _eligible(
        self,
        rule: AutomationRule,
        event: NormalizedEvent,
        ctx: WorkspaceContext,
    ) -> bool:
        if not rule.enabled or rule.workspace_id != ctx.workspace_id:
            return False
        if rule.trigger_platforms and event.provider not in rule.trigger_platforms:
            return False
        if event.event_kind not in _TRIGGER_EVENT_KINDS[rule.trigger_type]:
            return False
        if (
            rule.trigger_type in (TriggerType.KEYWORD, TriggerType.COMMENT)
            and rule.trigger_keywords
            and not contains_any(event.text, rule.trigger_keywords)
        ):
            return False
        if rule.skip_if_keyword_present and contains_any(event.text, rule.skip_if_keyword_present):
            logger.debug("Rule %s skipped by skip keyword", rule.id)
            return False
        return True
