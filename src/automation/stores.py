"""Collaborator interfaces consumed by the pipeline, with in-memory versions.

TokenStore, RuleStore and SubscriptionGate are owned by other services; the
pipeline treats them as already-consistent stores and never locks them.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from src.models import AutomationRule


@dataclass(frozen=True)
class TokenRecord:
    """What TokenStore knows about one connected platform account."""

    workspace_id: str
    agent_id: str
    credential: str


@runtime_checkable
class TokenStore(Protocol):
    def lookup(self, platform_account_id: str) -> TokenRecord | None: ...


@runtime_checkable
class RuleStore(Protocol):
    def rules_for(self, workspace_id: str, agent_id: str) -> Sequence[AutomationRule]: ...


@runtime_checkable
class SubscriptionGate(Protocol):
    def is_active(self, workspace_id: str) -> bool: ...


class InMemoryTokenStore:
    def __init__(self, records: dict[str, TokenRecord] | None = None) -> None:
        self._records = dict(records or {})

    def add(self, platform_account_id: str, record: TokenRecord) -> None:
        self._records[platform_account_id] = record

    def remove(self, platform_account_id: str) -> None:
        self._records.pop(platform_account_id, None)

    def lookup(self, platform_account_id: str) -> TokenRecord | None:
        if not platform_account_id:
            return None
        return self._records.get(platform_account_id)


class InMemoryRuleStore:
    """Returns rules in ascending ``created_at`` order, insertion order on ties."""

    def __init__(self, rules: Iterable[AutomationRule] = ()) -> None:
        self._rules: list[AutomationRule] = list(rules)

    def add(self, rule: AutomationRule) -> None:
        self._rules.append(rule)

    def rules_for(self, workspace_id: str, agent_id: str) -> list[AutomationRule]:
        selected = [
            r for r in self._rules
            if r.workspace_id == workspace_id and r.agent_id == agent_id
        ]
        return sorted(selected, key=lambda r: r.created_at)


class InMemorySubscriptionGate:
    def __init__(self, active: Iterable[str] = ()) -> None:
        self._active = set(active)

    def set_active(self, workspace_id: str, active: bool = True) -> None:
        if active:
            self._active.add(workspace_id)
        else:
            self._active.discard(workspace_id)

    def is_active(self, workspace_id: str) -> bool:
        return workspace_id in self._active
