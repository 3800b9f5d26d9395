"""Tests for workspace resolution."""

from __future__ import annotations

import pytest

from src.automation.resolver import ResolutionError, ResolutionErrorKind, WorkspaceResolver
from src.automation.stores import InMemorySubscriptionGate, InMemoryTokenStore, TokenRecord
from tests.conftest import AGENT_ID, PAGE_ID, WORKSPACE_ID, make_event


@pytest.fixture
def resolver(
    token_store: InMemoryTokenStore, subscription_gate: InMemorySubscriptionGate,
) -> WorkspaceResolver:
    return WorkspaceResolver(token_store, subscription_gate)


def test_resolves_known_account(resolver: WorkspaceResolver) -> None:
    ctx = resolver.resolve(make_event())
    assert ctx.workspace_id == WORKSPACE_ID
    assert ctx.agent_id == AGENT_ID
    assert ctx.credential == "page-token"
    assert ctx.subscription_active is True


def test_unknown_account(resolver: WorkspaceResolver) -> None:
    with pytest.raises(ResolutionError) as exc_info:
        resolver.resolve(make_event(platform_account_id="PAGE_UNKNOWN"))
    assert exc_info.value.kind == ResolutionErrorKind.UNKNOWN_ACCOUNT
    assert exc_info.value.workspace_id is None


def test_empty_account_id_is_unknown(resolver: WorkspaceResolver) -> None:
    with pytest.raises(ResolutionError) as exc_info:
        resolver.resolve(make_event(platform_account_id=""))
    assert exc_info.value.kind == ResolutionErrorKind.UNKNOWN_ACCOUNT


def test_inactive_subscription(
    resolver: WorkspaceResolver, subscription_gate: InMemorySubscriptionGate,
) -> None:
    subscription_gate.set_active(WORKSPACE_ID, False)
    with pytest.raises(ResolutionError) as exc_info:
        resolver.resolve(make_event())
    assert exc_info.value.kind == ResolutionErrorKind.SUBSCRIPTION_INACTIVE
    assert exc_info.value.workspace_id == WORKSPACE_ID


def test_account_without_agent_resolves_with_empty_agent(
    token_store: InMemoryTokenStore, subscription_gate: InMemorySubscriptionGate,
) -> None:
    token_store.add("PAGE_2", TokenRecord(WORKSPACE_ID, "", "tok"))
    ctx = WorkspaceResolver(token_store, subscription_gate).resolve(
        make_event(platform_account_id="PAGE_2"),
    )
    assert ctx.agent_id == ""


def test_in_memory_stores_satisfy_protocols(
    token_store: InMemoryTokenStore, subscription_gate: InMemorySubscriptionGate,
) -> None:
    from src.automation.stores import InMemoryRuleStore, RuleStore, SubscriptionGate, TokenStore

    assert isinstance(token_store, TokenStore)
    assert isinstance(subscription_gate, SubscriptionGate)
    assert isinstance(InMemoryRuleStore(), RuleStore)
    assert token_store.lookup(PAGE_ID) is not None
