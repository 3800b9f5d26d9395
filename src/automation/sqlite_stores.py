"""SQLite-backed TokenStore, RuleStore and SubscriptionGate."""

from __future__ import annotations

import json
import logging
from typing import Any

from pydantic import ValidationError

from src.automation.db import AutomationDB
from src.automation.stores import TokenRecord
from src.models import AutomationRule

logger = logging.getLogger(__name__)

ACTIVE_STATUS = "active"

_ACTION_CONFIG_FIELDS = (
    "private_reply_template",
    "public_reply_template",
    "subject_template",
    "body_template",
    "webhook_url",
    "request_method",
    "headers",
)


class SqliteTokenStore:
    def __init__(self, db: AutomationDB) -> None:
        self._db = db

    def lookup(self, platform_account_id: str) -> TokenRecord | None:
        if not platform_account_id:
            return None
        row = self._db.fetch_one(
            """SELECT workspace_id, agent_id, credential
               FROM platform_accounts WHERE platform_account_id = ?""",
            (platform_account_id,),
        )
        if row is None:
            return None
        return TokenRecord(
            workspace_id=row["workspace_id"],
            agent_id=row["agent_id"],
            credential=row["credential"],
        )

    def upsert(
        self,
        platform_account_id: str,
        workspace_id: str,
        agent_id: str = "",
        credential: str = "",
        provider: str = "",
    ) -> None:
        self._db.execute(
            """INSERT INTO platform_accounts
               (platform_account_id, workspace_id, agent_id, provider, credential)
               VALUES (?, ?, ?, ?, ?)
               ON CONFLICT (platform_account_id) DO UPDATE SET
                   workspace_id = excluded.workspace_id,
                   agent_id = excluded.agent_id,
                   provider = excluded.provider,
                   credential = excluded.credential""",
            (platform_account_id, workspace_id, agent_id, provider, credential),
        )


class SqliteSubscriptionGate:
    def __init__(self, db: AutomationDB) -> None:
        self._db = db

    def is_active(self, workspace_id: str) -> bool:
        row = self._db.fetch_one(
            "SELECT subscription_status FROM workspaces WHERE workspace_id = ?",
            (workspace_id,),
        )
        return row is not None and row["subscription_status"] == ACTIVE_STATUS

    def set_status(self, workspace_id: str, status: str) -> None:
        self._db.execute(
            """INSERT INTO workspaces (workspace_id, subscription_status) VALUES (?, ?)
               ON CONFLICT (workspace_id) DO UPDATE SET
                   subscription_status = excluded.subscription_status""",
            (workspace_id, status),
        )


class SqliteRuleStore:
    def __init__(self, db: AutomationDB) -> None:
        self._db = db

    def rules_for(self, workspace_id: str, agent_id: str) -> list[AutomationRule]:
        rows = self._db.fetch_all(
            """SELECT * FROM automation_rules
               WHERE workspace_id = ? AND agent_id = ? AND enabled = 1
               ORDER BY created_at ASC, rowid ASC""",
            (workspace_id, agent_id),
        )
        rules: list[AutomationRule] = []
        for row in rows:
            try:
                rules.append(_row_to_rule(row))
            except (ValidationError, json.JSONDecodeError) as exc:
                # One corrupt row must not disable the tenant's other rules.
                logger.warning("Skipping unreadable rule %s: %s", row.get("id"), exc)
        return rules

    def save(self, rule: AutomationRule) -> None:
        config = {name: getattr(rule, name) for name in _ACTION_CONFIG_FIELDS}
        self._db.execute(
            """INSERT OR REPLACE INTO automation_rules
               (id, workspace_id, agent_id, name, enabled, trigger_type,
                trigger_keywords_json, trigger_platforms_json, action_type,
                skip_if_keyword_present_json, action_config_json, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                rule.id,
                rule.workspace_id,
                rule.agent_id,
                rule.name,
                1 if rule.enabled else 0,
                rule.trigger_type.value,
                json.dumps(list(rule.trigger_keywords)),
                json.dumps([p.value for p in rule.trigger_platforms]),
                rule.action_type.value,
                json.dumps(list(rule.skip_if_keyword_present)),
                json.dumps(config),
                rule.created_at,
            ),
        )


def _row_to_rule(row: dict[str, Any]) -> AutomationRule:
    config = json.loads(row["action_config_json"] or "{}")
    return AutomationRule(
        id=row["id"],
        workspace_id=row["workspace_id"],
        agent_id=row["agent_id"],
        name=row["name"],
        enabled=bool(row["enabled"]),
        trigger_type=row["trigger_type"],
        trigger_keywords=json.loads(row["trigger_keywords_json"]),
        trigger_platforms=json.loads(row["trigger_platforms_json"]),
        action_type=row["action_type"],
        skip_if_keyword_present=json.loads(row["skip_if_keyword_present_json"]),
        created_at=row["created_at"],
        **{k: v for k, v in config.items() if k in _ACTION_CONFIG_FIELDS and v is not None},
    )


def load_seed(db: AutomationDB, data: dict[str, Any]) -> dict[str, int]:
    """Load workspaces, platform accounts and rules from a seed document.

    All or nothing: an invalid rule or a missing key leaves the database
    untouched. Returns counts per section.
    """
    gate = SqliteSubscriptionGate(db)
    tokens = SqliteTokenStore(db)
    rules = SqliteRuleStore(db)
    parsed_rules = [AutomationRule.model_validate(raw) for raw in data.get("rules", [])]

    with db.transaction():
        for ws in data.get("workspaces", []):
            gate.set_status(ws["workspace_id"], ws.get("subscription_status", ACTIVE_STATUS))
        for account in data.get("accounts", []):
            tokens.upsert(
                platform_account_id=account["platform_account_id"],
                workspace_id=account["workspace_id"],
                agent_id=account.get("agent_id", ""),
                credential=account.get("credential", ""),
                provider=account.get("provider", ""),
            )
        for rule in parsed_rules:
            rules.save(rule)

    return {
        "workspaces": len(data.get("workspaces", [])),
        "accounts": len(data.get("accounts", [])),
        "rules": len(data.get("rules", [])),
    }
