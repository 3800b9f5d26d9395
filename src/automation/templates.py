"""Reply template rendering.

Placeholders use ``{{name}}``; the older single-brace ``{name}`` and
``{message}`` forms are still honoured. Unknown placeholders are left as-is.
"""

from __future__ import annotations

import re
from datetime import datetime

from src.models import NormalizedEvent

_PLACEHOLDER = re.compile(
    r"\{\{\s*(?P<key>[a-zA-Z_][a-zA-Z0-9_]*)\s*\}\}"
    r"|(?<!\{)\{(?P<legacy>name|message)\}(?!\})"
)
_LEGACY_KEYS = {"name": "sender_name", "message": "message"}

DEFAULT_SENDER_NAME = "there"


def template_variables(event: NormalizedEvent, now: datetime | None = None) -> dict[str, str]:
    now = now or event.received_at
    return {
        "sender_name": event.sender_display_name or DEFAULT_SENDER_NAME,
        "sender_email": event.sender_email,
        "message": event.text,
        "platform": event.provider.value,
        "date": now.date().isoformat(),
        "time": now.strftime("%H:%M"),
    }


def render(template: str, variables: dict[str, str]) -> str:
    """Substitute placeholders in one pass so values are never re-expanded."""

    def _replace(match: re.Match[str]) -> str:
        key = match.group("key") or _LEGACY_KEYS[match.group("legacy")]
        return variables.get(key, match.group(0))

    return _PLACEHOLDER.sub(_replace, template)
