"""Tests for provider routing and the subscription handshake."""

from __future__ import annotations

import pytest

from src.models import Provider
from src.webhook.router import handle_verification, route_for

TOKEN = "verify-me"


def _params(**overrides: str) -> dict[str, str]:
    params = {"hub.mode": "subscribe", "hub.verify_token": TOKEN, "hub.challenge": "12345"}
    params.update(overrides)
    return params


class TestHandshake:
    def test_echoes_challenge(self) -> None:
        result = handle_verification(_params(), TOKEN)
        assert result.status_code == 200
        assert result.body == "12345"

    def test_wrong_token(self) -> None:
        assert handle_verification(_params(**{"hub.verify_token": "nope"}), TOKEN).status_code == 403

    def test_wrong_mode(self) -> None:
        assert handle_verification(_params(**{"hub.mode": "unsubscribe"}), TOKEN).status_code == 403

    def test_missing_params(self) -> None:
        assert handle_verification({}, TOKEN).status_code == 403

    def test_missing_challenge(self) -> None:
        assert handle_verification(_params(**{"hub.challenge": ""}), TOKEN).status_code == 400

    def test_unconfigured_token(self) -> None:
        result = handle_verification(_params(**{"hub.verify_token": ""}), "")
        assert result.status_code == 500
        assert "12345" not in result.body


@pytest.mark.parametrize(
    ("name", "provider", "challenge"),
    [
        ("facebook", Provider.FACEBOOK, True),
        ("instagram", Provider.INSTAGRAM, True),
        ("whatsapp", Provider.WHATSAPP, True),
        ("forms", Provider.WEBSITE_FORM, False),
    ],
)
def test_routes(name: str, provider: Provider, challenge: bool) -> None:
    route = route_for(name)
    assert route is not None
    assert route.provider == provider
    assert route.serves_challenge is challenge


def test_unknown_route() -> None:
    assert route_for("tiktok") is None
