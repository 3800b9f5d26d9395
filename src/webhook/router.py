"""Static provider routing and the GET subscription handshake."""

from __future__ import annotations

import hmac
from collections.abc import Mapping
from dataclasses import dataclass

from src.models import Provider


@dataclass(frozen=True)
class ProviderRoute:
    provider: Provider
    serves_challenge: bool


PROVIDER_ROUTES: dict[str, ProviderRoute] = {
    "facebook": ProviderRoute(Provider.FACEBOOK, serves_challenge=True),
    "instagram": ProviderRoute(Provider.INSTAGRAM, serves_challenge=True),
    "whatsapp": ProviderRoute(Provider.WHATSAPP, serves_challenge=True),
    "forms": ProviderRoute(Provider.WEBSITE_FORM, serves_challenge=False),
}


def route_for(name: str) -> ProviderRoute | None:
    return PROVIDER_ROUTES.get(name)


@dataclass(frozen=True)
class VerificationResult:
    status_code: int
    body: str


def handle_verification(params: Mapping[str, str], verify_token: str) -> VerificationResult:
    """Answer a ``hub.*`` subscription handshake.

    Echoes ``hub.challenge`` only when the mode is ``subscribe`` and the token
    matches the configured one.
    """
    if not verify_token:
        return VerificationResult(500, "Verify token not configured")

    mode = params.get("hub.mode", "")
    token = params.get("hub.verify_token", "")
    challenge = params.get("hub.challenge", "")

    if mode != "subscribe" or not hmac.compare_digest(token.encode(), verify_token.encode()):
        return VerificationResult(403, "Verification failed")
    if not challenge:
        return VerificationResult(400, "Missing hub.challenge")
    return VerificationResult(200, challenge)
