"""Outbound transports: replies, direct messages, email and webhooks.

Every call returns the remote message id on success and raises
TransportError otherwise. Retries are limited to 429/5xx with a short capped
backoff; the executor bounds the whole call with its own timeout.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Protocol, runtime_checkable

import httpx

from src.models import Provider

logger = logging.getLogger(__name__)

GRAPH_API_BASE = "https://graph.facebook.com/v19.0"
TWILIO_API_BASE = "https://api.twilio.com/2010-04-01"

_MAX_RETRIES = 2
_BACKOFF_CAP_SECONDS = 2.0


class TransportError(Exception):
    """The remote platform could not be reached or refused the call."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class UnsupportedActionError(Exception):
    """The requested transport does not exist for this provider or is not configured."""


@runtime_checkable
class Sender(Protocol):
    async def send_dm(
        self,
        provider: Provider,
        credential: str,
        recipient_id: str,
        text: str,
        account_id: str = "",
    ) -> str: ...

    async def send_public_reply(
        self,
        provider: Provider,
        credential: str,
        comment_id: str,
        text: str,
    ) -> str: ...

    async def send_email(self, to: str, subject: str, body: str) -> str: ...

    async def send_webhook(
        self,
        url: str,
        body: bytes,
        method: str = "POST",
        headers: dict[str, str] | None = None,
    ) -> str: ...


class HttpSender:
    """Sender backed by the Graph API, the Twilio Messages API and plain HTTP."""

    def __init__(
        self,
        email_api_url: str = "",
        email_api_key: str = "",
        email_from: str = "",
        request_timeout: float = 5.0,
        graph_api_base: str = GRAPH_API_BASE,
        twilio_api_base: str = TWILIO_API_BASE,
    ) -> None:
        self._email_api_url = email_api_url
        self._email_api_key = email_api_key
        self._email_from = email_from
        self._timeout = request_timeout
        self._graph_base = graph_api_base.rstrip("/")
        self._twilio_base = twilio_api_base.rstrip("/")

    async def send_dm(
        self,
        provider: Provider,
        credential: str,
        recipient_id: str,
        text: str,
        account_id: str = "",
    ) -> str:
        if provider in (Provider.FACEBOOK, Provider.INSTAGRAM):
            data = await self._request(
                "POST",
                f"{self._graph_base}/me/messages",
                params={"access_token": credential},
                json={
                    "recipient": {"id": recipient_id},
                    "message": {"text": text},
                    "messaging_type": "RESPONSE",
                },
            )
            return str(data.get("message_id", ""))

        if provider == Provider.WHATSAPP:
            if not credential or not account_id:
                raise UnsupportedActionError("WhatsApp replies need a credential and sender")
            account_sid, sep, auth_token = credential.partition(":")
            if not sep:
                return await self._send_cloud_message(credential, account_id, recipient_id, text)
            if not account_sid or not auth_token:
                raise UnsupportedActionError("WhatsApp credential must be 'account_sid:auth_token'")
            data = await self._request(
                "POST",
                f"{self._twilio_base}/Accounts/{account_sid}/Messages.json",
                auth=(account_sid, auth_token),
                data={
                    "From": f"whatsapp:{account_id}",
                    "To": f"whatsapp:{recipient_id}",
                    "Body": text,
                },
            )
            return str(data.get("sid", ""))

        raise UnsupportedActionError(f"Direct messages are not available for {provider.value}")

    async def _send_cloud_message(
        self,
        access_token: str,
        phone_number_id: str,
        recipient: str,
        text: str,
    ) -> str:
        """WhatsApp Cloud API: the account id is the Graph phone-number object."""
        data = await self._request(
            "POST",
            f"{self._graph_base}/{phone_number_id}/messages",
            headers={"Authorization": f"Bearer {access_token}"},
            json={
                "messaging_product": "whatsapp",
                "to": recipient,
                "type": "text",
                "text": {"body": text},
            },
        )
        messages = data.get("messages")
        if isinstance(messages, list) and messages and isinstance(messages[0], dict):
            return str(messages[0].get("id", ""))
        return ""

    async def send_public_reply(
        self,
        provider: Provider,
        credential: str,
        comment_id: str,
        text: str,
    ) -> str:
        if provider == Provider.FACEBOOK:
            edge = "comments"
        elif provider == Provider.INSTAGRAM:
            edge = "replies"
        else:
            raise UnsupportedActionError(f"Public replies are not available for {provider.value}")

        data = await self._request(
            "POST",
            f"{self._graph_base}/{comment_id}/{edge}",
            params={"access_token": credential},
            data={"message": text},
        )
        return str(data.get("id", ""))

    async def send_email(self, to: str, subject: str, body: str) -> str:
        if not self._email_api_url:
            raise UnsupportedActionError("Email transport is not configured")
        data = await self._request(
            "POST",
            self._email_api_url,
            headers={"Authorization": f"Bearer {self._email_api_key}"},
            json={"from": self._email_from, "to": [to], "subject": subject, "text": body},
        )
        return str(data.get("id") or data.get("message_id") or "")

    async def send_webhook(
        self,
        url: str,
        body: bytes,
        method: str = "POST",
        headers: dict[str, str] | None = None,
    ) -> str:
        request_headers = {"Content-Type": "application/json", **(headers or {})}
        data = await self._request(method, url, headers=request_headers, content=body)
        return str(data.get("id", ""))

    async def _request(self, method: str, url: str, **kwargs: Any) -> dict[str, Any]:
        """Send with selective retry; returns the decoded JSON body (or {})."""
        async with httpx.AsyncClient(verify=True, timeout=self._timeout) as client:
            for attempt in range(_MAX_RETRIES + 1):
                try:
                    resp = await client.request(method, url, **kwargs)
                except httpx.TimeoutException:
                    raise
                except httpx.HTTPError as exc:
                    raise TransportError(f"{method} {_redact(url)} failed: {exc}") from exc

                if resp.status_code < 400:
                    return _json_body(resp)
                if not self._should_retry(resp.status_code) or attempt == _MAX_RETRIES:
                    raise TransportError(
                        f"{method} {_redact(url)} returned {resp.status_code}: "
                        f"{_error_message(resp)}",
                        status_code=resp.status_code,
                    )
                delay = min(0.25 * 2 ** attempt, _BACKOFF_CAP_SECONDS)
                logger.info("Retrying %s %s in %.2fs", method, _redact(url), delay)
                await asyncio.sleep(delay)
        raise TransportError(f"{method} {_redact(url)} exhausted retries")

    @staticmethod
    def _should_retry(status_code: int) -> bool:
        """Only retry on 429 (rate limit) or 5xx (server error)."""
        return status_code == 429 or status_code >= 500


def _json_body(resp: httpx.Response) -> dict[str, Any]:
    try:
        data = resp.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def _error_message(resp: httpx.Response) -> str:
    data = _json_body(resp)
    error = data.get("error")
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    if data.get("message"):
        return str(data["message"])
    return resp.text[:200]


def _redact(url: str) -> str:
    return url.split("?", 1)[0]
