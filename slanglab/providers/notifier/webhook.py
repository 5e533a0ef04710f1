"""Signed JSON webhook delivery for creator notifications.

The receiver gets the notice payload as canonical JSON. When a secret is
configured, ``X-Notification-Signature`` carries ``sha256=<hex>`` computed
over the exact body bytes so the receiver can verify it before parsing.
"""
from __future__ import annotations

import hashlib
import hmac
import json
from typing import Any
from uuid import uuid4

import httpx

from slanglab.core.config import get_settings
from slanglab.core.errors import NotifierConfigMissingError, NotifierError
from slanglab.providers.notifier.base import FIRST_SIGHTING_EVENT, FirstSightingNotice
from slanglab.services.resilience import call_external


_INTEGRATION = "notifier.webhook"


def serialize_payload(payload: dict[str, Any]) -> bytes:
    # Stable bytes so the signature verifies on the receiving side.
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def compute_signature(body: bytes, secret: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


class WebhookCreatorNotifier:
    def __init__(self, client: httpx.AsyncClient | None = None) -> None:
        self._settings = get_settings()
        self._client = client

    def _headers(self, body: bytes) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "X-Notification-Id": str(uuid4()),
            "X-Notification-Event-Type": FIRST_SIGHTING_EVENT,
        }
        secret = self._settings.creator_webhook_secret
        if secret:
            headers["X-Notification-Signature"] = compute_signature(body, secret)
        return headers

    async def _post(self, client: httpx.AsyncClient, url: str, body: bytes) -> httpx.Response:
        headers = self._headers(body)
        return await call_external(_INTEGRATION, lambda: client.post(url, content=body, headers=headers))

    async def notify_first_sighting(self, notice: FirstSightingNotice) -> None:
        url = self._settings.creator_webhook_url
        if not url:
            raise NotifierConfigMissingError("CREATOR_WEBHOOK_URL is required for the webhook notifier")

        body = serialize_payload(notice.to_payload())
        try:
            if self._client is not None:
                response = await self._post(self._client, url, body)
            else:
                timeout_s = self._settings.ext_call_timeout_ms / 1000.0
                async with httpx.AsyncClient(timeout=timeout_s) as client:
                    response = await self._post(client, url, body)
        except (httpx.HTTPError, TimeoutError) as exc:
            raise NotifierError("Creator webhook request failed.") from exc

        if response.status_code >= 400:
            error = NotifierError(f"Creator webhook error: {response.status_code}")
            setattr(error, "status_code", response.status_code)
            raise error
