"""
Notification transports.

A transport only knows how to send one templated message and report the
outcome. Retry bookkeeping lives in the NotificationDispatcher ledger.
"""
import logging
import re
from dataclasses import dataclass
from typing import List, Optional

import httpx

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeliveryResult:
    success: bool
    delivery_id: Optional[str] = None
    error: Optional[str] = None


class NotificationTransport:
    """Interface: send(template, recipient, params) -> DeliveryResult."""

    async def send(self, template: str, recipient: str, params: List[str]) -> DeliveryResult:
        raise NotImplementedError


class UnconfiguredTransport(NotificationTransport):
    """Fails every send, so messages stay in the ledger until a transport is configured."""

    async def send(self, template: str, recipient: str, params: List[str]) -> DeliveryResult:
        return DeliveryResult(success=False, error="WhatsApp transport not configured")


def format_phone_number(number: str, country_code: str = "91") -> str:
    """Strip non-digits and prefix the country code for 10-digit numbers."""
    digits = re.sub(r"\D", "", number or "")
    if len(digits) == 10:
        return f"{country_code}{digits}"
    return digits


class WhatsAppCloudTransport(NotificationTransport):
    """WhatsApp Business Cloud API template messages over httpx."""

    def __init__(
        self,
        api_url: str,
        phone_number_id: str,
        access_token: str,
        language: str = "en",
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None
    ):
        self.endpoint = f"{api_url.rstrip('/')}/{phone_number_id}/messages"
        self.access_token = access_token
        self.language = language
        self.timeout = timeout
        self._client = client

    def build_payload(self, template: str, recipient: str, params: List[str]) -> dict:
        payload = {
            "messaging_product": "whatsapp",
            "to": format_phone_number(recipient),
            "type": "template",
            "template": {
                "name": template,
                "language": {"code": self.language},
            },
        }
        if params:
            payload["template"]["components"] = [{
                "type": "body",
                "parameters": [{"type": "text", "text": str(value)} for value in params],
            }]
        return payload

    async def _post(self, client: httpx.AsyncClient, payload: dict) -> httpx.Response:
        return await client.post(
            self.endpoint,
            json=payload,
            headers={"Authorization": f"Bearer {self.access_token}"},
            timeout=self.timeout,
        )

    async def send(self, template: str, recipient: str, params: List[str]) -> DeliveryResult:
        payload = self.build_payload(template, recipient, params)
        try:
            if self._client is not None:
                response = await self._post(self._client, payload)
            else:
                async with httpx.AsyncClient() as client:
                    response = await self._post(client, payload)
        except httpx.HTTPError as e:
            logger.error(f"[WHATSAPP] Transport error sending {template}: {e}")
            return DeliveryResult(success=False, error=str(e))

        if response.status_code >= 400:
            try:
                error = response.json().get("error", {}).get("message", response.text)
            except ValueError:
                error = response.text
            logger.error(f"[WHATSAPP] {response.status_code} sending {template}: {error}")
            return DeliveryResult(success=False, error=f"HTTP {response.status_code}: {error}")

        messages = response.json().get("messages") or [{}]
        return DeliveryResult(success=True, delivery_id=messages[0].get("id"))
