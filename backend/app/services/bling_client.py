"""Bling (ERP / fulfillment) API v2 client.

Only the order status update is used: Bling is told when an order starts
being handled. Orders are addressed by ``bling_id`` when known, otherwise by
the marketplace order id.
"""
from __future__ import annotations

from typing import Any, Dict, Mapping, Optional
from xml.sax.saxutils import escape

import httpx

from app.config import Settings
from app.services.errors import BlingApiError
from app.services.order_status import map_status_to_bling
from app.utils.logger import logger


NOT_CONFIGURED_NOTE = "bling_api_key_not_configured"


def build_status_payload(external_id: str, situacao: str) -> str:
    return (
        "<pedido>"
        f"<id>{escape(str(external_id))}</id>"
        f"<situacao>{escape(situacao)}</situacao>"
        "</pedido>"
    )


class BlingClient:
    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.settings = settings
        self.base_url = settings.BLING_API_URL.rstrip("/")
        self._transport = transport

    async def update_order_status(self, order: Mapping[str, Any], status: str) -> Dict[str, Any]:
        """Push the canonical ``status`` of ``order`` (an order snapshot) to Bling.

        Raises BlingApiError on transport failure or a non-2xx response.
        """
        external_id = order.get("bling_id") or order.get("ml_order_id") or order.get("id")
        if not self.settings.bling_configured:
            logger.warning(
                "[bling] BLING_API_KEY not configured; skipping status update order_id=%s status=%s",
                order.get("id"),
                status,
            )
            return {"note": NOT_CONFIGURED_NOTE}

        situacao = map_status_to_bling(status)
        url = f"{self.base_url}/pedido/{external_id}/json"
        params = {
            "apikey": self.settings.BLING_API_KEY,
            "xml": build_status_payload(external_id, situacao),
        }
        logger.info("[bling] Updating order %s -> %s (%s)", external_id, situacao, status)

        timeout = self.settings.BLING_HTTP_TIMEOUT_SECONDS
        try:
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(timeout, connect=min(10.0, timeout)),
                transport=self._transport,
            ) as client:
                resp = await client.post(url, params=params)
        except httpx.RequestError as exc:
            logger.error("[bling] Request error for order %s: %s", external_id, exc)
            raise BlingApiError(f"Bling request failed: {exc}") from exc

        if resp.status_code >= 400:
            body = (resp.text or "")[:2000]
            logger.error("[bling] Status update failed order=%s status=%s body=%s", external_id, resp.status_code, body[:500])
            raise BlingApiError(
                f"Bling API error {resp.status_code} updating order {external_id}",
                status_code=resp.status_code,
                body=body,
            )

        try:
            return resp.json()
        except ValueError:
            return {"raw": resp.text}
