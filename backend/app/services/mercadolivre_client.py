"""Thin async client for the Mercado Livre REST API.

Every call opens its own ``httpx.AsyncClient`` with the configured timeout.
Tests pass an ``httpx.MockTransport`` through ``transport``.
"""
from __future__ import annotations

from typing import Any, Dict, Mapping, Optional
from urllib.parse import urlencode

import httpx

from app.config import Settings
from app.services.errors import MarketplaceApiError, MarketplaceConfigError
from app.utils.logger import logger


SHIPPING_MODES = ("flex", "me2")


class MercadoLivreClient:
    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.settings = settings
        self.base_url = settings.MERCADOLIVRE_API_BASE_URL.rstrip("/")
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        timeout = self.settings.MERCADOLIVRE_HTTP_TIMEOUT_SECONDS
        return httpx.AsyncClient(
            timeout=httpx.Timeout(timeout, connect=min(10.0, timeout)),
            transport=self._transport,
        )

    async def _request(
        self,
        method: str,
        path: str,
        *,
        headers: Optional[Mapping[str, str]] = None,
        params: Optional[Mapping[str, Any]] = None,
        data: Optional[Mapping[str, Any]] = None,
    ) -> Any:
        url = f"{self.base_url}{path}"
        request_headers = {"Accept": "application/json"}
        if headers:
            request_headers.update(headers)

        try:
            async with self._client() as client:
                resp = await client.request(method, url, headers=request_headers, params=params, data=data)
        except httpx.TimeoutException as exc:
            logger.error("[mercadolivre] %s %s timed out: %s", method, path, exc)
            raise MarketplaceApiError(f"Mercado Livre request timed out: {method} {path}") from exc
        except httpx.RequestError as exc:
            logger.error("[mercadolivre] %s %s request error: %s", method, path, exc)
            raise MarketplaceApiError(f"Mercado Livre request failed: {exc}") from exc

        if resp.status_code >= 400:
            body = (resp.text or "")[:2000]
            logger.warning(
                "[mercadolivre] %s %s failed status=%s body=%s",
                method,
                path,
                resp.status_code,
                body[:500],
            )
            raise MarketplaceApiError(
                f"Mercado Livre API error {resp.status_code} on {method} {path}",
                status_code=resp.status_code,
                body=body,
            )

        try:
            return resp.json()
        except ValueError as exc:
            raise MarketplaceApiError(
                f"Mercado Livre returned invalid JSON on {method} {path}",
                status_code=resp.status_code,
                body=(resp.text or "")[:2000],
            ) from exc

    # ---- OAuth ----

    def build_authorization_url(self) -> str:
        if not (self.settings.MERCADOLIVRE_CLIENT_ID and self.settings.MERCADOLIVRE_REDIRECT_URI):
            raise MarketplaceConfigError("Mercado Livre client id / redirect URI are not configured")
        query = urlencode(
            {
                "response_type": "code",
                "client_id": self.settings.MERCADOLIVRE_CLIENT_ID,
                "redirect_uri": self.settings.MERCADOLIVRE_REDIRECT_URI,
                "scope": self.settings.MERCADOLIVRE_OAUTH_SCOPES,
            }
        )
        return f"{self.settings.MERCADOLIVRE_AUTH_URL}?{query}"

    async def exchange_code(self, code: str) -> Dict[str, Any]:
        if not self.settings.mercadolivre_configured:
            raise MarketplaceConfigError("Mercado Livre OAuth app is not configured")
        return await self._request(
            "POST",
            "/oauth/token",
            headers={"Content-Type": "application/x-www-form-urlencoded"},
            data={
                "grant_type": "authorization_code",
                "client_id": self.settings.MERCADOLIVRE_CLIENT_ID,
                "client_secret": self.settings.MERCADOLIVRE_CLIENT_SECRET,
                "code": code,
                "redirect_uri": self.settings.MERCADOLIVRE_REDIRECT_URI,
            },
        )

    async def refresh_access_token(self, refresh_token: str) -> Dict[str, Any]:
        if not (self.settings.MERCADOLIVRE_CLIENT_ID and self.settings.MERCADOLIVRE_CLIENT_SECRET):
            raise MarketplaceConfigError("Mercado Livre client id / secret are not configured")
        return await self._request(
            "POST",
            "/oauth/token",
            headers={"Content-Type": "application/x-www-form-urlencoded"},
            data={
                "grant_type": "refresh_token",
                "client_id": self.settings.MERCADOLIVRE_CLIENT_ID,
                "client_secret": self.settings.MERCADOLIVRE_CLIENT_SECRET,
                "refresh_token": refresh_token,
            },
        )

    # ---- Seller / orders ----

    async def get_me(self, headers: Mapping[str, str]) -> Dict[str, Any]:
        return await self._request("GET", "/users/me", headers=headers)

    async def search_orders(self, headers: Mapping[str, str], params: Mapping[str, Any]) -> Dict[str, Any]:
        return await self._request("GET", "/orders/search", headers=headers, params=params)

    async def get_order(self, headers: Mapping[str, str], order_id: Any) -> Dict[str, Any]:
        return await self._request("GET", f"/orders/{order_id}", headers=headers)

    async def get_seller_reputation(self, headers: Mapping[str, str], seller_id: Any) -> Dict[str, Any]:
        return await self._request("GET", f"/users/{seller_id}/seller_reputation", headers=headers)

    async def get_account_balance(self, headers: Mapping[str, str], seller_id: Any) -> Dict[str, Any]:
        return await self._request("GET", f"/users/{seller_id}/mercadopago_account/balance", headers=headers)

    async def get_shipping_performance(self, headers: Mapping[str, str], seller_id: Any, mode: str) -> Dict[str, Any]:
        if mode not in SHIPPING_MODES:
            raise ValueError(f"Unsupported shipping mode: {mode}")
        return await self._request(
            "GET",
            f"/users/{seller_id}/shipping_performance",
            headers=headers,
            params={"mode": mode},
        )
