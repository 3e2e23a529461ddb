from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import RedirectResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import settings
from app.models.order import OrderSyncRequest
from app.models_sqlalchemy import get_db
from app.models_sqlalchemy.models import User, as_utc
from app.services.auth import admin_required, get_current_active_user
from app.services.bling_client import BlingClient
from app.services.clients import get_bling_client, get_marketplace_client, get_token_manager
from app.services.errors import Internal, MarketplaceApiError, MarketplaceConfigError
from app.services.mercadolivre_client import MercadoLivreClient
from app.services.order_sync import run_order_sync_window
from app.services.token_manager import (
    PROVIDER,
    MarketplaceTokenManager,
    get_integration_credential,
    save_authorized_credential,
)
from app.utils.logger import logger

router = APIRouter(prefix="/api/mercadolivre", tags=["mercadolivre"])


def _settings_redirect(status_flag: str) -> RedirectResponse:
    return RedirectResponse(url=f"{settings.FRONTEND_URL.rstrip('/')}/settings?status={status_flag}")


@router.get("/auth-url")
async def get_auth_url(
    _: User = Depends(get_current_active_user),
    client: MercadoLivreClient = Depends(get_marketplace_client),
):
    try:
        return {"auth_url": client.build_authorization_url()}
    except MarketplaceConfigError:
        logger.error("[mercadolivre] auth-url requested but client id / redirect URI are not set")
        raise Internal("Server configuration is incomplete.")


@router.get("/callback")
async def oauth_callback(
    code: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    error_description: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    client: MercadoLivreClient = Depends(get_marketplace_client),
):
    """OAuth redirect target registered with Mercado Livre.

    Unauthenticated. Always answers with a redirect to the dashboard
    settings page carrying ``status=ml-success`` or ``status=ml-error``.
    """
    if error:
        logger.error("[mercadolivre] OAuth callback error=%s description=%s", error, error_description)
        return _settings_redirect("ml-error")

    if not code:
        logger.warning("[mercadolivre] OAuth callback received without code")
        return _settings_redirect("ml-error")

    try:
        token_payload = await client.exchange_code(code)
        if not token_payload.get("access_token"):
            logger.error("[mercadolivre] Token exchange returned no access_token")
            return _settings_redirect("ml-error")
        save_authorized_credential(db, PROVIDER, token_payload)
    except (MarketplaceApiError, MarketplaceConfigError, SQLAlchemyError) as exc:
        logger.error("[mercadolivre] OAuth callback failed: %s", exc)
        return _settings_redirect("ml-error")

    return _settings_redirect("ml-success")


@router.get("/status")
async def integration_status(
    _: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
):
    record = get_integration_credential(db, PROVIDER)
    if record is None:
        return {"connected": False, "status": None, "user_id": None, "updated_at": None}
    updated_at = as_utc(record.updated_at)
    return {
        "connected": record.status == "active" and bool(record.refresh_token),
        "status": record.status,
        "user_id": record.user_id,
        "updated_at": updated_at.isoformat() if updated_at else None,
    }


async def _seller_context(db: Session, token_manager: MarketplaceTokenManager, client: MercadoLivreClient):
    headers = await token_manager.get_auth_headers(db)
    seller = await client.get_me(headers)
    return headers, seller.get("id")


@router.get("/reputation")
async def get_reputation(
    _: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
    client: MercadoLivreClient = Depends(get_marketplace_client),
    token_manager: MarketplaceTokenManager = Depends(get_token_manager),
):
    try:
        headers, seller_id = await _seller_context(db, token_manager, client)
        return await client.get_seller_reputation(headers, seller_id)
    except MarketplaceApiError as exc:
        logger.error("[mercadolivre] Reputation fetch failed: %s", exc)
        raise Internal("Could not fetch seller reputation.")


@router.get("/account-summary")
async def get_account_summary(
    _: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
    client: MercadoLivreClient = Depends(get_marketplace_client),
    token_manager: MarketplaceTokenManager = Depends(get_token_manager),
):
    try:
        headers, seller_id = await _seller_context(db, token_manager, client)
        return await client.get_account_balance(headers, seller_id)
    except MarketplaceApiError as exc:
        logger.error("[mercadolivre] Account summary fetch failed: %s", exc)
        raise Internal("Could not fetch account summary.")


def summarize_shipping_performance(data: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Extract the late-shipping rates from a shipping_performance payload."""
    current_week_rate = None
    last_4_weeks_rate = None
    prediction_status = "not_calculated"

    late_rate = ((data or {}).get("metrics") or {}).get("late_shipping_rate")
    if late_rate:
        current_week_rate = (late_rate.get("current_period") or {}).get("rate")
        last_4_weeks_rate = (late_rate.get("comparison_period") or {}).get("rate")
        prediction_status = (data or {}).get("status") or "N/A"

    return {
        "current_week_rate": current_week_rate,
        "last_4_weeks_rate": last_4_weeks_rate,
        "prediction_status": prediction_status,
        "raw": data,
    }


NOT_APPLICABLE_PERFORMANCE = {
    "prediction_status": "not_applicable",
    "current_week_rate": None,
    "last_4_weeks_rate": None,
    "raw": None,
}


async def _shipping_performance(
    mode: str,
    db: Session,
    client: MercadoLivreClient,
    token_manager: MarketplaceTokenManager,
) -> Dict[str, Any]:
    try:
        headers, seller_id = await _seller_context(db, token_manager, client)
        data = await client.get_shipping_performance(headers, seller_id, mode)
    except MarketplaceApiError as exc:
        if exc.status_code == 404:
            logger.warning("[mercadolivre] No shipping performance data for mode=%s (404)", mode)
            return dict(NOT_APPLICABLE_PERFORMANCE)
        logger.error("[mercadolivre] Shipping performance fetch failed mode=%s: %s", mode, exc)
        raise Internal(f"Could not fetch shipping performance ({mode}).")
    return summarize_shipping_performance(data)


@router.get("/shipping-performance/flex")
async def get_shipping_performance_flex(
    _: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
    client: MercadoLivreClient = Depends(get_marketplace_client),
    token_manager: MarketplaceTokenManager = Depends(get_token_manager),
):
    return await _shipping_performance("flex", db, client, token_manager)


@router.get("/shipping-performance/agency")
async def get_shipping_performance_agency(
    _: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
    client: MercadoLivreClient = Depends(get_marketplace_client),
    token_manager: MarketplaceTokenManager = Depends(get_token_manager),
):
    return await _shipping_performance("me2", db, client, token_manager)


@router.post("/sync")
async def sync_now(
    payload: Optional[OrderSyncRequest] = None,
    admin: User = Depends(admin_required),
    db: Session = Depends(get_db),
    client: MercadoLivreClient = Depends(get_marketplace_client),
    token_manager: MarketplaceTokenManager = Depends(get_token_manager),
    bling: BlingClient = Depends(get_bling_client),
):
    """Run the order sync now, optionally over a wider window (``hours``)."""
    window_minutes = payload.hours * 60 if payload and payload.hours else None
    logger.info("[mercadolivre] Manual sync requested by %s window_minutes=%s", admin.email, window_minutes)
    try:
        run = await run_order_sync_window(
            db,
            settings,
            window_minutes=window_minutes,
            client=client,
            token_manager=token_manager,
            bling_client=bling,
        )
    except MarketplaceApiError as exc:
        logger.error("[mercadolivre] Manual sync failed: %s", exc)
        raise Internal(f"Order sync failed: {exc}")
    return run.to_dict()
