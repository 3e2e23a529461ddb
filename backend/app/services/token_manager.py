"""Mercado Livre access-token manager.

Single entry point for every caller that needs marketplace auth headers
(order sync worker, manual sync, reputation/account proxies).

The stored credential is reused while ``now < updated_at + expires_in -
safety margin``; otherwise it is refreshed with the stored refresh token and
written back. The write is conditional on the ``updated_at`` value read
before refreshing: when a concurrent refresher already replaced the row,
the stored record is left alone and the token we just obtained is returned.
Both tokens are valid, so no lock is needed.

Usage:
    from app.services.token_manager import MarketplaceTokenManager

    headers = await MarketplaceTokenManager(settings).get_auth_headers(db)
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Mapping, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import Settings
from app.models_sqlalchemy.models import IntegrationCredential, as_utc
from app.services.errors import (
    IntegrationNotAuthorized,
    MarketplaceApiError,
    MarketplaceConfigError,
    RefreshTokenMissing,
    TokenRefreshFailed,
)
from app.services.mercadolivre_client import MercadoLivreClient
from app.utils.logger import logger, mask_token


PROVIDER = "mercadolivre"


def get_integration_credential(db: Session, provider: str = PROVIDER) -> Optional[IntegrationCredential]:
    return db.query(IntegrationCredential).filter(IntegrationCredential.provider == provider).first()


def save_authorized_credential(
    db: Session,
    provider: str,
    token_payload: Mapping[str, Any],
    *,
    now: Optional[datetime] = None,
) -> IntegrationCredential:
    """Persist tokens returned by the OAuth authorization-code exchange.

    Re-authorizing overwrites the tokens of the existing row.
    """
    now = now or datetime.now(timezone.utc)
    record = get_integration_credential(db, provider)
    if record is None:
        record = IntegrationCredential(provider=provider)
        db.add(record)

    record.access_token = token_payload.get("access_token")
    record.refresh_token = token_payload.get("refresh_token")
    record.expires_in = _as_int(token_payload.get("expires_in"))
    user_id = token_payload.get("user_id")
    record.user_id = str(user_id) if user_id is not None else None
    record.status = "active"
    record.updated_at = now

    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    db.refresh(record)

    logger.info(
        "[token_manager] Stored %s credentials user_id=%s access_token=%s",
        provider,
        record.user_id,
        mask_token(record.access_token),
    )
    return record


def _as_int(value: Any) -> Optional[int]:
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


class MarketplaceTokenManager:
    def __init__(
        self,
        settings: Settings,
        client: Optional[MercadoLivreClient] = None,
        *,
        provider: str = PROVIDER,
    ):
        self.settings = settings
        self.client = client or MercadoLivreClient(settings)
        self.provider = provider
        self.safety_margin = timedelta(minutes=settings.TOKEN_REFRESH_SAFETY_MARGIN_MINUTES)

    def is_token_fresh(self, record: IntegrationCredential, now: datetime) -> bool:
        updated_at = as_utc(record.updated_at)
        if not record.access_token or updated_at is None or record.expires_in is None:
            return False
        expires_at = updated_at + timedelta(seconds=int(record.expires_in))
        return now < expires_at - self.safety_margin

    async def get_auth_headers(self, db: Session) -> Dict[str, str]:
        token = await self.get_valid_access_token(db)
        return {"Authorization": f"Bearer {token}"}

    async def get_valid_access_token(self, db: Session, *, now: Optional[datetime] = None) -> str:
        now = now or datetime.now(timezone.utc)

        record = get_integration_credential(db, self.provider)
        if record is None:
            logger.warning("[token_manager] No credentials stored for provider=%s", self.provider)
            raise IntegrationNotAuthorized(
                "Mercado Livre integration is not authorized. Connect the account first."
            )

        if self.is_token_fresh(record, now):
            return record.access_token

        if not record.refresh_token:
            logger.warning("[token_manager] Credentials for provider=%s have no refresh token", self.provider)
            raise RefreshTokenMissing("Mercado Livre refresh token is missing. Re-authorize the account.")

        prior_updated_at = record.updated_at
        stored_refresh_token = record.refresh_token

        logger.info(
            "[token_manager] Refreshing access token provider=%s refresh_token=%s",
            self.provider,
            mask_token(stored_refresh_token),
        )
        try:
            payload = await self.client.refresh_access_token(stored_refresh_token)
        except (MarketplaceApiError, MarketplaceConfigError) as exc:
            logger.error("[token_manager] Token refresh failed provider=%s: %s", self.provider, exc)
            raise TokenRefreshFailed(f"Failed to refresh Mercado Livre access token: {exc}") from exc

        access_token = (payload or {}).get("access_token")
        if not access_token:
            logger.error("[token_manager] Token refresh response had no access_token provider=%s", self.provider)
            raise TokenRefreshFailed("Mercado Livre token refresh returned no access token")

        values = {
            "access_token": access_token,
            "refresh_token": payload.get("refresh_token") or stored_refresh_token,
            "expires_in": _as_int(payload.get("expires_in")),
            "updated_at": now,
        }
        self._write_refreshed(db, prior_updated_at, values)
        return access_token

    def _write_refreshed(self, db: Session, prior_updated_at: Optional[datetime], values: Dict[str, Any]) -> None:
        query = db.query(IntegrationCredential).filter(IntegrationCredential.provider == self.provider)
        if prior_updated_at is None:
            query = query.filter(IntegrationCredential.updated_at.is_(None))
        else:
            query = query.filter(IntegrationCredential.updated_at == prior_updated_at)

        try:
            updated = query.update(values, synchronize_session=False)
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.error("[token_manager] Failed to persist refreshed token provider=%s", self.provider, exc_info=True)
            raise

        if updated:
            logger.info(
                "[token_manager] Refreshed token stored provider=%s access_token=%s expires_in=%s",
                self.provider,
                mask_token(values["access_token"]),
                values["expires_in"],
            )
        else:
            logger.info(
                "[token_manager] Credentials for provider=%s were refreshed concurrently; keeping stored record",
                self.provider,
            )
