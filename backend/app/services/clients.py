"""FastAPI dependencies for the outbound API clients.

Routers depend on these instead of building clients inline so tests can
swap them through ``app.dependency_overrides``.
"""
from fastapi import Depends

from app.config import settings
from app.services.bling_client import BlingClient
from app.services.mercadolivre_client import MercadoLivreClient
from app.services.token_manager import MarketplaceTokenManager


def get_marketplace_client() -> MercadoLivreClient:
    return MercadoLivreClient(settings)


def get_bling_client() -> BlingClient:
    return BlingClient(settings)


def get_token_manager(client: MercadoLivreClient = Depends(get_marketplace_client)) -> MarketplaceTokenManager:
    return MarketplaceTokenManager(settings, client)
