from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from app.config import settings
from app.services.errors import MarketplaceApiError, MarketplaceConfigError
from app.services.mercadolivre_client import MercadoLivreClient

CONFIGURED = settings.model_copy(
    update={
        "MERCADOLIVRE_CLIENT_ID": "app-id",
        "MERCADOLIVRE_CLIENT_SECRET": "app-secret",
        "MERCADOLIVRE_REDIRECT_URI": "https://ops.example.com/api/mercadolivre/callback",
    }
)


def test_authorization_url_carries_app_and_redirect():
    url = urlparse(MercadoLivreClient(CONFIGURED).build_authorization_url())
    query = parse_qs(url.query)

    assert query["response_type"] == ["code"]
    assert query["client_id"] == ["app-id"]
    assert query["redirect_uri"] == ["https://ops.example.com/api/mercadolivre/callback"]


def test_authorization_url_requires_configuration():
    unconfigured = settings.model_copy(update={"MERCADOLIVRE_CLIENT_ID": None})

    with pytest.raises(MarketplaceConfigError):
        MercadoLivreClient(unconfigured).build_authorization_url()


@pytest.mark.asyncio
async def test_refresh_posts_form_to_token_endpoint():
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["form"] = parse_qs(request.content.decode())
        return httpx.Response(200, json={"access_token": "new", "expires_in": 21600})

    client = MercadoLivreClient(CONFIGURED, transport=httpx.MockTransport(handler))

    payload = await client.refresh_access_token("r1")

    assert payload["access_token"] == "new"
    assert seen["path"] == "/oauth/token"
    assert seen["form"]["grant_type"] == ["refresh_token"]
    assert seen["form"]["refresh_token"] == ["r1"]


@pytest.mark.asyncio
async def test_error_status_is_raised_with_status_and_body():
    client = MercadoLivreClient(
        CONFIGURED,
        transport=httpx.MockTransport(lambda request: httpx.Response(404, json={"message": "not found"})),
    )

    with pytest.raises(MarketplaceApiError) as exc_info:
        await client.get_shipping_performance({"Authorization": "Bearer x"}, 555, "flex")

    assert exc_info.value.status_code == 404
    assert "not found" in exc_info.value.body


@pytest.mark.asyncio
async def test_transport_failure_has_no_status():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    client = MercadoLivreClient(CONFIGURED, transport=httpx.MockTransport(handler))

    with pytest.raises(MarketplaceApiError) as exc_info:
        await client.get_me({"Authorization": "Bearer x"})

    assert exc_info.value.status_code is None
