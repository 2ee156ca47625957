import httpx
import pytest
from fastapi.testclient import TestClient

from factories import FakeMercadoPago
from pixelgrid import server
from pixelgrid.api import payment_routes, pixel_routes
from pixelgrid.client.api_client import PixelApiClient
from pixelgrid.config import Settings
from pixelgrid.grid.image_cache import ImageCache
from pixelgrid.services.image_fetcher import ImageFetcher
from pixelgrid.services.mercadopago_client import MercadoPagoClient
from pixelgrid.store.pixel_store import PixelStore

MP_BASE_URL = "https://mp.test"


@pytest.fixture
def store(tmp_path):
    store = PixelStore(f"sqlite:///{tmp_path / 'pixels.db'}")
    yield store
    store.close()


@pytest.fixture
def provider():
    return FakeMercadoPago()


@pytest.fixture
def mp_client(provider):
    return MercadoPagoClient("TEST-token", base_url=MP_BASE_URL, transport=provider.transport)


@pytest.fixture
def settings():
    return Settings(_env_file=None, mercadopago_access_token="TEST-token")


@pytest.fixture
def image_cache():
    return ImageCache(ImageFetcher())


@pytest.fixture
def app(monkeypatch, store, mp_client, image_cache, settings):
    """The server app with test services injected; the lifespan is not run."""
    for module in (pixel_routes, payment_routes):
        monkeypatch.setattr(module, "pixel_store", store)
        monkeypatch.setattr(module, "mp_client", mp_client)
        monkeypatch.setattr(module, "settings", settings)
    monkeypatch.setattr(pixel_routes, "image_cache", image_cache)
    return server.app


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
async def api(app):
    """Board-side API client talking to the app in-process."""
    api = PixelApiClient("http://testserver", transport=httpx.ASGITransport(app=app))
    yield api
    await api.close()
