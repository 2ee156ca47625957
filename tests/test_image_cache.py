"""Tests for image fetching and the bounded decode cache."""

import asyncio
import base64
import io

import httpx
import pytest
from PIL import Image

from pixelgrid.constants import CELL_SIZE
from pixelgrid.grid.image_cache import ImageCache
from pixelgrid.grid.renderer import GridView, render_snapshot
from pixelgrid.models.view_models import ViewportTransform
from pixelgrid.services import image_fetcher
from pixelgrid.services.image_fetcher import ImageFetcher, ImageFetchError, decode_data_url, decode_image

from factories import image_item, png_bytes, png_data_url, text_item


class TestImageFetcher:
    async def test_data_url(self):
        image = await ImageFetcher().fetch(png_data_url((1, 2, 3, 255), size=(5, 3)))
        assert image.mode == "RGBA"
        assert image.size == (5, 3)
        assert image.getpixel((0, 0)) == (1, 2, 3, 255)

    async def test_download(self):
        def handler(request):
            return httpx.Response(200, content=png_bytes(size=(2, 2)), headers={"Content-Type": "image/png"})

        fetcher = ImageFetcher(transport=httpx.MockTransport(handler))
        image = await fetcher.fetch("https://img.test/a.png")
        await fetcher.close()
        assert image.size == (2, 2)

    async def test_http_error(self):
        fetcher = ImageFetcher(transport=httpx.MockTransport(lambda request: httpx.Response(404)))
        with pytest.raises(ImageFetchError):
            await fetcher.fetch("https://img.test/missing.png")

    async def test_not_an_image(self):
        fetcher = ImageFetcher(transport=httpx.MockTransport(lambda request: httpx.Response(200, content=b"<html>")))
        with pytest.raises(ImageFetchError):
            await fetcher.fetch("https://img.test/page")

    def test_malformed_data_url(self):
        with pytest.raises(ImageFetchError):
            decode_data_url("data:image/png;base64")


class TestImageCache:
    async def test_miss_loads_and_notifies(self):
        loads = []
        cache = ImageCache(ImageFetcher(), on_load=lambda: loads.append(1))
        item = image_item()

        entry = cache.get(item)
        assert not entry.complete
        await entry.task
        assert entry.ready
        assert loads == [1]
        assert cache.get(item) is entry

    async def test_failed_entry_is_kept(self):
        cache = ImageCache(ImageFetcher())
        item = image_item(src="data:image/png;base64,AAAA")
        await cache.preload([item])
        entry = cache.get(item)
        assert entry.failed and not entry.ready
        assert entry.error

    async def test_lru_eviction(self):
        cache = ImageCache(ImageFetcher(), max_entries=2)
        first, second, third = image_item(), image_item(), image_item()
        await cache.preload([first, second])
        cache.get(first)  # touch: second is now least recent
        await cache.preload([third])

        assert len(cache) == 2
        assert first.id in cache
        assert third.id in cache
        assert second.id not in cache

    async def test_preload_skips_text(self):
        cache = ImageCache(ImageFetcher())
        await cache.preload([text_item(), image_item()])
        assert len(cache) == 1

    def test_headless_get_waits_for_preload(self):
        cache = ImageCache(ImageFetcher())
        entry = cache.get(image_item())
        assert entry.task is None
        asyncio.run(cache.preload([image_item(id=entry.item_id, src=entry.src)]))
        assert entry.ready

    def test_rejects_empty_cache(self):
        with pytest.raises(ValueError):
            ImageCache(ImageFetcher(), max_entries=0)


class CountingFetcher(ImageFetcher):
    def __init__(self):
        super().__init__()
        self.fetches = 0

    async def fetch(self, src):
        self.fetches += 1
        return await super().fetch(src)


class TestCacheOverCapacity:
    async def test_preload_more_than_capacity(self):
        fetcher = CountingFetcher()
        cache = ImageCache(fetcher, max_entries=2)
        items = [image_item() for _ in range(3)]

        await cache.preload(items)

        assert all(cache.get(item).ready for item in items)
        assert fetcher.fetches == 3

    async def test_snapshot_more_visible_than_capacity(self):
        fetcher = CountingFetcher()
        cache = ImageCache(fetcher, max_entries=2)
        items = [
            image_item(x=i * 3, y=0, w=2, h=2, src=png_data_url((0, 0, 255, 255)))
            for i in range(3)
        ]

        png = await render_snapshot(items, cache, 200, 100, ViewportTransform(x=0, y=0, scale=1))

        assert png.startswith(b"\x89PNG")
        painted = Image.open(io.BytesIO(png)).convert("RGBA")
        for item in items:
            assert painted.getpixel((item.x * CELL_SIZE + 10, 25)) == (0, 0, 255, 255)
        assert fetcher.fetches == 3

    async def test_view_does_not_refetch_visible_images(self):
        fetcher = CountingFetcher()
        cache = ImageCache(fetcher, max_entries=2)
        view = GridView(width=200, height=100, image_cache=cache)
        view.set_transform(ViewportTransform(x=0, y=0, scale=1))
        view.set_items([image_item(x=i * 3, y=0, w=2, h=2) for i in range(3)])

        for _ in range(5):
            view.draw()
            await asyncio.sleep(0.01)
        view.scheduler.cancel()

        assert fetcher.fetches == 3
        assert len(cache) == 3

    async def test_scrolled_out_images_are_evicted(self):
        cache = ImageCache(ImageFetcher(), max_entries=2)
        view = GridView(width=200, height=100, image_cache=cache)
        view.set_transform(ViewportTransform(x=0, y=0, scale=1))
        near = [image_item(x=i * 3, y=0, w=2, h=2) for i in range(3)]
        view.set_items(near)
        view.draw()
        await cache.preload(near)

        far = image_item(x=900, y=900, w=1, h=1)
        view.set_items([far])
        view.draw()
        await cache.preload([far])
        view.draw()
        view.scheduler.cancel()

        assert len(cache) == 2
        assert far.id in cache


class TestDecodeLimits:
    async def test_decompression_bomb_fails_entry(self, monkeypatch):
        monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 4)
        loads = []
        cache = ImageCache(ImageFetcher(), on_load=lambda: loads.append(1))
        item = image_item(src=png_data_url(size=(4, 4)))

        await cache.preload([item])

        entry = cache.get(item)
        assert entry.failed and not entry.ready
        assert loads == [1]

    def test_decode_image_maps_bomb_error(self, monkeypatch):
        monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 4)
        with pytest.raises(ImageFetchError):
            decode_image(png_bytes(size=(4, 4)))

    async def test_download_stops_past_limit(self, monkeypatch):
        monkeypatch.setattr(image_fetcher, "MAX_IMAGE_BYTES", 64)
        fetcher = ImageFetcher(transport=httpx.MockTransport(lambda request: httpx.Response(200, content=b"x" * 1000)))
        with pytest.raises(ImageFetchError, match="too large"):
            await fetcher.fetch("https://img.test/huge.png")

    def test_data_url_limit(self, monkeypatch):
        monkeypatch.setattr(image_fetcher, "MAX_IMAGE_BYTES", 64)
        with pytest.raises(ImageFetchError, match="too large"):
            decode_data_url("data:image/png;base64," + base64.b64encode(bytes(200)).decode("ascii"))
        with pytest.raises(ImageFetchError, match="too large"):
            decode_data_url("data:text/plain," + "x" * 100)
