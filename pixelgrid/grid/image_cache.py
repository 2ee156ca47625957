"""
Image Cache
===========

Bounded LRU of decoded item images, keyed by item id.

A miss creates the entry and starts decoding in the background; when the
decode finishes (or fails) ``on_load`` is called so the view can schedule
a redraw. A failed entry stays in the cache and renders as nothing.

Eviction only drops entries that finished loading and were not used by
the current frame or a running ``preload``. When more images are visible
than ``max_entries`` the cache grows past its limit until they scroll out.
"""

import asyncio
import logging
from collections import OrderedDict
from typing import Callable, Iterable, Optional, Set

from PIL import Image

from ..models.pixel_models import ImageItem
from ..services.image_fetcher import ImageFetcher, ImageFetchError

logger = logging.getLogger(__name__)

DEFAULT_MAX_ENTRIES = 256


class CachedImage:
    """One cache slot."""

    def __init__(self, item_id: str, src: str):
        self.item_id = item_id
        self.src = src
        self.image: Optional[Image.Image] = None
        self.failed = False
        self.error: Optional[str] = None
        self.task: Optional[asyncio.Task] = None

    @property
    def ready(self) -> bool:
        return self.image is not None

    @property
    def complete(self) -> bool:
        return self.ready or self.failed


class ImageCache:
    """LRU of decoded images for the grid view."""

    def __init__(
        self,
        fetcher: ImageFetcher,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        on_load: Optional[Callable[[], None]] = None
    ):
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self.fetcher = fetcher
        self.max_entries = max_entries
        self.on_load = on_load
        self._entries: "OrderedDict[str, CachedImage]" = OrderedDict()
        self._in_frame = False
        self._frame_ids: Set[str] = set()
        self._preloading: Set[str] = set()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, item_id: str) -> bool:
        return item_id in self._entries

    def begin_frame(self) -> None:
        """Start collecting the ids drawn by this frame."""
        self._in_frame = True
        self._frame_ids = set()

    def end_frame(self) -> None:
        """Frame done: trim down to the limit, sparing what it drew."""
        self._in_frame = False
        self._evict()

    def get(self, item: ImageItem) -> CachedImage:
        """Entry for ``item``, creating it and starting the decode on a miss."""
        if self._in_frame:
            self._frame_ids.add(item.id)
        entry = self._entries.get(item.id)
        if entry is not None:
            self._entries.move_to_end(item.id)
            return entry

        entry = CachedImage(item.id, item.src)
        self._entries[item.id] = entry
        self._start(entry)
        if not self._in_frame:
            self._evict()
        return entry

    async def preload(self, items: Iterable) -> None:
        """Decode every image item and wait for all of them."""
        images = [item for item in items if isinstance(item, ImageItem)]
        ids = {item.id for item in images} - self._preloading
        self._preloading |= ids
        try:
            pending = []
            for item in images:
                entry = self.get(item)
                if entry.complete:
                    continue
                if entry.task is None:
                    entry.task = asyncio.ensure_future(self._load(entry))
                pending.append(entry.task)
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
        finally:
            self._preloading -= ids

    def clear(self) -> None:
        for entry in self._entries.values():
            if entry.task is not None and not entry.task.done():
                entry.task.cancel()
        self._entries.clear()

    def _start(self, entry: CachedImage) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop (headless draw): preload() picks it up later
            return
        entry.task = loop.create_task(self._load(entry))

    def _evict(self) -> None:
        excess = len(self._entries) - self.max_entries
        if excess <= 0:
            return
        in_use = self._frame_ids | self._preloading
        for item_id, entry in list(self._entries.items()):
            if excess <= 0:
                break
            if item_id in in_use or not entry.complete:
                continue
            del self._entries[item_id]
            excess -= 1
            logger.debug(f"[IMAGE-CACHE] Evicted {item_id}")

    async def _load(self, entry: CachedImage) -> None:
        try:
            entry.image = await self.fetcher.fetch(entry.src)
        except ImageFetchError as e:
            entry.failed = True
            entry.error = str(e)
            logger.warning(f"[IMAGE-CACHE] Failed to load image for {entry.item_id}: {e}")
        except Exception as e:
            entry.failed = True
            entry.error = f"Unexpected error: {e}"
            logger.error(f"[IMAGE-CACHE] Unexpected error loading {entry.item_id}: {e}")
        if self.on_load is not None and entry.item_id in self._entries:
            self.on_load()
