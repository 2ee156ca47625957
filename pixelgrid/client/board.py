"""
Board Session
=============

The application shell around the grid view: loads approved items, keeps
the pending selection, builds drafts from it, drives the checkout flow and
refreshes the board once a payment is approved.

Errors are reported through ``notify(message, kind)`` with kind
"success" or "error", the way a toast would show them.
"""

import asyncio
import logging
import uuid
from typing import Any, Callable, Dict, List, Optional, Union

from ..config import ClientSettings
from ..constants import GRID_SIZE
from ..models.payment_models import Payer
from ..models.pixel_models import ImageItem, TextItem, utcnow
from ..models.view_models import GridSelection
from ..grid.geometry import format_brl, selection_cells, selection_price, selection_rect
from ..grid.renderer import GridView
from .api_client import PixelApiClient
from .checkout import CheckoutFlow, CheckoutState

logger = logging.getLogger(__name__)

PixelItem = Union[ImageItem, TextItem]

DEFAULT_IMAGE_TITLE = "Pixel Publicado"
SEARCH_LIMIT = 10
TEXT_STYLE_FIELDS = ("font_family", "font_size", "font_weight", "color", "bg_color")


class BoardSession:
    """
    One user's board.

    Usage:
        session = BoardSession(PixelApiClient(), GridView())
        await session.refresh_items()
        session.view.pointer_down(...); session.view.pointer_up()
        flow = await session.submit_image("https://...", link="https://...")
        await flow.wait()
    """

    def __init__(
        self,
        api: PixelApiClient,
        view: GridView,
        settings: Optional[ClientSettings] = None,
        payer: Optional[Payer] = None,
        notify: Optional[Callable[[str, str], None]] = None,
        open_link: Optional[Callable[[str], None]] = None,
        refresh_delay: float = 2.0
    ):
        self.api = api
        self.view = view
        self.settings = settings or ClientSettings()
        self.payer = payer
        self.notify = notify
        self.open_link = open_link
        self.refresh_delay = refresh_delay

        self.items: List[PixelItem] = []
        self.pending_selection: Optional[GridSelection] = None
        self.checkout: Optional[CheckoutFlow] = None
        self.cursor_cell = (0, 0)
        self._refresh_task: Optional[asyncio.Task] = None

        view.on_selection_complete = self._on_selection_complete
        view.on_view_item = self._on_view_item
        view.on_cursor_move = self._on_cursor_move

    # ------------------------------------------------------------------
    # Items

    async def refresh_items(self) -> bool:
        """Replace the board contents with the server's approved items."""
        result = await self.api.list_pixels()
        if not result.success:
            logger.error(f"[BOARD] Failed to load items: {result.error}")
            self._notify("Could not load the grid data.", "error")
            return False
        self.items = list(result.items)
        self.view.set_items(self.items)
        logger.info(f"[BOARD] Loaded {len(self.items)} items")
        return True

    @property
    def occupied_cells(self) -> int:
        return sum(item.w * item.h for item in self.items)

    @property
    def remaining_cells(self) -> int:
        return GRID_SIZE * GRID_SIZE - self.occupied_cells

    def search(self, query: str) -> List[PixelItem]:
        """Items whose title contains ``query``, case-insensitive."""
        query = query.strip().lower()
        if not query:
            return []
        return [item for item in self.items if query in item.title.lower()][:SEARCH_LIMIT]

    def navigate_to(self, item: PixelItem) -> None:
        self.view.navigate_to(item)

    # ------------------------------------------------------------------
    # Selection

    @property
    def selection_cells(self) -> int:
        if self.pending_selection is None:
            return 0
        return selection_cells(self.pending_selection)

    @property
    def selection_price(self) -> float:
        if self.pending_selection is None:
            return 0.0
        return selection_price(self.pending_selection, self.settings.price_per_cell)

    @property
    def selection_price_label(self) -> str:
        """Price shown next to the selection, e.g. ``R$ 12,00``."""
        return format_brl(self.selection_price)

    def cancel_selection(self) -> None:
        if self.checkout is not None:
            self.checkout.cancel()
            self.checkout = None
        self.pending_selection = None
        self.view.set_active_selection(None)

    def _on_selection_complete(self, selection: GridSelection) -> None:
        self.pending_selection = selection
        self.view.set_active_selection(selection)

    def _on_view_item(self, item: PixelItem) -> None:
        if item.link and self.open_link is not None:
            self.open_link(item.link)

    def _on_cursor_move(self, cell) -> None:
        self.cursor_cell = cell

    # ------------------------------------------------------------------
    # Drafts

    def build_image_item(
        self,
        src: str,
        link: Optional[str] = None,
        zoom: float = 1.0,
        offset_x: float = 0.0,
        offset_y: float = 0.0,
        rotation: int = 0
    ) -> ImageItem:
        x, y, w, h = self._require_selection()
        return ImageItem(
            id=str(uuid.uuid4()),
            x=x, y=y, w=w, h=h,
            src=src,
            rotation=rotation,
            brightness=100,
            contrast=100,
            zoom=zoom,
            offset_x=offset_x,
            offset_y=offset_y,
            title=DEFAULT_IMAGE_TITLE,
            link=(link or "").strip() or None,
            created_at=utcnow(),
        )

    def build_text_item(
        self,
        content: str,
        title: str,
        style: Optional[Dict[str, Any]] = None,
        link: Optional[str] = None,
        message: Optional[str] = None
    ) -> TextItem:
        x, y, w, h = self._require_selection()
        style = {key: value for key, value in (style or {}).items() if key in TEXT_STYLE_FIELDS}
        return TextItem(
            id=str(uuid.uuid4()),
            x=x, y=y, w=w, h=h,
            content=content,
            title=title,
            link=(link or "").strip() or None,
            message=(message or "").strip() or None,
            created_at=utcnow(),
            **style,
        )

    def _require_selection(self):
        if self.pending_selection is None:
            raise ValueError("No pending selection")
        return selection_rect(self.pending_selection)

    # ------------------------------------------------------------------
    # Publishing

    async def submit_image(self, src: str, link: Optional[str] = None, **framing) -> Optional[CheckoutFlow]:
        """Publish an image into the pending selection."""
        return await self._start_checkout(self.build_image_item(src, link, **framing))

    async def submit_text(
        self,
        content: str,
        title: str,
        style: Optional[Dict[str, Any]] = None,
        link: Optional[str] = None,
        message: Optional[str] = None
    ) -> Optional[CheckoutFlow]:
        """Publish a text block into the pending selection."""
        return await self._start_checkout(self.build_text_item(content, title, style, link, message))

    async def _start_checkout(self, item: PixelItem) -> Optional[CheckoutFlow]:
        if self.checkout is not None and self.checkout.state not in (
            CheckoutState.APPROVED, CheckoutState.DISCARDED, CheckoutState.CANCELLED
        ):
            self._notify("A payment is already in progress.", "error")
            return None

        flow = CheckoutFlow(
            self.api,
            item,
            price_per_cell=self.settings.price_per_cell,
            payer=self.payer,
            poll_interval=self.settings.poll_interval,
            payment_window=self.settings.payment_window,
            on_change=self._on_checkout_change,
        )
        self.checkout = flow
        state = await flow.submit()
        if state is CheckoutState.COMPOSING:
            self.checkout = None
            self._notify("Could not start publishing on the server.", "error")
        elif state is CheckoutState.FAILED:
            self._notify(flow.error, "error")
        return flow

    def _on_checkout_change(self, flow: CheckoutFlow) -> None:
        if flow is not self.checkout:
            return
        if flow.state is CheckoutState.APPROVED:
            self.checkout = None
            self.pending_selection = None
            self.view.set_active_selection(None)
            self._notify("Processing your payment!", "success")
            self._refresh_task = asyncio.get_running_loop().create_task(self._refresh_after_approval())
        elif flow.state is CheckoutState.DISCARDED:
            self.checkout = None
            self._notify(flow.notice, "error")

    async def _refresh_after_approval(self) -> None:
        if self.refresh_delay > 0:
            await asyncio.sleep(self.refresh_delay)
        await self.refresh_items()

    async def close(self) -> None:
        if self.checkout is not None:
            self.checkout.cancel()
            self.checkout = None
        if self._refresh_task is not None and not self._refresh_task.done():
            self._refresh_task.cancel()
        self.view.scheduler.cancel()
        await self.api.close()

    def _notify(self, message: str, kind: str) -> None:
        if self.notify is not None:
            self.notify(message, kind)
