"""
Grid View
=========

The board's render loop: one continuously updated 2D view of the grid,
plus the pointer/keyboard gesture handling that turns input into
selection, pan, zoom and hover.

State that must survive between frames lives in a ViewContext owned by the
view. Handlers mutate it through setters that also request a redraw;
draws are coalesced by a FrameScheduler so at most one is pending.

Gestures (entered on pointer-down, left on pointer-up):
- IDLE -> view item: primary click on an item with a selecting tool
- IDLE -> SELECTING: primary click on empty space with select/text tool
- IDLE -> PANNING: right/middle click, space held, or the pan tool
"""

import logging
import math
from enum import Enum
from typing import Callable, List, Optional, Sequence, Tuple, Union

from ..constants import CELL_SIZE, GRID_SIZE, REFERENCE_CELL_SIZE
from ..models.pixel_models import ImageItem, TextItem
from ..models.view_models import GridSelection, ToolType, ViewportTransform
from .frames import FRAME_INTERVAL, FrameScheduler
from .geometry import clamp_cell, in_bounds, rects_intersect, screen_to_grid, selection_rect
from .image_cache import ImageCache
from .painter import Painter
from .viewport import focus_item, pan, set_scale, step_zoom, zoom_at

logger = logging.getLogger(__name__)

PixelItem = Union[ImageItem, TextItem]

BACKGROUND = "#ffffff"
GRID_LINE = "#f1f5f9"
BOARD_BORDER = "#000000"
CULL_BUFFER = 5  # cells drawn beyond the visible edge

IMAGE_TOOL_FILL = (59, 130, 246, 51)
IMAGE_TOOL_STROKE = "#2563eb"
TEXT_TOOL_FILL = (147, 51, 234, 51)
TEXT_TOOL_STROKE = "#9333ea"

TOOLTIP_FILL = (0, 0, 0, 204)
TOOLTIP_FONT_SIZE = 11
TOOLTIP_PADDING = 8
TOOLTIP_HEIGHT = 24
TOOLTIP_OFFSET = 15


class GestureMode(str, Enum):
    IDLE = "idle"
    SELECTING = "selecting"
    PANNING = "panning"


class ViewContext:
    """Cross-frame state of one view. Every setter requests a redraw."""

    def __init__(
        self,
        request_draw: Callable[[], None],
        width: int,
        height: int,
        transform: Optional[ViewportTransform] = None
    ):
        self._request_draw = request_draw
        self.width = width
        self.height = height
        self.transform = transform or ViewportTransform.centered(width, height)
        self.tool = ToolType.SELECT
        self.items: List[PixelItem] = []
        self.active_selection: Optional[GridSelection] = None
        self.drag_selection: Optional[GridSelection] = None
        self.hovered: Optional[PixelItem] = None
        self.pointer: Tuple[float, float] = (0.0, 0.0)
        self.space_held = False

    def set_transform(self, transform: ViewportTransform) -> None:
        self.transform = transform
        self._request_draw()

    def set_items(self, items: Sequence[PixelItem]) -> None:
        self.items = list(items)
        self._request_draw()

    def set_tool(self, tool: ToolType) -> None:
        # a stale drag from the previous tool must not survive
        self.tool = tool
        self.drag_selection = None
        self._request_draw()

    def set_active_selection(self, selection: Optional[GridSelection]) -> None:
        self.active_selection = selection
        self._request_draw()

    def set_drag_selection(self, selection: Optional[GridSelection]) -> None:
        self.drag_selection = selection
        self._request_draw()

    def set_hovered(self, item: Optional[PixelItem]) -> None:
        self.hovered = item
        self._request_draw()

    def set_size(self, width: int, height: int) -> None:
        self.width = width
        self.height = height
        self._request_draw()


def wrap_text(measure: Callable[[str], float], text: str, max_width: float) -> List[str]:
    """Greedy word wrap; explicit newlines start a new paragraph."""
    lines: List[str] = []
    for paragraph in text.split("\n"):
        words = paragraph.split(" ")
        current = words[0]
        for word in words[1:]:
            candidate = f"{current} {word}"
            if measure(candidate) < max_width:
                current = candidate
            else:
                lines.append(current)
                current = word
        lines.append(current)
    return lines


class GridView:
    """Render loop and gesture state machine for the board."""

    def __init__(
        self,
        width: int = 1280,
        height: int = 800,
        image_cache: Optional[ImageCache] = None,
        on_selection_complete: Optional[Callable[[GridSelection], None]] = None,
        on_view_item: Optional[Callable[[PixelItem], None]] = None,
        on_cursor_move: Optional[Callable[[Tuple[int, int]], None]] = None,
        on_view_change: Optional[Callable[[ViewportTransform], None]] = None,
        frame_interval: float = FRAME_INTERVAL
    ):
        self.scheduler = FrameScheduler(self.draw, frame_interval)
        self.context = ViewContext(self.scheduler.request, width, height)
        self.image_cache = image_cache
        if image_cache is not None and image_cache.on_load is None:
            image_cache.on_load = self.scheduler.request
        self.on_selection_complete = on_selection_complete
        self.on_view_item = on_view_item
        self.on_cursor_move = on_cursor_move
        self.on_view_change = on_view_change

        self.mode = GestureMode.IDLE
        self.cursor = "default"
        self.painter: Optional[Painter] = None
        self._last_cell: Tuple[int, int] = (-1, -1)
        self._update_cursor()

    # ------------------------------------------------------------------
    # Inputs from the shell

    @property
    def transform(self) -> ViewportTransform:
        return self.context.transform

    def set_items(self, items: Sequence[PixelItem]) -> None:
        self.context.set_items(items)

    def set_tool(self, tool: ToolType) -> None:
        self.context.set_tool(tool)
        self._update_cursor()

    def set_active_selection(self, selection: Optional[GridSelection]) -> None:
        self.context.set_active_selection(selection)

    def set_transform(self, transform: ViewportTransform) -> None:
        self.context.set_transform(transform)
        if self.on_view_change:
            self.on_view_change(transform)

    def resize(self, width: int, height: int) -> None:
        self.context.set_size(width, height)

    def reset_view(self) -> None:
        self.set_transform(ViewportTransform.centered(self.context.width, self.context.height))

    def zoom_in(self) -> None:
        ctx = self.context
        self.set_transform(step_zoom(ctx.transform, True, ctx.width, ctx.height))

    def zoom_out(self) -> None:
        ctx = self.context
        self.set_transform(step_zoom(ctx.transform, False, ctx.width, ctx.height))

    def set_scale(self, scale: float) -> None:
        ctx = self.context
        self.set_transform(set_scale(ctx.transform, scale, ctx.width, ctx.height))

    def navigate_to(self, item: PixelItem) -> None:
        self.set_transform(focus_item(item, self.context.width, self.context.height))

    # ------------------------------------------------------------------
    # Hit testing

    def item_at(self, cell_x: int, cell_y: int) -> Optional[PixelItem]:
        """Topmost item covering a cell; later items win."""
        if not in_bounds(cell_x, cell_y):
            return None
        for item in reversed(self.context.items):
            if item.contains(cell_x, cell_y):
                return item
        return None

    # ------------------------------------------------------------------
    # Pointer and keyboard

    def pointer_down(self, screen_x: float, screen_y: float, button: int = 0, ctrl: bool = False) -> None:
        """button: 0 primary, 1 middle, 2 secondary."""
        if self.mode is not GestureMode.IDLE:
            return
        ctx = self.context
        panning = ctx.space_held or button in (1, 2) or (ctx.tool is ToolType.PAN and not ctrl)
        cell_x, cell_y = screen_to_grid(screen_x, screen_y, ctx.transform)

        if not panning:
            clicked = self.item_at(cell_x, cell_y)
            if clicked is not None:
                if self.on_view_item:
                    self.on_view_item(clicked)
                return

        ctx.pointer = (screen_x, screen_y)
        if panning:
            self.mode = GestureMode.PANNING
        else:
            self.mode = GestureMode.SELECTING
            anchor_x, anchor_y = clamp_cell(cell_x), clamp_cell(cell_y)
            ctx.set_drag_selection(
                GridSelection(start_x=anchor_x, start_y=anchor_y, end_x=anchor_x, end_y=anchor_y)
            )
        self._update_cursor()

    def pointer_move(self, screen_x: float, screen_y: float) -> None:
        ctx = self.context
        dx = screen_x - ctx.pointer[0]
        dy = screen_y - ctx.pointer[1]
        ctx.pointer = (screen_x, screen_y)

        cell_x, cell_y = screen_to_grid(screen_x, screen_y, ctx.transform)
        clamped = (clamp_cell(cell_x), clamp_cell(cell_y))
        if clamped != self._last_cell:
            self._last_cell = clamped
            if self.on_cursor_move:
                self.on_cursor_move(clamped)

        if self.mode is GestureMode.IDLE:
            hovered = self.item_at(cell_x, cell_y)
            if hovered is not ctx.hovered:
                ctx.set_hovered(hovered)
                self._update_cursor()
            elif hovered is not None and hovered.link:
                # keep the tooltip following the pointer
                self.scheduler.request()
            return

        if self.mode is GestureMode.PANNING:
            self.set_transform(pan(ctx.transform, dx, dy))
            return

        previous = ctx.drag_selection
        if previous is not None and (previous.end_x, previous.end_y) != clamped:
            ctx.set_drag_selection(previous.with_end(*clamped))

    def pointer_up(self) -> Optional[GridSelection]:
        """Leave the current gesture. Returns the completed selection, if any."""
        if self.mode is GestureMode.IDLE:
            return None
        ctx = self.context
        mode = self.mode
        self.mode = GestureMode.IDLE
        completed = None
        if mode is GestureMode.SELECTING and ctx.drag_selection is not None:
            completed = ctx.drag_selection
            ctx.set_drag_selection(None)
            if self.on_selection_complete:
                self.on_selection_complete(completed)
        self._update_cursor()
        return completed

    def cancel_gesture(self) -> None:
        """Drop an in-progress drag without reporting it."""
        if self.mode is GestureMode.IDLE:
            return
        self.mode = GestureMode.IDLE
        self.context.set_drag_selection(None)
        self._update_cursor()

    def wheel(self, screen_x: float, screen_y: float, delta_y: float) -> None:
        """Zoom about the pointer."""
        self.set_transform(zoom_at(self.context.transform, screen_x, screen_y, delta_y))

    def key_down(self, key: str, repeat: bool = False) -> None:
        if key == "Space" and not repeat:
            self.context.space_held = True
            self._update_cursor()
        elif key == "Escape":
            self.cancel_gesture()

    def key_up(self, key: str) -> None:
        if key == "Space":
            self.context.space_held = False
            self._update_cursor()

    def _update_cursor(self) -> None:
        ctx = self.context
        if self.mode is GestureMode.PANNING:
            self.cursor = "grabbing"
        elif self.mode is GestureMode.SELECTING:
            self.cursor = "crosshair"
        elif ctx.space_held or ctx.tool is ToolType.PAN:
            self.cursor = "grab"
        elif ctx.hovered is not None and ctx.hovered.link:
            self.cursor = "pointer"
        elif ctx.tool is ToolType.TEXT:
            self.cursor = "text"
        else:
            self.cursor = "default"

    # ------------------------------------------------------------------
    # Drawing

    def visible_window(self) -> Tuple[int, int, int, int]:
        """(start_col, start_row, end_col, end_row) of cells worth drawing."""
        ctx = self.context
        t = ctx.transform
        start_col = max(0, math.floor(-t.x / t.scale / CELL_SIZE) - CULL_BUFFER)
        end_col = min(GRID_SIZE, math.ceil((ctx.width - t.x) / t.scale / CELL_SIZE) + CULL_BUFFER)
        start_row = max(0, math.floor(-t.y / t.scale / CELL_SIZE) - CULL_BUFFER)
        end_row = min(GRID_SIZE, math.ceil((ctx.height - t.y) / t.scale / CELL_SIZE) + CULL_BUFFER)
        return start_col, start_row, end_col, end_row

    def visible_items(self) -> List[PixelItem]:
        start_col, start_row, end_col, end_row = self.visible_window()
        # one extra cell on each side: items touching the window edge still draw
        window = (start_col - 1, start_row - 1, end_col - start_col + 2, end_row - start_row + 2)
        return [item for item in self.context.items if rects_intersect(window, item.rect)]

    def draw(self) -> Painter:
        """Render one frame."""
        ctx = self.context
        t = ctx.transform
        painter = Painter(ctx.width, ctx.height, BACKGROUND)

        painter.save()
        painter.translate(t.x, t.y)
        painter.scale(t.scale)

        self._draw_grid_lines(painter)
        if self.image_cache is not None:
            self.image_cache.begin_frame()
        try:
            for item in self.visible_items():
                self._draw_item(painter, item)
        finally:
            if self.image_cache is not None:
                self.image_cache.end_frame()

        selection = ctx.drag_selection if self.mode is GestureMode.SELECTING else ctx.active_selection
        if selection is not None:
            self._draw_selection(painter, selection)

        board = GRID_SIZE * CELL_SIZE
        painter.stroke_rect(0, 0, board, board, BOARD_BORDER, 4 / t.scale)
        painter.restore()

        self._draw_tooltip(painter)
        self.painter = painter
        return painter

    def render_png(self) -> bytes:
        """Draw now and encode the frame."""
        self.scheduler.cancel()
        return self.draw().to_png()

    def _draw_grid_lines(self, painter: Painter) -> None:
        start_col, start_row, end_col, end_row = self.visible_window()
        if start_col >= end_col or start_row >= end_row:
            return
        segments = []
        for col in range(max(0, start_col - 1), min(GRID_SIZE, end_col + 1) + 1):
            x = col * CELL_SIZE
            segments.append((x, start_row * CELL_SIZE, x, end_row * CELL_SIZE))
        for row in range(max(0, start_row - 1), min(GRID_SIZE, end_row + 1) + 1):
            y = row * CELL_SIZE
            segments.append((start_col * CELL_SIZE, y, end_col * CELL_SIZE, y))
        painter.stroke_lines(segments, GRID_LINE, 1 / self.context.transform.scale)

    def _draw_item(self, painter: Painter, item: PixelItem) -> None:
        box_x, box_y = item.x * CELL_SIZE, item.y * CELL_SIZE
        box_w, box_h = item.w * CELL_SIZE, item.h * CELL_SIZE

        painter.save()
        painter.clip_rect(box_x, box_y, box_w, box_h)
        if isinstance(item, ImageItem):
            self._draw_image_item(painter, item, box_x, box_y, box_w, box_h)
        elif isinstance(item, TextItem):
            self._draw_text_item(painter, item, box_x, box_y, box_w, box_h)
        else:
            raise TypeError(f"Unknown item type: {type(item).__name__}")
        painter.restore()

    def _draw_image_item(self, painter: Painter, item: ImageItem, box_x, box_y, box_w, box_h) -> None:
        if self.image_cache is None:
            return
        entry = self.image_cache.get(item)
        if not entry.ready:
            return
        painter.translate(box_x + box_w / 2, box_y + box_h / 2)
        painter.rotate(item.rotation)
        painter.set_filter(item.brightness, item.contrast)
        zoom = item.zoom or 1
        offset_x = item.offset_x * (CELL_SIZE / REFERENCE_CELL_SIZE)
        offset_y = item.offset_y * (CELL_SIZE / REFERENCE_CELL_SIZE)
        painter.draw_image(
            entry.image,
            (-box_w / 2) * zoom + offset_x,
            (-box_h / 2) * zoom + offset_y,
            box_w * zoom,
            box_h * zoom,
        )

    def _draw_text_item(self, painter: Painter, item: TextItem, box_x, box_y, box_w, box_h) -> None:
        painter.fill_rect(box_x, box_y, box_w, box_h, item.bg_color)
        font_size = item.font_size * CELL_SIZE
        lines = wrap_text(
            lambda s: painter.measure_text(s, font_size, item.font_family, item.font_weight),
            item.content,
            box_w - 4,
        )
        line_height = font_size * 1.2
        y = box_y + (box_h - len(lines) * line_height) / 2 + line_height / 2
        for line in lines:
            painter.fill_text(line, box_x + box_w / 2, y, font_size, item.color, item.font_family, item.font_weight)
            y += line_height

    def _draw_selection(self, painter: Painter, selection: GridSelection) -> None:
        x, y, w, h = selection_rect(selection)
        text_tool = self.context.tool is ToolType.TEXT
        fill = TEXT_TOOL_FILL if text_tool else IMAGE_TOOL_FILL
        stroke = TEXT_TOOL_STROKE if text_tool else IMAGE_TOOL_STROKE
        painter.fill_rect(x * CELL_SIZE, y * CELL_SIZE, w * CELL_SIZE, h * CELL_SIZE, fill)
        painter.stroke_rect(x * CELL_SIZE, y * CELL_SIZE, w * CELL_SIZE, h * CELL_SIZE, stroke,
                            2 / self.context.transform.scale)

    def tooltip_box(self, painter: Painter) -> Optional[Tuple[float, float, float, float]]:
        """Screen box of the link tooltip, flipped to stay on screen; None when hidden."""
        ctx = self.context
        hovered = ctx.hovered
        if hovered is None or not hovered.link or self.mode is not GestureMode.IDLE:
            return None
        text_width = painter.measure_text(hovered.link, TOOLTIP_FONT_SIZE, "sans-serif", "bold")
        box_w = text_width + TOOLTIP_PADDING * 2
        box_h = TOOLTIP_HEIGHT
        mouse_x, mouse_y = ctx.pointer
        x = mouse_x + TOOLTIP_OFFSET
        y = mouse_y + TOOLTIP_OFFSET
        if x + box_w > ctx.width:
            x = mouse_x - box_w - 10
        if y + box_h > ctx.height:
            y = mouse_y - box_h - 10
        return x, y, box_w, box_h

    def _draw_tooltip(self, painter: Painter) -> None:
        box = self.tooltip_box(painter)
        if box is None:
            return
        x, y, w, h = box
        painter.fill_round_rect(x, y, w, h, 6, TOOLTIP_FILL)
        painter.fill_text(self.context.hovered.link, x + TOOLTIP_PADDING, y + h / 2, TOOLTIP_FONT_SIZE,
                          "#ffffff", "sans-serif", "bold", align="left")


async def render_snapshot(
    items: Sequence[PixelItem],
    image_cache: ImageCache,
    width: int,
    height: int,
    transform: Optional[ViewportTransform] = None
) -> bytes:
    """Headless frame of the board: decode every visible image, then draw once."""
    view = GridView(width=width, height=height)
    # shared cache: loads must not wake this throwaway view
    view.image_cache = image_cache
    if transform is not None:
        view.context.transform = transform
    view.context.items = list(items)
    await image_cache.preload(view.visible_items())
    png = view.render_png()
    logger.info(f"[GRID-VIEW] Rendered snapshot {width}x{height} with {len(view.context.items)} items")
    return png
