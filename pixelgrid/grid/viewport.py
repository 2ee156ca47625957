"""
Viewport operations: pan, zoom about a point, focus on an item.

All functions return a new ViewportTransform; the caller decides where it
lives (normally ViewContext.transform).
"""

from ..constants import (
    BUTTON_ZOOM_FACTOR, CELL_SIZE, FOCUS_MIN_ZOOM, MAX_ZOOM, MIN_ZOOM, WHEEL_ZOOM_STEP,
)
from ..models.pixel_models import GridItemBase
from ..models.view_models import ViewportTransform


def clamp_scale(scale: float) -> float:
    return max(MIN_ZOOM, min(MAX_ZOOM, scale))


def zoom_to(transform: ViewportTransform, anchor_x: float, anchor_y: float, scale: float) -> ViewportTransform:
    """
    Rescale keeping the world point under ``(anchor_x, anchor_y)`` fixed.

    new_translation = anchor - (anchor - old_translation) * (new_scale / old_scale)
    """
    new_scale = clamp_scale(scale)
    ratio = new_scale / transform.scale
    return ViewportTransform(
        x=anchor_x - (anchor_x - transform.x) * ratio,
        y=anchor_y - (anchor_y - transform.y) * ratio,
        scale=new_scale,
    )


def zoom_at(transform: ViewportTransform, anchor_x: float, anchor_y: float, delta_y: float) -> ViewportTransform:
    """Wheel zoom: scrolling up zooms in by 10%, down zooms out by 10%."""
    factor = 1 + WHEEL_ZOOM_STEP * (-1 if delta_y > 0 else 1)
    return zoom_to(transform, anchor_x, anchor_y, transform.scale * factor)


def set_scale(transform: ViewportTransform, scale: float, width: float, height: float) -> ViewportTransform:
    """Zoom anchored at the screen center."""
    return zoom_to(transform, width / 2, height / 2, scale)


def step_zoom(transform: ViewportTransform, zoom_in: bool, width: float, height: float) -> ViewportTransform:
    """Toolbar +/- buttons."""
    factor = BUTTON_ZOOM_FACTOR if zoom_in else 1 / BUTTON_ZOOM_FACTOR
    return set_scale(transform, transform.scale * factor, width, height)


def pan(transform: ViewportTransform, dx: float, dy: float) -> ViewportTransform:
    """Translate by a raw screen delta. The board may be panned arbitrarily far."""
    return ViewportTransform(x=transform.x + dx, y=transform.y + dy, scale=transform.scale)


def focus_item(item: GridItemBase, width: float, height: float) -> ViewportTransform:
    """Center an item, sized to ~30% of the shorter screen side."""
    item_max = max(item.w, item.h) * CELL_SIZE
    scale = (min(width, height) * 0.3) / item_max
    scale = max(FOCUS_MIN_ZOOM, min(MAX_ZOOM, scale))
    center_x = (item.x + item.w / 2) * CELL_SIZE
    center_y = (item.y + item.h / 2) * CELL_SIZE
    return ViewportTransform(x=width / 2 - center_x * scale, y=height / 2 - center_y * scale, scale=scale)
