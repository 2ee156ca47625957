"""
Grid geometry: screen <-> cell conversion and selection rectangles.
"""

import math
from typing import Tuple

from ..constants import CELL_SIZE, GRID_SIZE
from ..models.view_models import GridSelection, ViewportTransform

Rect = Tuple[int, int, int, int]  # x, y, w, h in cells


def screen_to_grid(screen_x: float, screen_y: float, transform: ViewportTransform) -> Tuple[int, int]:
    """
    Cell under a screen pixel.

    Not clamped: values outside the board are kept so drags that leave the
    board can still be tracked.
    """
    world_x = (screen_x - transform.x) / transform.scale
    world_y = (screen_y - transform.y) / transform.scale
    return math.floor(world_x / CELL_SIZE), math.floor(world_y / CELL_SIZE)


def grid_to_screen(cell_x: float, cell_y: float, transform: ViewportTransform) -> Tuple[float, float]:
    """Screen position of a cell's top-left corner."""
    return (
        cell_x * CELL_SIZE * transform.scale + transform.x,
        cell_y * CELL_SIZE * transform.scale + transform.y,
    )


def normalize_selection(x1: int, y1: int, x2: int, y2: int) -> Rect:
    """Two opposite corners to ``(x, y, w, h)``; a single cell is 1x1."""
    return min(x1, x2), min(y1, y2), abs(x2 - x1) + 1, abs(y2 - y1) + 1


def selection_rect(selection: GridSelection) -> Rect:
    return normalize_selection(selection.start_x, selection.start_y, selection.end_x, selection.end_y)


def clamp_cell(value: int) -> int:
    return max(0, min(GRID_SIZE - 1, value))


def in_bounds(cell_x: int, cell_y: int) -> bool:
    return 0 <= cell_x < GRID_SIZE and 0 <= cell_y < GRID_SIZE


def rect_contains(rect: Rect, cell_x: int, cell_y: int) -> bool:
    x, y, w, h = rect
    return x <= cell_x < x + w and y <= cell_y < y + h


def rects_intersect(a: Rect, b: Rect) -> bool:
    ax, ay, aw, ah = a
    bx, by, bw, bh = b
    return ax < bx + bw and bx < ax + aw and ay < by + bh and by < ay + ah


def selection_cells(selection: GridSelection) -> int:
    _, _, w, h = selection_rect(selection)
    return w * h


def selection_price(selection: GridSelection, price_per_cell: float) -> float:
    return round(selection_cells(selection) * price_per_cell, 2)


def format_brl(amount: float) -> str:
    """``1234.5`` -> ``R$ 1.234,50``."""
    whole = f"{amount:,.2f}"
    return "R$ " + whole.replace(",", "_").replace(".", ",").replace("_", ".")
