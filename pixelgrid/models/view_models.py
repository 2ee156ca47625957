"""
View Models for Pixel Grid
===========================

Ephemeral, client-only state: the active tool, a drag selection and the
pan/zoom transform. None of these are persisted.
"""

from enum import Enum
from pydantic import BaseModel

from ..constants import CELL_SIZE, GRID_SIZE


class ToolType(str, Enum):
    """Active board tool."""
    SELECT = "select"  # select an area for an image, click items to open them
    PAN = "pan"
    TEXT = "text"      # select an area for a text box


class GridSelection(BaseModel):
    """Two opposite corners of a drag, in cells. Not normalized."""
    start_x: int
    start_y: int
    end_x: int
    end_y: int

    def with_end(self, end_x: int, end_y: int) -> "GridSelection":
        return self.model_copy(update={"end_x": end_x, "end_y": end_y})


class ViewportTransform(BaseModel):
    """World-to-screen mapping: ``screen = world * scale + (x, y)``."""
    x: float = 0.0
    y: float = 0.0
    scale: float = 1.0

    @classmethod
    def centered(cls, width: float, height: float, scale: float = 1.0) -> "ViewportTransform":
        """Board centered in a ``width`` x ``height`` screen."""
        board = GRID_SIZE * CELL_SIZE * scale
        return cls(x=width / 2 - board / 2, y=height / 2 - board / 2, scale=scale)
