"""
Pixel Models for Pixel Grid
============================

Models for items placed on the board: images and styled text boxes.

Items travel as camelCase JSON (``offsetX``, ``fontSize``, ``createdAt``)
and are tagged by ``type`` so the two variants can be matched exhaustively
where the board draws them and where the shell builds them.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, Optional, Tuple, Union, Literal

from pydantic import (
    BaseModel, ConfigDict, Field, TypeAdapter, ValidationInfo,
    field_validator, model_validator,
)
from pydantic.alias_generators import to_camel

from ..constants import GRID_SIZE


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PixelStatus(str, Enum):
    """Visibility state of a stored item."""
    PENDING = "pending"    # persisted, waiting for payment
    APPROVED = "approved"  # paid, visible to everyone


class ItemType(str, Enum):
    """Item variants."""
    IMAGE = "image"
    TEXT = "text"


class ItemModel(BaseModel):
    """Base config: camelCase on the wire, snake_case in Python."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class GridItemBase(ItemModel):
    """Fields common to every placed item."""
    id: str = Field(min_length=1)
    x: int = Field(ge=0, lt=GRID_SIZE)
    y: int = Field(ge=0, lt=GRID_SIZE)
    w: int = Field(ge=1, le=GRID_SIZE)
    h: int = Field(ge=1, le=GRID_SIZE)
    title: str = Field(min_length=1)
    link: Optional[str] = None
    message: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)

    @field_validator("link", "message", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.strip()
            return value or None
        return value

    @model_validator(mode="after")
    def _fits_board(self):
        if self.x + self.w > GRID_SIZE or self.y + self.h > GRID_SIZE:
            raise ValueError(
                f"rectangle ({self.x}, {self.y}, {self.w}, {self.h}) "
                f"extends past the {GRID_SIZE}x{GRID_SIZE} board"
            )
        return self

    @property
    def rect(self) -> Tuple[int, int, int, int]:
        return (self.x, self.y, self.w, self.h)

    @property
    def cells(self) -> int:
        return self.w * self.h

    def contains(self, cell_x: int, cell_y: int) -> bool:
        """Whether a cell lies inside ``[x, x+w) x [y, y+h)``."""
        return self.x <= cell_x < self.x + self.w and self.y <= cell_y < self.y + self.h


class ImageItem(GridItemBase):
    """An image cropped into its cell rectangle."""
    type: Literal["image"] = "image"
    src: str = Field(min_length=1)
    rotation: int = Field(default=0, ge=0, le=359, description="Degrees, clockwise")
    brightness: float = Field(default=100, ge=0, description="Percent")
    contrast: float = Field(default=100, ge=0, description="Percent")
    zoom: float = Field(default=1.0, ge=1.0, description="Crop scale")
    offset_x: float = Field(default=0.0, description="Crop pan in reference-cell pixels")
    offset_y: float = Field(default=0.0, description="Crop pan in reference-cell pixels")

    @field_validator("rotation", "brightness", "contrast", "zoom", "offset_x", "offset_y", mode="before")
    @classmethod
    def _none_means_default(cls, value: Any, info: ValidationInfo) -> Any:
        if value is None:
            return cls.model_fields[info.field_name].default
        return value


class TextItem(GridItemBase):
    """Styled text filling its cell rectangle."""
    type: Literal["text"] = "text"
    content: str = ""
    font_family: str = "sans-serif"
    font_size: float = Field(default=1.0, gt=0, description="Relative to cell size")
    font_weight: str = "bold"
    color: str = "#000000"
    bg_color: str = "#ffffff"


GridItem = Annotated[Union[ImageItem, TextItem], Field(discriminator="type")]

_GRID_ITEM_ADAPTER = TypeAdapter(GridItem)


def parse_item(data: Dict[str, Any]) -> Union[ImageItem, TextItem]:
    """Validate a camelCase or snake_case payload into the matching variant."""
    return _GRID_ITEM_ADAPTER.validate_python(data)


def dump_item(item: Union[ImageItem, TextItem]) -> Dict[str, Any]:
    """Serialize an item the way the REST surface sends it."""
    return item.model_dump(by_alias=True, mode="json")
