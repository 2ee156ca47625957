"""
Pixel Store
===========

Single-table persistence for placed items, with status-gated visibility.

Status changes are plain UPDATE/DELETE statements guarded on
``status = 'pending'`` so that approval is idempotent and a discard can
never remove an item that was approved concurrently.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Union

from sqlalchemy import (
    DateTime, Float, Integer, String, Text, and_, create_engine, delete, select, update,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker

from ..models.pixel_models import ImageItem, ItemType, PixelStatus, TextItem, utcnow

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


class PixelRow(Base):
    """One placed item."""
    __tablename__ = "pixels"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    type: Mapped[str] = mapped_column(String(16))
    x: Mapped[int] = mapped_column(Integer)
    y: Mapped[int] = mapped_column(Integer)
    w: Mapped[int] = mapped_column(Integer)
    h: Mapped[int] = mapped_column(Integer)

    # image
    src: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    rotation: Mapped[int] = mapped_column(Integer, default=0)
    brightness: Mapped[float] = mapped_column(Float, default=100)
    contrast: Mapped[float] = mapped_column(Float, default=100)
    zoom: Mapped[float] = mapped_column(Float, default=1)
    offset_x: Mapped[float] = mapped_column(Float, default=0)
    offset_y: Mapped[float] = mapped_column(Float, default=0)

    # text
    content: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    font_size: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    font_family: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    font_weight: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    color: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    bg_color: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)

    title: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    link: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    status: Mapped[str] = mapped_column(String(16), default=PixelStatus.PENDING.value, index=True)
    payment_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)


PixelItem = Union[ImageItem, TextItem]


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class PixelStore:
    """SQLAlchemy-backed store for grid items."""

    def __init__(self, database_url: str = "sqlite:///pixelgrid.db"):
        connect_args = {"check_same_thread": False} if database_url.startswith("sqlite") else {}
        self.engine = create_engine(database_url, future=True, connect_args=connect_args)
        self._session = sessionmaker(bind=self.engine, autoflush=False, expire_on_commit=False, future=True)
        Base.metadata.create_all(bind=self.engine)
        logger.info(f"[PIXEL-STORE] Initialized with database={self.engine.url.render_as_string(hide_password=True)}")

    def close(self):
        self.engine.dispose()

    # ------------------------------------------------------------------
    # Row <-> item

    @staticmethod
    def to_row(item: PixelItem) -> PixelRow:
        """Build a fresh pending row. Status, payment id and creation time never come from input."""
        row = PixelRow(
            id=item.id,
            type=item.type,
            x=item.x,
            y=item.y,
            w=item.w,
            h=item.h,
            title=item.title,
            link=item.link,
            message=item.message,
            status=PixelStatus.PENDING.value,
            payment_id=None,
            created_at=utcnow(),
        )
        if isinstance(item, ImageItem):
            row.src = item.src
            row.rotation = item.rotation
            row.brightness = item.brightness
            row.contrast = item.contrast
            row.zoom = item.zoom
            row.offset_x = item.offset_x
            row.offset_y = item.offset_y
        else:
            row.content = item.content
            row.font_size = item.font_size
            row.font_family = item.font_family
            row.font_weight = item.font_weight
            row.color = item.color
            row.bg_color = item.bg_color
        return row

    @staticmethod
    def to_item(row: PixelRow) -> PixelItem:
        common = dict(
            id=row.id,
            x=row.x,
            y=row.y,
            w=row.w,
            h=row.h,
            title=row.title or "",
            link=row.link,
            message=row.message,
            created_at=_as_utc(row.created_at),
        )
        if row.type == ItemType.IMAGE.value:
            return ImageItem(
                src=row.src,
                rotation=row.rotation,
                brightness=row.brightness,
                contrast=row.contrast,
                zoom=row.zoom,
                offset_x=row.offset_x,
                offset_y=row.offset_y,
                **common,
            )
        return TextItem(
            content=row.content or "",
            font_size=row.font_size or 1.0,
            font_family=row.font_family or "sans-serif",
            font_weight=row.font_weight or "bold",
            color=row.color or "#000000",
            bg_color=row.bg_color or "#ffffff",
            **common,
        )

    # ------------------------------------------------------------------
    # Queries

    def list_approved(self) -> List[PixelRow]:
        """Approved rows, oldest first."""
        with self._session() as session:
            stmt = (
                select(PixelRow)
                .where(PixelRow.status == PixelStatus.APPROVED.value)
                .order_by(PixelRow.created_at.asc())
            )
            return list(session.scalars(stmt))

    def get(self, pixel_id: str) -> Optional[PixelRow]:
        with self._session() as session:
            return session.get(PixelRow, pixel_id)

    def create(self, item: PixelItem) -> PixelRow:
        """Persist a new item as pending."""
        row = self.to_row(item)
        with self._session() as session:
            session.add(row)
            session.commit()
        logger.info(f"[PIXEL-STORE] Created pending {row.type} {row.id} at ({row.x},{row.y}) {row.w}x{row.h}")
        return row

    def find_overlapping(self, x: int, y: int, w: int, h: int) -> List[PixelRow]:
        """Approved rows whose rectangle intersects ``[x, x+w) x [y, y+h)``."""
        with self._session() as session:
            stmt = select(PixelRow).where(
                PixelRow.status == PixelStatus.APPROVED.value,
                PixelRow.x < x + w,
                PixelRow.x + PixelRow.w > x,
                PixelRow.y < y + h,
                PixelRow.y + PixelRow.h > y,
            )
            return list(session.scalars(stmt))

    # ------------------------------------------------------------------
    # Status transitions

    def attach_payment(self, pixel_id: str, payment_id: str) -> bool:
        """Record the external charge id against an item."""
        with self._session() as session:
            result = session.execute(
                update(PixelRow).where(PixelRow.id == pixel_id).values(payment_id=payment_id)
            )
            session.commit()
            return result.rowcount > 0

    def approve(self, pixel_id: str) -> bool:
        """pending -> approved. Returns False when nothing changed."""
        with self._session() as session:
            result = session.execute(
                update(PixelRow)
                .where(and_(PixelRow.id == pixel_id, PixelRow.status == PixelStatus.PENDING.value))
                .values(status=PixelStatus.APPROVED.value)
            )
            session.commit()
            changed = result.rowcount > 0
        if changed:
            logger.info(f"[PIXEL-STORE] Pixel {pixel_id} approved")
        return changed

    def approve_by_payment(self, payment_id: str) -> bool:
        """Approve whichever pending item carries ``payment_id``."""
        with self._session() as session:
            result = session.execute(
                update(PixelRow)
                .where(and_(PixelRow.payment_id == payment_id, PixelRow.status == PixelStatus.PENDING.value))
                .values(status=PixelStatus.APPROVED.value)
            )
            session.commit()
            changed = result.rowcount > 0
        if changed:
            logger.info(f"[PIXEL-STORE] Pixel approved by payment_id {payment_id}")
        return changed

    def discard_pending(self, pixel_id: str) -> Optional[PixelRow]:
        """Delete an item only while it is still pending. Returns the deleted row."""
        with self._session() as session:
            row = session.get(PixelRow, pixel_id)
            if row is None or row.status != PixelStatus.PENDING.value:
                return None
            result = session.execute(
                delete(PixelRow).where(
                    and_(PixelRow.id == pixel_id, PixelRow.status == PixelStatus.PENDING.value)
                )
            )
            session.commit()
            if result.rowcount == 0:
                # approved between the read and the delete
                return None
        logger.info(f"[PIXEL-STORE] Discarded pending pixel {pixel_id}")
        return row

    def reap_stale_pending(self, max_age: timedelta, now: Optional[datetime] = None) -> int:
        """Delete pending rows created more than ``max_age`` ago."""
        cutoff = (now or utcnow()) - max_age
        with self._session() as session:
            result = session.execute(
                delete(PixelRow).where(
                    and_(PixelRow.status == PixelStatus.PENDING.value, PixelRow.created_at < cutoff)
                )
            )
            session.commit()
            count = result.rowcount
        if count:
            logger.info(f"[PIXEL-STORE] Reaped {count} stale pending pixel(s)")
        return count
