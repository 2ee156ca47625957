"""
Pixel Routes
=============

API routes for board items: listing, pending creation, payment status,
guarded discard and a rendered snapshot of the board.
"""

import logging
from typing import Any, Dict, List, Optional, Union

from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import Response
from sqlalchemy.exc import IntegrityError

from ..models.payment_models import PixelStatusResponse
from ..models.pixel_models import ImageItem, PixelStatus, TextItem, dump_item
from ..models.view_models import ViewportTransform
from ..grid.renderer import render_snapshot
from ..store.pixel_store import PixelRow, PixelStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/pixels", tags=["pixels"])

# Injected by server
pixel_store: PixelStore = None
mp_client = None
image_cache = None
settings = None

MAX_SNAPSHOT_SIDE = 4096


def _require_store() -> PixelStore:
    if not pixel_store:
        raise HTTPException(status_code=500, detail="Pixel store not initialized")
    return pixel_store


def row_payload(row: PixelRow) -> Dict[str, Any]:
    """Item JSON plus its server-side status fields."""
    payload = dump_item(PixelStore.to_item(row))
    payload["status"] = row.status
    payload["paymentId"] = row.payment_id
    return payload


@router.get("")
async def list_pixels() -> List[Dict[str, Any]]:
    """Approved items, oldest first."""
    store = _require_store()
    return [dump_item(PixelStore.to_item(row)) for row in store.list_approved()]


@router.post("", status_code=201)
async def create_pixel(item: Union[ImageItem, TextItem]) -> Dict[str, Any]:
    """Persist a new item as pending. Payment makes it visible."""
    store = _require_store()

    if settings is not None and settings.reject_overlap:
        overlapping = store.find_overlapping(item.x, item.y, item.w, item.h)
        if overlapping:
            logger.info(f"[PIXEL-ROUTES] Rejected {item.id}: overlaps {len(overlapping)} approved item(s)")
            raise HTTPException(status_code=409, detail="Area already occupied")

    try:
        row = store.create(item)
    except IntegrityError:
        raise HTTPException(status_code=409, detail="Pixel already exists")
    return row_payload(row)


@router.get("/snapshot.png")
async def snapshot(
    x: Optional[float] = None,
    y: Optional[float] = None,
    scale: Optional[float] = Query(default=None, gt=0),
    width: int = Query(default=1280, ge=1, le=MAX_SNAPSHOT_SIDE),
    height: int = Query(default=800, ge=1, le=MAX_SNAPSHOT_SIDE)
):
    """PNG of the approved board. Without a transform the board is centered at 1:1."""
    store = _require_store()
    if image_cache is None:
        raise HTTPException(status_code=500, detail="Image cache not initialized")

    transform = ViewportTransform.centered(width, height, scale or 1.0)
    if x is not None:
        transform.x = x
    if y is not None:
        transform.y = y

    items = [PixelStore.to_item(row) for row in store.list_approved()]
    png = await render_snapshot(items, image_cache, width, height, transform)
    return Response(content=png, media_type="image/png")


@router.get("/{pixel_id}/status")
async def get_status(pixel_id: str) -> PixelStatusResponse:
    """Payment status; a provider approval is persisted on the way out."""
    store = _require_store()
    row = store.get(pixel_id)
    if not row:
        raise HTTPException(status_code=404, detail="Pixel not found")

    if row.status == PixelStatus.APPROVED.value:
        return PixelStatusResponse(status=PixelStatus.APPROVED.value)

    if not row.payment_id:
        # No charge generated yet
        return PixelStatusResponse(status=PixelStatus.PENDING.value)

    if not mp_client:
        raise HTTPException(status_code=500, detail="Payment client not initialized")

    payment = await mp_client.get_payment(row.payment_id)
    if not payment.success:
        logger.error(f"[PIXEL-ROUTES] Status check for {pixel_id} failed: {payment.error}")
        raise HTTPException(status_code=500, detail="Failed to check status")

    if payment.status == PixelStatus.APPROVED.value:
        store.approve(pixel_id)
        return PixelStatusResponse(status=PixelStatus.APPROVED.value)

    return PixelStatusResponse(status=payment.status or PixelStatus.PENDING.value)


@router.delete("/{pixel_id}")
async def discard_pixel(pixel_id: str):
    """Delete an item only while it is still pending."""
    store = _require_store()
    if store.discard_pending(pixel_id) is None:
        raise HTTPException(status_code=400, detail="Pixel not found or already approved")
    return {"message": "Pixel discarded"}
