"""
Payment Routes
===============

API routes for PIX charges and provider notifications.
"""

import logging

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from ..models.payment_models import PixChargeRequest, PixChargeResponse, WebhookNotification
from ..models.pixel_models import PixelStatus

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/payments", tags=["payments"])

# Injected by server
pixel_store = None
mp_client = None
settings = None


@router.post("/pix")
async def create_pix_charge(request: PixChargeRequest):
    """Create a PIX charge, linked to an item when ``pixel_id`` is given."""
    if not mp_client:
        raise HTTPException(status_code=500, detail="Payment client not initialized")

    payment = await mp_client.create_pix_payment(
        amount=request.transaction_amount,
        description=request.description,
        payer=request.payer,
        external_reference=request.pixel_id,
        notification_url=settings.notification_url if settings is not None else None,
    )
    if not payment.success:
        return JSONResponse(
            status_code=500,
            content={"error": "Failed to create PIX payment", "details": payment.error}
        )

    if request.pixel_id and pixel_store:
        if not pixel_store.attach_payment(request.pixel_id, payment.payment_id):
            logger.warning(f"[PAYMENT-ROUTES] Charge {payment.payment_id} references unknown pixel {request.pixel_id}")

    return PixChargeResponse(
        id=payment.payment_id,
        status=payment.status or PixelStatus.PENDING.value,
        qr_code=payment.qr_code,
        qr_code_base64=payment.qr_code_base64,
    )


@router.post("/webhook")
async def payment_webhook(request: Request):
    """
    Provider notification. Always acknowledged with 200.

    Approval is re-read from the provider, never trusted from the payload,
    and applying it twice changes nothing.
    """
    try:
        notification = WebhookNotification.model_validate(await request.json())
    except (ValueError, ValidationError) as e:
        logger.warning(f"[WEBHOOK] Unreadable notification: {e}")
        return {"received": True}

    payment_id = notification.payment_id()
    if notification.action != "payment.updated" or not payment_id:
        return {"received": True}

    if not mp_client or not pixel_store:
        logger.error("[WEBHOOK] Services not initialized, notification dropped")
        return {"received": True}

    payment = await mp_client.get_payment(payment_id)
    if not payment.success:
        logger.error(f"[WEBHOOK] Failed to fetch payment {payment_id}: {payment.error}")
        return {"received": True}

    logger.info(f"[WEBHOOK] Payment {payment_id} status: {payment.status}")
    if payment.status != PixelStatus.APPROVED.value:
        return {"received": True}

    try:
        if payment.external_reference:
            changed = pixel_store.approve(payment.external_reference)
            logger.info(f"[WEBHOOK] Pixel {payment.external_reference} approved (changed={changed})")
        else:
            changed = pixel_store.approve_by_payment(payment_id)
            logger.info(f"[WEBHOOK] Pixel approved by payment_id {payment_id} (changed={changed})")
    except SQLAlchemyError as e:
        logger.error(f"[WEBHOOK] Failed to approve payment {payment_id}: {e}")

    return {"received": True}
