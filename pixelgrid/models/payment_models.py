"""
Payment Models for Pixel Grid
==============================

Request/response models for PIX charges and provider notifications.
"""

from typing import Any, Dict, Optional, Union
from pydantic import BaseModel, Field


class Identification(BaseModel):
    """Payer tax document."""
    type: str = "CPF"
    number: str


class Payer(BaseModel):
    """Who pays for the charge."""
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    identification: Optional[Identification] = None


class PixChargeRequest(BaseModel):
    """Request to create a PIX charge for an item."""
    transaction_amount: float = Field(gt=0)
    description: str
    payer: Payer
    pixel_id: Optional[str] = None


class PixChargeResponse(BaseModel):
    """What the board needs to render the QR code."""
    id: str
    status: str
    qr_code: Optional[str] = None
    qr_code_base64: Optional[str] = None


class WebhookData(BaseModel):
    id: Optional[Union[str, int]] = None


class WebhookNotification(BaseModel):
    """Provider notification body. Unknown fields are ignored."""
    action: Optional[str] = None
    type: Optional[str] = None
    data: Optional[WebhookData] = None

    def payment_id(self) -> Optional[str]:
        if self.data and self.data.id:
            return str(self.data.id)
        return None


class PixelStatusResponse(BaseModel):
    """Current status of an item's payment."""
    status: str


class PaymentResponse(BaseModel):
    """Outcome of a provider call. Failures carry ``error`` instead of raising."""
    success: bool
    payment_id: Optional[str] = None
    status: Optional[str] = None
    external_reference: Optional[str] = None
    qr_code: Optional[str] = None
    qr_code_base64: Optional[str] = None
    raw: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
