"""
Mercado Pago Client for Pixel Grid
===================================

HTTP client for the Mercado Pago payments API, used to create PIX charges
and to look up their status. The provider is treated as a black box:
every call returns a PaymentResponse, failures included.
"""

import logging
import uuid
from typing import Any, Dict, Optional

import httpx

from ..models.payment_models import Payer, PaymentResponse

logger = logging.getLogger(__name__)

MERCADOPAGO_API_URL = "https://api.mercadopago.com"


class MercadoPagoClient:
    """
    Client for PIX charges.

    Usage:
        client = MercadoPagoClient(access_token="APP_USR-...")
        response = await client.create_pix_payment(
            amount=12.0,
            description="Pixel Grid - Payment for Pixel abc",
            payer=payer,
            external_reference="abc",
        )
        if response.success:
            qr = response.qr_code
    """

    def __init__(
        self,
        access_token: str,
        base_url: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.access_token = access_token
        self.base_url = (base_url or MERCADOPAGO_API_URL).rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        logger.info(f"[MP-CLIENT] Initialized with base URL: {self.base_url}")

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
                headers={
                    "Authorization": f"Bearer {self.access_token}",
                    "Content-Type": "application/json",
                }
            )
        return self._client

    async def close(self):
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def create_pix_payment(
        self,
        amount: float,
        description: str,
        payer: Payer,
        external_reference: Optional[str] = None,
        notification_url: Optional[str] = None
    ) -> PaymentResponse:
        """
        Create a PIX charge.

        Args:
            amount: Charge amount in BRL
            description: Statement description
            payer: Payer details
            external_reference: Item id, echoed back by the provider so a
                notification can be resolved to the item
            notification_url: Public webhook URL, omitted when None

        Returns:
            PaymentResponse with the charge id and QR code data
        """
        body: Dict[str, Any] = {
            "transaction_amount": round(amount, 2),
            "description": description,
            "payment_method_id": "pix",
            "payer": payer.model_dump(exclude_none=True),
            "external_reference": external_reference,
        }
        if notification_url:
            body["notification_url"] = notification_url

        # Same reference, same charge: the provider deduplicates on this key
        idempotency_key = f"{external_reference}-pix" if external_reference else str(uuid.uuid4())

        logger.info(f"[MP-CLIENT] Creating PIX payment amount={amount:.2f} reference={external_reference}")

        try:
            client = await self._get_client()
            response = await client.post(
                "/v1/payments",
                json=body,
                headers={"X-Idempotency-Key": idempotency_key}
            )
            response.raise_for_status()
            data = response.json()

            transaction_data = (data.get("point_of_interaction") or {}).get("transaction_data") or {}
            logger.info(f"[MP-CLIENT-OK] Payment {data.get('id')} created, status={data.get('status')}")

            return PaymentResponse(
                success=True,
                payment_id=str(data.get("id")),
                status=data.get("status"),
                external_reference=data.get("external_reference"),
                qr_code=transaction_data.get("qr_code"),
                qr_code_base64=transaction_data.get("qr_code_base64"),
                raw=data
            )

        except httpx.TimeoutException:
            logger.error("[MP-CLIENT-TIMEOUT] Create payment timed out")
            return PaymentResponse(success=False, error="Request timed out")

        except httpx.HTTPStatusError as e:
            logger.error(f"[MP-CLIENT-ERROR] HTTP {e.response.status_code}: {e.response.text}")
            return PaymentResponse(
                success=False,
                error=f"HTTP {e.response.status_code}: {e.response.text[:200]}"
            )

        except httpx.RequestError as e:
            logger.error(f"[MP-CLIENT-ERROR] Network error: {e}")
            return PaymentResponse(success=False, error=f"Network error: {str(e)}")

    async def get_payment(self, payment_id: str) -> PaymentResponse:
        """Look up a charge by id."""
        try:
            client = await self._get_client()
            response = await client.get(f"/v1/payments/{payment_id}")
            response.raise_for_status()
            data = response.json()

            logger.info(f"[MP-CLIENT-OK] Payment {payment_id} status={data.get('status')}")

            return PaymentResponse(
                success=True,
                payment_id=str(data.get("id", payment_id)),
                status=data.get("status"),
                external_reference=data.get("external_reference"),
                raw=data
            )

        except httpx.TimeoutException:
            logger.error(f"[MP-CLIENT-TIMEOUT] Lookup of payment {payment_id} timed out")
            return PaymentResponse(success=False, payment_id=payment_id, error="Request timed out")

        except httpx.HTTPStatusError as e:
            logger.error(f"[MP-CLIENT-ERROR] HTTP {e.response.status_code}: {e.response.text}")
            return PaymentResponse(
                success=False,
                payment_id=payment_id,
                error=f"HTTP {e.response.status_code}: {e.response.text[:200]}"
            )

        except httpx.RequestError as e:
            logger.error(f"[MP-CLIENT-ERROR] Network error: {e}")
            return PaymentResponse(success=False, payment_id=payment_id, error=f"Network error: {str(e)}")
