"""
Pixel API Client
================

HTTP client the board uses to talk to the Pixel Grid server.

Every call returns an ApiResult instead of raising, so a failing request
only ever affects the action that made it.
"""

import logging
from typing import Any, List, Optional, Union

import httpx
from pydantic import BaseModel, Field, ValidationError

from ..models.payment_models import Payer, PixChargeResponse
from ..models.pixel_models import ImageItem, TextItem, dump_item, parse_item

logger = logging.getLogger(__name__)

PixelItem = Union[ImageItem, TextItem]


class ApiResult(BaseModel):
    """Outcome of one API call."""
    success: bool
    status_code: Optional[int] = None
    data: Any = None
    error: Optional[str] = None


class ItemsResult(ApiResult):
    items: List[Any] = Field(default_factory=list)


class PixelApiClient:
    """
    Client for the Pixel Grid REST surface.

    Usage:
        api = PixelApiClient("http://localhost:3001")
        result = await api.create_pixel(item)
        if result.success:
            charge = await api.create_pix_charge(...)
    """

    def __init__(
        self,
        base_url: str = "http://localhost:3001",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
                headers={"Content-Type": "application/json"}
            )
        return self._client

    async def close(self):
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _request(self, method: str, path: str, **kwargs) -> ApiResult:
        try:
            client = await self._get_client()
            response = await client.request(method, path, **kwargs)
        except httpx.TimeoutException:
            logger.error(f"[PIXEL-API-TIMEOUT] {method} {path} timed out")
            return ApiResult(success=False, error="Request timed out")
        except httpx.RequestError as e:
            logger.error(f"[PIXEL-API-ERROR] {method} {path}: {e}")
            return ApiResult(success=False, error=f"Network error: {str(e)}")

        try:
            data = response.json()
        except ValueError:
            data = None

        if response.is_success:
            return ApiResult(success=True, status_code=response.status_code, data=data)

        error = data.get("error") if isinstance(data, dict) else None
        logger.warning(f"[PIXEL-API] {method} {path} -> HTTP {response.status_code}: {error}")
        return ApiResult(
            success=False,
            status_code=response.status_code,
            data=data,
            error=error or f"HTTP {response.status_code}"
        )

    async def list_pixels(self) -> ItemsResult:
        """Approved items, oldest first."""
        result = await self._request("GET", "/api/pixels")
        if not result.success:
            return ItemsResult(**result.model_dump())
        try:
            items = [parse_item(row) for row in result.data or []]
        except ValidationError as e:
            logger.error(f"[PIXEL-API-ERROR] Malformed item list: {e}")
            return ItemsResult(success=False, status_code=result.status_code, error="Malformed item list")
        return ItemsResult(success=True, status_code=result.status_code, data=result.data, items=items)

    async def create_pixel(self, item: PixelItem) -> ApiResult:
        """Persist a new (pending) item."""
        return await self._request("POST", "/api/pixels", json=dump_item(item))

    async def create_pix_charge(
        self,
        amount: float,
        description: str,
        payer: Payer,
        pixel_id: str
    ) -> ApiResult:
        """Request a PIX charge scoped to an item. ``data`` is a PixChargeResponse on success."""
        result = await self._request(
            "POST",
            "/api/payments/pix",
            json={
                "transaction_amount": amount,
                "description": description,
                "payer": payer.model_dump(exclude_none=True),
                "pixel_id": pixel_id,
            },
        )
        if result.success:
            try:
                result.data = PixChargeResponse(**result.data)
            except (TypeError, ValidationError) as e:
                logger.error(f"[PIXEL-API-ERROR] Malformed charge response: {e}")
                return ApiResult(success=False, status_code=result.status_code, error="Malformed charge response")
        return result

    async def get_status(self, pixel_id: str) -> ApiResult:
        """``data`` is the status string on success."""
        result = await self._request("GET", f"/api/pixels/{pixel_id}/status")
        if result.success:
            result.data = (result.data or {}).get("status")
        return result

    async def discard_pixel(self, pixel_id: str) -> ApiResult:
        """Delete an item if it is still pending. 400 means it was not."""
        return await self._request("DELETE", f"/api/pixels/{pixel_id}")
