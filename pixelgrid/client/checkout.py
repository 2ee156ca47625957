"""
Checkout Flow
=============

Reservation-to-payment state machine for one item.

    COMPOSING --submit--> PENDING_PERSIST --charge ok--> AWAITING_PAYMENT
        ^                    |      |                     |  |  |
        +--- save failed ----+      +-- charge failed --> FAILED (retry_charge)
                                                          |  |  |
                        status poll / manual check: APPROVED |  |
                        countdown expiry + guarded delete:  DISCARDED
                        user closes the flow:                  CANCELLED

Only ``_commit`` enters APPROVED or DISCARDED, and only from
AWAITING_PAYMENT, so whichever signal arrives first wins and anything
arriving later is ignored. Both timers stop on every exit.
"""

import asyncio
import logging
import math
from enum import Enum
from typing import Callable, Optional, Union

from ..constants import PAYMENT_WINDOW_SECONDS, PRICE_PER_CELL, STATUS_POLL_SECONDS
from ..grid.geometry import format_brl
from ..models.payment_models import Identification, Payer, PixChargeResponse
from ..models.pixel_models import ImageItem, PixelStatus, TextItem
from .api_client import PixelApiClient

logger = logging.getLogger(__name__)

PixelItem = Union[ImageItem, TextItem]

# Provider sandbox payer
SANDBOX_PAYER = Payer(
    email="test_user_123@test.com",
    first_name="Comprador",
    last_name="Ficticio",
    identification=Identification(type="CPF", number="19119119100"),
)


class CheckoutState(str, Enum):
    COMPOSING = "composing"
    PENDING_PERSIST = "pending_persist"
    AWAITING_PAYMENT = "awaiting_payment"
    APPROVED = "approved"
    DISCARDED = "discarded"
    FAILED = "failed"
    CANCELLED = "cancelled"


FINAL_STATES = {CheckoutState.APPROVED, CheckoutState.DISCARDED, CheckoutState.CANCELLED}


def format_countdown(seconds: float) -> str:
    """``287`` -> ``4:47``."""
    whole = max(0, int(math.ceil(seconds)))
    return f"{whole // 60}:{whole % 60:02d}"


class CheckoutFlow:
    """Persist an item as pending, charge for it, and wait for payment."""

    def __init__(
        self,
        api: PixelApiClient,
        item: PixelItem,
        price_per_cell: float = PRICE_PER_CELL,
        payer: Optional[Payer] = None,
        poll_interval: float = STATUS_POLL_SECONDS,
        payment_window: float = PAYMENT_WINDOW_SECONDS,
        tick: float = 1.0,
        on_change: Optional[Callable[["CheckoutFlow"], None]] = None
    ):
        self.api = api
        self.item = item
        self.amount = round(item.w * item.h * price_per_cell, 2)
        self.payer = payer or SANDBOX_PAYER
        self.poll_interval = poll_interval
        self.payment_window = payment_window
        self.tick = tick
        self.on_change = on_change

        self.state = CheckoutState.COMPOSING
        self.charge: Optional[PixChargeResponse] = None
        self.error: Optional[str] = None
        self.notice: Optional[str] = None
        self.time_left = payment_window
        self.verifying = False

        self._poll_task: Optional[asyncio.Task] = None
        self._countdown_task: Optional[asyncio.Task] = None
        self._settled = asyncio.Event()

    # ------------------------------------------------------------------
    # Public API

    @property
    def pixel_id(self) -> str:
        return self.item.id

    @property
    def countdown(self) -> str:
        return format_countdown(self.time_left)

    async def submit(self) -> CheckoutState:
        """Persist the item as pending, then request its charge."""
        if self.state is not CheckoutState.COMPOSING:
            raise RuntimeError(f"Cannot submit from state {self.state.value}")

        self.error = None
        self._set_state(CheckoutState.PENDING_PERSIST)
        result = await self.api.create_pixel(self.item)
        if self.state is not CheckoutState.PENDING_PERSIST:
            return self.state
        if not result.success:
            logger.error(f"[CHECKOUT] Failed to persist {self.pixel_id}: {result.error}")
            self.error = f"Could not save the item: {result.error}"
            self._set_state(CheckoutState.COMPOSING)
            return self.state

        logger.info(f"[CHECKOUT] Persisted pending {self.item.type} {self.pixel_id}")
        await self._request_charge()
        return self.state

    async def retry_charge(self) -> CheckoutState:
        """Request the charge again for the already-persisted item."""
        if self.state is not CheckoutState.FAILED:
            raise RuntimeError(f"Cannot retry from state {self.state.value}")
        self.error = None
        self._settled.clear()
        self._set_state(CheckoutState.PENDING_PERSIST)
        await self._request_charge()
        return self.state

    async def check_status(self) -> bool:
        """One status poll. Returns True if this call committed the approval."""
        if self.state is not CheckoutState.AWAITING_PAYMENT:
            return False
        result = await self.api.get_status(self.pixel_id)
        if not result.success:
            logger.warning(f"[CHECKOUT] Status poll for {self.pixel_id} failed: {result.error}")
            return False
        if result.data == PixelStatus.APPROVED.value:
            return self._commit(CheckoutState.APPROVED)
        return False

    async def confirm_now(self) -> bool:
        """Manual "I have paid" check."""
        self.verifying = True
        self._notify()
        try:
            return await self.check_status()
        finally:
            self.verifying = False
            self._notify()

    def cancel(self) -> None:
        """Close the flow. A persisted pending item is left for the server to reap."""
        if self.state in FINAL_STATES:
            return
        self._stop_timers()
        logger.info(f"[CHECKOUT] Flow for {self.pixel_id} cancelled in state {self.state.value}")
        self._set_state(CheckoutState.CANCELLED)
        self._settled.set()

    async def wait(self) -> CheckoutState:
        """Block until the flow settles (final state or FAILED)."""
        await self._settled.wait()
        return self.state

    # ------------------------------------------------------------------
    # Internals

    async def _request_charge(self) -> None:
        result = await self.api.create_pix_charge(
            amount=self.amount,
            description=f"Pixel Grid - Payment for Pixel {self.pixel_id}",
            payer=self.payer,
            pixel_id=self.pixel_id,
        )
        if self.state is not CheckoutState.PENDING_PERSIST:
            return
        if not result.success:
            logger.error(f"[CHECKOUT] Charge for {self.pixel_id} failed: {result.error}")
            self.error = "Could not generate the PIX payment. Try again."
            self._set_state(CheckoutState.FAILED)
            self._settled.set()
            return

        self.charge = result.data
        self.time_left = self.payment_window
        logger.info(f"[CHECKOUT] Charge {self.charge.id} created for {self.pixel_id}, amount={format_brl(self.amount)}")
        self._set_state(CheckoutState.AWAITING_PAYMENT)
        self._start_timers()

    def _start_timers(self) -> None:
        loop = asyncio.get_running_loop()
        self._poll_task = loop.create_task(self._poll_loop())
        self._countdown_task = loop.create_task(self._countdown_loop())

    def _stop_timers(self) -> None:
        current = asyncio.current_task() if self._in_loop() else None
        for task in (self._poll_task, self._countdown_task):
            if task is not None and task is not current and not task.done():
                task.cancel()
        self._poll_task = None
        self._countdown_task = None

    @staticmethod
    def _in_loop() -> bool:
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return False
        return True

    async def _poll_loop(self) -> None:
        while self.state is CheckoutState.AWAITING_PAYMENT:
            await asyncio.sleep(self.poll_interval)
            await self.check_status()

    async def _countdown_loop(self) -> None:
        while self.state is CheckoutState.AWAITING_PAYMENT and self.time_left > 0:
            await asyncio.sleep(self.tick)
            if self.state is not CheckoutState.AWAITING_PAYMENT:
                return
            self.time_left = max(0.0, self.time_left - self.tick)
            self._notify()
        if self.state is CheckoutState.AWAITING_PAYMENT:
            await self._expire()

    async def _expire(self) -> None:
        logger.info(f"[CHECKOUT] Payment window for {self.pixel_id} expired, discarding")
        result = await self.api.discard_pixel(self.pixel_id)
        if self.state is not CheckoutState.AWAITING_PAYMENT:
            return

        if not result.success and result.status_code == 400:
            # The server refused: the item is no longer pending
            status = await self.api.get_status(self.pixel_id)
            if status.success and status.data == PixelStatus.APPROVED.value:
                self._commit(CheckoutState.APPROVED)
                return
        elif not result.success:
            logger.error(f"[CHECKOUT] Error discarding {self.pixel_id} on timeout: {result.error}")

        self.notice = "The payment window expired. The item was discarded."
        self._commit(CheckoutState.DISCARDED)

    def _commit(self, state: CheckoutState) -> bool:
        if self.state is not CheckoutState.AWAITING_PAYMENT:
            return False
        self._stop_timers()
        logger.info(f"[CHECKOUT] {self.pixel_id}: {self.state.value} -> {state.value}")
        self._set_state(state)
        self._settled.set()
        return True

    def _set_state(self, state: CheckoutState) -> None:
        self.state = state
        self._notify()

    def _notify(self) -> None:
        if self.on_change is not None:
            self.on_change(self)
