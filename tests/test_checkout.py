"""Tests for the checkout state machine, run against the app in-process."""

import asyncio

import pytest

from pixelgrid.client.checkout import CheckoutFlow, CheckoutState, format_countdown

from factories import image_item

SETTLE_TIMEOUT = 5


def flow_for(api, item=None, **kwargs):
    options = dict(poll_interval=60, payment_window=60, tick=0.01)
    options.update(kwargs)
    return CheckoutFlow(api, item or image_item(), **options)


class TestFormatCountdown:
    @pytest.mark.parametrize("seconds, expected", [
        (300, "5:00"),
        (287, "4:47"),
        (59.2, "1:00"),
        (0.4, "0:01"),
        (0, "0:00"),
        (-3, "0:00"),
    ])
    def test_format(self, seconds, expected):
        assert format_countdown(seconds) == expected


class TestSubmit:
    async def test_persists_then_awaits_payment(self, api, store, provider):
        states = []
        item = image_item(w=3, h=4)
        flow = flow_for(api, item, price_per_cell=1.0, on_change=lambda f: states.append(f.state))

        assert await flow.submit() is CheckoutState.AWAITING_PAYMENT
        assert states[:2] == [CheckoutState.PENDING_PERSIST, CheckoutState.AWAITING_PAYMENT]
        assert flow.amount == 12.0
        assert flow.charge.qr_code
        assert flow.countdown == "1:00"

        row = store.get(item.id)
        assert row.status == "pending"
        assert row.payment_id == flow.charge.id
        sent = provider.created_bodies()[0]
        assert sent["transaction_amount"] == 12.0
        assert sent["external_reference"] == item.id
        flow.cancel()

    async def test_persist_failure_returns_to_composing(self, api, store):
        item = image_item()
        store.create(item)
        flow = flow_for(api, item)

        assert await flow.submit() is CheckoutState.COMPOSING
        assert "Pixel already exists" in flow.error
        assert flow.charge is None

    async def test_submit_twice_is_refused(self, api):
        flow = flow_for(api)
        await flow.submit()
        with pytest.raises(RuntimeError):
            await flow.submit()
        flow.cancel()

    async def test_charge_failure_then_retry(self, api, store, provider):
        provider.fail_create = True
        flow = flow_for(api)

        assert await flow.submit() is CheckoutState.FAILED
        assert flow.error
        assert await asyncio.wait_for(flow.wait(), SETTLE_TIMEOUT) is CheckoutState.FAILED
        assert store.get(flow.pixel_id).status == "pending"

        provider.fail_create = False
        assert await flow.retry_charge() is CheckoutState.AWAITING_PAYMENT
        assert flow.error is None
        assert store.get(flow.pixel_id).payment_id == flow.charge.id
        flow.cancel()


class TestApproval:
    async def test_poll_commits_approval(self, api, store, provider):
        flow = flow_for(api, poll_interval=0.01)
        await flow.submit()
        provider.approve(flow.charge.id)

        assert await asyncio.wait_for(flow.wait(), SETTLE_TIMEOUT) is CheckoutState.APPROVED
        assert store.get(flow.pixel_id).status == "approved"

    async def test_webhook_approval_seen_by_poll(self, api, store):
        flow = flow_for(api, poll_interval=0.01)
        await flow.submit()
        store.approve(flow.pixel_id)

        assert await asyncio.wait_for(flow.wait(), SETTLE_TIMEOUT) is CheckoutState.APPROVED

    async def test_manual_confirm(self, api, provider):
        flow = flow_for(api)
        await flow.submit()

        assert await flow.confirm_now() is False
        assert flow.state is CheckoutState.AWAITING_PAYMENT
        provider.approve(flow.charge.id)
        assert await flow.confirm_now() is True
        assert flow.state is CheckoutState.APPROVED
        assert flow.verifying is False

    async def test_commit_happens_once(self, api, provider):
        changes = []
        flow = flow_for(api, on_change=lambda f: changes.append(f.state))
        await flow.submit()
        provider.approve(flow.charge.id)

        results = await asyncio.gather(flow.check_status(), flow.check_status(), flow.confirm_now())
        assert sorted(results) == [False, False, True]
        assert changes.count(CheckoutState.APPROVED) == 1

    async def test_timers_stop_after_approval(self, api, provider):
        flow = flow_for(api, poll_interval=0.01)
        await flow.submit()
        poll, countdown = flow._poll_task, flow._countdown_task
        provider.approve(flow.charge.id)
        await asyncio.wait_for(flow.wait(), SETTLE_TIMEOUT)
        await asyncio.sleep(0.05)
        assert poll.done() and countdown.done()
        left = flow.time_left
        await asyncio.sleep(0.05)
        assert flow.time_left == left


class TestExpiry:
    async def test_expired_pending_item_is_discarded(self, api, store):
        flow = flow_for(api, payment_window=0.05)
        await flow.submit()

        assert await asyncio.wait_for(flow.wait(), SETTLE_TIMEOUT) is CheckoutState.DISCARDED
        assert flow.notice
        assert store.get(flow.pixel_id) is None
        listing = await api.list_pixels()
        assert all(item.id != flow.pixel_id for item in listing.items)

    async def test_expiry_after_approval_keeps_item(self, api, store):
        flow = flow_for(api, payment_window=0.05)
        await flow.submit()
        # approved by the webhook before the poll ever ran
        store.approve(flow.pixel_id)

        assert await asyncio.wait_for(flow.wait(), SETTLE_TIMEOUT) is CheckoutState.APPROVED
        assert store.get(flow.pixel_id).status == "approved"
        listing = await api.list_pixels()
        assert [item.id for item in listing.items] == [flow.pixel_id]

    async def test_countdown_ticks(self, api):
        ticks = []
        flow = flow_for(api, payment_window=0.05, on_change=lambda f: ticks.append(f.time_left))
        await flow.submit()
        await asyncio.wait_for(flow.wait(), SETTLE_TIMEOUT)
        assert flow.time_left == 0
        assert ticks == sorted(ticks, reverse=True)


class TestCancel:
    async def test_cancel_stops_timers_and_leaves_item(self, api, store):
        flow = flow_for(api, poll_interval=0.01, payment_window=0.05)
        await flow.submit()
        flow.cancel()

        assert flow.state is CheckoutState.CANCELLED
        assert await asyncio.wait_for(flow.wait(), SETTLE_TIMEOUT) is CheckoutState.CANCELLED
        await asyncio.sleep(0.1)
        assert flow.state is CheckoutState.CANCELLED
        assert store.get(flow.pixel_id).status == "pending"

    async def test_late_status_is_ignored(self, api, provider):
        flow = flow_for(api)
        await flow.submit()
        flow.cancel()
        provider.approve(flow.charge.id)
        assert await flow.check_status() is False
        assert flow.state is CheckoutState.CANCELLED

    async def test_cancel_before_submit(self, api):
        flow = flow_for(api)
        flow.cancel()
        assert flow.state is CheckoutState.CANCELLED
