"""Tests for the reaper."""

from datetime import timedelta

import pytest

from relay_engine.deliveries.models import FAILED, IN_FLIGHT, PENDING
from relay_engine.deliveries.reaper import MAX_ATTEMPTS_EXCEEDED


@pytest.fixture
async def stuck(engine, clock, create_endpoint, emit):
    """A delivery whose dispatcher died right after claiming it."""
    await create_endpoint()
    _, deliveries = await emit()
    async with engine.db.get_session() as session:
        await engine.store.claim(session, deliveries[0].id, clock())
    return deliveries[0]


class TestReaper:
    async def test_nothing_to_do(self, engine):
        result = await engine.reaper.reap()
        assert (result.recovered, result.failed) == (0, 0)

    async def test_fresh_in_flight_untouched(self, engine, clock, stuck, load_delivery):
        clock.advance(seconds=60)
        result = await engine.reaper.reap()
        assert result.recovered == 0
        assert (await load_delivery(stuck.id)).status == IN_FLIGHT

    async def test_recovers_stale(self, engine, clock, stuck, load_delivery):
        clock.advance(seconds=engine.settings.reaper_stale_after_seconds + 1)
        result = await engine.reaper.reap()
        assert result.recovered == 1

        delivery = await load_delivery(stuck.id)
        assert delivery.status == PENDING
        assert delivery.attempts == 1
        assert delivery.next_attempt_at == clock()

    async def test_explicit_threshold(self, engine, clock, stuck, load_delivery):
        clock.advance(seconds=90)
        assert (await engine.reaper.reap(stale_after=120)).recovered == 0
        assert (await engine.reaper.reap(stale_after=timedelta(seconds=60))).recovered == 1

    async def test_out_of_attempts_failed(self, engine, clock, stuck, load_delivery):
        engine.settings.max_attempts = 1
        clock.advance(seconds=engine.settings.reaper_stale_after_seconds + 1)
        result = await engine.reaper.reap()
        assert (result.recovered, result.failed) == (0, 1)

        delivery = await load_delivery(stuck.id)
        assert delivery.status == FAILED
        assert delivery.last_error == MAX_ATTEMPTS_EXCEEDED

    async def test_limit(self, engine, clock, create_endpoint, emit):
        await create_endpoint()
        for _ in range(3):
            _, deliveries = await emit()
            async with engine.db.get_session() as session:
                await engine.store.claim(session, deliveries[0].id, clock())
        clock.advance(hours=1)

        assert (await engine.reaper.reap(limit=2)).recovered == 2
        assert (await engine.reaper.reap()).recovered == 1

    async def test_zero_limit_reaps_nothing(self, engine, clock, stuck, load_delivery):
        clock.advance(hours=1)
        assert (await engine.reaper.reap(limit=0)).recovered == 0
        assert (await load_delivery(stuck.id)).status == IN_FLIGHT

    async def test_recovered_delivery_is_pumped(self, engine, transport, clock, stuck, load_delivery):
        clock.advance(hours=1)
        await engine.reaper.reap()
        result = await engine.pump.pump()
        assert result.picked == 1
        delivery = await load_delivery(stuck.id)
        assert delivery.attempts == 2
        assert transport.requests[0].headers["X-Webhook-Delivery"] == stuck.id
