# tests/test_x402_dedup.py
"""
Unit tests for settlement deduplication.
"""
import asyncio

import pytest

from app.x402.dedup import SettlementCache
from app.x402.errors import FacilitatorUnavailable, PaymentInvalid
from app.x402.types import SettlementResult

RESULT = SettlementResult(success=True, transaction="0xabc", payer="ST2")


class CountingSettle:
    """Settlement factory that counts calls."""

    def __init__(self, result=RESULT, error=None, delay=0.0):
        self.result = result
        self.error = error
        self.delay = delay
        self.calls = 0

    def __call__(self):
        self.calls += 1
        return self._run()

    async def _run(self):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.result


@pytest.mark.asyncio
class TestSettleOnce:
    """Test at-most-once settlement per key."""

    async def test_first_call_settles(self):
        cache = SettlementCache()
        settle = CountingSettle()

        assert await cache.settle_once("key", settle) == RESULT
        assert settle.calls == 1
        assert cache.misses == 1

    async def test_replay_reuses_result(self):
        cache = SettlementCache()
        settle = CountingSettle()

        await cache.settle_once("key", settle)
        assert await cache.settle_once("key", settle) == RESULT
        assert settle.calls == 1
        assert cache.hits == 1

    async def test_different_keys_settle_separately(self):
        cache = SettlementCache()
        settle = CountingSettle()

        await cache.settle_once("a", settle)
        await cache.settle_once("b", settle)
        assert settle.calls == 2
        assert len(cache) == 2

    async def test_concurrent_requests_share_one_settlement(self):
        cache = SettlementCache()
        settle = CountingSettle(delay=0.05)

        results = await asyncio.gather(*[cache.settle_once("key", settle) for _ in range(5)])

        assert settle.calls == 1
        assert results == [RESULT] * 5

    async def test_rejection_is_remembered(self):
        cache = SettlementCache()
        settle = CountingSettle(error=PaymentInvalid("rejected", details="bad signature"))

        with pytest.raises(PaymentInvalid):
            await cache.settle_once("key", settle)
        with pytest.raises(PaymentInvalid):
            await cache.settle_once("key", settle)
        assert settle.calls == 1

    async def test_transport_failure_is_forgotten(self):
        cache = SettlementCache()
        failing = CountingSettle(error=FacilitatorUnavailable("timeout"))

        with pytest.raises(FacilitatorUnavailable):
            await cache.settle_once("key", failing)
        assert len(cache) == 0

        succeeding = CountingSettle()
        assert await cache.settle_once("key", succeeding) == RESULT
        assert succeeding.calls == 1

    async def test_expired_entry_settles_again(self):
        cache = SettlementCache(ttl_seconds=0)
        settle = CountingSettle()

        await cache.settle_once("key", settle)
        await cache.settle_once("key", settle)
        assert settle.calls == 2

    async def test_settlement_survives_disconnect(self):
        cache = SettlementCache()
        started = asyncio.Event()
        release = asyncio.Event()

        async def slow_settle():
            started.set()
            await release.wait()
            return RESULT

        waiter = asyncio.ensure_future(cache.settle_once("key", slow_settle))
        await started.wait()
        waiter.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiter

        release.set()
        never = CountingSettle()
        assert await cache.settle_once("key", never) == RESULT
        assert never.calls == 0

    async def test_clear(self):
        cache = SettlementCache()
        await cache.settle_once("key", CountingSettle())

        cache.clear()

        assert len(cache) == 0
        assert cache.misses == 0
