# app/x402/dedup.py
"""
Settlement deduplication for the x402 gateway.

A client that retries a request with the same proof must not make the gateway
settle twice. Settlements are keyed by a digest of the proof:

- while a settlement is in flight, other requests with the same key wait for it
- a successful or rejected (PaymentInvalid) outcome is remembered for the TTL
- transport failures (FacilitatorUnavailable, anything else) forget the key so
  the same proof can be retried

Each settlement runs in its own task shielded from the waiting request. If
the client disconnects the broadcast still completes and its outcome is
recorded; only the response is discarded.

In-memory and per process.
"""
import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional

from app.x402.errors import PaymentInvalid
from app.x402.types import SettlementResult

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300


@dataclass
class SettlementEntry:
    """Outcome (or pending settlement) for one proof digest."""
    expires_at: float
    task: Optional["asyncio.Task[SettlementResult]"] = None
    result: Optional[SettlementResult] = None
    error: Optional[PaymentInvalid] = None

    @property
    def done(self) -> bool:
        return self.result is not None or self.error is not None


class SettlementCache:
    """
    Short-lived cache of settlement outcomes keyed by proof digest.

    The dict is guarded by a threading.Lock; no await happens while holding it.
    """

    def __init__(self, ttl_seconds: int = DEFAULT_TTL_SECONDS, cleanup_interval: int = 60):
        self._ttl_seconds = ttl_seconds
        self._cleanup_interval = cleanup_interval
        self._entries: Dict[str, SettlementEntry] = {}
        self._lock = threading.Lock()
        self._last_cleanup = time.time()
        self.hits = 0
        self.misses = 0

    @property
    def ttl_seconds(self) -> int:
        return self._ttl_seconds

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _maybe_cleanup(self, now: float) -> None:
        """Drop expired, finished entries. Caller holds the lock."""
        if now - self._last_cleanup < self._cleanup_interval:
            return
        self._last_cleanup = now
        expired = [
            key for key, entry in self._entries.items()
            if entry.done and entry.expires_at <= now
        ]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug(f"x402: Settlement cache cleanup removed {len(expired)} entries")

    def _record(self, key: str, entry: SettlementEntry, task: "asyncio.Task[SettlementResult]") -> None:
        """Done-callback of a settlement task."""
        with self._lock:
            if task.cancelled():
                self._entries.pop(key, None)
                return
            error = task.exception()
            now = time.time()
            if error is None:
                entry.result = task.result()
                entry.expires_at = now + self._ttl_seconds
            elif isinstance(error, PaymentInvalid):
                entry.error = error
                entry.expires_at = now + self._ttl_seconds
            else:
                # Not settled; the same proof may be retried
                if self._entries.get(key) is entry:
                    del self._entries[key]
            entry.task = None

    async def settle_once(
        self,
        key: str,
        settle: Callable[[], Awaitable[SettlementResult]],
    ) -> SettlementResult:
        """
        Run settle() at most once per key within the TTL.

        Args:
            key: Digest of the proof
            settle: Coroutine factory performing the facilitator call

        Returns:
            The (possibly shared) SettlementResult

        Raises:
            PaymentInvalid: If this proof was (or is now) rejected
            FacilitatorUnavailable: If the settlement attempt failed in transport
        """
        now = time.time()
        with self._lock:
            self._maybe_cleanup(now)
            entry = self._entries.get(key)
            if entry is not None and entry.done and entry.expires_at <= now:
                del self._entries[key]
                entry = None

            if entry is not None and entry.result is not None:
                self.hits += 1
                logger.info(f"x402: Reusing settlement for proof sha256:{key[:12]}")
                return entry.result
            if entry is not None and entry.error is not None:
                self.hits += 1
                raise entry.error

            if entry is not None and entry.task is not None:
                self.hits += 1
                task = entry.task
                logger.info(f"x402: Waiting on in-flight settlement for proof sha256:{key[:12]}")
            else:
                self.misses += 1
                entry = SettlementEntry(expires_at=now + self._ttl_seconds)
                task = asyncio.ensure_future(settle())
                entry.task = task
                self._entries[key] = entry
                task.add_done_callback(lambda t, k=key, e=entry: self._record(k, e, t))

        return await asyncio.shield(task)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self.hits = 0
            self.misses = 0
