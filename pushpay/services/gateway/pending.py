"""In-memory hot store for payments between initiation and provider callback.

An entry lives for `ttl_seconds` after it was added. Expired entries are
removed lazily on `get` and by the periodic `sweep`. All operations are
synchronous, so each one runs to completion between event-loop switches.
"""

import asyncio
import time
from typing import Any, Callable

from pushpay.common.logging import logger
from pushpay.common.metrics import pending_expired_total, pending_transactions

DEFAULT_TTL_SECONDS = 15 * 60
DEFAULT_SWEEP_INTERVAL_SECONDS = 5 * 60


class PendingTransactionStore:
    """TTL-bounded map from correlation key to transaction state."""

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
        service_name: str = "pushpay-gateway",
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self.service_name = service_name
        self._entries: dict[str, dict[str, Any]] = {}
        self._created: dict[str, float] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def _publish_size(self) -> None:
        pending_transactions.labels(service=self.service_name).set(len(self._entries))

    def _age(self, key: str, now: float) -> float:
        return now - self._created[key]

    def add(self, key: str, data: dict[str, Any]) -> None:
        """Insert or overwrite `key`; the TTL restarts from now."""

        now = self.clock()
        self._entries[key] = dict(data)
        self._created[key] = now
        self._publish_size()

    def get(self, key: str) -> dict[str, Any] | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._age(key, self.clock()) < self.ttl_seconds:
            return {**entry, "createdAt": self._created[key]}
        self._drop(key)
        pending_expired_total.labels(service=self.service_name, path="lazy").inc()
        return None

    def remove(self, key: str) -> None:
        self._drop(key)

    def update(self, key: str, data: dict[str, Any]) -> None:
        """Merge `data` into a present entry; absent keys are left absent."""

        if key in self._entries:
            self._entries[key] = {**self._entries[key], **data}

    def sweep(self) -> int:
        """Remove every entry older than the TTL and return how many went."""

        now = self.clock()
        expired = [key for key in self._entries if self._age(key, now) > self.ttl_seconds]
        for key in expired:
            self._drop(key)
        if expired:
            pending_expired_total.labels(service=self.service_name, path="sweep").inc(len(expired))
            logger.info("pending_sweep removed=%s remaining=%s", len(expired), len(self._entries))
        return len(expired)

    def snapshot(self, limit: int | None = None) -> list[tuple[str, dict[str, Any]]]:
        """Copy of up to `limit` entries in insertion order."""

        items = list(self._entries.items())
        if limit is not None:
            items = items[:limit]
        return [(key, {**entry, "createdAt": self._created[key]}) for key, entry in items]

    def _drop(self, key: str) -> None:
        self._entries.pop(key, None)
        self._created.pop(key, None)
        self._publish_size()

    async def run_sweeper(self, interval_seconds: float = DEFAULT_SWEEP_INTERVAL_SECONDS) -> None:
        """Sweep forever at a fixed interval; owned by the app lifespan."""

        while True:
            await asyncio.sleep(interval_seconds)
            try:
                self.sweep()
            except Exception as exc:
                logger.exception("pending sweep failed: %s", exc)
