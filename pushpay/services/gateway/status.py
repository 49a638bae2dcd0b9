"""Payment status reads and status-record writes.

Reads go hot store -> short-lived read cache -> durable `paymentStatus`.
A live pending entry is authoritative and is returned without touching the
durable store.
"""

import time
from typing import Any, Callable

from pushpay.common.documents import DocumentStore, utc_now_iso, without_none
from pushpay.common.errors import NotFound, ValidationFailed
from pushpay.common.events import EventQueue, PaymentEvent
from pushpay.common.logging import logger
from pushpay.services.gateway.models import CLIENT_PAYMENTS, PAYMENT_STATUS
from pushpay.services.gateway.pending import PendingTransactionStore

DEFAULT_CACHE_TTL_SECONDS = 2 * 60


class StatusCache:
    """Read-through cache of status snapshots keyed by the id they were read with."""

    def __init__(self, ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS, clock: Callable[[], float] = time.time) -> None:
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._entries: dict[str, tuple[dict[str, Any], float]] = {}

    def get(self, key: str) -> dict[str, Any] | None:
        hit = self._entries.get(key)
        if hit is None:
            return None
        data, stored_at = hit
        if self.clock() - stored_at < self.ttl_seconds:
            return dict(data)
        del self._entries[key]
        return None

    def set(self, key: str, data: dict[str, Any]) -> None:
        self._entries[key] = (dict(data), self.clock())

    def invalidate(self, *keys: str | None) -> None:
        for key in keys:
            if key:
                self._entries.pop(key, None)


class StatusTracker:
    """Writes to the `paymentStatus` collection, keeping the read cache coherent."""

    def __init__(self, documents: DocumentStore, cache: StatusCache) -> None:
        self.documents = documents
        self.cache = cache

    def record(self, key: str, data: dict[str, Any]) -> bool:
        """Merge `data` unless the stored status already equals `data["status"]`.

        The cached snapshot is compared first, then the durable one. Returns
        True when a durable write happened.
        """

        status = data.get("status")
        cached = self.cache.get(key)
        if cached is not None and cached.get("status") == status:
            logger.debug("status write skipped (cached) key=%s status=%s", key, status)
            return False

        stored = self.documents.get(PAYMENT_STATUS, key)
        if stored is not None and stored.get("status") == status:
            self.cache.set(key, stored)
            return False

        update = {**without_none(data), "updatedAt": utc_now_iso()}
        self.documents.set(PAYMENT_STATUS, key, update, merge=True)
        merged = {**(stored or {}), **update}
        # Views cached under the correlation key are stale now too.
        self.cache.invalidate(key, merged.get("checkoutRequestId"))
        self.cache.set(key, merged)
        return True

    def overwrite(self, key: str, data: dict[str, Any]) -> None:
        """Unconditional merge for updates that carry new fields, not just a new status."""

        update = {**without_none(data), "updatedAt": data.get("updatedAt") or utc_now_iso()}
        self.documents.set(PAYMENT_STATUS, key, update, merge=True)
        self.cache.invalidate(key, data.get("checkoutRequestId"))


class StatusService:
    def __init__(
        self,
        pending: PendingTransactionStore,
        documents: DocumentStore,
        cache: StatusCache,
        events: EventQueue,
    ) -> None:
        self.pending = pending
        self.documents = documents
        self.cache = cache
        self.events = events

    def get_status(self, payment_id: str | None = None, checkout_request_id: str | None = None) -> dict[str, Any]:
        """Status view for a payment id or a provider correlation key, in that order."""

        ids = [value for value in (payment_id, checkout_request_id) if value]
        if not ids:
            raise ValidationFailed("Missing paymentId or checkoutRequestId", missing=["paymentId", "checkoutRequestId"])

        for key in ids:
            entry = self.pending.get(key)
            if entry is not None:
                logger.info("payment still pending in memory id=%s", key)
                self.events.enqueue(
                    PaymentEvent(
                        event="PaymentStatusCheckedPending",
                        payment_id=entry.get("paymentId", key),
                        user_id=entry.get("userId"),
                        amount=entry.get("amount"),
                        details={"lookupId": key},
                    )
                )
                return {**entry, "status": "pending"}

        for key in ids:
            cached = self.cache.get(key)
            if cached is not None:
                return cached

        for key in ids:
            stored = self._read_durable(key, by_correlation_key=key == checkout_request_id)
            if stored is not None:
                self.cache.set(key, stored)
                return stored

        raise NotFound("Payment status not found")

    def _read_durable(self, key: str, by_correlation_key: bool) -> dict[str, Any] | None:
        stored = self.documents.get(PAYMENT_STATUS, key)
        if stored is not None:
            return stored
        if by_correlation_key:
            matches = self.documents.query(PAYMENT_STATUS, "checkoutRequestId", "==", key, limit=1)
            if matches:
                return matches[0][1]
        return None

    def lookup_transaction(self, payment_id: str | None = None, checkout_request_id: str | None = None) -> dict:
        """Client-safe transaction record plus its correlation key."""

        status_doc = None
        if not payment_id and checkout_request_id:
            matches = self.documents.query(PAYMENT_STATUS, "checkoutRequestId", "==", checkout_request_id, limit=1)
            if matches:
                payment_id, status_doc = matches[0]
        if not payment_id:
            raise NotFound("Transaction not found")

        doc = self.documents.get(CLIENT_PAYMENTS, payment_id)
        if doc is None:
            raise NotFound("Transaction not found")
        if status_doc is None:
            status_doc = self.documents.get(PAYMENT_STATUS, payment_id) or {}
        correlation_key = status_doc.get("checkoutRequestId") or checkout_request_id
        return {
            "checkoutRequestId": correlation_key,
            "statusData": {**doc, "paymentId": payment_id, "checkoutRequestId": correlation_key},
        }
