"""Durable analytics logs: lifecycle events, daily revenue and failures."""

from datetime import datetime, timedelta, timezone
from typing import Any

from pushpay.common.documents import DocumentStore, utc_now_iso
from pushpay.common.events import PaymentEvent
from pushpay.services.gateway.models import PAYMENT_ANALYTICS, PAYMENT_FAILURES, REVENUE_STATS


class PaymentAnalytics:
    def __init__(self, documents: DocumentStore) -> None:
        self.documents = documents

    def log_payment_event(self, event: PaymentEvent) -> None:
        """Event-queue sink for the `documents` backend."""

        self.documents.add(PAYMENT_ANALYTICS, event.to_document())

    def log_revenue(self, amount: float, user_id: str | None, payment_id: str, method: str = "mpesa") -> None:
        today = datetime.now(timezone.utc).date().isoformat()
        self.documents.increment(
            REVENUE_STATS,
            today,
            {"total": amount, "transactions": 1},
            {
                "lastPaymentId": payment_id,
                "lastUserId": user_id,
                "updatedAt": utc_now_iso(),
                "method": method,
            },
        )

    def log_payment_failure(self, user_id: str | None, reason: str | None, details: dict[str, Any]) -> None:
        self.documents.add(
            PAYMENT_FAILURES,
            {"userId": user_id, "reason": reason, "details": details, "timestamp": utc_now_iso()},
        )

    def event_counts(self, since_hours: int = 24) -> dict[str, Any]:
        """Count analytics events newer than `since_hours`, grouped by type."""

        since = datetime.now(timezone.utc) - timedelta(hours=since_hours)
        docs = self.documents.query(PAYMENT_ANALYTICS, "timestamp", ">=", since.isoformat())
        counts: dict[str, int] = {}
        for _, data in docs:
            name = data.get("event")
            if name:
                counts[name] = counts.get(name, 0) + 1
        return {
            "count": len(docs),
            "eventTypeCounts": counts,
            "since": since.isoformat(),
            "message": f"Counted {len(docs)} payment events in the last {since_hours}h.",
        }
