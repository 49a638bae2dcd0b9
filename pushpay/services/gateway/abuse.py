"""Abuse controls applied before a payment reaches the provider.

- `AttemptLimiter`: Redis fixed window per `(user, action)`, opened by the
  first attempt and expiring after `window_minutes`.
- `SuspiciousActivityLog`: append-only durable log of flagged behaviour.
- `BlockedUsers`: durable deny list consulted before initiation.
"""

from typing import Any

import redis

from pushpay.common.documents import DocumentStore, utc_now_iso
from pushpay.common.logging import logger
from pushpay.common.metrics import rate_limited_total
from pushpay.services.gateway.models import BLOCKED_USERS, SUSPICIOUS_ACTIVITY


class AttemptLimiter:
    """Counts attempts and reports when a user is over the limit."""

    def __init__(
        self,
        rdb: redis.Redis,
        max_attempts: int = 5,
        window_minutes: int = 15,
        service_name: str = "pushpay-gateway",
    ) -> None:
        self.rdb = rdb
        self.max_attempts = max_attempts
        self.window_seconds = window_minutes * 60
        self.service_name = service_name

    @staticmethod
    def _key(user_id: str, action: str) -> str:
        return f"attempts:{action}:{user_id}"

    def check_and_increment(self, user_id: str, action: str) -> bool:
        """Record one attempt; return True if the caller is over the limit.

        A blocked attempt does not increment the counter. Redis errors fail
        open so an outage of the limiter never blocks payments.
        """

        key = self._key(user_id, action)
        try:
            attempts = int(self.rdb.get(key) or 0)
            if attempts >= self.max_attempts:
                rate_limited_total.labels(service=self.service_name, action=action).inc()
                return True
            if self.rdb.incr(key) == 1:
                self.rdb.expire(key, self.window_seconds)
        except redis.RedisError as exc:
            logger.warning("attempt_limiter_unavailable user_id=%s action=%s error=%s", user_id, action, exc)
        return False


class SuspiciousActivityLog:
    def __init__(self, documents: DocumentStore) -> None:
        self.documents = documents

    def flag(self, user_id: str, action: str, details: Any, action_taken: str | None = None) -> None:
        try:
            self.documents.add(
                SUSPICIOUS_ACTIVITY,
                {
                    "userId": user_id,
                    "type": action,
                    "details": details,
                    "timestamp": utc_now_iso(),
                    "actionTaken": action_taken,
                },
            )
        except Exception as exc:
            logger.error("failed to log suspicious activity user_id=%s error=%s", user_id, exc)


class BlockedUsers:
    def __init__(self, documents: DocumentStore) -> None:
        self.documents = documents

    def is_blocked(self, user_id: str) -> bool:
        return self.documents.get(BLOCKED_USERS, user_id) is not None
