"""Gateway database models.

Every durable collection (transactions, client projections, status records,
tokens, analytics logs) lives in the single `documents` table.
"""

from datetime import datetime

from sqlalchemy import JSON, DateTime, String, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from pushpay.common.db import Base


class Document(Base):
    """One JSON document addressed by `(collection, doc_id)`."""

    __tablename__ = "documents"

    collection: Mapped[str] = mapped_column(String, primary_key=True)
    doc_id: Mapped[str] = mapped_column(String, primary_key=True)
    data: Mapped[dict] = mapped_column(JSON().with_variant(JSONB(), "postgresql"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), index=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


# Collection names shared by the flows.
TRANSACTIONS = "paymentTransactions"
CLIENT_PAYMENTS = "payments"
PAYMENT_STATUS = "paymentStatus"
TOKENS = "mpesa_tokens"
PAYMENT_ANALYTICS = "payment_analytics"
REVENUE_STATS = "revenue_stats"
PAYMENT_FAILURES = "payment_failures"
SUSPICIOUS_ACTIVITY = "suspicious_activity"
BLOCKED_USERS = "blocked_users"
