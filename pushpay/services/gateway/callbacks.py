"""Provider webhook reconciliation.

Two phases reach the gateway for one STK push:

- `handle_callback` (`/mpesa/callback`): the push result. Result code 0 maps to
  `pending`, anything else to `failed`.
- `handle_confirmation` (`/payments/confirmation`): final confirmation. Result
  code 0 maps to `completed` (status record `success`) and sets `completedAt`.

Each reconciliation writes the internal record and the client projection in
one batch, then the status record. The writes are one logical unit but are
not atomic together. Analytics are best effort and never fail the webhook.
"""

from dataclasses import dataclass
from typing import Any

from pushpay.common.documents import DocumentStore, utc_now_iso, without_none
from pushpay.common.errors import MalformedCallback, NotFound
from pushpay.common.events import EventQueue, PaymentEvent
from pushpay.common.logging import checkout_request_id_ctx, logger, payment_id_ctx
from pushpay.common.metrics import callbacks_total, payment_failure_total, payment_success_total
from pushpay.common.state_machine import is_allowed_transition
from pushpay.services.gateway.analytics import PaymentAnalytics
from pushpay.services.gateway.models import CLIENT_PAYMENTS, PAYMENT_STATUS, TRANSACTIONS
from pushpay.services.gateway.pending import PendingTransactionStore
from pushpay.services.gateway.records import (
    client_projection,
    metadata_items,
    metadata_value,
    parse_result_code,
)
from pushpay.services.gateway.status import StatusTracker


@dataclass(frozen=True)
class CallbackOutcome:
    payment_id: str
    checkout_request_id: str
    status: str
    matched_from: str
    amount: Any


@dataclass(frozen=True)
class _StkCallback:
    raw: dict[str, Any]
    checkout_request_id: str
    result_code: int | None
    result_desc: str | None
    metadata: dict[str, Any] | None


def parse_stk_callback(payload: Any) -> _StkCallback:
    """Pull `Body.stkCallback` out of a webhook body or raise `MalformedCallback`."""

    body = payload.get("Body") if isinstance(payload, dict) else None
    callback = body.get("stkCallback") if isinstance(body, dict) else None
    if not isinstance(callback, dict):
        logger.warning("malformed callback payload")
        raise MalformedCallback("Malformed callback payload")
    checkout_request_id = callback.get("CheckoutRequestID")
    if not checkout_request_id:
        logger.error("callback without CheckoutRequestID in Body.stkCallback")
        raise MalformedCallback("Missing CheckoutRequestID in Body.stkCallback")
    metadata = callback.get("CallbackMetadata")
    return _StkCallback(
        raw=callback,
        checkout_request_id=str(checkout_request_id),
        result_code=parse_result_code(callback.get("ResultCode")),
        result_desc=callback.get("ResultDesc"),
        metadata=metadata if isinstance(metadata, dict) else None,
    )


class CallbackService:
    def __init__(
        self,
        documents: DocumentStore,
        pending: PendingTransactionStore,
        status_tracker: StatusTracker,
        analytics: PaymentAnalytics,
        events: EventQueue,
        service_name: str = "pushpay-gateway",
    ) -> None:
        self.documents = documents
        self.pending = pending
        self.status_tracker = status_tracker
        self.analytics = analytics
        self.events = events
        self.service_name = service_name

    def _find_by_correlation_key(self, checkout_request_id: str) -> tuple[str, dict[str, Any]] | None:
        matches = self.documents.query(PAYMENT_STATUS, "checkoutRequestId", "==", checkout_request_id, limit=1)
        return matches[0] if matches else None

    def _match(self, checkout_request_id: str, kind: str) -> tuple[str, str | None, str]:
        """Return `(payment_id, user_id, matched_from)`; hot store first, then durable."""

        entry = self.pending.get(checkout_request_id)
        if entry is not None:
            # Leaves the hot path now, even if a later write fails.
            self.pending.remove(checkout_request_id)
            logger.info("matched callback to pending payment user_id=%s", entry.get("userId"))
            return entry.get("paymentId") or checkout_request_id, entry.get("userId"), "pending"

        logger.warning("no matching pending payment in memory for callback")
        found = self._find_by_correlation_key(checkout_request_id)
        if found is None:
            callbacks_total.labels(service=self.service_name, kind=kind, outcome="not_found").inc()
            logger.error("no paymentStatus found for CheckoutRequestID=%s", checkout_request_id)
            raise NotFound("Transaction not found")
        payment_id, data = found
        self.pending.remove(payment_id)
        return payment_id, data.get("userId"), "durable"

    def _commit(self, payment_id: str, internal: dict[str, Any], client: dict[str, Any]) -> None:
        batch = self.documents.batch()
        batch.set(TRANSACTIONS, payment_id, internal, merge=True)
        batch.set(CLIENT_PAYMENTS, payment_id, client, merge=True)
        batch.commit()

    def _check_transition(self, payment_id: str, new_status: str) -> None:
        current = self.documents.get(TRANSACTIONS, payment_id)
        previous = (current or {}).get("status")
        if previous and not is_allowed_transition(previous, new_status):
            logger.warning("unexpected status transition payment_id=%s %s -> %s", payment_id, previous, new_status)

    def _log_outcome(
        self,
        success: bool,
        payment_id: str,
        user_id: str | None,
        amount: Any,
        reason: str | None,
        details: dict[str, Any],
    ) -> None:
        """Lifecycle event plus revenue or failure log; never raises."""

        if success:
            payment_success_total.labels(service=self.service_name).inc()
        else:
            payment_failure_total.labels(service=self.service_name).inc()
        self.events.enqueue(
            PaymentEvent(
                event="PaymentSuccess" if success else "PaymentFailure",
                payment_id=payment_id,
                user_id=user_id,
                amount=amount if isinstance(amount, (int, float)) else None,
                details=details,
            )
        )
        try:
            if success:
                self.analytics.log_revenue(amount, user_id, payment_id)
            else:
                self.analytics.log_payment_failure(user_id, reason, details)
        except Exception as exc:
            logger.error("error logging payment analytics payment_id=%s error=%s", payment_id, exc)

    def handle_callback(self, payload: Any) -> CallbackOutcome:
        """Reconcile an STK push result with the payment that started it."""

        callback = parse_stk_callback(payload)
        checkout_request_id_ctx.set(callback.checkout_request_id)
        payment_id, user_id, matched_from = self._match(callback.checkout_request_id, "stk")
        payment_id_ctx.set(payment_id)

        status = "pending" if callback.result_code == 0 else "failed"
        amount = metadata_value(callback.metadata, "Amount", 0)
        self._check_transition(payment_id, status)
        update = {
            "status": status,
            "resultCode": callback.result_code if callback.result_code is not None else 0,
            "resultDesc": callback.result_desc or "No description available",
            "amount": amount,
            "metadata": {"item": metadata_items(callback.metadata)},
            "updatedAt": utc_now_iso(),
            "userId": user_id,
            "checkoutRequestId": callback.checkout_request_id,
            "paymentId": payment_id,
            "apiResponse": {"stkCallback": callback.raw},
        }
        self._commit(payment_id, without_none(update), client_projection(update))
        self.status_tracker.overwrite(payment_id, update)

        callbacks_total.labels(service=self.service_name, kind="stk", outcome=matched_from).inc()
        self._log_outcome(
            callback.result_code == 0,
            payment_id,
            user_id,
            amount,
            callback.result_desc,
            callback.raw,
        )
        logger.info("processed provider callback result_code=%s status=%s", callback.result_code, status)
        return CallbackOutcome(
            payment_id=payment_id,
            checkout_request_id=callback.checkout_request_id,
            status=status,
            matched_from=matched_from,
            amount=amount,
        )

    def handle_confirmation(self, payload: Any) -> CallbackOutcome:
        """Apply the final confirmation for a payment found through the durable store."""

        callback = parse_stk_callback(payload)
        checkout_request_id_ctx.set(callback.checkout_request_id)
        found = self._find_by_correlation_key(callback.checkout_request_id)
        if found is None:
            callbacks_total.labels(service=self.service_name, kind="confirmation", outcome="not_found").inc()
            logger.error("no payment found for confirmation CheckoutRequestID=%s", callback.checkout_request_id)
            raise NotFound("Transaction not found")
        payment_id, status_doc = found
        payment_id_ctx.set(payment_id)
        self.pending.remove(payment_id)

        body = payload["Body"]
        user_id = body.get("userId") or metadata_value(callback.metadata, "UserId") or status_doc.get("userId")
        receipt = metadata_value(callback.metadata, "MpesaReceiptNumber")
        phone = metadata_value(callback.metadata, "PhoneNumber")
        success = callback.result_code == 0
        status = "completed" if success else "failed"
        amount = metadata_value(callback.metadata, "Amount", 0)
        self._check_transition(payment_id, status)

        record = {
            "paymentId": payment_id,
            "userId": str(user_id) if user_id is not None else None,
            "status": status,
            "completedAt": utc_now_iso() if success else None,
            "mpesaReceiptNumber": str(receipt) if receipt is not None else None,
            "amount": amount,
            "phoneNumber": str(phone) if phone is not None else None,
            "resultCode": callback.result_code,
            "resultDesc": callback.result_desc,
        }
        internal = without_none(
            {
                **record,
                "checkoutRequestId": callback.checkout_request_id,
                "mpesaCallback": callback.raw,
                "confirmationReceived": True,
                "updatedAt": utc_now_iso(),
            }
        )
        self._commit(payment_id, internal, client_projection(record))
        logger.info("payment transaction confirmed payment_id=%s status=%s", payment_id, status)

        try:
            self.status_tracker.record(
                payment_id,
                {
                    "status": "success" if success else "failed",
                    "resultCode": callback.result_code,
                    "resultDesc": callback.result_desc,
                    "amount": amount,
                    "mpesaReceiptNumber": record["mpesaReceiptNumber"],
                    "phoneNumber": record["phoneNumber"],
                    "userId": record["userId"],
                },
            )
        except Exception as exc:
            logger.error("error updating payment status record payment_id=%s error=%s", payment_id, exc)

        callbacks_total.labels(service=self.service_name, kind="confirmation", outcome="durable").inc()
        self._log_outcome(success, payment_id, record["userId"], amount, callback.result_desc, callback.raw)
        return CallbackOutcome(
            payment_id=payment_id,
            checkout_request_id=callback.checkout_request_id,
            status=status,
            matched_from="durable",
            amount=amount,
        )
