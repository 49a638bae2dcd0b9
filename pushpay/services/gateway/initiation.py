"""STK push initiation.

Order of effects: validate -> blocked/attempt checks -> durable `initiated`
record -> hot-store entry -> `PaymentInitiated` event -> provider push ->
`ProviderApiCalled` event -> durable `pending` status record. Nothing written
before a failure is rolled back; the durable record is the audit trail.
"""

from dataclasses import dataclass
from typing import Any

from pushpay.common.documents import DocumentStore, utc_now_iso
from pushpay.common.errors import GatewayError, InitiationIncomplete, RateLimited, UserBlocked, ValidationFailed
from pushpay.common.events import EventQueue, PaymentEvent
from pushpay.common.logging import checkout_request_id_ctx, logger, payment_id_ctx
from pushpay.common.metrics import payment_initiated_total
from pushpay.services.gateway.abuse import AttemptLimiter, BlockedUsers, SuspiciousActivityLog
from pushpay.services.gateway.credentials import CredentialCache
from pushpay.services.gateway.models import TRANSACTIONS
from pushpay.services.gateway.pending import PendingTransactionStore
from pushpay.services.gateway.provider import stk_password, stk_timestamp
from pushpay.services.gateway.status import StatusTracker

INITIATE_ACTION = "initiate-payment"
REQUIRED_FIELDS = ("userId", "invoiceId", "paymentId", "amount", "phoneNumber")


@dataclass(frozen=True)
class StkSettings:
    shortcode: str | None
    passkey: str | None
    callback_url: str | None
    transaction_type: str = "CustomerPayBillOnline"
    account_reference: str = "PUSHPAY"
    transaction_desc: str = "Payment"


@dataclass(frozen=True)
class InitiationResult:
    payment_id: str
    checkout_request_id: str
    provider_response: dict[str, Any]


def _is_missing(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def coerce_amount(raw: Any) -> int | float:
    """Positive number from a JSON value; integral amounts become `int`."""

    if isinstance(raw, bool):
        raise ValidationFailed("amount must be a positive number")
    try:
        amount = float(raw)
    except (TypeError, ValueError) as exc:
        raise ValidationFailed("amount must be a positive number") from exc
    if not amount > 0 or amount == float("inf"):
        raise ValidationFailed("amount must be a positive number")
    return int(amount) if amount.is_integer() else amount


class InitiationService:
    def __init__(
        self,
        documents: DocumentStore,
        pending: PendingTransactionStore,
        credentials: CredentialCache,
        provider,
        status_tracker: StatusTracker,
        events: EventQueue,
        limiter: AttemptLimiter,
        suspicious: SuspiciousActivityLog,
        blocked: BlockedUsers,
        stk: StkSettings,
        service_name: str = "pushpay-gateway",
    ) -> None:
        self.documents = documents
        self.pending = pending
        self.credentials = credentials
        self.provider = provider
        self.status_tracker = status_tracker
        self.events = events
        self.limiter = limiter
        self.suspicious = suspicious
        self.blocked = blocked
        self.stk = stk
        self.service_name = service_name

    def validate(self, fields: dict[str, Any]) -> int | float:
        missing = [name for name in REQUIRED_FIELDS if _is_missing(fields.get(name))]
        if missing:
            logger.error("missing required fields in payment initiation: %s", missing)
            raise ValidationFailed(f"Missing required fields: {', '.join(missing)}", missing=missing)
        return coerce_amount(fields["amount"])

    def stk_payload(self, phone_number: str, amount: int | float) -> dict[str, Any]:
        if not self.stk.shortcode or not self.stk.passkey or not self.stk.callback_url:
            raise GatewayError("payment provider config missing SHORTCODE, PASSKEY or CALLBACK_URL")
        timestamp = stk_timestamp()
        return {
            "BusinessShortCode": self.stk.shortcode,
            "Password": stk_password(self.stk.shortcode, self.stk.passkey, timestamp),
            "Timestamp": timestamp,
            "TransactionType": self.stk.transaction_type,
            "Amount": amount,
            "PartyA": phone_number,
            "PartyB": self.stk.shortcode,
            "PhoneNumber": phone_number,
            "CallBackURL": self.stk.callback_url,
            "AccountReference": self.stk.account_reference,
            "TransactionDesc": self.stk.transaction_desc,
        }

    async def initiate(
        self,
        user_id: str | None,
        invoice_id: str | None,
        payment_id: str | None,
        phone_number: str | None,
        amount: Any,
    ) -> InitiationResult:
        amount = self.validate(
            {
                "userId": user_id,
                "invoiceId": invoice_id,
                "paymentId": payment_id,
                "amount": amount,
                "phoneNumber": phone_number,
            }
        )
        payment_id_ctx.set(payment_id)

        if self.blocked.is_blocked(user_id):
            logger.warning("user is blocked due to suspicious activity user_id=%s", user_id)
            raise UserBlocked("User is blocked due to suspicious activity")
        if self.limiter.check_and_increment(user_id, INITIATE_ACTION):
            self.suspicious.flag(user_id, INITIATE_ACTION, "Too many payment attempts", action_taken="blocked")
            logger.warning("attempt limit exceeded user_id=%s action=%s", user_id, INITIATE_ACTION)
            raise RateLimited("Too many attempts. Please try again later.")
        payload = self.stk_payload(phone_number, amount)

        now = utc_now_iso()
        record = {
            "userId": user_id,
            "invoiceId": invoice_id,
            "paymentId": payment_id,
            "phoneNumber": phone_number,
            "amount": amount,
            "status": "initiated",
            "createdAt": now,
            "updatedAt": now,
        }
        self.documents.set(TRANSACTIONS, payment_id, record, merge=True)
        self.pending.add(
            payment_id,
            {
                "userId": user_id,
                "invoiceId": invoice_id,
                "paymentId": payment_id,
                "phoneNumber": phone_number,
                "amount": amount,
                "status": "initiated",
            },
        )
        self.events.enqueue(
            PaymentEvent(
                event="PaymentInitiated",
                payment_id=payment_id,
                user_id=user_id,
                amount=amount,
                details={"invoiceId": invoice_id, "phoneNumber": phone_number, "status": "initiated"},
            )
        )

        credential = await self.credentials.get_valid_credential()
        result = await self.provider.push_payment(payload, credential.token)

        self.events.enqueue(
            PaymentEvent(
                event="ProviderApiCalled",
                payment_id=payment_id,
                user_id=user_id,
                amount=amount,
                details={
                    "invoiceId": invoice_id,
                    "apiResponse": result.raw,
                    "checkoutRequestId": result.correlation_key,
                },
            )
        )

        if not result.correlation_key:
            logger.error("no CheckoutRequestID returned from provider payment_id=%s response=%s", payment_id, result.raw)
            raise InitiationIncomplete(
                "No checkoutRequestId returned from payment provider",
                {"apiCalled": True, "paymentId": payment_id, "data": result.raw},
            )

        checkout_request_id_ctx.set(result.correlation_key)
        self.status_tracker.overwrite(
            payment_id,
            {
                "checkoutRequestId": result.correlation_key,
                "paymentId": payment_id,
                "userId": user_id,
                "status": "pending",
                "stkRequest": result.raw,
            },
        )
        self.pending.update(payment_id, {"checkoutRequestId": result.correlation_key})
        payment_initiated_total.labels(service=self.service_name).inc()
        logger.info("payment initiated payment_id=%s checkout_request_id=%s", payment_id, result.correlation_key)
        return InitiationResult(
            payment_id=payment_id,
            checkout_request_id=result.correlation_key,
            provider_response=result.raw,
        )
