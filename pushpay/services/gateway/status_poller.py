"""Transaction status poller for payments stuck after the STK callback.

Internal records in `pending` that are older than `min_age_seconds` and have
not received a confirmation are queried against the provider's transaction
status API. A final answer is saved through the same batch and status-record
writes the webhooks use.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from pushpay.common.documents import DocumentStore, utc_now_iso, without_none
from pushpay.common.errors import GatewayError
from pushpay.common.logging import logger
from pushpay.services.gateway.credentials import CredentialCache
from pushpay.services.gateway.models import CLIENT_PAYMENTS, TRANSACTIONS
from pushpay.services.gateway.records import client_projection, parse_result_code, result_parameter
from pushpay.services.gateway.status import StatusTracker

FINAL_STATUSES = {
    "completed": "completed",
    "failed": "failed",
    "cancelled": "failed",
    "expired": "failed",
}


@dataclass(frozen=True)
class StatusQuerySettings:
    initiator: str
    security_credential: str
    party_a: str
    identifier_type: str
    result_url: str
    timeout_url: str
    remarks: str = "OK"
    occasion: str = "OK"


class TransactionStatusPoller:
    def __init__(
        self,
        documents: DocumentStore,
        credentials: CredentialCache,
        provider,
        status_tracker: StatusTracker,
        query_settings: StatusQuerySettings,
        min_age_seconds: int = 16,
    ) -> None:
        self.documents = documents
        self.credentials = credentials
        self.provider = provider
        self.status_tracker = status_tracker
        self.query_settings = query_settings
        self.min_age_seconds = min_age_seconds

    def stale_pending(self, now: datetime | None = None) -> list[tuple[str, dict[str, Any]]]:
        now = now or datetime.now(timezone.utc)
        cutoff = (now - timedelta(seconds=self.min_age_seconds)).isoformat()
        return [
            (payment_id, record)
            for payment_id, record in self.documents.query(TRANSACTIONS, "status", "==", "pending")
            if record.get("createdAt", "") < cutoff and not record.get("confirmationReceived")
        ]

    def status_query_payload(self, payment_id: str, record: dict[str, Any]) -> dict[str, Any]:
        qs = self.query_settings
        api_response = record.get("apiResponse") or {}
        return {
            "Initiator": qs.initiator,
            "SecurityCredential": qs.security_credential,
            "CommandID": "TransactionStatusQuery",
            "TransactionID": payment_id,
            "OriginatorConversationID": api_response.get("OriginatorConversationID") or payment_id,
            "PartyA": qs.party_a,
            "IdentifierType": qs.identifier_type,
            "ResultURL": qs.result_url,
            "QueueTimeOutURL": qs.timeout_url,
            "Remarks": qs.remarks,
            "Occasion": qs.occasion,
        }

    def save_status_result(self, payment_id: str, record: dict[str, Any], status_result: dict[str, Any]) -> str | None:
        """Apply a transaction-status response; returns the new status or None if not final."""

        result = status_result.get("Result")
        if not isinstance(result, dict):
            logger.info("transaction status not final yet payment_id=%s", payment_id)
            return None
        parameters = (result.get("ResultParameters") or {}).get("ResultParameter")
        if isinstance(parameters, dict):
            parameters = [parameters]
        parameters = parameters if isinstance(parameters, list) else []

        provider_status = str(result_parameter(parameters, "TransactionStatus") or "").lower()
        status = FINAL_STATUSES.get(provider_status)
        if status is None:
            logger.info("transaction status unresolved payment_id=%s provider_status=%s", payment_id, provider_status)
            return None

        receipt = result_parameter(parameters, "ReceiptNo")
        phone = result_parameter(parameters, "DebitPartyName")
        update = {
            "paymentId": payment_id,
            "userId": record.get("userId"),
            "status": status,
            "completedAt": result_parameter(parameters, "FinalisedTime"),
            "mpesaReceiptNumber": str(receipt) if receipt is not None else None,
            "amount": result_parameter(parameters, "Amount"),
            "phoneNumber": str(phone) if phone is not None else None,
            "resultCode": parse_result_code(result.get("ResultCode")),
            "resultDesc": result.get("ResultDesc"),
        }
        batch = self.documents.batch()
        batch.set(
            TRANSACTIONS,
            payment_id,
            without_none({**update, "mpesaCallback": result, "updatedAt": utc_now_iso()}),
            merge=True,
        )
        batch.set(CLIENT_PAYMENTS, payment_id, client_projection(update), merge=True)
        batch.commit()
        self.status_tracker.record(
            payment_id,
            {
                "status": "success" if status == "completed" else "failed",
                "mpesaReceiptNumber": update["mpesaReceiptNumber"],
                "phoneNumber": update["phoneNumber"],
                "userId": update["userId"],
            },
        )
        logger.info("transaction status saved payment_id=%s status=%s", payment_id, status)
        return status

    async def poll_once(self, now: datetime | None = None) -> int:
        """Query every stale pending record once; returns how many were resolved."""

        stale = self.stale_pending(now)
        if not stale:
            return 0
        credential = await self.credentials.get_valid_credential()
        resolved = 0
        for payment_id, record in stale:
            try:
                status_result = await self.provider.query_transaction_status(
                    self.status_query_payload(payment_id, record), credential.token
                )
                if self.save_status_result(payment_id, record, status_result):
                    resolved += 1
            except GatewayError as exc:
                logger.error("failed to process pending transaction payment_id=%s error=%s", payment_id, exc)
        return resolved

    async def run_poller(self, interval_seconds: float) -> None:
        """Poll forever; owned by the app lifespan."""

        while True:
            await asyncio.sleep(interval_seconds)
            try:
                await self.poll_once()
            except Exception:
                logger.exception("transaction status poll failed")
