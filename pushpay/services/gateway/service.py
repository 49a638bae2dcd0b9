"""Gateway composition root and background task ownership."""

import asyncio

import redis

from pushpay.common.config import CommonSettings
from pushpay.common.documents import DocumentStore
from pushpay.common.errors import GatewayError
from pushpay.common.events import EventQueue, KafkaBus
from pushpay.common.logging import logger
from pushpay.common.startup import warn_missing_provider_config
from pushpay.services.gateway.abuse import AttemptLimiter, BlockedUsers, SuspiciousActivityLog
from pushpay.services.gateway.analytics import PaymentAnalytics
from pushpay.services.gateway.callbacks import CallbackService
from pushpay.services.gateway.credentials import CredentialCache
from pushpay.services.gateway.initiation import InitiationService, StkSettings
from pushpay.services.gateway.pending import PendingTransactionStore
from pushpay.services.gateway.provider import DarajaClient
from pushpay.services.gateway.status import StatusCache, StatusService, StatusTracker
from pushpay.services.gateway.status_poller import StatusQuerySettings, TransactionStatusPoller


class GatewayService:
    """Wires the flows around one document store, one Redis client and one provider client."""

    def __init__(
        self,
        config: CommonSettings,
        documents: DocumentStore,
        rdb: redis.Redis,
        provider=None,
        kafka: KafkaBus | None = None,
        clock=None,
    ) -> None:
        self.config = config
        self.documents = documents
        self.provider = provider or DarajaClient(
            config.mpesa_base_url,
            status_timeout_seconds=config.status_query_timeout_seconds,
            status_max_retries=config.status_query_max_retries,
            status_retry_delay_seconds=config.status_query_retry_delay_seconds,
            service_name=config.service_name,
        )
        clock_kwargs = {"clock": clock} if clock is not None else {}
        self.kafka = kafka
        self.analytics = PaymentAnalytics(documents)
        sink = kafka.publish if kafka is not None else self.analytics.log_payment_event
        self.events = EventQueue(
            sink,
            batch_size=config.event_batch_size,
            max_size=config.event_queue_max_size,
            service_name=config.service_name,
        )
        self.pending = PendingTransactionStore(
            ttl_seconds=config.pending_ttl_seconds,
            service_name=config.service_name,
            **clock_kwargs,
        )
        self.credentials = CredentialCache(
            documents,
            self.provider,
            config.basic_auth,
            service_name=config.service_name,
            **clock_kwargs,
        )
        self.status_cache = StatusCache(ttl_seconds=config.status_cache_ttl_seconds, **clock_kwargs)
        self.status_tracker = StatusTracker(documents, self.status_cache)
        self.status = StatusService(self.pending, documents, self.status_cache, self.events)
        self.initiation = InitiationService(
            documents,
            self.pending,
            self.credentials,
            self.provider,
            self.status_tracker,
            self.events,
            AttemptLimiter(
                rdb,
                max_attempts=config.initiate_max_attempts,
                window_minutes=config.initiate_window_minutes,
                service_name=config.service_name,
            ),
            SuspiciousActivityLog(documents),
            BlockedUsers(documents),
            StkSettings(
                shortcode=config.mpesa_shortcode,
                passkey=config.mpesa_passkey,
                callback_url=config.mpesa_callback_url,
                transaction_type=config.mpesa_transaction_type,
                account_reference=config.mpesa_account_reference,
                transaction_desc=config.mpesa_transaction_desc,
            ),
            service_name=config.service_name,
        )
        self.callbacks = CallbackService(
            documents,
            self.pending,
            self.status_tracker,
            self.analytics,
            self.events,
            service_name=config.service_name,
        )
        self.poller = TransactionStatusPoller(
            documents,
            self.credentials,
            self.provider,
            self.status_tracker,
            StatusQuerySettings(
                initiator=config.mpesa_initiator,
                security_credential=config.mpesa_security_credential,
                party_a=config.mpesa_party_a,
                identifier_type=config.mpesa_identifier_type,
                result_url=config.mpesa_result_url,
                timeout_url=config.mpesa_timeout_url,
            ),
            min_age_seconds=config.status_poll_min_age_seconds,
        )
        self._tasks: list[asyncio.Task] = []

    async def warm_up(self) -> None:
        """Fetch a credential and register C2B URLs; failures are logged only."""

        warn_missing_provider_config(
            {
                "MPESA_CONSUMER_KEY": self.config.mpesa_consumer_key,
                "MPESA_CONSUMER_SECRET": self.config.mpesa_consumer_secret,
                "MPESA_SHORTCODE": self.config.mpesa_shortcode,
                "MPESA_PASSKEY": self.config.mpesa_passkey,
                "MPESA_CALLBACK_URL": self.config.mpesa_callback_url,
            }
        )
        try:
            credential = await self.credentials.get_valid_credential()
        except GatewayError as exc:
            logger.error("startup token fetch failed: %s", exc)
            return
        logger.info("startup token ready source=%s", credential.source)

        if self.config.mpesa_confirmation_url and self.config.mpesa_validation_url:
            try:
                await self.provider.register_urls(
                    {
                        "ShortCode": self.config.mpesa_shortcode,
                        "ResponseType": "Completed",
                        "ConfirmationURL": self.config.mpesa_confirmation_url,
                        "ValidationURL": self.config.mpesa_validation_url,
                    },
                    credential.token,
                )
                logger.info("C2B URLs registered")
            except GatewayError as exc:
                logger.error("C2B URL registration failed: %s", exc)

    def start_background(self) -> None:
        """Start sweeper, event flusher and (when enabled) the status poller."""

        self._tasks.append(asyncio.create_task(self.pending.run_sweeper(self.config.pending_sweep_interval_seconds)))
        self._tasks.append(asyncio.create_task(self.events.run_flusher(self.config.event_flush_interval_seconds)))
        if self.config.status_poll_interval_seconds > 0:
            self._tasks.append(asyncio.create_task(self.poller.run_poller(self.config.status_poll_interval_seconds)))

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        # Drain what is left so a clean shutdown loses nothing.
        while len(self.events) and await self.events.flush():
            pass
        if self.kafka is not None:
            await self.kafka.close()
