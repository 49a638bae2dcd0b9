"""Process entrypoint: `uvicorn pushpay.services.gateway.main:app`."""

import redis

from pushpay.common.config import settings
from pushpay.common.db import SessionLocal
from pushpay.common.documents import InMemoryDocumentStore, SqlDocumentStore
from pushpay.common.events import KafkaBus
from pushpay.common.logging import configure_logging, logger
from pushpay.common.startup import log_startup_config
from pushpay.common.tracing import instrument_app, setup_tracing
from pushpay.services.gateway.api import create_app
from pushpay.services.gateway.models import Document
from pushpay.services.gateway.service import GatewayService

configure_logging()
setup_tracing(settings.service_name)
log_startup_config(
    settings.service_name,
    [
        "SERVICE_NAME",
        "POSTGRES_DSN",
        "REDIS_URL",
        "DOCUMENT_BACKEND",
        "EVENT_SINK",
        "KAFKA_BOOTSTRAP_SERVERS",
        "MPESA_BASE_URL",
        "MPESA_CONSUMER_KEY",
        "MPESA_CONSUMER_SECRET",
        "MPESA_SHORTCODE",
        "MPESA_PASSKEY",
        "MPESA_CALLBACK_URL",
    ],
)

if settings.document_backend == "memory":
    logger.warning("using in-memory document store; state is lost on restart")
    documents = InMemoryDocumentStore()
else:
    documents = SqlDocumentStore(SessionLocal, Document)

kafka = None
if settings.event_sink == "kafka":
    kafka = KafkaBus(settings.kafka_bootstrap_servers, settings.kafka_analytics_topic)
rdb = redis.Redis.from_url(settings.redis_url, decode_responses=True)
gateway = GatewayService(settings, documents, rdb, kafka=kafka)

app = create_app(gateway)
instrument_app(app)
