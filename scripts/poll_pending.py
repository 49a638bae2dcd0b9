"""Run one transaction-status pass over payments stuck in `pending`.

Uses the same settings as the gateway process (environment / `.env`).
"""

import argparse
import asyncio

import redis

from pushpay.common.config import settings
from pushpay.common.db import SessionLocal
from pushpay.common.documents import SqlDocumentStore
from pushpay.common.logging import configure_logging
from pushpay.services.gateway.models import Document
from pushpay.services.gateway.service import GatewayService


async def run(min_age_seconds: int, dry_run: bool) -> None:
    documents = SqlDocumentStore(SessionLocal, Document)
    gateway = GatewayService(settings, documents, redis.Redis.from_url(settings.redis_url, decode_responses=True))
    gateway.poller.min_age_seconds = min_age_seconds
    stale = gateway.poller.stale_pending()
    print(f"stale_pending={len(stale)}")
    if dry_run:
        for payment_id, record in stale:
            print(f"{payment_id} created_at={record.get('createdAt')} user_id={record.get('userId')}")
        return
    resolved = await gateway.poller.poll_once()
    print(f"resolved={resolved}")


def main() -> None:
    parser = argparse.ArgumentParser(description="Query the provider for payments stuck in pending.")
    parser.add_argument("--min-age-seconds", type=int, default=settings.status_poll_min_age_seconds)
    parser.add_argument("--dry-run", action="store_true", help="list stale payments without querying")
    args = parser.parse_args()
    configure_logging()
    asyncio.run(run(args.min_age_seconds, args.dry_run))


if __name__ == "__main__":
    main()
