"""Async load generator for the STK push initiation endpoint.

Point it at a gateway wired to a Daraja sandbox or stub; every request is a
distinct user so the attempt limiter does not dominate the results.
"""

import argparse
import asyncio
import random
import statistics
import time
from uuid import uuid4

import httpx


async def send_one(client: httpx.AsyncClient, base_url: str, phone_number: str, user_idx: int):
    """Send one initiation request and return (status_code, latency_ms)."""

    started = time.perf_counter()
    payment_id = str(uuid4())
    payload = {
        "userId": f"user-{user_idx}",
        "invoiceId": f"inv-{payment_id[:8]}",
        "paymentId": payment_id,
        "phoneNumber": phone_number,
        "amount": random.randint(1, 500),
    }
    try:
        resp = await client.post(
            f"{base_url}/initiate-payment",
            json=payload,
            headers={"x-trace-id": str(uuid4())},
        )
        latency = (time.perf_counter() - started) * 1000
        return resp.status_code, latency
    except httpx.HTTPError:
        latency = (time.perf_counter() - started) * 1000
        return 599, latency


async def run(total: int, concurrency: int, base_url: str, phone_number: str):
    """Execute a bounded-concurrency load run and print summary stats."""

    sem = asyncio.Semaphore(concurrency)
    results = []

    async with httpx.AsyncClient(timeout=30.0) as client:
        async def worker(i: int):
            async with sem:
                return await send_one(client, base_url, phone_number, i)

        tasks = [asyncio.create_task(worker(i)) for i in range(total)]
        for task in asyncio.as_completed(tasks):
            results.append(await task)

    codes = [c for c, _ in results]
    lats = sorted(latency for _, latency in results)
    success = sum(1 for c in codes if 200 <= c < 300)
    errors = total - success
    by_code: dict[int, int] = {}
    for code in codes:
        by_code[code] = by_code.get(code, 0) + 1

    def pct(values, p):
        if not values:
            return 0.0
        idx = min(len(values) - 1, max(0, int((p / 100.0) * len(values)) - 1))
        return values[idx]

    print(f"total={total}")
    print(f"success={success}")
    print(f"errors={errors}")
    print(f"error_rate={(errors / total) * 100:.2f}%")
    print(f"status_codes={dict(sorted(by_code.items()))}")
    print(f"p50_ms={pct(lats, 50):.2f}")
    print(f"p95_ms={pct(lats, 95):.2f}")
    print(f"p99_ms={pct(lats, 99):.2f}")
    print(f"avg_ms={statistics.mean(lats):.2f}")


if __name__ == "__main__":
    parser = argparse.ArgumentParser()
    parser.add_argument("--total", type=int, default=200)
    parser.add_argument("--concurrency", type=int, default=20)
    parser.add_argument("--base-url", default="http://localhost:8000")
    parser.add_argument("--phone-number", default="254708374149")
    args = parser.parse_args()
    asyncio.run(run(args.total, args.concurrency, args.base_url, args.phone_number))
