"""SQL document store against SQLite, plus in-memory parity checks."""

import pytest

from pushpay.common.db import create_schema, make_engine, make_session_factory
from pushpay.common.documents import InMemoryDocumentStore, SqlDocumentStore
from pushpay.services.gateway.models import Document


@pytest.fixture
def sql_store():
    engine = make_engine("sqlite://")
    create_schema(engine)
    yield SqlDocumentStore(make_session_factory(engine), Document)
    engine.dispose()


@pytest.fixture(params=["sql", "memory"])
def store(request, sql_store):
    return sql_store if request.param == "sql" else InMemoryDocumentStore()


def test_set_merge_keeps_existing_fields(store):
    store.set("paymentTransactions", "p1", {"status": "initiated", "amount": 100})

    store.set("paymentTransactions", "p1", {"status": "pending"}, merge=True)

    assert store.get("paymentTransactions", "p1") == {"status": "pending", "amount": 100}


def test_set_without_merge_replaces(store):
    store.set("payments", "p1", {"status": "initiated", "amount": 100})

    store.set("payments", "p1", {"status": "failed"})

    assert store.get("payments", "p1") == {"status": "failed"}


def test_get_missing_document(store):
    assert store.get("payments", "nope") is None


def test_batch_commits_all_writes(store):
    store.set("paymentTransactions", "p1", {"userId": "u1"})

    batch = store.batch()
    batch.set("paymentTransactions", "p1", {"status": "pending"}, merge=True)
    batch.set("payments", "p1", {"status": "pending"}, merge=True)
    batch.commit()

    assert store.get("paymentTransactions", "p1") == {"userId": "u1", "status": "pending"}
    assert store.get("payments", "p1") == {"status": "pending"}


def test_batch_writes_same_document_twice(store):
    batch = store.batch()
    batch.set("payments", "p1", {"a": 1}, merge=True)
    batch.set("payments", "p1", {"b": 2}, merge=True)
    batch.commit()

    assert store.get("payments", "p1") == {"a": 1, "b": 2}


def test_increment_creates_and_accumulates(store):
    store.increment("revenue_stats", "2026-10-17", {"total": 100, "transactions": 1}, {"method": "mpesa"})
    store.increment("revenue_stats", "2026-10-17", {"total": 50, "transactions": 1})

    stats = store.get("revenue_stats", "2026-10-17")
    assert stats["total"] == 150
    assert stats["transactions"] == 2
    assert stats["method"] == "mpesa"


def test_add_generates_ids(store):
    first = store.add("payment_failures", {"reason": "cancelled"})
    second = store.add("payment_failures", {"reason": "timeout"})

    assert first != second
    assert store.get("payment_failures", first)["reason"] == "cancelled"


def test_query_by_field_with_limit(store):
    store.set("paymentStatus", "p1", {"checkoutRequestId": "ws_1", "status": "pending"})
    store.set("paymentStatus", "p2", {"checkoutRequestId": "ws_2", "status": "pending"})
    store.set("paymentStatus", "p3", {"status": "pending"})
    store.set("payments", "p4", {"checkoutRequestId": "ws_1"})

    assert store.query("paymentStatus", "checkoutRequestId", "==", "ws_1", limit=1) == [
        ("p1", {"checkoutRequestId": "ws_1", "status": "pending"})
    ]
    assert len(store.query("paymentStatus", "status", "==", "pending")) == 3
    assert store.query("paymentStatus", "checkoutRequestId", "==", "ws_9") == []


def test_query_iso_timestamps(store):
    store.add("payment_analytics", {"event": "old", "timestamp": "2026-10-15T10:00:00+00:00"})
    store.add("payment_analytics", {"event": "new", "timestamp": "2026-10-17T10:00:00+00:00"})

    hits = store.query("payment_analytics", "timestamp", ">=", "2026-10-16T10:00:00+00:00")

    assert [data["event"] for _, data in hits] == ["new"]


def test_query_numbers_compare_by_value(store):
    for doc_id, amount in (("p1", 9), ("p2", 10), ("p3", 100)):
        store.set("payments", doc_id, {"amount": amount})

    hits = store.query("payments", "amount", ">=", 10)

    assert sorted(data["amount"] for _, data in hits) == [10, 100]
    assert [doc_id for doc_id, _ in store.query("payments", "amount", "<", 10)] == ["p1"]
