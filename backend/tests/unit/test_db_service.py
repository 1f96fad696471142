# backend/tests/unit/test_db_service.py
import sqlite3

import pytest

from chatflow.exceptions import PersistenceError
from chatflow.services.db_service import SQLiteGateway


@pytest.mark.asyncio
async def test_training_data_lifecycle(gateway):
    first = await gateway.save_training_data("oi", "Olá!", confidence=1.0, approved=True)
    second = await gateway.save_training_data("preco", "Depende do plano.", confidence=0.8)

    approved = await gateway.get_training_data()
    assert [e.id for e in approved] == [first]
    assert len(await gateway.get_training_data(include_unapproved=True)) == 2

    assert await gateway.approve_training_data(second) is True
    assert await gateway.approve_training_data(second) is False
    assert await gateway.approve_training_data(999) is False
    assert len(await gateway.get_training_data()) == 2


@pytest.mark.asyncio
async def test_training_data_ordered_by_usage(gateway):
    first = await gateway.save_training_data("oi", "Olá!", approved=True)
    second = await gateway.save_training_data("tchau", "Até logo!", approved=True)

    await gateway.update_training_usage(second)
    examples = await gateway.get_training_data()

    assert [e.id for e in examples] == [second, first]
    assert examples[0].usage_count == 1
    assert examples[0].last_used is not None
    assert examples[1].last_used is None


@pytest.mark.asyncio
async def test_user_context_merges_fields_and_counts_interactions(gateway):
    assert await gateway.get_user_context("5511") is None

    await gateway.save_user_context("5511", {"name": "Ana"})
    stored = await gateway.save_user_context("5511", {"email": "ana@example.com", "last_department": 1})

    assert stored["phone"] == "5511"
    assert stored["name"] == "Ana"
    assert stored["email"] == "ana@example.com"
    assert stored["last_department"] == "1"
    assert stored["interaction_count"] == 2
    assert stored["preferences"] == {}
    assert stored["last_interaction"] is not None


@pytest.mark.asyncio
async def test_metrics_and_stats(gateway):
    await gateway.save_metric("match", {"confidence": 0.9})
    await gateway.save_metric("flow", {"step": "menu"})
    await gateway.save_training_data("oi", "Olá!", approved=True)
    await gateway.save_training_data("ola", "Oi!")
    await gateway.save_user_context("5511", {})

    metrics = await gateway.get_metrics("match")
    assert metrics[0]["value"] == {"confidence": 0.9}
    assert len(await gateway.get_metrics(limit=1)) == 1

    assert await gateway.get_stats() == {
        "total_training_data": 1,
        "pending_training_data": 1,
        "total_users": 1,
        "total_metrics": 2,
    }


def test_connection_failure_raises_persistence_error(tmp_path):
    with pytest.raises(PersistenceError):
        SQLiteGateway(str(tmp_path / "missing" / "dir" / "bot.db"))



class FlakyConnection:
    """Wraps a real connection and fails the first `failures` statements."""

    def __init__(self, conn, failures, message="database is locked"):
        self.conn = conn
        self.failures = failures
        self.message = message
        self.calls = 0

    def execute(self, query, params=()):
        self.calls += 1
        if self.failures:
            self.failures -= 1
            raise sqlite3.OperationalError(self.message)
        return self.conn.execute(query, params)

    def commit(self):
        self.conn.commit()


@pytest.mark.asyncio
async def test_locked_database_is_retried(gateway):
    real_conn = gateway.conn
    gateway.conn = FlakyConnection(real_conn, failures=1)
    try:
        await gateway.save_metric("match", 1)
        assert gateway.conn.calls == 2
    finally:
        gateway.conn = real_conn

    assert len(await gateway.get_metrics("match")) == 1


@pytest.mark.asyncio
async def test_persistent_lock_raises_persistence_error(gateway):
    real_conn = gateway.conn
    gateway.conn = FlakyConnection(real_conn, failures=10)
    try:
        with pytest.raises(PersistenceError, match="locked"):
            await gateway.save_metric("match", 1)
        assert gateway.conn.calls == 3
    finally:
        gateway.conn = real_conn


@pytest.mark.asyncio
async def test_other_operational_errors_are_not_retried(gateway):
    real_conn = gateway.conn
    gateway.conn = FlakyConnection(real_conn, failures=10, message="no such table: metrics")
    try:
        with pytest.raises(PersistenceError, match="no such table"):
            await gateway.save_metric("match", 1)
        assert gateway.conn.calls == 1
    finally:
        gateway.conn = real_conn
