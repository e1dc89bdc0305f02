"""
Tests de los stores SQL (SQLite en memoria vía aiosqlite).
"""

from dataclasses import replace
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from pasarela.adapters.base import CanonicalWebhookEvent
from pasarela.db import build_engine, build_session_factory, close_db, init_db
from pasarela.db.database import normalize_database_url
from pasarela.db.repositories import SqlIdempotencyStore, SqlTransactionStore
from pasarela.schemas.common import ProviderName, TransactionStatus
from pasarela.services.gateway import PaymentGateway
from pasarela.services.reconciler import TransactionReconciler, TransactionRecord
from pasarela.utils.exceptions import ConcurrencyConflictError

from tests.helpers import global66_headers, json_body


# Base de datos de testing en memoria
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture
async def test_engine() -> AsyncGenerator[AsyncEngine, None]:
    """Crea un engine de testing para cada test."""
    engine = build_engine(TEST_DATABASE_URL)
    await init_db(engine)
    yield engine
    await close_db(engine)


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    return build_session_factory(test_engine)


@pytest.fixture
def sql_transactions(session_factory) -> SqlTransactionStore:
    return SqlTransactionStore(session_factory)


@pytest.fixture
def sql_idempotency(session_factory) -> SqlIdempotencyStore:
    return SqlIdempotencyStore(session_factory)


def seeded(reference: str = "order-1") -> TransactionRecord:
    return TransactionRecord.seed(reference, ProviderName.FLOW, 9990, "CLP", f"create:{reference}")


class TestDatabaseUrl:
    
    def test_postgres_url_uses_asyncpg(self):
        url = normalize_database_url("postgresql://u:p@db:6543/pagos?pgbouncer=true&sslmode=require")
        
        assert url.startswith("postgresql+asyncpg://u:p@db:6543/pagos?")
        assert "pgbouncer" not in url
        assert "sslmode" not in url
        assert "prepared_statement_cache_size=0" in url
    
    def test_sqlite_url_unchanged(self):
        assert normalize_database_url(TEST_DATABASE_URL) == TEST_DATABASE_URL


class TestSqlTransactionStore:
    
    @pytest.mark.asyncio
    async def test_create_and_get(self, sql_transactions):
        stored = await sql_transactions.create(seeded())
        
        loaded = await sql_transactions.get("order-1")
        
        assert stored.version == 1
        assert loaded.reference == "order-1"
        assert loaded.provider == ProviderName.FLOW
        assert loaded.status == TransactionStatus.CREATED
        assert loaded.amount == 9990
        assert loaded.version == 1
        assert [c.event_id for c in loaded.history] == ["create:order-1"]
        assert loaded.created_at.tzinfo is not None
    
    @pytest.mark.asyncio
    async def test_get_missing(self, sql_transactions):
        assert await sql_transactions.get("no-existe") is None
    
    @pytest.mark.asyncio
    async def test_duplicate_create_conflicts(self, sql_transactions):
        await sql_transactions.create(seeded())
        
        with pytest.raises(ConcurrencyConflictError):
            await sql_transactions.create(seeded())
    
    @pytest.mark.asyncio
    async def test_update_appends_history(self, sql_transactions):
        record = await sql_transactions.create(seeded())
        event = CanonicalWebhookEvent(
            provider=ProviderName.FLOW,
            event_id="flow:1:2",
            transaction_ref="order-1",
            status=TransactionStatus.PAID,
        )
        updated, _ = TransactionReconciler().apply(record, event)
        
        stored = await sql_transactions.update(updated, expected_version=record.version)
        loaded = await sql_transactions.get("order-1")
        
        assert stored.version == 2
        assert loaded.version == 2
        assert loaded.status == TransactionStatus.PAID
        assert [c.status for c in loaded.history] == [TransactionStatus.CREATED, TransactionStatus.PAID]
        assert loaded.history[1].applied is True
    
    @pytest.mark.asyncio
    async def test_stale_version_conflicts(self, sql_transactions):
        record = await sql_transactions.create(seeded())
        await sql_transactions.update(replace(record, status=TransactionStatus.PENDING), expected_version=1)
        
        with pytest.raises(ConcurrencyConflictError):
            await sql_transactions.update(replace(record, status=TransactionStatus.PAID), expected_version=1)
        
        loaded = await sql_transactions.get("order-1")
        assert loaded.status == TransactionStatus.PENDING


class TestSqlIdempotencyStore:
    
    @pytest.mark.asyncio
    async def test_check_and_mark(self, sql_idempotency):
        first = await sql_idempotency.check_and_mark("evt-1")
        second = await sql_idempotency.check_and_mark("evt-1")
        
        assert first.already_processed is False
        assert second.already_processed is True
    
    @pytest.mark.asyncio
    async def test_release(self, sql_idempotency):
        await sql_idempotency.check_and_mark("evt-1")
        await sql_idempotency.release("evt-1")
        
        check = await sql_idempotency.check_and_mark("evt-1")
        
        assert check.already_processed is False


class TestGatewayWithSqlStores:
    
    @pytest.mark.asyncio
    async def test_webhook_persists_transition(self, gateway_config, http_client, sql_transactions, sql_idempotency):
        gateway = PaymentGateway.from_config(
            gateway_config,
            transactions=sql_transactions,
            idempotency=sql_idempotency,
            http_client=http_client,
        )
        body = json_body({
            "id": "evt_1",
            "data": {"paymentLinkId": "pl_1", "status": "PAID", "amount": 10.5, "currency": "USD"},
        })
        
        first = await gateway.handle_webhook("global66", body, global66_headers())
        replay = await gateway.handle_webhook("global66", body, global66_headers())
        
        record = await sql_transactions.get("pl_1")
        assert first.credited_delta == 1050
        assert replay.duplicate is True
        assert record.status == TransactionStatus.PAID
        assert record.version == 1
        assert len(record.history) == 2
