"""Unit tests for the SQL store against a recording session."""

import uuid
from datetime import timedelta
from decimal import Decimal
from types import SimpleNamespace
from typing import Any

import pytest
from sqlalchemy.dialects import postgresql

from conftest import NOW, RecordingSession, driver_error
from product_refresh.errors import ErrorCode, StoreError
from product_refresh.infrastructure.database.repository import SqlRefreshStore, StaleProduct


def normalized(sql: str) -> str:
    return " ".join(sql.split())


def compiled(statement: Any) -> str:
    return normalized(str(statement.compile(dialect=postgresql.dialect())))


def store_for(session: RecordingSession) -> SqlRefreshStore:
    return SqlRefreshStore(lambda: session)


class TestSelectStaleProducts:
    @pytest.mark.asyncio
    async def test_query_shape(self) -> None:
        session = RecordingSession()
        stale_before = NOW - timedelta(hours=24)

        await store_for(session).select_stale_products(10, stale_before)

        ((statement, params),) = session.statements
        sql = normalized(str(statement))
        assert "WHERE p.status = ANY(:statuses)" in sql
        assert "(p.last_refresh_at IS NULL OR p.last_refresh_at < :stale_before)" in sql
        assert "ORDER BY p.last_refresh_at ASC NULLS FIRST" in sql
        assert sql.endswith("LIMIT :limit")
        assert params == {
            "statuses": ["active", "draft"],
            "stale_before": stale_before,
            "limit": 10,
        }

    @pytest.mark.asyncio
    async def test_rows_mapped_in_order(self) -> None:
        never = SimpleNamespace(
            id=uuid.uuid4(), asin="B0NEVER001", status="draft",
            last_refresh_at=None, marketplace_code="US",
        )
        oldest = SimpleNamespace(
            id=uuid.uuid4(), asin="B0OLDEST01", status="active",
            last_refresh_at=NOW - timedelta(days=3), marketplace_code="DE",
        )
        session = RecordingSession(rows=[never, oldest])

        products = await store_for(session).select_stale_products(2, NOW)

        assert products == [
            StaleProduct(
                id=never.id, asin="B0NEVER001", marketplace_code="US",
                status="draft", last_refresh_at=None,
            ),
            StaleProduct(
                id=oldest.id, asin="B0OLDEST01", marketplace_code="DE",
                status="active", last_refresh_at=NOW - timedelta(days=3),
            ),
        ]
        assert session.committed is True

    @pytest.mark.asyncio
    async def test_driver_error_kept_out_of_details(self) -> None:
        session = RecordingSession(error=driver_error("password authentication failed"))

        with pytest.raises(StoreError) as exc_info:
            await store_for(session).select_stale_products(10, NOW)

        error = exc_info.value
        assert error.code is ErrorCode.DATABASE_ERROR
        assert error.details == {"operation": "select_stale_products"}
        assert "password" not in error.message
        assert session.rolled_back is True


class TestColumnWhitelists:
    @pytest.mark.asyncio
    async def test_update_product_rejects_unknown_column(self) -> None:
        session = RecordingSession()

        with pytest.raises(ValueError, match="asin"):
            await store_for(session).update_product(uuid.uuid4(), asin="B000000000")

        assert session.statements == []

    @pytest.mark.asyncio
    async def test_update_job_rejects_unknown_column(self) -> None:
        session = RecordingSession()

        with pytest.raises(ValueError, match="product_id"):
            await store_for(session).update_job(uuid.uuid4(), product_id=uuid.uuid4())

        assert session.statements == []

    @pytest.mark.asyncio
    async def test_upsert_rejects_status(self) -> None:
        session = RecordingSession()

        with pytest.raises(ValueError, match="status"):
            await store_for(session).upsert_product(uuid.uuid4(), "B08N5WRWNW", {"status": "active"})

        assert session.statements == []

    @pytest.mark.asyncio
    async def test_update_product_writes_refresh_fields(self) -> None:
        session = RecordingSession()

        await store_for(session).update_product(
            uuid.uuid4(), current_price=Decimal("17.99"), last_refresh_at=NOW
        )

        ((statement, _),) = session.statements
        sql = compiled(statement)
        assert sql.startswith("UPDATE products SET")
        assert "current_price=" in sql.replace(" = ", "=")
        assert "last_refresh_at=" in sql.replace(" = ", "=")


class TestUpsertProduct:
    @pytest.mark.asyncio
    async def test_conflict_update_keeps_status(self) -> None:
        product_id = uuid.uuid4()
        session = RecordingSession(
            rows=[
                SimpleNamespace(
                    id=product_id, asin="B08N5WRWNW", title="Wireless Headphones",
                    status="active", updated_at=NOW, inserted=False,
                )
            ]
        )

        result = await store_for(session).upsert_product(
            uuid.uuid4(),
            "B08N5WRWNW",
            {"title": "Wireless Headphones", "current_price": Decimal("17.99")},
        )

        ((statement, _),) = session.statements
        sql = compiled(statement)
        insert_part, _, update_part = sql.partition("ON CONFLICT")
        assert "status" in insert_part
        assert update_part.startswith(" (asin, marketplace_id) DO UPDATE SET")
        assert "title = excluded.title" in update_part
        assert "current_price = excluded.current_price" in update_part
        assert "updated_at = now()" in update_part
        assert "status = excluded.status" not in update_part
        assert "(xmax = 0) AS inserted" in update_part

        assert result.product_id == product_id
        assert result.status == "active"
        assert result.inserted is False
