"""Store operations used by the refresh worker and product import.

Every write runs in its own short transaction. A product update and the
matching job update are two separate commits.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Protocol

import structlog
from sqlalchemy import insert, literal_column, select, text, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.engine import Result
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from product_refresh.errors import StoreError
from product_refresh.infrastructure.database.models import (
    Marketplace,
    Product,
    ProductStatus,
    RefreshJob,
    RefreshJobStatus,
)
from shared.constants import REFRESHABLE_STATUSES

logger = structlog.get_logger()

# Columns the refresh worker may write
REFRESH_COLUMNS = frozenset(
    {
        "current_price",
        "original_price",
        "savings_amount",
        "savings_percentage",
        "currency",
        "availability_type",
        "availability_message",
        "customer_review_count",
        "star_rating",
        "raw_paapi_response",
        "status",
        "last_refresh_at",
        "last_available_at",
    }
)

JOB_COLUMNS = frozenset(
    {
        "status",
        "started_at",
        "completed_at",
        "retry_count",
        "error_code",
        "error_message",
        "circuit_breaker_state",
    }
)

# Written on import; status is only set for new rows
IMPORT_COLUMNS = REFRESH_COLUMNS - {"status", "last_available_at"} | {
    "title",
    "brand",
    "manufacturer",
    "images",
    "detail_page_url",
}


@dataclass
class StaleProduct:
    id: uuid.UUID
    asin: str
    marketplace_code: str
    status: str
    last_refresh_at: datetime | None


@dataclass
class MarketplaceRecord:
    id: uuid.UUID
    code: str
    region_name: str
    currency: str
    associate_tag: str


@dataclass
class UpsertResult:
    product_id: uuid.UUID
    asin: str
    title: str | None
    status: str
    updated_at: datetime
    inserted: bool


class RefreshStore(Protocol):
    """Persistence operations the refresh pipeline depends on."""

    async def select_stale_products(
        self, limit: int, stale_before: datetime
    ) -> list[StaleProduct]: ...

    async def create_job(self, product_id: uuid.UUID, scheduled_at: datetime) -> uuid.UUID: ...

    async def update_job(self, job_id: uuid.UUID, **fields: Any) -> None: ...

    async def update_product(self, product_id: uuid.UUID, **fields: Any) -> None: ...

    async def find_marketplace(self, code: str) -> MarketplaceRecord | None: ...

    async def upsert_product(
        self, marketplace_id: uuid.UUID, asin: str, fields: dict[str, Any]
    ) -> UpsertResult: ...


def _check_columns(fields: dict[str, Any], allowed: frozenset[str], table: str) -> None:
    unknown = set(fields) - allowed
    if unknown:
        raise ValueError(f"Cannot write {sorted(unknown)} on {table}")


class SqlRefreshStore:
    """:class:`RefreshStore` backed by PostgreSQL through SQLAlchemy."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def _execute(
        self,
        operation: str,
        statement: Any,
        params: dict[str, Any] | None = None,
        consume: Callable[[Result], Any] | None = None,
    ) -> Any:
        async with self.session_factory() as session:
            try:
                result = await session.execute(statement, params or {})
                rows = consume(result) if consume else None
                await session.commit()
                return rows
            except SQLAlchemyError as e:
                await session.rollback()
                logger.error("Store operation failed", operation=operation, error=str(e))
                raise StoreError(
                    f"Store operation '{operation}' failed",
                    details={"operation": operation},
                ) from e

    async def select_stale_products(
        self, limit: int, stale_before: datetime
    ) -> list[StaleProduct]:
        """Products due for refresh, never-refreshed first then oldest first."""
        query = text("""
            SELECT
                p.id,
                p.asin,
                p.status,
                p.last_refresh_at,
                m.code AS marketplace_code
            FROM products p
            JOIN marketplaces m ON m.id = p.marketplace_id
            WHERE p.status = ANY(:statuses)
              AND (p.last_refresh_at IS NULL OR p.last_refresh_at < :stale_before)
            ORDER BY p.last_refresh_at ASC NULLS FIRST
            LIMIT :limit
        """)
        rows = await self._execute(
            "select_stale_products",
            query,
            {"statuses": REFRESHABLE_STATUSES, "stale_before": stale_before, "limit": limit},
            consume=lambda result: result.fetchall(),
        )
        return [
            StaleProduct(
                id=row.id,
                asin=row.asin,
                marketplace_code=row.marketplace_code,
                status=row.status,
                last_refresh_at=row.last_refresh_at,
            )
            for row in rows
        ]

    async def create_job(self, product_id: uuid.UUID, scheduled_at: datetime) -> uuid.UUID:
        statement = (
            insert(RefreshJob)
            .values(
                product_id=product_id,
                status=RefreshJobStatus.PENDING.value,
                scheduled_at=scheduled_at,
                retry_count=0,
            )
            .returning(RefreshJob.id)
        )
        return await self._execute(
            "create_job", statement, consume=lambda result: result.scalar_one()
        )

    async def update_job(self, job_id: uuid.UUID, **fields: Any) -> None:
        _check_columns(fields, JOB_COLUMNS, "refresh_jobs")
        statement = update(RefreshJob).where(RefreshJob.id == job_id).values(**fields)
        await self._execute("update_job", statement)

    async def update_product(self, product_id: uuid.UUID, **fields: Any) -> None:
        _check_columns(fields, REFRESH_COLUMNS, "products")
        statement = update(Product).where(Product.id == product_id).values(**fields)
        await self._execute("update_product", statement)

    async def find_marketplace(self, code: str) -> MarketplaceRecord | None:
        statement = select(
            Marketplace.id,
            Marketplace.code,
            Marketplace.region_name,
            Marketplace.currency,
            Marketplace.associate_tag,
        ).where(Marketplace.code == code)
        row = await self._execute(
            "find_marketplace", statement, consume=lambda result: result.first()
        )
        if row is None:
            return None
        return MarketplaceRecord(
            id=row.id,
            code=row.code,
            region_name=row.region_name,
            currency=row.currency,
            associate_tag=row.associate_tag,
        )

    async def upsert_product(
        self, marketplace_id: uuid.UUID, asin: str, fields: dict[str, Any]
    ) -> UpsertResult:
        """Insert as draft, or update catalog and price fields keeping the status."""
        _check_columns(fields, IMPORT_COLUMNS, "products")
        statement = pg_insert(Product).values(
            asin=asin,
            marketplace_id=marketplace_id,
            status=ProductStatus.DRAFT.value,
            **fields,
        )
        statement = statement.on_conflict_do_update(
            index_elements=[Product.asin, Product.marketplace_id],
            set_={name: statement.excluded[name] for name in fields} | {"updated_at": text("now()")},
        ).returning(
            Product.id,
            Product.asin,
            Product.title,
            Product.status,
            Product.updated_at,
            literal_column("(xmax = 0)").label("inserted"),
        )
        row = await self._execute(
            "upsert_product", statement, consume=lambda result: result.one()
        )
        return UpsertResult(
            product_id=row.id,
            asin=row.asin,
            title=row.title,
            status=row.status,
            updated_at=row.updated_at,
            inserted=bool(row.inserted),
        )
