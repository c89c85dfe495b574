"""SQLAlchemy models for the product catalog and refresh tracking."""

import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum as PyEnum
from typing import Any, Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all models."""


# =============================================================================
# Enums
# =============================================================================


class ProductStatus(str, PyEnum):
    """Catalog lifecycle of a product."""

    DRAFT = "draft"
    ACTIVE = "active"
    UNAVAILABLE = "unavailable"


class RefreshJobStatus(str, PyEnum):
    """Refresh job lifecycle. Terminal states are success, failed and skipped."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


# =============================================================================
# Marketplaces
# =============================================================================


class Marketplace(Base):
    """An Amazon storefront (US, DE, ...) and its associate credentials."""

    __tablename__ = "marketplaces"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, server_default=text("gen_random_uuid()")
    )
    code: Mapped[str] = mapped_column(String(3), unique=True, nullable=False)
    region_name: Mapped[str] = mapped_column(String(100), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    paapi_endpoint: Mapped[str] = mapped_column(String(255), nullable=False)
    associate_tag: Mapped[str] = mapped_column(String(100), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    products: Mapped[list["Product"]] = relationship(back_populates="marketplace")

    __table_args__ = (CheckConstraint("code ~ '^[A-Z]{2,3}$'", name="ck_marketplaces_code"),)


# =============================================================================
# Products
# =============================================================================


class Product(Base):
    """A catalog product backed by PA-API data.

    Catalog fields (title, brand, images, ...) are written by imports only.
    The refresh worker touches pricing, availability, reviews, the raw
    response and the refresh timestamps.
    """

    __tablename__ = "products"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, server_default=text("gen_random_uuid()")
    )
    asin: Mapped[str] = mapped_column(String(10), nullable=False)
    marketplace_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("marketplaces.id", ondelete="RESTRICT"), nullable=False
    )

    # Catalog
    title: Mapped[Optional[str]] = mapped_column(Text)
    description: Mapped[Optional[str]] = mapped_column(Text)
    brand: Mapped[Optional[str]] = mapped_column(String(255))
    manufacturer: Mapped[Optional[str]] = mapped_column(String(255))
    images: Mapped[Optional[list[dict[str, Any]]]] = mapped_column(JSONB)
    detail_page_url: Mapped[Optional[str]] = mapped_column(Text)

    # Pricing
    current_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2))
    original_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2))
    savings_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2))
    savings_percentage: Mapped[Optional[Decimal]] = mapped_column(Numeric(5, 2))
    currency: Mapped[Optional[str]] = mapped_column(String(3))

    # Availability and reviews
    availability_type: Mapped[Optional[str]] = mapped_column(String(50))
    availability_message: Mapped[Optional[str]] = mapped_column(Text)
    customer_review_count: Mapped[Optional[int]] = mapped_column(Integer)
    star_rating: Mapped[Optional[Decimal]] = mapped_column(Numeric(2, 1))

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ProductStatus.DRAFT.value,
        server_default=ProductStatus.DRAFT.value,
    )
    last_refresh_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    last_available_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    raw_paapi_response: Mapped[Optional[dict[str, Any]]] = mapped_column(JSONB)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    marketplace: Mapped[Marketplace] = relationship(back_populates="products")
    refresh_jobs: Mapped[list["RefreshJob"]] = relationship(
        back_populates="product", cascade="all, delete-orphan"
    )

    __table_args__ = (
        UniqueConstraint("asin", "marketplace_id", name="uq_products_asin_marketplace"),
        CheckConstraint("asin ~ '^[A-Z0-9]{10}$'", name="ck_products_asin"),
        CheckConstraint(
            "status IN ('draft', 'active', 'unavailable')", name="ck_products_status"
        ),
        Index(
            "idx_products_refresh_queue",
            "last_refresh_at",
            postgresql_where=text("status IN ('active', 'draft')"),
        ),
    )


# =============================================================================
# Refresh Jobs
# =============================================================================


class RefreshJob(Base):
    """One refresh attempt sequence for one product within a worker run."""

    __tablename__ = "refresh_jobs"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, server_default=text("gen_random_uuid()")
    )
    product_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("products.id", ondelete="CASCADE"), nullable=False
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=RefreshJobStatus.PENDING.value,
        server_default=RefreshJobStatus.PENDING.value,
    )
    scheduled_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    error_code: Mapped[Optional[str]] = mapped_column(String(50))
    error_message: Mapped[Optional[str]] = mapped_column(Text)
    circuit_breaker_state: Mapped[Optional[str]] = mapped_column(String(20))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    product: Mapped[Product] = relationship(back_populates="refresh_jobs")

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'running', 'success', 'failed', 'skipped')",
            name="ck_refresh_jobs_status",
        ),
        CheckConstraint("retry_count >= 0", name="ck_refresh_jobs_retry_count"),
        CheckConstraint(
            "circuit_breaker_state IS NULL OR "
            "circuit_breaker_state IN ('closed', 'open', 'half-open')",
            name="ck_refresh_jobs_circuit_state",
        ),
        Index("idx_refresh_jobs_product", "product_id", "created_at"),
        Index("idx_refresh_jobs_status", "status"),
    )
