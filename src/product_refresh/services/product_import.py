"""Product import and keyword search against PA-API."""

import time
from datetime import datetime, timezone
from typing import Any, Callable, Protocol

import structlog

from product_refresh.errors import AppError, ConfigurationError, ErrorCode, NotFoundError
from product_refresh.infrastructure.database.repository import RefreshStore
from product_refresh.infrastructure.paapi.client import PaapiClientError
from product_refresh.infrastructure.paapi.models import ItemAbsent, ItemFound, ItemLookup
from product_refresh.services.pricing import price_snapshot

logger = structlog.get_logger()

# Status overrides for upstream errors surfaced to an interactive caller
_IMPORT_STATUS: dict[ErrorCode, int] = {
    ErrorCode.PAAPI_ITEM_NOT_ACCESSIBLE: 400,
    ErrorCode.PAAPI_INVALID_PARAMETER: 400,
    ErrorCode.PAAPI_THROTTLED: 429,
    ErrorCode.PAAPI_TIMEOUT: 504,
}
THROTTLE_RETRY_AFTER_SECONDS = 60


class CatalogClient(Protocol):
    async def lookup(self, asin: str) -> ItemLookup: ...

    async def search_items(self, keywords: str) -> list[ItemFound]: ...


ClientFactory = Callable[[str], CatalogClient]


def _surface(error: PaapiClientError, elapsed_ms: int) -> AppError:
    code = ErrorCode(error.code_value)
    headers = {}
    if code is ErrorCode.PAAPI_THROTTLED:
        headers["Retry-After"] = str(THROTTLE_RETRY_AFTER_SECONDS)
    return AppError(
        error.message,
        code=code,
        details={"paapi_details": error.details, "duration_ms": elapsed_ms},
        headers=headers,
        status_code=_IMPORT_STATUS.get(code, 502),
    )


def to_search_product(item: ItemFound) -> dict[str, Any]:
    """Simplified search result for storefront admins."""
    images = None
    if item.images:
        images = [
            {"url": image["url"], "width": image["width"], "height": image["height"]}
            for image in item.images
            if image.get("variant") == "Large"
        ] or None

    pricing = None
    if item.price is not None:
        currency = item.currency or "USD"
        pricing = {
            "amount": item.price,
            "currency": currency,
            "display": item.display_price or f"{item.price:.2f} {currency}",
        }

    rating = None
    if item.star_rating is not None:
        rating = {"value": item.star_rating, "count": item.review_count}

    return {
        "asin": item.asin,
        "title": item.title,
        "images": images,
        "pricing": pricing,
        "rating": rating,
        "url": item.detail_page_url,
    }


class ProductImportService:
    """Imports single products and searches the upstream catalog."""

    def __init__(self, store: RefreshStore | None, client_factory: ClientFactory):
        self.store = store
        self.client_factory = client_factory

    async def import_product(self, asin: str, marketplace: str) -> dict[str, Any]:
        """Fetch ``asin`` and upsert it. New products start as drafts.

        Returns the import summary plus ``inserted`` (False for an update).
        """
        if self.store is None:
            raise ConfigurationError(
                "Database configuration error",
                details={"error": "Missing DATABASE_URL"},
            )
        record = await self.store.find_marketplace(marketplace)
        if record is None:
            raise NotFoundError(
                f"Marketplace '{marketplace}' not found",
                code=ErrorCode.MARKETPLACE_NOT_FOUND,
                details={"marketplace": marketplace},
            )

        client = self.client_factory(marketplace)
        started = time.monotonic()
        try:
            result = await client.lookup(asin)
        except PaapiClientError as e:
            raise _surface(e, int((time.monotonic() - started) * 1000)) from e
        finally:
            close = getattr(client, "aclose", None)
            if close is not None:
                await close()

        logger.info(
            "PA-API request completed",
            asin=asin,
            duration_ms=int((time.monotonic() - started) * 1000),
            found=isinstance(result, ItemFound),
        )

        if isinstance(result, ItemAbsent):
            raise AppError(
                f"Product with ASIN {asin} not found or not accessible",
                code=ErrorCode.PAAPI_ITEM_NOT_ACCESSIBLE,
                status_code=400,
            )

        fields = {
            "title": result.title,
            "brand": result.brand,
            "manufacturer": result.manufacturer,
            "images": result.images or None,
            "detail_page_url": result.detail_page_url,
            **price_snapshot(result),
            "last_refresh_at": datetime.now(timezone.utc),
        }
        upserted = await self.store.upsert_product(record.id, asin, fields)

        logger.info(
            "Product upserted",
            asin=asin,
            product_id=str(upserted.product_id),
            status=upserted.status,
            inserted=upserted.inserted,
        )
        return {
            "product_id": str(upserted.product_id),
            "asin": asin,
            "title": upserted.title or "Unknown Title",
            "status": upserted.status,
            "imported_at": upserted.updated_at.isoformat(),
            "inserted": upserted.inserted,
        }

    async def search(self, query: str, marketplace: str) -> list[dict[str, Any]]:
        client = self.client_factory(marketplace)
        started = time.monotonic()
        try:
            items = await client.search_items(query)
        except PaapiClientError as e:
            raise _surface(e, int((time.monotonic() - started) * 1000)) from e
        finally:
            close = getattr(client, "aclose", None)
            if close is not None:
                await close()

        results = [to_search_product(item) for item in items]
        logger.info("Search completed", query=query, result_count=len(results))
        return results
