"""Unit tests for product import and search."""

from decimal import Decimal

import pytest

from conftest import FakeLookupClient, InMemoryRefreshStore, make_item
from product_refresh.errors import AppError, ConfigurationError, ErrorCode, NotFoundError
from product_refresh.infrastructure.paapi.client import PaapiClientError
from product_refresh.infrastructure.paapi.models import ItemAbsent
from product_refresh.services.product_import import ProductImportService, to_search_product

ASIN = "B08N5WRWNW"


@pytest.fixture
def service(store: InMemoryRefreshStore, lookup_client: FakeLookupClient) -> ProductImportService:
    store.add_marketplace("US")
    return ProductImportService(store, lambda marketplace: lookup_client)


class TestImportProduct:
    @pytest.mark.asyncio
    async def test_new_product_is_draft(
        self, service: ProductImportService, store: InMemoryRefreshStore
    ) -> None:
        result = await service.import_product(ASIN, "US")

        assert result["inserted"] is True
        assert result["status"] == "draft"
        assert result["title"] == "Wireless Headphones"
        product = store.products[next(iter(store.products))]
        assert product["brand"] == "Acme"
        assert product["current_price"] == Decimal("17.99")
        assert product["savings_percentage"] == Decimal("28.01")
        assert product["last_refresh_at"] is not None

    @pytest.mark.asyncio
    async def test_reimport_keeps_status(
        self, service: ProductImportService, store: InMemoryRefreshStore,
        lookup_client: FakeLookupClient,
    ) -> None:
        first = await service.import_product(ASIN, "US")
        store.products[next(iter(store.products))]["status"] = "active"
        lookup_client.responses[ASIN] = [make_item(ASIN, price=15.99, title="Wireless Headphones v2")]

        second = await service.import_product(ASIN, "US")

        assert second["inserted"] is False
        assert second["product_id"] == first["product_id"]
        assert second["status"] == "active"
        assert second["title"] == "Wireless Headphones v2"
        assert len(store.products) == 1

    @pytest.mark.asyncio
    async def test_unknown_marketplace(
        self, service: ProductImportService, lookup_client: FakeLookupClient
    ) -> None:
        with pytest.raises(NotFoundError) as exc_info:
            await service.import_product(ASIN, "FR")

        assert exc_info.value.code is ErrorCode.MARKETPLACE_NOT_FOUND
        assert exc_info.value.status_code == 404
        assert lookup_client.lookups == []

    @pytest.mark.asyncio
    async def test_absent_item(
        self, service: ProductImportService, store: InMemoryRefreshStore,
        lookup_client: FakeLookupClient,
    ) -> None:
        lookup_client.responses[ASIN] = [ItemAbsent(ASIN)]

        with pytest.raises(AppError) as exc_info:
            await service.import_product(ASIN, "US")

        assert exc_info.value.status_code == 400
        assert store.products == {}

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("code", "status"),
        [
            (ErrorCode.PAAPI_ITEM_NOT_ACCESSIBLE, 400),
            (ErrorCode.PAAPI_INVALID_PARAMETER, 400),
            (ErrorCode.PAAPI_THROTTLED, 429),
            (ErrorCode.PAAPI_TIMEOUT, 504),
            (ErrorCode.PAAPI_ERROR, 502),
            (ErrorCode.INVALID_API_KEY, 502),
        ],
    )
    async def test_upstream_errors_surface_with_status(
        self, service: ProductImportService, lookup_client: FakeLookupClient,
        code: ErrorCode, status: int,
    ) -> None:
        lookup_client.responses[ASIN] = [PaapiClientError("upstream failed", code=code)]

        with pytest.raises(AppError) as exc_info:
            await service.import_product(ASIN, "US")

        error = exc_info.value
        assert error.code is code
        assert error.status_code == status
        assert "duration_ms" in error.details

    @pytest.mark.asyncio
    async def test_throttled_sets_retry_after(
        self, service: ProductImportService, lookup_client: FakeLookupClient
    ) -> None:
        lookup_client.responses[ASIN] = [
            PaapiClientError("throttled", code=ErrorCode.PAAPI_THROTTLED)
        ]

        with pytest.raises(AppError) as exc_info:
            await service.import_product(ASIN, "US")

        assert exc_info.value.headers == {"Retry-After": "60"}

    @pytest.mark.asyncio
    async def test_client_closed(
        self, service: ProductImportService, lookup_client: FakeLookupClient
    ) -> None:
        await service.import_product(ASIN, "US")

        assert lookup_client.closed is True

    @pytest.mark.asyncio
    async def test_requires_store(self, lookup_client: FakeLookupClient) -> None:
        service = ProductImportService(None, lambda marketplace: lookup_client)

        with pytest.raises(ConfigurationError):
            await service.import_product(ASIN, "US")


class TestSearch:
    @pytest.mark.asyncio
    async def test_search_results_simplified(
        self, service: ProductImportService, lookup_client: FakeLookupClient
    ) -> None:
        lookup_client.search_results = [make_item(ASIN)]

        results = await service.search("headphones", "US")

        assert lookup_client.searches == ["headphones"]
        assert results == [
            {
                "asin": ASIN,
                "title": "Wireless Headphones",
                "images": [
                    {"url": f"https://m.media-amazon.com/{ASIN}.jpg", "width": 500, "height": 500}
                ],
                "pricing": {"amount": 17.99, "currency": "USD", "display": "$17.99"},
                "rating": {"value": 4.5, "count": 1234},
                "url": f"https://www.amazon.com/dp/{ASIN}",
            }
        ]
        assert lookup_client.closed is True

    @pytest.mark.asyncio
    async def test_search_error_surfaces(
        self, service: ProductImportService, lookup_client: FakeLookupClient
    ) -> None:
        lookup_client.search_results = PaapiClientError("slow", code=ErrorCode.PAAPI_TIMEOUT)

        with pytest.raises(AppError) as exc_info:
            await service.search("headphones", "US")

        assert exc_info.value.status_code == 504

    def test_missing_price_and_rating(self) -> None:
        item = make_item(ASIN, price=None, saving_basis=None)
        item.star_rating = None

        product = to_search_product(item)

        assert product["pricing"] is None
        assert product["rating"] is None
