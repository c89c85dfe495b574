"""Unit tests for product import and search endpoints."""

from typing import Any

import pytest
from fastapi.testclient import TestClient

from conftest import FakeLookupClient, InMemoryRefreshStore, make_item
from product_refresh.dependencies import get_import_service, get_search_service
from product_refresh.services.circuit_breaker import CircuitOpenError
from product_refresh.services.product_import import ProductImportService


@pytest.fixture
def products_client(
    app: Any, store: InMemoryRefreshStore, lookup_client: FakeLookupClient
) -> TestClient:
    store.add_marketplace("US")
    service = ProductImportService(store, lambda marketplace: lookup_client)
    app.dependency_overrides[get_import_service] = lambda: service
    app.dependency_overrides[get_search_service] = lambda: service
    return TestClient(app)


def test_import_creates_then_updates(products_client: TestClient) -> None:
    payload = {"asin": " b08n5wrwnw ", "marketplace": "us"}

    created = products_client.post("/api/v1/products/import", json=payload)
    assert created.status_code == 201

    data = created.json()
    assert data["asin"] == "B08N5WRWNW"
    assert data["status"] == "draft"
    assert data["title"] == "Wireless Headphones"
    assert data["correlation_id"] == created.headers["X-Correlation-ID"]

    updated = products_client.post("/api/v1/products/import", json=payload)
    assert updated.status_code == 200
    assert updated.json()["product_id"] == data["product_id"]


@pytest.mark.parametrize(
    "payload",
    [
        {"asin": "B08N5", "marketplace": "US"},
        {"asin": "B08N5WRWN!", "marketplace": "US"},
        {"asin": "B08N5WRWNW", "marketplace": "U1"},
        {"asin": "B08N5WRWNW"},
    ],
)
def test_import_validation(products_client: TestClient, payload: dict) -> None:
    response = products_client.post("/api/v1/products/import", json=payload)
    assert response.status_code == 400

    data = response.json()
    assert data["error"]["code"] == "VALIDATION_ERROR"
    assert data["error"]["details"]["validation_errors"]


def test_import_unknown_marketplace(products_client: TestClient) -> None:
    response = products_client.post(
        "/api/v1/products/import", json={"asin": "B08N5WRWNW", "marketplace": "DE"}
    )
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "MARKETPLACE_NOT_FOUND"


def test_import_blocked_by_open_circuit(
    products_client: TestClient, lookup_client: FakeLookupClient
) -> None:
    lookup_client.responses["B08N5WRWNW"] = [CircuitOpenError("Circuit breaker is OPEN", 120_000)]

    response = products_client.post(
        "/api/v1/products/import", json={"asin": "B08N5WRWNW", "marketplace": "US"}
    )
    assert response.status_code == 503
    assert response.headers["Retry-After"] == "120"
    assert response.json()["error"]["code"] == "CIRCUIT_BREAKER_OPEN"


def test_search(products_client: TestClient, lookup_client: FakeLookupClient) -> None:
    lookup_client.search_results = [make_item("B08N5WRWNW"), make_item("B07XJ8C8F5")]

    response = products_client.post(
        "/api/v1/products/search", json={"query": "  headphones ", "marketplace": "US"}
    )
    assert response.status_code == 200

    data = response.json()
    assert [result["asin"] for result in data["results"]] == ["B08N5WRWNW", "B07XJ8C8F5"]
    assert lookup_client.searches == ["headphones"]


@pytest.mark.parametrize("query", ["a", "x" * 101, "   "])
def test_search_query_length(products_client: TestClient, query: str) -> None:
    response = products_client.post(
        "/api/v1/products/search", json={"query": query, "marketplace": "US"}
    )
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"
