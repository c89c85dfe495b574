"""Product import and search endpoints."""

from typing import Any

from fastapi import APIRouter, Depends, Request, Response
from pydantic import BaseModel, Field, field_validator

from product_refresh.dependencies import get_import_service, get_search_service
from product_refresh.errors import correlation_id_from
from product_refresh.services.product_import import ProductImportService
from shared.constants import ASIN_PATTERN

router = APIRouter()


# =============================================================================
# Request/Response Models
# =============================================================================


def _marketplace_code(value: str) -> str:
    code = value.strip().upper()
    if not 2 <= len(code) <= 3 or not code.isalpha():
        raise ValueError("Marketplace code must be 2-3 letters")
    return code


class ImportProductRequest(BaseModel):
    """Request model for importing a product by ASIN."""

    asin: str = Field(..., description="10-character Amazon Standard Identification Number")
    marketplace: str = Field(..., description="Marketplace code, e.g. US or DE")

    @field_validator("asin")
    @classmethod
    def validate_asin(cls, v: str) -> str:
        asin = v.strip().upper()
        if not ASIN_PATTERN.match(asin):
            raise ValueError("ASIN must be exactly 10 alphanumeric characters")
        return asin

    @field_validator("marketplace")
    @classmethod
    def validate_marketplace(cls, v: str) -> str:
        return _marketplace_code(v)


class ImportProductResponse(BaseModel):
    product_id: str
    asin: str
    title: str
    status: str
    imported_at: str
    correlation_id: str | None


class SearchProductsRequest(BaseModel):
    """Request model for keyword search."""

    query: str = Field(..., description="Search keywords (2-100 characters)")
    marketplace: str = Field(..., description="Marketplace code, e.g. US or DE")

    @field_validator("query")
    @classmethod
    def validate_query(cls, v: str) -> str:
        query = v.strip()
        if not 2 <= len(query) <= 100:
            raise ValueError("Search query must be 2-100 characters")
        return query

    @field_validator("marketplace")
    @classmethod
    def validate_marketplace(cls, v: str) -> str:
        return _marketplace_code(v)


class SearchProductsResponse(BaseModel):
    results: list[dict[str, Any]]
    correlation_id: str | None


# =============================================================================
# Endpoints
# =============================================================================


@router.post("/import", response_model=ImportProductResponse)
async def import_product(
    payload: ImportProductRequest,
    request: Request,
    response: Response,
    service: ProductImportService = Depends(get_import_service),
) -> ImportProductResponse:
    """
    Import a product from PA-API into the catalog.

    New products are created as drafts (201). Re-importing refreshes catalog
    and price fields but keeps the product's status (200).
    """
    result = await service.import_product(payload.asin, payload.marketplace)
    response.status_code = 201 if result["inserted"] else 200
    return ImportProductResponse(
        product_id=result["product_id"],
        asin=result["asin"],
        title=result["title"],
        status=result["status"],
        imported_at=result["imported_at"],
        correlation_id=correlation_id_from(request),
    )


@router.post("/search", response_model=SearchProductsResponse)
async def search_products(
    payload: SearchProductsRequest,
    request: Request,
    service: ProductImportService = Depends(get_search_service),
) -> SearchProductsResponse:
    """Search PA-API by keyword and return simplified results."""
    results = await service.search(payload.query, payload.marketplace)
    return SearchProductsResponse(results=results, correlation_id=correlation_id_from(request))
