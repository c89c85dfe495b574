"""Refresh worker trigger endpoint."""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from product_refresh.dependencies import get_refresh_worker
from product_refresh.errors import ErrorCode, correlation_id_from, error_json_response
from product_refresh.services.refresh_worker import RefreshWorker

router = APIRouter()


class RefreshWorkerRequest(BaseModel):
    """Optional overrides for a manually triggered run."""

    batch_size: int | None = Field(None, ge=1, le=100, description="Products to refresh this run")


class RefreshMetricsModel(BaseModel):
    processed: int
    success: int
    failure: int
    skipped: int
    duration_ms: int


class RefreshWorkerResponse(BaseModel):
    """Summary of a completed refresh run."""

    success: bool
    metrics: RefreshMetricsModel
    message: str
    correlation_id: str | None


@router.post("/refresh-worker", response_model=RefreshWorkerResponse)
async def trigger_refresh(
    request: Request,
    body: RefreshWorkerRequest | None = None,
    worker: RefreshWorker = Depends(get_refresh_worker),
) -> RefreshWorkerResponse:
    """
    Run one refresh pass over the stalest products.

    Called hourly by the scheduler. Per-product failures are reported in the
    metrics; only selection or configuration failures return an error.
    """
    if body and body.batch_size:
        worker.batch_size = body.batch_size

    metrics = await worker.run()

    return RefreshWorkerResponse(
        success=True,
        metrics=RefreshMetricsModel(**metrics.to_dict()),
        message=f"Processed {metrics.processed} products",
        correlation_id=correlation_id_from(request),
    )


@router.api_route(
    "/refresh-worker",
    methods=["GET", "PUT", "PATCH", "DELETE", "OPTIONS", "HEAD"],
    include_in_schema=False,
)
async def refresh_method_not_allowed(request: Request) -> JSONResponse:
    return error_json_response(
        ErrorCode.VALIDATION_ERROR,
        f"Method {request.method} not allowed",
        correlation_id=correlation_id_from(request),
        details={"allowed_methods": ["POST"]},
        status_code=405,
        headers={"Allow": "POST"},
    )
