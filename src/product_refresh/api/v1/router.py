"""API v1 router that aggregates all endpoint routers."""

from fastapi import APIRouter

from product_refresh.api.v1 import health, products, refresh

api_router = APIRouter()

# Include all routers
api_router.include_router(
    health.router,
    tags=["Health"],
)

api_router.include_router(
    refresh.router,
    tags=["Refresh"],
)

api_router.include_router(
    products.router,
    prefix="/products",
    tags=["Products"],
)
