"""API router aggregation."""

from fastapi import APIRouter

from commissionly.api.api_keys import router as api_keys_router
from commissionly.api.commissions import router as commissions_router
from commissionly.api.health import router as health_router
from commissionly.api.plans import router as plans_router
from commissionly.api.sales import router as sales_router

# Main API router (for /api/* endpoints)
api_router = APIRouter(prefix="/api")

api_router.include_router(health_router)
api_router.include_router(plans_router)
api_router.include_router(sales_router)
api_router.include_router(commissions_router)
api_router.include_router(api_keys_router)

__all__ = ["api_router"]
