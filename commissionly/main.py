"""
Commissionly - Sales Commission Engine

Main FastAPI application with:
- Commission plans with scoped, priority-ranked rules
- Immediate commission calculation of recorded sales, with a rule trace
- Approval and payout workflow with adjustments
- Bearer token and API key authentication
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from commissionly import __version__
from commissionly.api import api_router
from commissionly.config import settings
from commissionly.scheduler import scheduler, setup_scheduler
from commissionly.services.errors import CommissionEngineError

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup:
    - Starts the missing-commission sweep when the scheduler is enabled

    Shutdown:
    - Stops the scheduler
    """
    logger.info("Starting Commissionly...")

    if settings.scheduler_enabled:
        setup_scheduler()
        scheduler.start()
        logger.info("Scheduler started")

    logger.info("Commissionly started successfully!")

    yield

    # Shutdown
    logger.info("Shutting down Commissionly...")
    if scheduler.running:
        scheduler.shutdown(wait=False)


# Create FastAPI application
app = FastAPI(
    title="Commissionly",
    description="Sales Commission Engine",
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs" if not settings.is_production else None,
    redoc_url="/redoc" if not settings.is_production else None,
)


@app.exception_handler(CommissionEngineError)
async def commission_error_handler(request: Request, exc: CommissionEngineError):
    """Render domain errors as {"error", "category", "detail", ...}."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path}: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} -> {exc.status_code} {exc.code}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# Include routers
app.include_router(api_router)  # /api/* endpoints


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "commissionly.main:app",
        host="0.0.0.0",
        port=8000,
        reload=not settings.is_production,
    )
