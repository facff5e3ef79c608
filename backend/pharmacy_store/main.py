"""
Pharmacy Store Backend
FastAPI application entry point

- Order placement and back-office order lifecycle
- Product administration and stock adjustments
- Stale pending-order sweep scheduler with heartbeat
- Error sanitization middleware
- Health endpoint with DB ping
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from pharmacy_store.api.routes import admin_orders, orders, products
from pharmacy_store.core.config import settings
from pharmacy_store.core.database import AsyncSessionLocal
from pharmacy_store.core.error_handler import ErrorSanitizationMiddleware, store_error_handler
from pharmacy_store.core.exceptions import StoreError
from pharmacy_store.core.logging_config import setup_logging

logger = logging.getLogger(__name__)

# Background task references
_stale_sweep_task: Optional[asyncio.Task] = None
_sweep_heartbeat: dict = {
    "last_run": None,
    "last_success": None,
    "records_processed": 0,
    "errors": 0,
}


# ============== STALE ORDER SWEEP SCHEDULER ==============

async def run_stale_order_sweep():
    """Cancel stale pending orders and update heartbeat metrics."""
    from pharmacy_store.services.stale_orders import cancel_stale_pending_orders

    _sweep_heartbeat["last_run"] = datetime.now(timezone.utc).isoformat()

    try:
        stats = await cancel_stale_pending_orders()
        _sweep_heartbeat["last_success"] = datetime.now(timezone.utc).isoformat()
        _sweep_heartbeat["records_processed"] += stats.get("cancelled", 0)
        _sweep_heartbeat["errors"] += stats.get("errors", 0)
    except Exception as e:
        _sweep_heartbeat["errors"] += 1
        logger.error("Stale order sweep failed: %s", e)


async def stale_order_sweep_scheduler():
    """Run the sweep at the configured interval until cancelled during shutdown."""
    interval_seconds = settings.STALE_ORDER_SWEEP_INTERVAL_MINUTES * 60
    logger.info(
        "Stale order sweep scheduler started (interval: %d minutes, ttl: %dh)",
        settings.STALE_ORDER_SWEEP_INTERVAL_MINUTES, settings.PENDING_ORDER_TTL_HOURS,
    )

    while True:
        await run_stale_order_sweep()
        await asyncio.sleep(interval_seconds)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Configure logging and start background tasks."""
    global _stale_sweep_task

    setup_logging()

    if settings.STALE_ORDER_SWEEP_ENABLED:
        _stale_sweep_task = asyncio.create_task(stale_order_sweep_scheduler())
        logger.info("Stale order sweep scheduler ENABLED")
    else:
        logger.info("Stale order sweep scheduler DISABLED via config")

    yield

    if _stale_sweep_task and not _stale_sweep_task.done():
        _stale_sweep_task.cancel()
        try:
            await _stale_sweep_task
        except asyncio.CancelledError:
            logger.info("Stale order sweep scheduler cancelled")


app = FastAPI(
    lifespan=lifespan,
    title=f"{settings.APP_NAME} API",
    description="""
## Pharmacy storefront API

### Orders
- Customers place orders without an account; prices, shipping and totals are computed server-side
- Stock is reserved when the order is placed and released if it is cancelled
- Order numbers look like `CMD-20261018-00042`

### Back office
Requires a bearer token with the `admin` role. Status changes follow the
order lifecycle; overrides are possible but always recorded.
    """,
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_exception_handler(StoreError, store_error_handler)

# Unhandled exceptions -> sanitized 500
app.add_middleware(ErrorSanitizationMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(orders.router, prefix="/api/orders", tags=["Orders"])
app.include_router(admin_orders.router, prefix="/api/admin/orders", tags=["Admin - Orders"])
app.include_router(products.router, prefix="/api/admin/products", tags=["Admin - Products"])


@app.get("/")
async def root():
    return {"name": settings.APP_NAME, "docs": "/docs"}


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Health check with DB ping and sweep heartbeat.
    Returns 503 if database is unreachable.
    """
    health_status = {
        "status": "healthy",
        "database": "unknown",
        "stale_order_sweep": _sweep_heartbeat,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    try:
        async with AsyncSessionLocal() as db:
            await db.execute(text("SELECT 1"))
        health_status["database"] = "connected"
    except Exception as e:
        health_status["database"] = f"error: {type(e).__name__}"
        health_status["status"] = "unhealthy"
        return JSONResponse(status_code=503, content=health_status)

    return health_status
