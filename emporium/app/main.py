#!/usr/bin/env python3
"""
Main FastAPI application for the Emporium storefront and back-office API.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ..data.database import SessionLocal, create_tables
from ..services.idempotency import cleanup_expired_keys
from ..utils.logger import get_logger
from ..utils.timeutils import utcnow
from .config import Config
from .routes import account, admin_catalog, admin_orders, admin_system, cart, orders, storefront, webhooks, wishlist

logger = get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    create_tables()
    if Config.is_development():
        Config.debug_print()
    db = SessionLocal()
    try:
        cleanup_expired_keys(db)
    finally:
        db.close()
    logger.info("Emporium API started (env=%s)", Config.APP_ENV)
    yield


# Initialize FastAPI app
app = FastAPI(
    title="Emporium API",
    description="Storefront and back-office API with Razorpay payments",
    version="1.0.0",
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=Config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

for module in (storefront, cart, orders, webhooks, wishlist, account, admin_catalog, admin_orders, admin_system):
    app.include_router(module.router)


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "timestamp": utcnow().isoformat()}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
