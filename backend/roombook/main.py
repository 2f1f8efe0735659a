# backend/roombook/main.py
"""
ASGI entrypoint.

Run with ``uvicorn roombook.main:app``.
"""

from contextlib import asynccontextmanager
import logging
from typing import AsyncGenerator

from fastapi import APIRouter, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .core.config import settings
from .errors import register_error_handlers
from .routes.v1 import (
    admin_bank_transfers as admin_bank_transfers_v1,
    admin_payment_settings as admin_payment_settings_v1,
    audit_logs as audit_logs_v1,
    bookings as bookings_v1,
    health as health_v1,
    payments as payments_v1,
    prometheus as prometheus_v1,
    webhooks as webhooks_v1,
)

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

logger = logging.getLogger(__name__)

API_TITLE = "Roombook API"
API_DESCRIPTION = "Resource reservations with approval, payments and audit trail"
API_VERSION = "1.0.0"


@asynccontextmanager
async def app_lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Handle application startup/shutdown."""
    logger.info(f"{API_TITLE} starting up...")
    logger.info(f"Environment: {settings.environment}")
    if settings.is_production and not settings.encryption_key:
        logger.warning("ENCRYPTION_KEY is not set; gateway secrets cannot be stored")
    yield
    logger.info(f"{API_TITLE} shutting down...")


def create_app() -> FastAPI:
    app = FastAPI(
        title=API_TITLE,
        description=API_DESCRIPTION,
        version=API_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=app_lifespan,
    )
    register_error_handlers(app)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.frontend_url],
        allow_credentials=True,
        allow_methods=["GET", "HEAD", "OPTIONS", "POST", "PUT", "PATCH", "DELETE"],
        allow_headers=["*"],
    )

    api_v1 = APIRouter(prefix="/api/v1")
    api_v1.include_router(bookings_v1.router, prefix="/bookings")
    api_v1.include_router(payments_v1.router, prefix="/payments")
    api_v1.include_router(webhooks_v1.router, prefix="/webhooks")
    api_v1.include_router(admin_bank_transfers_v1.router, prefix="/admin/bank-transfers")
    api_v1.include_router(admin_payment_settings_v1.router, prefix="/admin/payment-settings")
    api_v1.include_router(audit_logs_v1.router, prefix="/admin/audit")
    api_v1.include_router(health_v1.router)
    app.include_router(api_v1)
    app.include_router(prometheus_v1.router, prefix="/metrics")
    return app


app = create_app()
