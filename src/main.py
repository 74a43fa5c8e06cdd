"""Fee & Invoice Ledger FastAPI application."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from src.core.config import settings
from src.core.exceptions import AppException
from src.core.exceptions.handlers import (
    app_exception_handler,
    http_exception_handler,
    sqlalchemy_db_error_handler,
    validation_exception_handler,
)
from src.core.log_config import configure_logging
from src.modules.debtors.router import router as debtors_router
from src.modules.exports.router import router as exports_router
from src.modules.fees.router import router as fees_router
from src.modules.imports.router import router as imports_router
from src.modules.invoices.router import router as invoices_router
from src.modules.payments.router import router as payments_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("Fee ledger starting (env=%s, currency=%s)", settings.app_env, settings.currency_code)
    yield
    logger.info("Fee ledger stopped")


def create_app() -> FastAPI:
    """Create and configure FastAPI application."""
    configure_logging(settings.log_level)

    app = FastAPI(
        title="Fee & Invoice Ledger",
        description="Fee catalog, invoice generation, payment ledger and debtor reporting",
        version="0.1.0",
        debug=settings.debug,
        lifespan=lifespan,
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Exception handlers
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(SQLAlchemyError, sqlalchemy_db_error_handler)

    @app.get("/health")
    async def health_check():
        return {"status": "healthy"}

    # Routers
    app.include_router(fees_router, prefix="/api/v1")
    app.include_router(invoices_router, prefix="/api/v1")
    app.include_router(payments_router, prefix="/api/v1")
    app.include_router(debtors_router, prefix="/api/v1")
    app.include_router(imports_router, prefix="/api/v1")
    app.include_router(exports_router, prefix="/api/v1")

    return app


app = create_app()
