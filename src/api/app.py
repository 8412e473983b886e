"""FastAPI application for the expense ledger and project budgets."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from src.api.expenses import router as expenses_router
from src.api.projects import router as projects_router
from src.services import init_db
from src.services.config import get_settings
from src.services.errors import LedgerError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables on startup."""
    init_db()
    logger.info("Database tables initialized")
    yield
    logger.info("Application shutting down")


def error_response(error: LedgerError) -> dict:
    """Standardized error body."""
    return {"error": error.to_dict()}


def create_app(with_lifespan: bool = True) -> FastAPI:
    """Build the API application.

    Args:
        with_lifespan: Create tables on startup (tests bind their own database)
    """
    settings = get_settings()
    application = FastAPI(
        title=settings.api_title,
        description="Construction expense ledger and project budget engine",
        version=settings.api_version,
        lifespan=lifespan if with_lifespan else None,
    )

    @application.exception_handler(LedgerError)
    async def ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
        if exc.http_status >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        else:
            logger.warning(f"{request.method} {request.url.path} refused: {exc.code} {exc.message}")
        return JSONResponse(status_code=exc.http_status, content=error_response(exc))

    @application.get("/health")
    async def health_check() -> dict:
        """Health check endpoint for monitoring."""
        return {"status": "ok"}

    application.include_router(expenses_router)
    application.include_router(projects_router)
    return application


app = create_app()


__all__ = ["app", "create_app", "error_response"]
