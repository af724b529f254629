"""FastAPI server for the listing deduplication service.

Exposes the review queue and the audit trail to reviewers and dashboards.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.routes import health, reviews, audit
from core.observability.logging import configure_from_settings, get_logger
from core.settings import get_settings


logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    configure_from_settings()
    logger.info(f"Deduplication API starting up (database: {get_settings().db_path})")

    yield

    logger.info("Deduplication API shutting down")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Listing Deduplication API",
        description="Review queue and audit trail for vehicle listing deduplication",
        version=health.API_VERSION,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(health.router, tags=["Health"])
    app.include_router(reviews.router, prefix="/reviews", tags=["Reviews"])
    app.include_router(audit.router, prefix="/audit", tags=["Audit"])

    return app


# Default app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("api.server:app", host="0.0.0.0", port=8000, reload=True)
