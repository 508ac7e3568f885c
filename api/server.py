"""FastAPI server for document ingestion.

Main entry point for the API server.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from activities.ingest import IngestServices, get_ingest_services
from api.deps import ingestion_error_handler
from api.routes import health, imports
from core import __version__
from core.errors import IngestionError
from core.observability.logging import configure_logging, get_logger


logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    # Startup
    configure_logging()
    if getattr(app.state, "services", None) is None:
        app.state.services = get_ingest_services()
    logger.info("Document ingestion API starting up...")

    yield

    # Shutdown
    logger.info("Document ingestion API shutting down...")


def create_app(services: Optional[IngestServices] = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        services: Classifier/resolver/committer to use; built from settings
            at startup when omitted
    """
    app = FastAPI(
        title="Document Ingestion API",
        description="Classify business documents, match vendors and materials, and import them",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )
    app.state.services = services

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(IngestionError, ingestion_error_handler)

    # Include routers
    app.include_router(health.router, tags=["Health"])
    app.include_router(imports.router, prefix="/imports", tags=["Imports"])

    return app


# Default app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("api.server:app", host="0.0.0.0", port=8000, reload=True)
