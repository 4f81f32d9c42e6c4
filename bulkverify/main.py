"""Main application entry point."""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Response
from prometheus_fastapi_instrumentator import Instrumentator

from bulkverify.api.routes import verify
from bulkverify.config import settings
from bulkverify.ingest.keepa_client import keepa_client
from bulkverify.logging_config import setup_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    # Startup
    setup_logging()
    logger.info("Starting Bulk Verify...")
    if not keepa_client.is_configured():
        logger.warning("KEEPA_API_KEY not set; products will be verified without enrichment")

    yield

    # Shutdown
    logger.info("Shutting down...")
    await keepa_client.close()
    logger.info("Shutdown complete")


# Create FastAPI app
app = FastAPI(
    title="Bulk Verify",
    description="Verify spreadsheets of Amazon product candidates against sourcing rules",
    version="0.1.0",
    lifespan=lifespan,
)

# Add Prometheus instrumentation
instrumentator = Instrumentator(
    should_group_status_codes=True,
    should_ignore_untemplated=True,
    should_respect_env_var=True,
    should_instrument_requests_inprogress=True,
    excluded_handlers=["/metrics", "/health", "/favicon.ico"],
    inprogress_name="http_requests_inprogress",
    inprogress_labels=True,
)
instrumentator.instrument(app).expose(app, include_in_schema=True, tags=["monitoring"])

# Include API routes
app.include_router(verify.router)


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "enrichment": "configured" if keepa_client.is_configured() else "disabled",
    }


@app.get("/favicon.ico")
async def favicon():
    """Return empty favicon response to avoid 404 noise."""
    return Response(status_code=204)


def run():
    """Run the API server with uvicorn."""
    uvicorn.run(
        "bulkverify.main:app",
        host=settings.app_host,
        port=settings.app_port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
