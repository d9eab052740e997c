"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from leadpipe.api.deps import get_compliance_poller
from leadpipe.api.routes import api_router
from leadpipe.logging_config import setup_logging
from leadpipe.settings import settings

# Setup logging
setup_logging()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    # Startup
    poller = get_compliance_poller() if settings.compliance_poll_enabled else None
    if poller is not None:
        poller.start()
    else:
        logger.info("[POLLER] Compliance poller disabled")
    yield
    # Shutdown
    if poller is not None:
        await poller.stop()


# Create FastAPI app
app = FastAPI(
    title="Leadpipe API",
    description="Multi-tenant lead journey aggregation and compliance reconciliation",
    version="0.1.0",
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routes
app.include_router(api_router, prefix=settings.api_v1_prefix)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}
