"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from app.api import accounts, audit, billing, groups, servers
from app.core.errors import register_error_handlers
from app.core.rate_limit import limiter
from app.core.services import Services
from rdpanel.config import get_settings
from rdpanel.observability import get_logger, reset_logging, setup_logging

settings = get_settings()

# Configure logging
reset_logging()
setup_logging(
    level=logging.DEBUG if settings.debug else logging.INFO,
    json_format=settings.log_json,
)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    logger.info(f"Starting {settings.app_name}...")
    settings.log_config_summary()

    services = getattr(app.state, "services", None)
    if services is None:
        services = Services.from_settings(settings)
        app.state.services = services
    services.start()

    yield

    # Shutdown
    logger.info(f"Shutting down {settings.app_name}...")
    await services.stop()


app = FastAPI(
    title=settings.app_name,
    description="Dashboard API for hosted servers: accounts, polling, power actions, groups",
    version=settings.app_version,
    lifespan=lifespan,
)

# Rate Limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Errors
register_error_handlers(app)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routers
app.include_router(accounts.router, prefix="/api")
app.include_router(servers.router, prefix="/api")
app.include_router(billing.router, prefix="/api")
app.include_router(groups.router, prefix="/api")
app.include_router(audit.router, prefix="/api")


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": settings.app_name,
        "version": settings.app_version,
        "docs": "/docs",
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}


def run() -> None:
    """Serve the API with uvicorn."""
    uvicorn.run(
        "app.main:app",
        host=settings.api_host,
        port=settings.api_port,
        log_level="debug" if settings.debug else "info",
    )


if __name__ == "__main__":
    run()
