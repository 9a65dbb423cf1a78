"""
FastAPI application entry point.

This module initializes the FastAPI application, configures middleware,
and registers the API routers.
"""
import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api.dependencies import shutdown_import_service
from .api.routers import imports
from .core.config import settings
from .core.logging_config import configure_logging

# Ensure logging is configured before the application starts serving requests.
configure_logging(settings.log_level)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle - startup and shutdown events."""
    if os.getenv("SKIP_DB_INIT") == "1":
        logger.info("SKIP_DB_INIT=1 detected; skipping database bootstrap during startup")
    else:
        from .db.models import create_tables

        try:
            logger.info("Initializing database tables...")
            create_tables()
            logger.info("All database tables initialized successfully")
        except Exception:
            logger.exception("Failed to initialize database tables; the application cannot start")
            raise

    yield  # Application runs here

    # Let running import batches finish before the process exits
    shutdown_import_service()


app = FastAPI(
    title="Appointment Import API",
    version="1.0.0",
    description="Bulk import of historical salon appointments from CSV, JSON and Excel files",
    lifespan=lifespan,
)

# Allow origins from environment variable or defaults for development
allowed_origins = os.getenv("ALLOWED_ORIGINS", "http://localhost:5173,http://localhost:3000").split(",")
allowed_origins = [origin.strip() for origin in allowed_origins]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(imports.router)


@app.get("/")
async def root():
    """Root endpoint returning API information."""
    return {
        "message": "Appointment Import API",
        "version": "1.0.0"
    }


@app.get("/health")
async def health_check():
    return {
        "status": "healthy",
        "timestamp": datetime.now().isoformat(),
        "service": "appointment-import-api"
    }
