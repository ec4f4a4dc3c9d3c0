"""
Guest Check-In System - FastAPI Backend
Main application entry point
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import uvicorn

from app.core.config import settings
from app.core.db import engine, Base
from app.api import routes_admin, routes_guest, routes_public
from app.services.cache_service import ReadCache

# Configure logging
logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan management"""
    # Create database tables
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables created")

    app.state.cache = ReadCache(
        default_ttl=settings.CACHE_TTL_SECONDS,
        sweep_interval=settings.CACHE_SWEEP_INTERVAL_SECONDS
    )
    app.state.cache.start()
    yield
    app.state.cache.stop()
    logger.info("Application shutdown")

# Create FastAPI application
app = FastAPI(
    title="Guest Check-In System",
    description="Event guest check-in backend for ushers and admins",
    version="1.0.0",
    lifespan=lifespan
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOW_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(routes_public.router, tags=["public"])
app.include_router(routes_guest.router, prefix="/guests", tags=["guests"])
app.include_router(routes_admin.router, prefix="/admin", tags=["admin"])

# Note: Run this ASGI app directly with Uvicorn or Hypercorn. For Gunicorn,
# use `uvicorn.workers.UvicornWorker` instead of wrapping the app.

if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host="127.0.0.1",
        port=8000,
        reload=True
    )
