"""
Public API routes - no authentication required
"""

import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.api.dependencies import get_read_cache
from app.core.db import get_db
from app.utils.clock import utcnow

logger = logging.getLogger(__name__)

router = APIRouter()

@router.get("/health")
def health_check(request: Request, db: Session = Depends(get_db)):
    """Health check endpoint with store reachability and cache statistics"""
    try:
        db.execute(text("SELECT 1"))
        database = "connected"
    except SQLAlchemyError:
        logger.error("Health check could not reach the database", exc_info=True)
        database = "unavailable"

    cache = get_read_cache(request)
    return {
        "status": "ok" if database == "connected" else "degraded",
        "timestamp": utcnow().isoformat(),
        "database": database,
        "cache": cache.stats() if cache is not None else None
    }
