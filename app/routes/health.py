"""
Health check endpoints.
Used for monitoring, deployment readiness checks, and basic connectivity tests.
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter

from app.config.firebase import get_db
from app.core.errors import DatabaseUnavailableError
from app.core.settings import settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["Health"])


@router.get("")
def health_check():
    """
    Basic health check endpoint.
    Returns 200 if service is running.
    """
    return {
        "status": "healthy",
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/db")
def database_health():
    """
    Database connectivity check.
    Lists top-level collections, which needs a live Firestore connection.
    """
    try:
        collections = list(get_db().collections())
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        raise DatabaseUnavailableError(f"Database connection failed: {str(e)}")

    return {
        "status": "healthy",
        "database": "firestore",
        "connected": True,
        "collections_count": len(collections),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
