"""
City Livability API - FastAPI Application Entry Point

Crowd-sourced city reviews aggregated per city and blended with objective
metrics into a livability score.

DESIGN PRINCIPLES:
- One review per user per city, keyed by a salted deterministic id
- Aggregates change only inside the transaction that changes a review
- Scores are recomputed from fresh inputs, never patched
- Missing data stays missing; it is never counted as zero
"""

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config.firebase import initialize_firestore
from app.core.errors import AggregateCorruptionError, ConfigurationError, LivabilityError
from app.core.settings import settings
from app.routes import admin, cities, health, me
from app.utils.security import require_review_salt

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


# Initialize FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="City reviews, per-city aggregates and livability scores",
    debug=settings.DEBUG,
)


@app.exception_handler(LivabilityError)
async def livability_error_handler(request: Request, exc: LivabilityError):
    """Render domain errors as {"error": {code, message, details}}."""
    if isinstance(exc, (AggregateCorruptionError, ConfigurationError)):
        logger.error(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
    else:
        logger.info(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Malformed query/header/body shapes use the same envelope as domain validation."""
    errors = [
        f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg')}"
        for err in exc.errors()
    ]
    logger.info(f"VALIDATION_ERROR on {request.method} {request.url.path}: {errors}")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": {"code": "VALIDATION_ERROR", "message": "Invalid request", "details": {"errors": errors}}},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Catch all unhandled exceptions and log them with full traceback."""
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": {"code": "INTERNAL", "message": "Internal server error"}},
    )


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Application lifecycle events
@app.on_event("startup")
async def startup_event():
    """
    Fail fast on missing configuration, then connect to Firestore.
    """
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    require_review_salt()

    try:
        initialize_firestore()
    except Exception as e:
        logger.warning(f"Firestore initialization failed: {e}")
        logger.warning("The app will start but database operations may fail.")


@app.on_event("shutdown")
async def shutdown_event():
    logger.info(f"Shutting down {settings.APP_NAME}")


# Include routers
app.include_router(health.router)
app.include_router(cities.router)
app.include_router(me.router)
app.include_router(admin.router)


# Root endpoint
@app.get("/")
def root():
    """
    Root endpoint - API information.
    """
    return {
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "running",
        "docs": "/docs",
        "health": "/health",
        "cities": "/cities",
    }
