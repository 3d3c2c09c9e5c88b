"""
Admin endpoints - maintenance control layer for aggregates and metrics.

SCOPE OF ADMIN:
- Ingest objective metrics on behalf of a named pipeline (owner)
- Rebuild a city's aggregate from its reviews (reconciliation)
- Re-score livability after metrics change

NOT in scope:
- Editing or deleting user reviews
- Writing count/sums directly; they only ever come from reviews

When ADMIN_TOKEN is configured every request must carry it in X-Admin-Token.
"""

import hmac
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header

from app.core.errors import CityNotFoundError, ForbiddenError
from app.core.settings import settings
from app.models.metrics import MetricsUpsertRequest
from app.services.city_service import get_city_service, normalize_city_id
from app.services.city_stats_service import get_city_stats_service
from app.services.metrics_service import get_metrics_service

logger = logging.getLogger(__name__)


def require_admin(admin_token: Optional[str] = Header(None, alias="X-Admin-Token")) -> None:
    expected = settings.ADMIN_TOKEN
    if not expected:
        return
    if not admin_token or not hmac.compare_digest(admin_token, expected):
        raise ForbiddenError("Admin token required")


router = APIRouter(prefix="/admin", tags=["Admin"], dependencies=[Depends(require_admin)])


def _existing_city_id(slug: str) -> str:
    city_id = normalize_city_id(slug)
    if get_city_service().get_city(city_id) is None:
        raise CityNotFoundError(city_id)
    return city_id


@router.put("/cities/{slug}/metrics")
def upsert_city_metrics(slug: str, request: MetricsUpsertRequest):
    """
    Write an owner-scoped metrics patch, then re-score the city.

    Fields the owner does not hold are dropped and reported back.
    """
    city_id = _existing_city_id(slug)
    summary = get_metrics_service().upsert_metrics(city_id, request.to_patch(), request.owner)
    livability = get_city_stats_service().recompute_livability(city_id)

    logger.info(f"[ADMIN] metrics upsert for {city_id} by {request.owner.value}")
    return {
        **summary,
        "metrics": get_metrics_service().get_metrics(city_id),
        "livability": livability,
    }


@router.post("/cities/{slug}/recompute")
def recompute_city_stats(slug: str):
    """Rebuild count and sums from every review of the city."""
    city_id = _existing_city_id(slug)
    logger.info(f"[ADMIN] reconciliation requested for {city_id}")
    return get_city_stats_service().recompute_from_reviews(city_id)


@router.post("/cities/{slug}/livability")
def recompute_city_livability(slug: str):
    city_id = _existing_city_id(slug)
    return {"cityId": city_id, "livability": get_city_stats_service().recompute_livability(city_id)}
