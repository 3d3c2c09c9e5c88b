"""
Request models for metrics ingestion.

DESIGN PRINCIPLE:
- Models validate shape only; field ownership is enforced by MetricsService
"""

from pydantic import BaseModel, Field
from typing import Any, Dict, Optional

from app.services.metrics_service import MetricsOwner


class MetricsUpsertRequest(BaseModel):
    """
    Owner-scoped metrics patch.

    ``meta`` omitted leaves meta.<owner> alone; ``meta: null`` clears it.
    """
    owner: MetricsOwner = Field(..., description="Pipeline the write is attributed to")
    patch: Dict[str, Any] = Field(default_factory=dict, description="Metrics field values; null clears a field")
    meta: Optional[Dict[str, Any]] = Field(None, description="Provenance for this owner's namespace")

    def to_patch(self) -> Dict[str, Any]:
        patch = dict(self.patch)
        if "meta" in self.model_fields_set:
            patch["meta"] = self.meta
        return patch
