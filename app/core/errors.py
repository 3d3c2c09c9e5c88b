"""
Error taxonomy for the stats & livability engine.

Every domain failure carries a stable ``code`` and an HTTP ``status_code``;
app.main turns them into the ``{"error": {code, message, details}}`` envelope.
"""

from typing import Any, Dict, List, Optional


class LivabilityError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code: int = 500
    code: str = "INTERNAL"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_payload(self) -> Dict[str, Any]:
        error: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            error["details"] = self.details
        return {"error": error}


class ValidationError(LivabilityError):
    """Malformed rating/comment input. Nothing has been written."""

    status_code = 400
    code = "VALIDATION_ERROR"

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        self.errors = list(errors or [])
        super().__init__(message, details={"errors": self.errors})


class InvalidCursorError(ValidationError):
    code = "INVALID_CURSOR"


class UnauthenticatedError(LivabilityError):
    status_code = 401
    code = "UNAUTHENTICATED"


class ForbiddenError(LivabilityError):
    status_code = 403
    code = "FORBIDDEN"


class NotFoundError(LivabilityError):
    status_code = 404
    code = "NOT_FOUND"


class CityNotFoundError(NotFoundError):
    code = "CITY_NOT_FOUND"

    def __init__(self, city_id: str):
        super().__init__("City not found", details={"cityId": city_id})
        self.city_id = city_id


class AggregateCorruptionError(LivabilityError):
    """
    city_stats sums went negative. Never clamped: it means an earlier bug
    (double delete, lost update). Repair with the reconciliation pass.
    """

    code = "AGGREGATE_CORRUPTION"

    def __init__(self, city_id: str, key: str, value: float):
        super().__init__(
            f"city_stats sums went negative for {city_id}.{key} ({value})",
            details={"cityId": city_id, "key": key},
        )
        self.city_id = city_id
        self.key = key
        self.value = value


class ConfigurationError(LivabilityError):
    code = "CONFIGURATION_ERROR"


class TransientStoreConflict(LivabilityError):
    """Transaction kept conflicting after the retry budget was spent."""

    status_code = 503
    code = "STORE_CONFLICT"

    def __init__(self, message: str, attempts: int):
        super().__init__(message, details={"attempts": attempts})
        self.attempts = attempts


class DatabaseUnavailableError(LivabilityError):
    status_code = 503
    code = "DATABASE_UNAVAILABLE"
