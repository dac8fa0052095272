"""Error taxonomy for the impact service.

Guard failures are terminal and surface verbatim; only the store-level kinds
re-exported from ``libs.common.errors`` are retried.
"""

from libs.common.errors import ConcurrencyConflict, ServiceError, TransientStoreError


class ImpactError(ServiceError):
    code = "impact_error"
    status_code = 400


class NotFound(ImpactError):
    code = "not_found"
    status_code = 404


class Unauthorized(ImpactError):
    code = "unauthorized"
    status_code = 403


class AlreadyCompleted(ImpactError):
    code = "already_completed"
    status_code = 409


class AlreadyUsed(ImpactError):
    code = "already_used"
    status_code = 409


class Expired(ImpactError):
    code = "expired"
    status_code = 410


class InsufficientPoints(ImpactError):
    code = "insufficient_points"
    status_code = 400

    def __init__(self, required: int, available: int) -> None:
        self.required = required
        self.available = available
        super().__init__(f"Need {required} points but have {available}")


class ValidationError(ImpactError):
    code = "validation_error"
    status_code = 422


__all__ = [
    "ImpactError",
    "NotFound",
    "Unauthorized",
    "AlreadyCompleted",
    "AlreadyUsed",
    "Expired",
    "InsufficientPoints",
    "ValidationError",
    "TransientStoreError",
    "ConcurrencyConflict",
]
