"""Base error types shared by services.

Services raise subclasses of ``ServiceError``; ``add_exception_handlers``
turns them into JSON responses. Only errors marked ``retryable`` are eligible
for automatic retry by ``libs.common.retry``.
"""

from typing import Optional


class ServiceError(Exception):
    """Base class for typed, caller-visible failures."""

    code: str = "service_error"
    status_code: int = 500
    retryable: bool = False

    def __init__(self, detail: Optional[str] = None) -> None:
        self.detail = detail or self.code
        super().__init__(self.detail)

    def to_dict(self) -> dict:
        return {"error": self.code, "detail": self.detail}


class TransientStoreError(ServiceError):
    """Store unavailable or connection dropped. Safe to retry."""

    code = "transient_store_error"
    status_code = 503
    retryable = True


class ConcurrencyConflict(ServiceError):
    """A compare-and-swap or version check lost a race. Retry the whole operation."""

    code = "concurrency_conflict"
    status_code = 409
    retryable = True
