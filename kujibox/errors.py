"""Exception taxonomy shared by the draw, verification, and rate layers."""

from __future__ import annotations

from typing import Optional


class KujiError(Exception):
    """Base class for every error raised by the fair-draw core.

    Attributes
    ----------
    field : Optional[str]
        Name of the request field that failed, when the error is about input.
    status_code : int
        HTTP status used by the API layer when surfacing the error.
    """

    status_code = 500

    def __init__(self, message: str, *, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.field = field


class MissingParameter(KujiError, ValueError):
    """A required field was absent or empty."""

    status_code = 400

    def __init__(self, field: str, message: Optional[str] = None) -> None:
        super().__init__(message or f"Missing required parameter: {field}", field=field)


class InvalidParameter(KujiError, ValueError):
    """A field was present but malformed (bad id, negative rate, non-numeric nonce)."""

    status_code = 400

    def __init__(self, field: str, message: str) -> None:
        super().__init__(message, field=field)


class PoolUnavailable(InvalidParameter):
    """The product is not open for draws (inactive or archived)."""

    def __init__(self, product_id: int, status: str) -> None:
        super().__init__(
            "productId", f"Product {product_id} is not available for draws (status={status})"
        )


class NotFound(KujiError, LookupError):
    status_code = 404


class InsufficientInventory(KujiError):
    """The draw asks for more tickets than the pool has left."""

    status_code = 409

    def __init__(self, product_id: int, requested: int, remaining: int) -> None:
        super().__init__(
            f"Product {product_id} has {remaining} tickets remaining, {requested} requested"
        )
        self.product_id = product_id
        self.requested = requested
        self.remaining = remaining


class DrawConflict(KujiError):
    """A concurrent draw claimed the same ticket first; the draw did not occur."""

    status_code = 409


class ConsistencyViolation(KujiError):
    """Counters diverged from the draw ledger, or the ledger was mutated."""

    status_code = 500

    def __init__(self, message: str, findings: Optional[list[str]] = None) -> None:
        super().__init__(message)
        self.findings = list(findings or [])


class StorageFailure(KujiError):
    """The underlying store was unavailable; the operation must be treated as not performed."""

    status_code = 503


__all__ = [
    "KujiError",
    "MissingParameter",
    "InvalidParameter",
    "PoolUnavailable",
    "NotFound",
    "InsufficientInventory",
    "DrawConflict",
    "ConsistencyViolation",
    "StorageFailure",
]
