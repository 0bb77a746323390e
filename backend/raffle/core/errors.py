"""
Domain error taxonomy.

Reservation and checkout errors propagate to the HTTP layer, where a single
exception handler renders them. Webhook errors are caught by the reconciler
and only ever show up in logs and metrics.
"""

from typing import Any


class RaffleError(Exception):
    status_code: int = 500
    code: str = "raffle_error"

    def __init__(self, detail: str, **extra: Any):
        super().__init__(detail)
        self.detail = detail
        self.extra = extra

    def to_dict(self) -> dict:
        return {"detail": self.detail, "code": self.code, **self.extra}


class InvalidInput(RaffleError):
    """Malformed request. Fails fast, no side effect."""

    status_code = 400
    code = "invalid_input"


class AlreadyHeld(RaffleError):
    """Some requested numbers belong to a live order."""

    status_code = 400
    code = "already_held"

    def __init__(self, conflicts: list[str]):
        super().__init__(
            f"Numbers already taken: {', '.join(conflicts)}",
            conflicts=conflicts,
        )
        self.conflicts = conflicts


class OrderNotFound(RaffleError):
    status_code = 404
    code = "order_not_found"


class OrderNotHeld(RaffleError):
    """Order expired, was released, or belongs to another buyer."""

    status_code = 409
    code = "order_not_held"


class GatewayUnavailable(RaffleError):
    """Transient provider failure: timeout, transport error, 5xx."""

    status_code = 503
    code = "gateway_unavailable"


class ConflictError(RaffleError):
    """Conditional order update matched nothing."""

    status_code = 409
    code = "conflict"


class StructuralError(RaffleError):
    """Payload or order mismatch that no retry can fix."""

    status_code = 422
    code = "structural_error"


class PaymentNotFound(StructuralError):
    code = "payment_not_found"


class StoreUnavailable(RaffleError):
    status_code = 503
    code = "store_unavailable"
