"""
Domain errors raised by the booking services.

Routes never build error responses for these by hand; one error handler
registered in ``app.create_app`` turns them into JSON with ``status``.
"""


class BookingError(Exception):
    status = 400
    code = "booking_error"

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        out = {"error": self.message, "code": self.code}
        if self.details:
            out["details"] = self.details
        return out


class ValidationError(BookingError):
    """Malformed or out-of-range request; rejected before any transaction."""
    status = 400
    code = "validation_error"


class NotFound(BookingError):
    status = 404
    code = "not_found"


class PolicyViolation(BookingError):
    """Request is well-formed but organization policy forbids it."""
    status = 403
    code = "policy_violation"


class NotCancelable(BookingError):
    status = 409
    code = "not_cancelable"


class SlotUnavailable(BookingError):
    """Another commitment overlaps the requested slots. Re-fetch availability."""
    status = 409
    code = "slot_unavailable"


class PersistenceError(BookingError):
    status = 503
    code = "persistence_error"
