"""Failure kinds raised by the trade engine.

Every error carries a human readable ``message`` and a short machine
``reason`` so callers can tell failures apart without parsing text.
``main.py`` maps them to HTTP responses using ``status_code``.
"""


class TradeError(Exception):
    status_code = 400
    kind = "error"

    def __init__(self, message: str, reason: str):
        super().__init__(message)
        self.message = message
        self.reason = reason

    def to_dict(self) -> dict:
        return {"message": self.message, "reason": self.reason, "kind": self.kind}


class NotFoundError(TradeError):
    status_code = 404
    kind = "not_found"


class ForbiddenError(TradeError):
    status_code = 403
    kind = "forbidden"


class InvalidStateError(TradeError):
    status_code = 400
    kind = "invalid_state"


class InvalidOperationError(TradeError):
    status_code = 400
    kind = "invalid_operation"


class ConflictError(TradeError):
    kind = "conflict"

    def __init__(self, message: str, reason: str, status_code: int = 400):
        super().__init__(message, reason)
        self.status_code = status_code


class TradeCancelledError(TradeError):
    """Acceptance failed its re-check; the trade is now cancelled."""

    status_code = 409
    kind = "cancelled"


class InternalError(TradeError):
    status_code = 500
    kind = "internal"
