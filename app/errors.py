"""Error taxonomy for the marketplace.

Every failure that reaches a caller is a ``MarketError`` carrying a stable
machine-readable ``code``. The message is display text only; clients branch
on the code.

Retry guidance by family:
    validation / precondition  -> fix input or state first
    CONFLICT                   -> re-read and retry
    INTERNAL                   -> retry with backoff
"""


class MarketError(Exception):
    code = "INTERNAL"
    status_code = 500
    default_message = "Internal error"
    retryable = False

    def __init__(self, message: str | None = None, **detail):
        self.message = message or self.default_message
        self.detail = detail
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message}


class ValidationFailed(MarketError):
    code = "VALIDATION_ERROR"
    status_code = 400
    default_message = "Invalid request"


class Unauthorized(MarketError):
    code = "UNAUTHORIZED"
    status_code = 401
    default_message = "Missing or invalid caller identity"


class Forbidden(MarketError):
    code = "FORBIDDEN"
    status_code = 403
    default_message = "Not allowed for this caller"


class NotFound(MarketError):
    code = "NOT_FOUND"
    status_code = 404
    default_message = "Record not found"


class NotAvailable(MarketError):
    code = "NOT_AVAILABLE"
    status_code = 409
    default_message = "Listing is not available for purchase"


class SelfPurchase(MarketError):
    code = "SELF_PURCHASE"
    status_code = 400
    default_message = "You cannot purchase your own listing"


class InsufficientFunds(MarketError):
    code = "INSUFFICIENT_FUNDS"
    status_code = 402
    default_message = "Insufficient EcoCoins balance"


class InvalidState(MarketError):
    code = "INVALID_STATE"
    status_code = 409
    default_message = "Order must be shipped before confirming delivery"


class InvalidTransition(MarketError):
    code = "INVALID_TRANSITION"
    status_code = 409
    default_message = "Illegal order state transition"


class AlreadySettled(MarketError):
    code = "ALREADY_SETTLED"
    status_code = 409
    default_message = "Order already settled"


class MissingTracking(MarketError):
    code = "MISSING_TRACKING"
    status_code = 400
    default_message = "Tracking number is required"


class Conflict(MarketError):
    code = "CONFLICT"
    status_code = 409
    default_message = "Concurrent update detected, please retry"
    retryable = True


class StoreUnavailable(MarketError):
    code = "INTERNAL"
    status_code = 503
    default_message = "Ledger store unavailable, please retry"
    retryable = True
