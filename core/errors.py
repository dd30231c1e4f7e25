# core/errors.py
"""
Domain errors raised by the payment services.

Routes translate these into HTTP responses; services never raise
HTTPException themselves. Reaching a Payment that is no longer pending on a
completion path is not an error at all, it is a successful no-op.
"""


class PaymentError(Exception):
    """Base class for every payment-core error."""

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message or self.__class__.__name__


class ConfigurationError(PaymentError):
    """Merchant credentials or gateway URLs are missing or unusable."""


class ValidationError(PaymentError):
    """Request rejected locally before anything reaches the gateway."""


class InvalidPayerContact(ValidationError):
    pass


class InvalidAmount(ValidationError):
    pass


class SignatureError(PaymentError):
    """Inbound notification failed verification."""


class NotFoundError(PaymentError):
    """Order reference or payment id not recognised."""


class StaleRequestError(PaymentError):
    """Unsigned completion attempted outside the recency window."""
