# services/errors.py


class LevPayError(Exception):
    """Base class for errors raised by the proxy services."""


class ValidationError(LevPayError):
    """Caller supplied input the engine cannot act on."""


class StoreError(LevPayError):
    """The promo document could not be loaded or saved."""


class ConflictError(StoreError):
    """The version token presented on save is stale."""


class PaymentBackendError(LevPayError):
    """The upstream payment server could not be reached."""
