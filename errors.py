"""
Error types raised by the pricing, checkout and payment services.

Every error carries the HTTP status it maps to; main.py turns any ShopError
into a JSON response with that status.
"""

from typing import Optional


class ShopError(Exception):
    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ValidationError(ShopError):
    status_code = 400


class NotFoundError(ShopError):
    status_code = 404


class AuthorizationError(ShopError):
    status_code = 403


class InsufficientStockError(ShopError):
    status_code = 400


class AlreadyPaidError(ShopError):
    status_code = 400

    def __init__(self, message: str = "Order is already paid"):
        super().__init__(message)


class BaseCurrencyDeletionError(ShopError):
    status_code = 400

    def __init__(self, message: str = "Cannot delete base currency"):
        super().__init__(message)


class PaymentProviderError(ShopError):
    """Failure talking to a payment provider; keeps the provider's status code when it sent one."""
    status_code = 500


class ExchangeRateProviderError(ShopError):
    status_code = 502
