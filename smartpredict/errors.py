from __future__ import annotations

"""Error hierarchy shared by the store, cart, checkout, and generation layers.

Every error carries the HTTP status the API layer maps it to.
"""


class SmartPredictError(Exception):
    """Base class for all service errors."""
    status_code = 500

    def __init__(self, message: str, details: str = "") -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class InvalidRequestError(SmartPredictError):
    """Missing or malformed request fields. Never retried."""
    status_code = 400


class ItemNotFoundError(SmartPredictError):
    """A referenced record does not exist."""
    status_code = 404


class StoreError(SmartPredictError):
    """A persistence call failed."""
    status_code = 500


class CartSyncError(SmartPredictError):
    """A cart mutation was rolled back after the remote write failed."""
    status_code = 500


class CheckoutError(SmartPredictError):
    """An order could not be committed."""
    status_code = 500


class GenerationError(SmartPredictError):
    """The generative model failed or returned an unusable reply."""
    status_code = 502
