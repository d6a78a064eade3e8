"""Typed failures raised by the services and mapped to HTTP by the error handler."""

from typing import Any, Dict


class StoreError(Exception):
    """Base class for expected, caller-visible failures."""

    status_code = 400
    default_message = "Request failed"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"message": self.message}


class NotFound(StoreError):
    status_code = 404
    default_message = "Not found"


class InvalidInput(StoreError):
    status_code = 400
    default_message = "Invalid input"


class InsufficientStock(StoreError):
    """Requested quantity exceeds what the product has in stock."""

    status_code = 400
    default_message = "Not enough stock available"

    def __init__(self, product_id: int, available: int, message: str = None):
        self.product_id = product_id
        self.available = available
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message": self.message,
            "productId": self.product_id,
            "availableStock": self.available,
        }


class EmptyCart(StoreError):
    status_code = 400
    default_message = "Cannot create an order with an empty cart"


class InvalidCredentials(StoreError):
    # Same message for unknown user and wrong password.
    status_code = 401
    default_message = "Invalid credentials"


class DuplicateUsername(StoreError):
    status_code = 409
    default_message = "Username already exists"


class DuplicateEmail(StoreError):
    status_code = 409
    default_message = "Email already exists"


class InvalidOrExpiredToken(StoreError):
    status_code = 400
    default_message = "Invalid or expired reset token"


class Forbidden(StoreError):
    status_code = 403
    default_message = "Access denied"
