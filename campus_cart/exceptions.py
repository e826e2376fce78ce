"""
Custom exceptions for the cart and checkout service.

Every error carries a stable machine-readable ``code`` so clients can branch
on the kind of failure instead of parsing the message.
"""
from typing import Iterable, Optional


class CartException(Exception):
    """Base exception for cart operations"""
    code: str = "CART_ERROR"
    status_code: int = 500
    retryable: bool = False

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict:
        return {
            "error": self.code,
            "message": self.message,
            "retryable": self.retryable,
        }


class ValidationError(CartException):
    """Raised when input is malformed or a required field is missing"""
    code = "VALIDATION_ERROR"
    status_code = 400

    def __init__(self, message: str, fields: Optional[Iterable[str]] = None):
        self.fields = list(fields or [])
        super().__init__(message)

    def to_dict(self) -> dict:
        data = super().to_dict()
        if self.fields:
            data["fields"] = self.fields
        return data


class UnauthenticatedError(CartException):
    """Raised when the request carries no user identity"""
    code = "UNAUTHENTICATED"
    status_code = 401


class NotFoundError(CartException):
    """Raised when a referenced entity does not exist"""
    code = "NOT_FOUND"
    status_code = 404


class ProductNotFoundError(NotFoundError):
    """Raised when a product does not exist or is inactive"""
    code = "PRODUCT_NOT_FOUND"

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"Product not found: {product_id}")


class CartItemNotFoundError(NotFoundError):
    """Raised when a line item is not in the cart"""
    code = "CART_ITEM_NOT_FOUND"

    def __init__(self, item_id: str):
        self.item_id = item_id
        super().__init__(f"Item not found in cart: {item_id}")


class OrderNotFoundError(NotFoundError):
    code = "ORDER_NOT_FOUND"

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Order not found: {order_id}")


class OutOfStockError(CartException):
    """Raised when the requested quantity exceeds available stock"""
    code = "OUT_OF_STOCK"
    status_code = 409

    def __init__(self, product_id: str, requested: int, available: int):
        self.product_id = product_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient stock for product {product_id}: "
            f"requested {requested}, available {available}"
        )


class EmptyCartError(CartException):
    """Raised when checkout is attempted on a cart with no items"""
    code = "EMPTY_CART"
    status_code = 400

    def __init__(self):
        super().__init__("Cannot checkout empty cart")


class ConcurrentModificationError(CartException):
    """Raised when a cart write loses a version race too many times"""
    code = "CONCURRENT_MODIFICATION"
    status_code = 409
    retryable = True


class StorageUnavailable(CartException):
    """Raised when the backing store cannot complete a read or write"""
    code = "STORAGE_UNAVAILABLE"
    status_code = 503
    retryable = True


class OrderPersistenceError(StorageUnavailable):
    """Raised when an order could not be durably recorded; the cart is untouched"""
    code = "ORDER_PERSISTENCE_FAILED"
