"""
Checkout service for validating a cart and turning it into an order.
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import List, Optional

from pydantic import EmailStr, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from campus_cart.cart_store import CartStore
from campus_cart.config import Config
from campus_cart.exceptions import (
    ConcurrentModificationError,
    EmptyCartError,
    OrderNotFoundError,
    OrderPersistenceError,
    StorageUnavailable,
    ValidationError,
)
from campus_cart.middleware import hash_identifier
from campus_cart.models import CheckoutResponse, Order, ShippingInfo
from campus_cart.order_store import OrderStore
from campus_cart.reconciler import RemoveOrdered, compute_total, reconcile

logger = logging.getLogger(__name__)

MAX_ORDER_ID_ATTEMPTS = 3

_email_adapter = TypeAdapter(EmailStr)


def mint_order_id() -> str:
    return f"ORD-{uuid.uuid4().hex.upper()}"


class CheckoutService:
    """Service for checkout operations"""

    def __init__(
        self,
        cart_store: Optional[CartStore] = None,
        order_store: Optional[OrderStore] = None,
        persist_timeout: Optional[float] = None
    ):
        self.cart_store = cart_store or CartStore()
        self.order_store = order_store or OrderStore()
        self.persist_timeout = (
            persist_timeout if persist_timeout is not None else Config.ORDER_PERSIST_TIMEOUT_SECONDS
        )

    def _validate(self, shipping_info: Optional[ShippingInfo], payment_method: Optional[str]) -> str:
        """Check shipping and payment input; returns the normalized payment method"""
        missing = []
        if shipping_info is None:
            missing.append("shipping_info")
        else:
            missing.extend(f"shipping_info.{name}" for name in shipping_info.missing_fields())

        method = (payment_method or "").strip().lower()
        if not method:
            missing.append("payment_method")

        if missing:
            raise ValidationError(
                f"Missing required checkout fields: {', '.join(missing)}",
                fields=missing,
            )

        try:
            _email_adapter.validate_python(shipping_info.email.strip())
        except PydanticValidationError:
            raise ValidationError("Invalid email address", fields=["shipping_info.email"])

        if method not in Config.PAYMENT_METHODS:
            raise ValidationError(
                f"Unsupported payment method '{payment_method}'. "
                f"Accepted: {', '.join(Config.PAYMENT_METHODS)}",
                fields=["payment_method"],
            )
        return method

    def _persist(self, order: Order) -> Order:
        """Record the order, re-minting the id on the rare collision"""
        for _ in range(MAX_ORDER_ID_ATTEMPTS):
            try:
                saved = self.order_store.save(order, deadline=self.persist_timeout)
            except StorageUnavailable as e:
                raise OrderPersistenceError(f"Order could not be recorded, cart left unchanged: {e.message}")
            if saved:
                return order
            logger.warning(f"Order id collision on {order.order_id}, minting a new one")
            order = order.model_copy(update={"order_id": mint_order_id()})

        raise OrderPersistenceError("Could not allocate a unique order id, cart left unchanged")

    def checkout(
        self,
        user_id: str,
        shipping_info: Optional[ShippingInfo],
        payment_method: Optional[str]
    ) -> CheckoutResponse:
        """
        Start checkout process:
        1. Load cart; it must have items
        2. Validate shipping info and payment method
        3. Mint order ID
        4. Persist the order snapshot (bounded by persist_timeout)
        5. Remove the ordered lines from the cart

        The cart is only touched after step 4 succeeded.

        Raises:
            EmptyCartError: Cart has no items
            ValidationError: Missing or invalid shipping/payment fields
            OrderPersistenceError: Order not recorded; safe to retry
        """
        cart = self.cart_store.get_or_create(user_id)
        if not cart.items:
            raise EmptyCartError()

        method = self._validate(shipping_info, payment_method)

        order = Order(
            order_id=mint_order_id(),
            user_id=user_id,
            items=list(cart.items),
            total=compute_total(cart.items),
            shipping_info=shipping_info,
            payment_method=method,
            created_at=datetime.now(timezone.utc),
        )

        hashed_user = hash_identifier(user_id)
        logger.info(f"Finalizing cart {hashed_user} at version {cart.version}, total {order.total}")

        order = self._persist(order)
        logger.info(f"Order {order.order_id} recorded for {hashed_user}")

        ordered = RemoveOrdered(lines=tuple(order.items))
        try:
            self.cart_store.mutate(user_id, lambda items: reconcile(items, ordered)[0])
        except (StorageUnavailable, ConcurrentModificationError) as e:
            logger.error(f"Order {order.order_id} recorded but cart {hashed_user} was not cleared: {e}")
            raise StorageUnavailable(
                f"Order {order.order_id} was placed but the cart could not be cleared: {e.message}"
            )

        logger.info(f"Cart {hashed_user} cleared after order {order.order_id}")

        return CheckoutResponse(order_id=order.order_id, total=order.total)

    def get_order(self, user_id: str, order_id: str) -> Order:
        order = self.order_store.get(order_id)
        # Other users' orders are reported as missing
        if order is None or order.user_id != user_id:
            raise OrderNotFoundError(order_id)
        return order

    def list_orders(self, user_id: str) -> List[Order]:
        return self.order_store.list_for_user(user_id)
