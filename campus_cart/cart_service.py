"""
Cart service for managing shopping cart operations.
"""
import logging
from typing import Optional

from campus_cart.cart_store import CartStore
from campus_cart.middleware import hash_identifier
from campus_cart.models import Cart, CartItemView, CartResponse
from campus_cart.product_lookup import ProductLookup, RedisProductLookup
from campus_cart.reconciler import (
    AddItem,
    ClearCart,
    Operation,
    RemoveItem,
    UpdateQuantity,
    reconcile,
)

logger = logging.getLogger(__name__)


class CartService:
    """Service for cart operations"""

    def __init__(
        self,
        cart_store: Optional[CartStore] = None,
        product_lookup: Optional[ProductLookup] = None
    ):
        self.store = cart_store or CartStore()
        self.products = product_lookup or RedisProductLookup()

    def to_response(self, cart: Cart) -> CartResponse:
        """Build the client view, flagging lines whose product is gone or inactive"""
        catalog = self.products.get_products(item.product_id for item in cart.items)

        views = []
        for item in cart.items:
            product = catalog.get(item.product_id)
            views.append(
                CartItemView(
                    **item.model_dump(),
                    name=product.name if product else None,
                    available=bool(product and product.in_stock),
                )
            )

        return CartResponse(
            user_id=cart.user_id,
            items=views,
            total_items=sum(item.quantity for item in cart.items),
            total_amount=cart.total_amount,
            version=cart.version,
        )

    def _apply(self, user_id: str, operation: Operation) -> Cart:
        def _mutation(items):
            new_items, _ = reconcile(items, operation)
            return new_items
        return self.store.mutate(user_id, _mutation)

    def get_cart(self, user_id: str) -> CartResponse:
        """Get cart contents; an empty cart is created on first access"""
        return self.to_response(self.store.get_or_create(user_id))

    def add_item(self, user_id: str, product_id: str, quantity: int = 1) -> CartResponse:
        """
        Add a product, merging into an existing line for the same product.

        The product is looked up once; stock is checked against the quantity
        already in the freshly read cart on every write attempt.

        Raises:
            ValidationError: quantity < 1
            ProductNotFoundError: product missing or inactive
            OutOfStockError: existing + requested quantity exceeds stock
        """
        product = self.products.get_product(product_id)
        operation = AddItem(product_id=product_id, quantity=quantity, product=product)

        cart = self._apply(user_id, operation)

        logger.info(
            f"Added product {product_id} x{quantity} to cart {hash_identifier(user_id)}, "
            f"total {cart.total_amount}"
        )
        return self.to_response(cart)

    def update_quantity(self, user_id: str, item_id: str, quantity: int) -> CartResponse:
        """
        Replace a line's quantity; <= 0 removes the line.

        Raises:
            CartItemNotFoundError: No such line and quantity > 0
        """
        cart = self._apply(user_id, UpdateQuantity(item_id=item_id, quantity=quantity))
        logger.info(f"Updated item {item_id} to x{quantity} in cart {hash_identifier(user_id)}")
        return self.to_response(cart)

    def remove_item(self, user_id: str, item_id: str) -> CartResponse:
        """Remove a line; removing an absent line is a no-op"""
        cart = self._apply(user_id, RemoveItem(item_id=item_id))
        logger.info(f"Removed item {item_id} from cart {hash_identifier(user_id)}")
        return self.to_response(cart)

    def clear_cart(self, user_id: str) -> CartResponse:
        """Clear all items from cart"""
        cart = self._apply(user_id, ClearCart())
        logger.info(f"Cleared cart {hash_identifier(user_id)}")
        return self.to_response(cart)
