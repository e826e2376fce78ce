"""
Line-item reconciliation.

Pure functions that take the current list of cart lines plus one requested
operation and return the next list together with its recomputed total. Nothing
here touches storage or the catalog; the caller supplies the product snapshot.

Rules:
- at most one line per product; adding a present product sums quantities and
  refreshes the price snapshot
- a line never holds quantity <= 0; such updates remove the line
- removing an absent line is a no-op
- total = sum(price * quantity), rounded half-up to cents
"""
import uuid
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field

from campus_cart.exceptions import (
    CartItemNotFoundError,
    OutOfStockError,
    ProductNotFoundError,
    ValidationError,
)
from campus_cart.models import CartItem, Product, ZERO

CENT = Decimal("0.01")


def new_item_id() -> str:
    return uuid.uuid4().hex


class AddItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    product_id: str
    quantity: int
    product: Optional[Product] = None
    item_id: str = Field(default_factory=new_item_id)


class UpdateQuantity(BaseModel):
    model_config = ConfigDict(frozen=True)

    item_id: str
    quantity: int


class RemoveItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    item_id: str


class ClearCart(BaseModel):
    model_config = ConfigDict(frozen=True)


class RemoveOrdered(BaseModel):
    """Take the lines captured into an order back out of the cart"""
    model_config = ConfigDict(frozen=True)

    lines: Tuple[CartItem, ...]


Operation = Union[AddItem, UpdateQuantity, RemoveItem, ClearCart, RemoveOrdered]


def to_money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def compute_total(items: Iterable[CartItem]) -> Decimal:
    total = sum((item.price * item.quantity for item in items), ZERO)
    return to_money(total)


def _find_by_product(items: List[CartItem], product_id: str) -> Optional[int]:
    for index, item in enumerate(items):
        if item.product_id == product_id:
            return index
    return None


def _find_by_id(items: List[CartItem], item_id: str) -> Optional[int]:
    for index, item in enumerate(items):
        if item.item_id == item_id:
            return index
    return None


def add_item(items: List[CartItem], op: AddItem) -> List[CartItem]:
    if op.quantity < 1:
        raise ValidationError("Quantity must be at least 1", fields=["quantity"])

    product = op.product
    if product is None or not product.in_stock or product.product_id != op.product_id:
        raise ProductNotFoundError(op.product_id)

    index = _find_by_product(items, op.product_id)
    existing_qty = items[index].quantity if index is not None else 0
    requested = existing_qty + op.quantity
    if product.quantity < requested:
        raise OutOfStockError(op.product_id, requested=requested, available=product.quantity)

    price = to_money(product.price)
    result = list(items)
    if index is not None:
        result[index] = items[index].model_copy(update={"quantity": requested, "price": price})
    else:
        result.append(
            CartItem(
                item_id=op.item_id,
                product_id=op.product_id,
                quantity=op.quantity,
                price=price,
            )
        )
    return result


def update_quantity(items: List[CartItem], op: UpdateQuantity) -> List[CartItem]:
    if op.quantity <= 0:
        # Zero or negative means "remove"; an absent line is already removed
        return remove_item(items, RemoveItem(item_id=op.item_id))
    index = _find_by_id(items, op.item_id)
    if index is None:
        raise CartItemNotFoundError(op.item_id)

    result = list(items)
    result[index] = items[index].model_copy(update={"quantity": op.quantity})
    return result


def remove_item(items: List[CartItem], op: RemoveItem) -> List[CartItem]:
    return [item for item in items if item.item_id != op.item_id]


def remove_ordered(items: List[CartItem], op: RemoveOrdered) -> List[CartItem]:
    ordered = {line.item_id: line for line in op.lines}
    result = []
    for item in items:
        line = ordered.get(item.item_id)
        if line is None:
            result.append(item)
            continue
        # Units merged into the line after the snapshot stay in the cart
        left = item.quantity - line.quantity
        if left > 0:
            result.append(item.model_copy(update={"quantity": left}))
    return result


def reconcile(items: List[CartItem], operation: Operation) -> Tuple[List[CartItem], Decimal]:
    """
    Apply one operation to a list of cart lines.

    Args:
        items: Current lines; never modified
        operation: AddItem, UpdateQuantity, RemoveItem, ClearCart or RemoveOrdered

    Returns:
        Tuple of (new lines, recomputed total)

    Raises:
        ValidationError, ProductNotFoundError, OutOfStockError, CartItemNotFoundError
    """
    if isinstance(operation, AddItem):
        result = add_item(items, operation)
    elif isinstance(operation, UpdateQuantity):
        result = update_quantity(items, operation)
    elif isinstance(operation, RemoveItem):
        result = remove_item(items, operation)
    elif isinstance(operation, ClearCart):
        result = []
    elif isinstance(operation, RemoveOrdered):
        result = remove_ordered(items, operation)
    else:
        raise ValidationError(f"Unsupported cart operation: {type(operation).__name__}")

    return result, compute_total(result)
