"""
Pydantic models for carts, orders, requests, and responses.
"""
from datetime import datetime
from decimal import Decimal
from typing import Annotated, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, PlainSerializer, field_validator
from pydantic.alias_generators import to_camel

# Money is kept as Decimal internally and written to JSON as a number
Money = Annotated[Decimal, PlainSerializer(lambda v: float(v), return_type=float, when_used="json")]

ZERO = Decimal("0.00")


class Product(BaseModel):
    """Read-only product view supplied by the catalog"""
    product_id: str = Field(..., description="Product identifier")
    name: str = Field("", description="Display name")
    price: Money = Field(..., ge=0, description="Current unit price")
    quantity: int = Field(0, ge=0, description="Units available")
    in_stock: bool = Field(True, description="Active/inactive flag")


class CartItem(BaseModel):
    """Cart line item; price is the snapshot taken when the line was last added to"""
    item_id: str = Field(..., description="Line identifier")
    product_id: str = Field(..., description="Product identifier")
    quantity: int = Field(..., ge=1, description="Item quantity")
    price: Money = Field(..., description="Price at time of add")


class CartItemView(CartItem):
    """Line item as returned to clients, annotated with catalog availability"""
    name: Optional[str] = Field(None, description="Product name, if still in the catalog")
    available: bool = Field(True, description="False when the product is gone or inactive")


class Cart(BaseModel):
    """Per-user cart aggregate as persisted"""
    user_id: str = Field(..., description="Owner")
    items: List[CartItem] = Field(default_factory=list, description="Line items in display order")
    total_amount: Money = Field(ZERO, description="Sum of price x quantity")
    version: int = Field(0, description="Revision used for compare-and-swap")
    updated_at: Optional[datetime] = Field(None, description="Time of the last write")


class CartResponse(BaseModel):
    """Response model for cart retrieval and mutations"""
    user_id: str = Field(..., description="Owner")
    items: List[CartItemView] = Field(default_factory=list, description="Cart items")
    total_items: int = Field(0, description="Total number of units")
    total_amount: Money = Field(ZERO, description="Total cart price")
    version: int = Field(0, description="Cart revision")


class AddItemRequest(BaseModel):
    """Request model for adding an item"""
    product_id: str = Field(..., validation_alias=AliasChoices("product_id", "productId"))
    quantity: int = Field(1, description="Units to add (>=1)")

    @field_validator("product_id")
    @classmethod
    def clean_product_id(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("product_id cannot be empty")
        return v


class UpdateQuantityRequest(BaseModel):
    """Request model for replacing a line quantity; <= 0 removes the line"""
    quantity: int = Field(..., description="New quantity")


class ShippingInfo(BaseModel):
    """Shipping address captured at checkout"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    first_name: Optional[str] = None
    last_name: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None
    email: Optional[str] = None

    def missing_fields(self) -> List[str]:
        """Names of required fields that are absent or blank"""
        return [
            name for name in type(self).model_fields
            if not (getattr(self, name) or "").strip()
        ]


class CheckoutRequest(BaseModel):
    """Request model for checkout; presence is validated by the checkout service"""
    shipping_info: Optional[ShippingInfo] = Field(
        None,
        validation_alias=AliasChoices("shipping_info", "shippingInfo", "shippingAddress"),
    )
    payment_method: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("payment_method", "paymentMethod"),
    )


class CheckoutResponse(BaseModel):
    """Response model for checkout"""
    order_id: str = Field(..., description="Generated order identifier")
    total: Money = Field(..., description="Order total")
    message: str = Field("Order placed successfully. Cart has been cleared.")


class Order(BaseModel):
    """Order snapshot persisted at checkout"""
    order_id: str
    user_id: str
    items: List[CartItem]
    total: Money
    shipping_info: ShippingInfo
    payment_method: str
    status: str = "placed"
    created_at: datetime
