"""
FastAPI application exposing the cart and checkout engine.

Identity is established upstream; the session layer forwards the
authenticated user id in the X-User-ID header.
"""
import logging
import time
from functools import lru_cache
from typing import List, Optional

from fastapi import Depends, FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from campus_cart.cart_service import CartService
from campus_cart.checkout_service import CheckoutService
from campus_cart.config import Config
from campus_cart.exceptions import CartException, UnauthenticatedError
from campus_cart.middleware import RequestLogMiddleware
from campus_cart.models import (
    AddItemRequest,
    CartResponse,
    CheckoutRequest,
    CheckoutResponse,
    Order,
    UpdateQuantityRequest,
)

logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="Campus Marketplace Cart API",
    description="Per-user shopping cart and checkout for the campus marketplace",
    version="1.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=Config.allowed_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RequestLogMiddleware)


# Service wiring; overridden in tests through app.dependency_overrides
@lru_cache()
def get_cart_service() -> CartService:
    return CartService()


@lru_cache()
def get_checkout_service() -> CheckoutService:
    return CheckoutService()


def get_user_id(
    user_id: Optional[str] = Header(None, alias=Config.USER_HEADER, description="Authenticated user identifier")
) -> str:
    if not user_id or not user_id.strip():
        raise UnauthenticatedError("Missing authenticated user")
    return user_id.strip()


# Health check endpoint for ALB
@app.get("/health")
async def health_check(cart_service: CartService = Depends(get_cart_service)):
    """
    Always returns HTTP 200 if the application is running.
    Reports Redis connectivity without failing on it.
    """
    ping_start = time.time()
    redis_ok = cart_service.store.redis.ping()
    redis_latency_ms = round((time.time() - ping_start) * 1000, 2)

    return {
        "status": "healthy",
        "service": "cart-api",
        "redis": {
            "status": "healthy" if redis_ok else "unhealthy",
            "latency_ms": redis_latency_ms if redis_ok else None
        },
        "timestamp": time.time()
    }


# Cart endpoints
@app.get("/cart", response_model=CartResponse)
def get_cart(
    user_id: str = Depends(get_user_id),
    cart_service: CartService = Depends(get_cart_service)
):
    """Get cart contents; creates an empty cart on first access"""
    return cart_service.get_cart(user_id)


@app.post("/cart/items", response_model=CartResponse)
def add_cart_item(
    request: AddItemRequest,
    user_id: str = Depends(get_user_id),
    cart_service: CartService = Depends(get_cart_service)
):
    """Add a product; repeated adds of one product merge into a single line"""
    return cart_service.add_item(user_id, request.product_id, request.quantity)


@app.put("/cart/items/{item_id}", response_model=CartResponse)
def update_cart_item(
    item_id: str,
    request: UpdateQuantityRequest,
    user_id: str = Depends(get_user_id),
    cart_service: CartService = Depends(get_cart_service)
):
    """Replace a line's quantity; zero or less removes the line"""
    return cart_service.update_quantity(user_id, item_id, request.quantity)


@app.delete("/cart/items/{item_id}", response_model=CartResponse)
def remove_cart_item(
    item_id: str,
    user_id: str = Depends(get_user_id),
    cart_service: CartService = Depends(get_cart_service)
):
    """Remove item from cart (idempotent)"""
    return cart_service.remove_item(user_id, item_id)


@app.delete("/cart", response_model=CartResponse)
def clear_cart(
    user_id: str = Depends(get_user_id),
    cart_service: CartService = Depends(get_cart_service)
):
    """Clear all items; the cart itself is kept"""
    return cart_service.clear_cart(user_id)


@app.post("/cart/checkout", response_model=CheckoutResponse)
def checkout(
    request: CheckoutRequest,
    user_id: str = Depends(get_user_id),
    checkout_service: CheckoutService = Depends(get_checkout_service)
):
    """
    Checkout the cart.
    Records the order first and clears the cart only after that succeeded.
    """
    return checkout_service.checkout(user_id, request.shipping_info, request.payment_method)


# Order endpoints
@app.get("/orders", response_model=List[Order])
def list_orders(
    user_id: str = Depends(get_user_id),
    checkout_service: CheckoutService = Depends(get_checkout_service)
):
    return checkout_service.list_orders(user_id)


@app.get("/orders/{order_id}", response_model=Order)
def get_order(
    order_id: str,
    user_id: str = Depends(get_user_id),
    checkout_service: CheckoutService = Depends(get_checkout_service)
):
    return checkout_service.get_order(user_id, order_id)


# Error handlers
@app.exception_handler(CartException)
async def cart_exception_handler(request: Request, exc: CartException):
    if exc.status_code >= 500:
        logger.error(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    fields = [".".join(str(part) for part in err["loc"] if part != "body") for err in exc.errors()]
    return JSONResponse(
        status_code=400,
        content={
            "error": "VALIDATION_ERROR",
            "message": "; ".join(err["msg"] for err in exc.errors()),
            "retryable": False,
            "fields": fields,
        }
    )


# Generic exception handler for unhandled errors
@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    logger.error(
        f"Unhandled exception: {type(exc).__name__}: {exc}",
        exc_info=True
    )
    return JSONResponse(
        status_code=500,
        content={
            "error": "INTERNAL_ERROR",
            "message": "Internal server error",
            "retryable": False
        }
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=Config.APP_PORT)
