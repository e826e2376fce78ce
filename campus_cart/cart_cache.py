"""
Client-side cart cache.

``CartCache`` mirrors the authoritative server cart for a UI. It is an
explicit object created per identity session; it never computes totals or
patches items locally. Every successful mutation replaces the cached cart with
the one the server returned.

Usage:

    cache = CartCache(CartApiClient("https://shop.example.edu"))
    cache.set_identity(user_id)        # fetches GET /cart
    cache.add_item(product_id, 2)      # POST, cache := response
    cache.checkout(shipping, "card")   # POST, then refetch
    cache.set_identity(None)           # logout: cleared, no request
"""
import logging
import threading
from typing import Any, Callable, Dict, List, Optional

import requests

from campus_cart.config import Config
from campus_cart.models import CartResponse, CheckoutResponse, ShippingInfo

logger = logging.getLogger(__name__)


class CartApiError(Exception):
    """Error reported by the cart API, carrying its machine-readable code"""

    def __init__(self, code: str, message: str, status_code: int, retryable: bool = False):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.retryable = retryable
        super().__init__(f"{code}: {message}")


class OperationInFlightError(Exception):
    """Raised when a mutation is started while another one is pending"""


class CartApiClient:
    """Thin HTTP client for the cart API"""

    def __init__(self, base_url: str = "", session=None, timeout: float = 5.0):
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout

    def _request(self, method: str, path: str, user_id: str, json: Optional[dict] = None) -> Dict[str, Any]:
        try:
            resp = self.session.request(
                method,
                f"{self.base_url}{path}",
                json=json,
                headers={Config.USER_HEADER: user_id},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise CartApiError("NETWORK_ERROR", str(e), status_code=0, retryable=True)

        try:
            body = resp.json()
        except ValueError:
            body = {}

        if resp.status_code >= 400:
            raise CartApiError(
                body.get("error", "HTTP_ERROR"),
                body.get("message", f"Request failed with status {resp.status_code}"),
                status_code=resp.status_code,
                retryable=bool(body.get("retryable", resp.status_code >= 500)),
            )
        return body

    def get_cart(self, user_id: str) -> CartResponse:
        return CartResponse.model_validate(self._request("GET", "/cart", user_id))

    def add_item(self, user_id: str, product_id: str, quantity: int = 1) -> CartResponse:
        body = self._request("POST", "/cart/items", user_id, json={"product_id": product_id, "quantity": quantity})
        return CartResponse.model_validate(body)

    def update_quantity(self, user_id: str, item_id: str, quantity: int) -> CartResponse:
        body = self._request("PUT", f"/cart/items/{item_id}", user_id, json={"quantity": quantity})
        return CartResponse.model_validate(body)

    def remove_item(self, user_id: str, item_id: str) -> CartResponse:
        return CartResponse.model_validate(self._request("DELETE", f"/cart/items/{item_id}", user_id))

    def clear_cart(self, user_id: str) -> CartResponse:
        return CartResponse.model_validate(self._request("DELETE", "/cart", user_id))

    def checkout(self, user_id: str, shipping_info: ShippingInfo, payment_method: str) -> CheckoutResponse:
        body = self._request(
            "POST",
            "/cart/checkout",
            user_id,
            json={
                "shipping_info": shipping_info.model_dump(),
                "payment_method": payment_method,
            },
        )
        return CheckoutResponse.model_validate(body)


class CartCache:
    """UI-facing mirror of one user's cart"""

    def __init__(self, api: CartApiClient):
        self.api = api
        self.user_id: Optional[str] = None
        self.cart: Optional[CartResponse] = None
        self.error: Optional[CartApiError] = None
        self._in_flight = False
        self._lock = threading.Lock()
        self._listeners: List[Callable[["CartCache"], None]] = []

    @property
    def in_flight(self) -> bool:
        """True while a request is pending; UIs disable cart controls on it"""
        return self._in_flight

    def subscribe(self, listener: Callable[["CartCache"], None]) -> Callable[[], None]:
        """Register a change listener; returns a function that unregisters it"""
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def _notify(self):
        for listener in list(self._listeners):
            listener(self)

    def _begin(self):
        with self._lock:
            if self._in_flight:
                raise OperationInFlightError("Another cart operation is still pending")
            self._in_flight = True
        self.error = None
        self._notify()

    def _end(self):
        self._in_flight = False
        self._notify()

    def _run(self, call: Callable[[], Any]) -> Any:
        if self.user_id is None:
            raise CartApiError("UNAUTHENTICATED", "No user is signed in", status_code=401)

        self._begin()
        user_id = self.user_id
        try:
            result = call()
        except CartApiError as e:
            self.error = e
            logger.warning(f"Cart request failed: {e}")
            raise
        finally:
            self._end()

        # Drop responses that arrive after the identity changed
        if self.user_id == user_id and isinstance(result, CartResponse):
            self.cart = result
            self._notify()
        return result

    def set_identity(self, user_id: Optional[str]) -> None:
        """Bind the cache to a user; a change discards the cache and refetches"""
        if user_id == self.user_id and (user_id is None or self.cart is not None):
            return

        self.user_id = user_id
        self.cart = None
        self.error = None
        self._notify()

        if user_id is None:
            return
        self.refresh()

    def refresh(self) -> Optional[CartResponse]:
        """Refetch the authoritative cart"""
        return self._run(lambda: self.api.get_cart(self.user_id))

    def add_item(self, product_id: str, quantity: int = 1) -> CartResponse:
        return self._run(lambda: self.api.add_item(self.user_id, product_id, quantity))

    def update_quantity(self, item_id: str, quantity: int) -> CartResponse:
        return self._run(lambda: self.api.update_quantity(self.user_id, item_id, quantity))

    def remove_item(self, item_id: str) -> CartResponse:
        return self._run(lambda: self.api.remove_item(self.user_id, item_id))

    def clear(self) -> CartResponse:
        return self._run(lambda: self.api.clear_cart(self.user_id))

    def checkout(self, shipping_info: ShippingInfo, payment_method: str) -> CheckoutResponse:
        """
        Place the order, then replace the cache with the server's cart.

        The order is placed once the checkout call succeeds; a failed refetch
        afterwards is left in ``error`` and the order result is still returned.
        """
        result = self._run(lambda: self.api.checkout(self.user_id, shipping_info, payment_method))
        try:
            self.refresh()
        except CartApiError as e:
            logger.warning(f"Order {result.order_id} placed but cart refetch failed: {e}")
            # The cached lines were ordered; drop them until a refresh succeeds
            self.cart = None
            self._notify()
        return result
