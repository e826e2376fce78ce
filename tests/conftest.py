"""
Shared fixtures.

Redis is replaced by fakeredis (with Lua support, so the atomic scripts run
for real); every other component is the production implementation.
"""
from unittest.mock import patch

import fakeredis
import pytest
from fastapi.testclient import TestClient
from redis.exceptions import TimeoutError as RedisTimeoutError

from campus_cart.cart_service import CartService
from campus_cart.cart_store import CartStore
from campus_cart.checkout_service import CheckoutService
from campus_cart.config import Config
from campus_cart.main import app, get_cart_service, get_checkout_service
from campus_cart.order_store import OrderStore
from campus_cart.product_lookup import RedisProductLookup
from campus_cart.redis_client import RedisClient

TEST_USER_ID = "student-42"
OTHER_USER_ID = "student-77"


@pytest.fixture
def fake_redis():
    server = fakeredis.FakeServer()
    client = fakeredis.FakeRedis(server=server, decode_responses=True)
    yield client
    client.flushall()


@pytest.fixture
def redis_client(fake_redis):
    return RedisClient(client=fake_redis)


@pytest.fixture
def add_product(fake_redis):
    """Write a product into the catalog projection the cart reads from"""
    def _add(product_id, price="10.00", quantity=5, in_stock=True, name=None):
        fake_redis.hset(
            f"{Config.PRODUCT_KEY_PREFIX}:{product_id}",
            mapping={
                "name": name or f"Product {product_id}",
                "price": str(price),
                "quantity": str(quantity),
                "in_stock": "1" if in_stock else "0",
            },
        )
    return _add


@pytest.fixture
def cart_store(redis_client):
    return CartStore(redis_client)


@pytest.fixture
def order_store(redis_client):
    return OrderStore(redis_client)


@pytest.fixture
def product_lookup(redis_client):
    return RedisProductLookup(redis_client)


@pytest.fixture
def cart_service(cart_store, product_lookup):
    return CartService(cart_store=cart_store, product_lookup=product_lookup)


@pytest.fixture
def checkout_service(cart_store, order_store):
    return CheckoutService(cart_store=cart_store, order_store=order_store, persist_timeout=1.0)


@pytest.fixture
def test_client(cart_service, checkout_service):
    """TestClient with services wired to the fake Redis"""
    app.dependency_overrides[get_cart_service] = lambda: cart_service
    app.dependency_overrides[get_checkout_service] = lambda: checkout_service

    client = TestClient(app)
    yield client

    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    return {Config.USER_HEADER: TEST_USER_ID}


@pytest.fixture
def valid_shipping():
    return {
        "first_name": "Nadia",
        "last_name": "Rahman",
        "address": "12 Hall Road",
        "city": "Dhaka",
        "postal_code": "1000",
        "country": "Bangladesh",
        "email": "nadia@campus.edu",
    }


@pytest.fixture
def lost_reply(fake_redis):
    """
    Make the next run of a given Lua script commit in Redis but fail on the
    way back, as a dropped connection after the server replied would.
    """
    real_eval = fake_redis.eval
    pending = set()

    def _eval(script, num_keys, *args):
        result = real_eval(script, num_keys, *args)
        if script in pending:
            pending.discard(script)
            raise RedisTimeoutError("reply lost")
        return result

    with patch.object(fake_redis, "eval", side_effect=_eval), \
            patch("campus_cart.redis_client.time.sleep"):
        yield pending.add
