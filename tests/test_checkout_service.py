"""
Tests for the checkout orchestrator: validation, order persistence and the
guarantee that the cart is only cleared after the order is recorded.
"""
import threading
import time
from decimal import Decimal
from unittest.mock import patch

import pytest
from redis.exceptions import TimeoutError as RedisTimeoutError

from campus_cart.atomic_scripts import INSERT_ORDER_SCRIPT
from campus_cart.checkout_service import CheckoutService
from campus_cart.exceptions import (
    EmptyCartError,
    OrderNotFoundError,
    OrderPersistenceError,
    StorageUnavailable,
    ValidationError,
)
from campus_cart.models import ShippingInfo
from tests.conftest import OTHER_USER_ID, TEST_USER_ID


@pytest.fixture
def shipping(valid_shipping):
    return ShippingInfo(**valid_shipping)


@pytest.fixture
def filled_cart(cart_service, add_product):
    """Two lines totaling 75.00"""
    add_product("prod-x", price="10.00", quantity=5)
    add_product("prod-y", price="55.00", quantity=1)
    cart_service.add_item(TEST_USER_ID, "prod-x", 2)
    return cart_service.add_item(TEST_USER_ID, "prod-y", 1)


class TestCheckoutSuccess:

    def test_two_lines_checkout(self, checkout_service, cart_service, filled_cart, shipping):
        result = checkout_service.checkout(TEST_USER_ID, shipping, "card")

        assert result.order_id.startswith("ORD-")
        assert result.total == Decimal("75.00")

        cart = cart_service.get_cart(TEST_USER_ID)
        assert cart.items == []
        assert cart.total_amount == Decimal("0.00")

    def test_order_snapshot_is_persisted(self, checkout_service, filled_cart, shipping):
        result = checkout_service.checkout(TEST_USER_ID, shipping, "Card")

        order = checkout_service.get_order(TEST_USER_ID, result.order_id)

        assert order.total == Decimal("75.00")
        assert order.payment_method == "card"
        assert order.shipping_info.city == "Dhaka"
        assert sorted((i.product_id, i.quantity, i.price) for i in order.items) == [
            ("prod-x", 2, Decimal("10.00")),
            ("prod-y", 1, Decimal("55.00")),
        ]
        assert [o.order_id for o in checkout_service.list_orders(TEST_USER_ID)] == [result.order_id]

    def test_cart_is_reusable_after_checkout(self, checkout_service, cart_service, filled_cart, shipping):
        checkout_service.checkout(TEST_USER_ID, shipping, "cash")

        cart = cart_service.add_item(TEST_USER_ID, "prod-x", 1)

        assert cart.total_amount == Decimal("10.00")

    def test_order_ids_are_unique(self, checkout_service, cart_service, add_product, shipping):
        add_product("prod-x", price="1.00", quantity=100)
        ids = set()
        for _ in range(3):
            cart_service.add_item(TEST_USER_ID, "prod-x", 1)
            ids.add(checkout_service.checkout(TEST_USER_ID, shipping, "card").order_id)
        assert len(ids) == 3

    def test_order_id_collision_mints_a_new_id(self, checkout_service, fake_redis, filled_cart, shipping):
        fake_redis.set("order:ORD-TAKEN", "{}")

        with patch("campus_cart.checkout_service.mint_order_id", side_effect=["ORD-TAKEN", "ORD-FRESH"]):
            result = checkout_service.checkout(TEST_USER_ID, shipping, "card")

        assert result.order_id == "ORD-FRESH"
        assert fake_redis.get("order:ORD-TAKEN") == "{}"
        assert checkout_service.get_order(TEST_USER_ID, "ORD-FRESH").total == Decimal("75.00")


class TestCheckoutRejections:

    def test_empty_cart(self, checkout_service, order_store, shipping):
        with pytest.raises(EmptyCartError):
            checkout_service.checkout(TEST_USER_ID, shipping, "card")
        assert order_store.list_for_user(TEST_USER_ID) == []

    def test_missing_shipping_info(self, checkout_service, cart_service, filled_cart):
        with pytest.raises(ValidationError) as exc:
            checkout_service.checkout(TEST_USER_ID, None, "card")

        assert exc.value.fields == ["shipping_info"]
        assert len(cart_service.get_cart(TEST_USER_ID).items) == 2

    def test_blank_shipping_fields_are_listed(self, checkout_service, filled_cart, valid_shipping):
        valid_shipping.update(city="  ", postal_code=None)

        with pytest.raises(ValidationError) as exc:
            checkout_service.checkout(TEST_USER_ID, ShippingInfo(**valid_shipping), "card")

        assert exc.value.fields == ["shipping_info.city", "shipping_info.postal_code"]

    def test_missing_payment_method(self, checkout_service, filled_cart, shipping):
        with pytest.raises(ValidationError) as exc:
            checkout_service.checkout(TEST_USER_ID, shipping, "")
        assert exc.value.fields == ["payment_method"]

    def test_unsupported_payment_method(self, checkout_service, filled_cart, shipping):
        with pytest.raises(ValidationError):
            checkout_service.checkout(TEST_USER_ID, shipping, "bitcoin")

    def test_invalid_email(self, checkout_service, filled_cart, valid_shipping):
        valid_shipping["email"] = "not-an-email"
        with pytest.raises(ValidationError):
            checkout_service.checkout(TEST_USER_ID, ShippingInfo(**valid_shipping), "card")


class TestCheckoutAtomicity:

    def test_order_persistence_failure_keeps_cart(self, checkout_service, cart_service, order_store, filled_cart, shipping):
        with patch.object(order_store, "save", side_effect=StorageUnavailable("Redis down")):
            with pytest.raises(OrderPersistenceError) as exc:
                checkout_service.checkout(TEST_USER_ID, shipping, "card")

        assert exc.value.retryable is True
        cart = cart_service.get_cart(TEST_USER_ID)
        assert len(cart.items) == 2
        assert cart.total_amount == Decimal("75.00")
        assert cart.version == filled_cart.version
        assert order_store.list_for_user(TEST_USER_ID) == []

    def test_redis_timeout_during_persistence_keeps_cart(self, checkout_service, cart_service, fake_redis, filled_cart, shipping):
        real_eval = fake_redis.eval

        def timeout_on_order_insert(script, num_keys, *args):
            if args and str(args[0]).startswith("order:"):
                raise RedisTimeoutError("socket timed out")
            return real_eval(script, num_keys, *args)

        with patch.object(fake_redis, "eval", side_effect=timeout_on_order_insert), \
                patch("campus_cart.redis_client.time.sleep"):
            with pytest.raises(OrderPersistenceError):
                checkout_service.checkout(TEST_USER_ID, shipping, "card")

        assert len(cart_service.get_cart(TEST_USER_ID).items) == 2

    def test_retry_after_failure_succeeds(self, checkout_service, cart_service, order_store, filled_cart, shipping):
        with patch.object(order_store, "save", side_effect=StorageUnavailable("Redis down")):
            with pytest.raises(OrderPersistenceError):
                checkout_service.checkout(TEST_USER_ID, shipping, "card")

        result = checkout_service.checkout(TEST_USER_ID, shipping, "card")

        assert result.total == Decimal("75.00")
        assert cart_service.get_cart(TEST_USER_ID).items == []
        assert len(order_store.list_for_user(TEST_USER_ID)) == 1

    def test_line_added_during_checkout_survives(self, checkout_service, cart_service, order_store, filled_cart, shipping, add_product):
        """Only the lines captured in the order are removed from the cart"""
        add_product("prod-z", price="4.00", quantity=3)
        real_save = order_store.save

        def save_then_concurrent_add(order, deadline=None):
            saved = real_save(order, deadline=deadline)
            cart_service.add_item(TEST_USER_ID, "prod-z", 1)
            return saved

        with patch.object(order_store, "save", side_effect=save_then_concurrent_add):
            result = checkout_service.checkout(TEST_USER_ID, shipping, "card")

        assert result.total == Decimal("75.00")
        cart = cart_service.get_cart(TEST_USER_ID)
        assert [i.product_id for i in cart.items] == ["prod-z"]
        assert cart.total_amount == Decimal("4.00")


class TestOrderLookup:

    def test_unknown_order(self, checkout_service):
        with pytest.raises(OrderNotFoundError):
            checkout_service.get_order(TEST_USER_ID, "ORD-NOPE")

    def test_other_users_order_is_hidden(self, checkout_service, filled_cart, shipping):
        result = checkout_service.checkout(TEST_USER_ID, shipping, "card")

        with pytest.raises(OrderNotFoundError):
            checkout_service.get_order(OTHER_USER_ID, result.order_id)


class TestCheckoutUnderFaults:

    def test_lost_reply_on_order_insert_records_one_order(self, checkout_service, cart_service, order_store, filled_cart, shipping, lost_reply):
        lost_reply(INSERT_ORDER_SCRIPT)

        result = checkout_service.checkout(TEST_USER_ID, shipping, "card")

        assert [o.order_id for o in order_store.list_for_user(TEST_USER_ID)] == [result.order_id]
        assert cart_service.get_cart(TEST_USER_ID).items == []

    def test_units_merged_during_checkout_stay_in_cart(self, checkout_service, cart_service, order_store, filled_cart, shipping):
        """Order captures 2 of prod-x; 3 more added meanwhile must not vanish"""
        real_save = order_store.save

        def save_then_merge(order, deadline=None):
            saved = real_save(order, deadline=deadline)
            cart_service.add_item(TEST_USER_ID, "prod-x", 3)
            return saved

        with patch.object(order_store, "save", side_effect=save_then_merge):
            result = checkout_service.checkout(TEST_USER_ID, shipping, "card")

        assert result.total == Decimal("75.00")
        cart = cart_service.get_cart(TEST_USER_ID)
        assert [(i.product_id, i.quantity) for i in cart.items] == [("prod-x", 3)]
        assert cart.total_amount == Decimal("30.00")

    def test_slow_order_insert_is_cut_off_at_deadline(self, cart_store, order_store, cart_service, fake_redis, filled_cart, shipping):
        checkout_service = CheckoutService(cart_store=cart_store, order_store=order_store, persist_timeout=0.2)
        real_eval = fake_redis.eval
        release = threading.Event()

        def hang_on_order_insert(script, num_keys, *args):
            if script == INSERT_ORDER_SCRIPT:
                release.wait(5)
                return 0
            return real_eval(script, num_keys, *args)

        started = time.monotonic()
        try:
            with patch.object(fake_redis, "eval", side_effect=hang_on_order_insert):
                with pytest.raises(OrderPersistenceError):
                    checkout_service.checkout(TEST_USER_ID, shipping, "card")
        finally:
            release.set()

        assert time.monotonic() - started < 2
        assert len(cart_service.get_cart(TEST_USER_ID).items) == 2
        assert order_store.list_for_user(TEST_USER_ID) == []

    def test_email_without_domain_dot_is_rejected(self, checkout_service, filled_cart, valid_shipping):
        valid_shipping["email"] = "nadia@campus"

        with pytest.raises(ValidationError) as exc:
            checkout_service.checkout(TEST_USER_ID, ShippingInfo(**valid_shipping), "card")

        assert exc.value.fields == ["shipping_info.email"]
