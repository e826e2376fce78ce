"""
Durable order snapshots in Redis.

Orders live at ``{ORDER_KEY_PREFIX}:{order_id}`` as JSON documents; each
user's order ids are appended to ``{ORDER_KEY_PREFIX}s:{user_id}`` in
placement order. Both writes happen in one Lua script.
"""
import json
import logging
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from campus_cart.atomic_scripts import AtomicScripts
from campus_cart.config import Config
from campus_cart.exceptions import StorageUnavailable
from campus_cart.models import Order
from campus_cart.redis_client import RedisClient, get_redis_client

logger = logging.getLogger(__name__)


def _json_default(value):
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


class OrderStore:
    """Persistence for checkout results"""

    def __init__(self, redis_client: Optional[RedisClient] = None):
        self.redis = redis_client or get_redis_client()
        self.scripts = AtomicScripts(self.redis)

    def _get_order_key(self, order_id: str) -> str:
        return f"{Config.ORDER_KEY_PREFIX}:{order_id}"

    def _get_user_orders_key(self, user_id: str) -> str:
        return f"{Config.ORDER_KEY_PREFIX}s:{user_id}"

    def save(self, order: Order, deadline: Optional[float] = None) -> bool:
        """
        Insert an order exactly once.

        Returns:
            False if an order with the same id already exists (nothing written)

        Raises:
            StorageUnavailable: If Redis could not complete the write in time
        """
        payload = json.dumps(order.model_dump(), default=_json_default)
        return self.scripts.insert_order(
            order_key=self._get_order_key(order.order_id),
            user_orders_key=self._get_user_orders_key(order.user_id),
            order_json=payload,
            order_id=order.order_id,
            deadline=deadline,
        )

    def get(self, order_id: str) -> Optional[Order]:
        raw = self.redis.get(self._get_order_key(order_id))
        if raw is None:
            return None
        try:
            return Order.model_validate_json(raw)
        except ValueError as e:
            raise StorageUnavailable(f"Stored order {order_id} is unreadable: {e}")

    def list_for_user(self, user_id: str) -> List[Order]:
        orders = []
        for order_id in self.redis.lrange(self._get_user_orders_key(user_id), 0, -1):
            order = self.get(order_id)
            if order is None:
                logger.warning(f"Order index references missing order {order_id}")
                continue
            orders.append(order)
        return orders
