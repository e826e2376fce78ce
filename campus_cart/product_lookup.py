"""
Product lookup: the cart engine's read-only view of the catalog.

The catalog service owns products; it projects price, stock, and the active
flag into Redis hashes at ``{PRODUCT_KEY_PREFIX}:{product_id}``:

    name      display name
    price     decimal string, e.g. "10.00"
    quantity  units available
    in_stock  "1"/"true" when the product is active
"""
import logging
from abc import ABC, abstractmethod
from typing import Dict, Iterable, Optional

from campus_cart.config import Config
from campus_cart.models import Product
from campus_cart.redis_client import RedisClient, get_redis_client

logger = logging.getLogger(__name__)

_TRUE_VALUES = ("1", "true", "yes")


class ProductLookup(ABC):
    """Source of truth for product price, availability and active status"""

    @abstractmethod
    def get_product(self, product_id: str) -> Optional[Product]:
        """Return the product, or None if it does not exist"""

    def get_products(self, product_ids: Iterable[str]) -> Dict[str, Optional[Product]]:
        return {product_id: self.get_product(product_id) for product_id in set(product_ids)}


class RedisProductLookup(ProductLookup):
    """Reads the catalog projection kept in Redis"""

    def __init__(self, redis_client: Optional[RedisClient] = None):
        self.redis = redis_client or get_redis_client()

    def _get_product_key(self, product_id: str) -> str:
        return f"{Config.PRODUCT_KEY_PREFIX}:{product_id}"

    def get_product(self, product_id: str) -> Optional[Product]:
        data = self.redis.hgetall(self._get_product_key(product_id))
        if not data:
            return None

        try:
            return Product(
                product_id=product_id,
                name=data.get("name", ""),
                price=data["price"],
                quantity=int(data.get("quantity") or 0),
                in_stock=str(data.get("in_stock", "1")).strip().lower() in _TRUE_VALUES,
            )
        except (KeyError, ValueError) as e:
            # A broken catalog record makes the product unavailable, not the cart
            logger.warning(f"Ignoring malformed product record {product_id}: {e}")
            return None
