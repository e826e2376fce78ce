"""
Durable per-user cart storage in Redis.

Layout: one hash per user at ``{CART_KEY_PREFIX}:{user_id}`` with fields
``items`` (JSON array), ``total_amount``, ``version``, ``updated_at`` and
``write_token`` (identifies the last write so a replayed write is recognised).
Every write goes through a compare-and-swap on ``version`` so two requests
that read the same snapshot cannot both commit.
"""
import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Callable, List, Optional

from campus_cart.atomic_scripts import AtomicScripts
from campus_cart.config import Config
from campus_cart.exceptions import ConcurrentModificationError, StorageUnavailable
from campus_cart.middleware import hash_identifier
from campus_cart.models import Cart, CartItem
from campus_cart.reconciler import compute_total
from campus_cart.redis_client import RedisClient, get_redis_client

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def dump_items(items: List[CartItem]) -> str:
    return json.dumps([
        {
            "item_id": item.item_id,
            "product_id": item.product_id,
            "quantity": item.quantity,
            "price": str(item.price),
        }
        for item in items
    ])


class CartStore:
    """Key-value mapping user id -> Cart with versioned writes"""

    def __init__(self, redis_client: Optional[RedisClient] = None, max_retries: Optional[int] = None):
        self.redis = redis_client or get_redis_client()
        self.scripts = AtomicScripts(self.redis)
        self.max_retries = max_retries if max_retries is not None else Config.CART_CAS_MAX_RETRIES

    def _get_cart_key(self, user_id: str) -> str:
        """Generate Redis key for cart"""
        return f"{Config.CART_KEY_PREFIX}:{user_id}"

    def _parse(self, user_id: str, data: dict) -> Cart:
        try:
            raw_items = json.loads(data.get("items") or "[]")
            updated_at = data.get("updated_at")
            return Cart(
                user_id=user_id,
                items=[CartItem(**raw) for raw in raw_items],
                total_amount=data.get("total_amount") or "0.00",
                version=int(data.get("version") or 0),
                updated_at=datetime.fromisoformat(updated_at) if updated_at else None,
            )
        except (ValueError, TypeError) as e:
            raise StorageUnavailable(f"Stored cart for {hash_identifier(user_id)} is unreadable: {e}")

    def get_or_create(self, user_id: str) -> Cart:
        """Return the user's cart, creating an empty one atomically if absent"""
        data = self.scripts.create_cart(
            cart_key=self._get_cart_key(user_id),
            empty_items="[]",
            updated_at=_now().isoformat(),
        )
        return self._parse(user_id, data)

    def replace(self, user_id: str, cart: Cart, expected_version: int) -> Cart:
        """
        Overwrite the stored cart if nobody else wrote since ``expected_version``.

        The total is recomputed from the items; whatever total the caller put
        on ``cart`` is ignored.

        Raises:
            ConcurrentModificationError: If the stored version moved on
        """
        total = compute_total(cart.items)
        updated_at = _now()
        written, version = self.scripts.compare_and_set_cart(
            cart_key=self._get_cart_key(user_id),
            expected_version=expected_version,
            items=dump_items(cart.items),
            total_amount=str(total),
            updated_at=updated_at.isoformat(),
            write_token=uuid.uuid4().hex,
        )
        if not written:
            raise ConcurrentModificationError(
                f"Cart was modified concurrently (expected version {expected_version}, found {version})"
            )

        return Cart(
            user_id=user_id,
            items=list(cart.items),
            total_amount=total,
            version=version,
            updated_at=updated_at,
        )

    def mutate(self, user_id: str, fn: Callable[[List[CartItem]], List[CartItem]]) -> Cart:
        """
        Read-modify-write the cart, retrying the whole cycle on version conflict.

        ``fn`` receives the freshly read items and returns the new items. Any
        exception it raises aborts the mutation with nothing written.
        """
        for attempt in range(self.max_retries):
            current = self.get_or_create(user_id)
            new_items = fn(list(current.items))
            try:
                return self.replace(
                    user_id,
                    current.model_copy(update={"items": new_items}),
                    expected_version=current.version,
                )
            except ConcurrentModificationError:
                logger.info(
                    f"Cart version conflict for {hash_identifier(user_id)}, "
                    f"retrying ({attempt + 1}/{self.max_retries})"
                )

        raise ConcurrentModificationError(
            f"Cart update did not settle after {self.max_retries} attempts"
        )
