"""Device cart sessions.

A device holds one active cart tagged with the identity it belongs to
("guest" or "user:<id>"). Carts are stored per device and identity, so
logging in swaps the device's guest cart out and the user's cart in; nothing
is merged unless CART_MERGE_ON_LOGIN is set.
"""
import json
import logging
import uuid
from dataclasses import asdict, dataclass, field, replace
from decimal import Decimal
from typing import Callable, Optional, Tuple

import redis.asyncio as aioredis
from redis.exceptions import WatchError
from opentelemetry import trace

from config import CART_MERGE_ON_LOGIN, CART_SESSION_TTL_SECONDS
from errors import NotFoundError
from monitoring import cart_additions_counter, cart_switches_counter

logger = logging.getLogger(__name__)

GUEST_IDENTITY = "guest"


def identity_for(user_id: Optional[str]) -> str:
    return f"user:{user_id}" if user_id else GUEST_IDENTITY


@dataclass(frozen=True)
class CartLine:
    id: str
    product_id: str
    name: str
    price: float
    quantity: int
    image: Optional[str] = None


@dataclass(frozen=True)
class Cart:
    identity: str = GUEST_IDENTITY
    items: Tuple[CartLine, ...] = field(default_factory=tuple)

    @property
    def total(self) -> float:
        return float(sum((Decimal(str(line.price)) * line.quantity for line in self.items), Decimal("0")))

    @property
    def item_count(self) -> int:
        return sum(line.quantity for line in self.items)

    def to_json(self) -> str:
        return json.dumps({"identity": self.identity, "items": [asdict(line) for line in self.items]})

    @classmethod
    def from_json(cls, raw: str, identity: Optional[str] = None) -> "Cart":
        data = json.loads(raw)
        return cls(
            identity=identity or data.get("identity", GUEST_IDENTITY),
            items=tuple(CartLine(**line) for line in data.get("items", [])),
        )


def add_line(cart: Cart, product_id: str, name: str, price: float, quantity: int,
             image: Optional[str] = None) -> Cart:
    """Add a product; an existing line for the same product gets the quantity summed."""
    for line in cart.items:
        if line.product_id == product_id:
            items = tuple(
                replace(item, quantity=item.quantity + quantity) if item.product_id == product_id else item
                for item in cart.items
            )
            return replace(cart, items=items)
    line = CartLine(id=uuid.uuid4().hex, product_id=product_id, name=name,
                    price=price, quantity=quantity, image=image)
    return replace(cart, items=cart.items + (line,))


def remove_line(cart: Cart, line_id: str) -> Cart:
    return replace(cart, items=tuple(item for item in cart.items if item.id != line_id))


def update_quantity(cart: Cart, line_id: str, quantity: int) -> Cart:
    """Set a line's quantity; anything below 1 removes the line."""
    if not any(item.id == line_id for item in cart.items):
        raise NotFoundError("Cart item not found")
    if quantity < 1:
        return remove_line(cart, line_id)
    return replace(cart, items=tuple(
        replace(item, quantity=quantity) if item.id == line_id else item for item in cart.items
    ))


def switch_cart(active: Cart, stored_for_new_key: Optional[Cart]) -> Tuple[Cart, Cart]:
    """
    Swap carts when the device identity changes.

    Args:
        active: Cart currently on the device
        stored_for_new_key: Cart saved under the new identity, if any

    Returns:
        (new active cart, cart to save under the old identity)
    """
    return (stored_for_new_key or Cart()), active


def merge_carts(base: Cart, incoming: Cart) -> Cart:
    """Union of two carts; quantities for the same product are summed."""
    merged = base
    for line in incoming.items:
        merged = add_line(merged, line.product_id, line.name, line.price, line.quantity, line.image)
    return merged


class CartSessionStore:
    """Redis persistence for device carts.

    Stored carts are scoped to the device as well as the identity, the same
    way the app keeps them in on-device storage: a guest cart never leaves
    its device, and a user's cart saved on one device is not visible on
    another. Every read-modify-write runs under WATCH on the device's
    session key and is retried when a concurrent request changed it.
    """

    def __init__(self, redis_client: aioredis.Redis, ttl_seconds: int = CART_SESSION_TTL_SECONDS,
                 merge_on_login: bool = CART_MERGE_ON_LOGIN):
        """
        Initialize cart session store.

        Args:
            redis_client: Async Redis client
            ttl_seconds: Expiry for device and stored carts
            merge_on_login: Union the guest cart into the user's cart on login
        """
        self.redis = redis_client
        self.ttl_seconds = ttl_seconds
        self.merge_on_login = merge_on_login
        self.tracer = trace.get_tracer(__name__)

    @staticmethod
    def _session_key(device_id: str) -> str:
        return f"cart:session:{device_id}"

    @staticmethod
    def _stored_key(device_id: str, identity: str) -> str:
        return f"cart:stored:{device_id}:{identity}"

    async def get(self, device_id: str) -> Cart:
        raw = await self.redis.get(self._session_key(device_id))
        return Cart.from_json(raw) if raw else Cart()

    async def _mutate(self, device_id: str, change: Callable[[Cart], Cart]) -> Cart:
        """Apply ``change`` to the active cart atomically."""
        key = self._session_key(device_id)
        async with self.redis.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(key)
                    raw = await pipe.get(key)
                    cart = change(Cart.from_json(raw) if raw else Cart())
                    pipe.multi()
                    pipe.set(key, cart.to_json(), ex=self.ttl_seconds)
                    await pipe.execute()
                    return cart
                except WatchError:
                    logger.debug("Cart changed concurrently, retrying", extra={"device_id": device_id})
                    continue

    async def add(self, device_id: str, product_id: str, name: str, price: float,
                  quantity: int, image: Optional[str] = None) -> Cart:
        cart = await self._mutate(
            device_id, lambda current: add_line(current, product_id, name, price, quantity, image)
        )
        cart_additions_counter.add(1, {"cart": "device"})
        return cart

    async def update_quantity(self, device_id: str, line_id: str, quantity: int) -> Cart:
        return await self._mutate(device_id, lambda current: update_quantity(current, line_id, quantity))

    async def remove(self, device_id: str, line_id: str) -> Cart:
        return await self._mutate(device_id, lambda current: remove_line(current, line_id))

    async def clear(self, device_id: str) -> Cart:
        return await self._mutate(device_id, lambda current: replace(current, items=()))

    async def switch(self, device_id: str, user_id: Optional[str]) -> Cart:
        """
        Switch the device cart to another identity.

        The active cart is saved under the device's key for its current
        identity and the cart saved under the device's key for the new
        identity becomes active.

        Args:
            device_id: Device identifier
            user_id: Signed-in user, or None for guest

        Returns:
            The new active cart
        """
        new_identity = identity_for(user_id)
        session_key = self._session_key(device_id)
        stored_key = self._stored_key(device_id, new_identity)

        with self.tracer.start_as_current_span("cache.cart_switch") as span:
            span.set_attribute("cache.system", "redis")
            span.set_attribute("cart.to_identity", new_identity)

            async with self.redis.pipeline(transaction=True) as pipe:
                while True:
                    try:
                        await pipe.watch(session_key, stored_key)
                        raw_active = await pipe.get(session_key)
                        active = Cart.from_json(raw_active) if raw_active else Cart()
                        if active.identity == new_identity:
                            await pipe.reset()
                            return active

                        raw_stored = await pipe.get(stored_key)
                        stored = Cart.from_json(raw_stored, identity=new_identity) if raw_stored else None

                        new_active, stored_for_old = switch_cart(active, stored)
                        merged = (
                            self.merge_on_login
                            and active.identity == GUEST_IDENTITY
                            and new_identity != GUEST_IDENTITY
                        )
                        if merged:
                            new_active = merge_carts(new_active, active)
                            stored_for_old = Cart()
                        new_active = replace(new_active, identity=new_identity)

                        pipe.multi()
                        pipe.set(
                            self._stored_key(device_id, active.identity),
                            replace(stored_for_old, identity=active.identity).to_json(),
                            ex=self.ttl_seconds
                        )
                        pipe.set(session_key, new_active.to_json(), ex=self.ttl_seconds)
                        await pipe.execute()
                        break
                    except WatchError:
                        logger.debug("Cart changed during switch, retrying", extra={"device_id": device_id})
                        continue

            span.set_attribute("cart.from_identity", active.identity)

        cart_switches_counter.add(1, {"mode": "merge" if merged else "swap"})
        logger.info("Cart switched", extra={
            "device_id": device_id,
            "from_identity": active.identity,
            "to_identity": new_identity,
            "items": len(new_active.items),
            "merged": merged
        })
        return new_active
