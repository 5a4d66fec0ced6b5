"""
Shopping cart.

Lines keep a snapshot of the product's name, price, unit and farmer taken
when the product was first added; only stock is re-read from the live
store.  The cart lives in its own storage slot, independent of the
marketplace data, and is rewritten after every change.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Callable, List, Optional, Tuple

from models import Product, Record
from repository import CART_KEY, MarketplaceRepository

logger = logging.getLogger(__name__)

INSUFFICIENT_STOCK = "Insufficient stock available"
INVALID_QUANTITY = "Quantity must be a whole number."


def is_whole_quantity(quantity: object) -> bool:
    return isinstance(quantity, int) and not isinstance(quantity, bool)


@dataclass
class CartLine(Record):
    """A line in the shopping cart."""

    product_id: int
    name: str
    price: float
    quantity: int
    unit: Optional[str] = None
    farmer_id: Optional[int] = None
    farmer_name: Optional[str] = None

    @property
    def line_total(self) -> float:
        return self.price * self.quantity

    @classmethod
    def from_product(cls, product: Product, quantity: int) -> "CartLine":
        return cls(
            product_id=product.id,
            name=product.name,
            price=product.price,
            quantity=quantity,
            unit=product.unit,
            farmer_id=product.farmer_id,
            farmer_name=product.farmer_name,
        )


CartListener = Callable[["ShoppingCart"], None]


class ShoppingCart:
    def __init__(self, repository: MarketplaceRepository) -> None:
        self.repository = repository
        self._lines: List[CartLine] = []
        self._listeners: List[CartListener] = []
        self.load()

    # ---- listeners ----

    def subscribe(self, listener: CartListener) -> None:
        """Register a callback run after every change (e.g. to redraw a cart view)."""
        self._listeners.append(listener)

    def _changed(self) -> None:
        self.save()
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception:
                logger.exception("Cart listener failed")

    # ---- queries ----

    @property
    def lines(self) -> List[CartLine]:
        return [replace(line) for line in self._lines]

    def is_empty(self) -> bool:
        return not self._lines

    def find(self, product_id: int) -> Optional[CartLine]:
        return next((line for line in self._lines if line.product_id == product_id), None)

    def get_total(self) -> float:
        """Sum of price x quantity.  Tax and delivery are added at checkout."""
        return sum(line.line_total for line in self._lines)

    def get_item_count(self) -> int:
        return sum(line.quantity for line in self._lines)

    # ---- mutations ----

    def add_item(self, product_id: int, quantity: int = 1) -> Tuple[bool, str]:
        if not is_whole_quantity(quantity):
            return False, INVALID_QUANTITY
        if quantity <= 0:
            return False, "Quantity must be positive."
        product = self.repository.snapshot().product(product_id)
        existing = self.find(product_id)
        wanted = quantity + (existing.quantity if existing else 0)
        if product is None or product.stock < wanted:
            logger.info(
                "Add to cart rejected",
                extra={"extra": {"product_id": product_id, "requested": wanted}},
            )
            return False, INSUFFICIENT_STOCK
        if existing:
            existing.quantity = wanted
        else:
            self._lines.append(CartLine.from_product(product, quantity))
        self._changed()
        return True, f"{product.name} added to cart"

    def update_quantity(self, product_id: int, quantity: int) -> Tuple[bool, str]:
        if not is_whole_quantity(quantity):
            return False, INVALID_QUANTITY
        line = self.find(product_id)
        if line is None:
            return False, "Item not in cart"
        if quantity <= 0:
            self.remove_item(product_id)
            return True, f"{line.name} removed from cart"
        product = self.repository.snapshot().product(product_id)
        if product is None or product.stock < quantity:
            return False, INSUFFICIENT_STOCK
        line.quantity = quantity
        self._changed()
        return True, f"{line.name} quantity updated"

    def remove_item(self, product_id: int) -> None:
        self._lines = [line for line in self._lines if line.product_id != product_id]
        self._changed()

    def clear(self) -> None:
        self._lines = []
        self._changed()

    # ---- persistence ----

    def save(self) -> None:
        self.repository.write_json(CART_KEY, [line.to_dict() for line in self._lines])

    def load(self) -> None:
        """Restore persisted lines.

        Lines whose product was deleted or no longer has enough stock are
        dropped without notice, as is a cart slot that cannot be read.
        """
        stored = self.repository.read_json(CART_KEY, default=[])
        if not isinstance(stored, list):
            self._lines = []
            return
        data = self.repository.snapshot()
        lines: List[CartLine] = []
        for raw in stored:
            try:
                line = CartLine.from_dict(raw)
            except (TypeError, KeyError, ValueError):
                continue
            product = data.product(line.product_id)
            if not is_whole_quantity(line.quantity) or line.quantity <= 0:
                continue
            if product is not None and product.stock >= line.quantity:
                lines.append(line)
        dropped = len(stored) - len(lines)
        if dropped:
            logger.info("Dropped stale cart lines", extra={"extra": {"dropped": dropped}})
        self._lines = lines
