"""
Checkout workflow.

A checkout moves through ``IDLE -> SUMMARY_SHOWN -> CONFIRMED | CANCELLED``.
``begin`` validates the cart and the delivery address and produces a
:class:`PurchaseSummary`; nothing is written until ``confirm``, which
re-checks stock and creates the order inside a single repository
transaction.  Stock and the order therefore land together or not at all.

The e-mail and chat share link for a new order are queued on the outbound
queue after the commit; their failure never undoes the order.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import date, timedelta
from enum import Enum
from typing import TYPE_CHECKING, List, Optional, Tuple

from auth import Session
from cart import INSUFFICIENT_STOCK, INVALID_QUANTITY, CartLine, ShoppingCart, is_whole_quantity
from config import Settings
from metrics import CHECKOUT_DURATION_SECONDS, CHECKOUT_ERROR_TOTAL, ORDERS_CREATED_TOTAL
from models import MarketplaceData, Order, OrderItem, OrderSummary
from repository import ConcurrentModificationError, MarketplaceRepository, Rollback

if TYPE_CHECKING:
    from auth import AuthManager
    from inventory import InventoryMonitor
    from outbox import OrderNotifier

logger = logging.getLogger(__name__)

CART_EMPTY = "Your cart is empty"
ADDRESS_REQUIRED = "Please add your address in profile before checkout"
ORDER_CONFLICT = "The catalogue changed while your order was being placed. Please try again."
CART_CHANGED = "Your cart changed since the summary was shown. Please review your order."


class CheckoutState(Enum):
    IDLE = "idle"
    SUMMARY_SHOWN = "summary_shown"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class CheckoutStateError(RuntimeError):
    """An operation was requested in a state that does not allow it."""


def compute_summary(subtotal: float, settings: Settings) -> OrderSummary:
    """Freeze the money fields of an order, each rounded to the cent."""
    subtotal = round(subtotal, 2)
    tax = round(subtotal * settings.tax_rate, 2)
    fee = round(settings.delivery_fee, 2)
    return OrderSummary(subtotal=subtotal, tax=tax, delivery_fee=fee, total=round(subtotal + tax + fee, 2))


@dataclass
class PurchaseSummary:
    """What the customer is shown before confirming."""

    lines: List[CartLine]
    subtotal: float
    tax: float
    delivery_fee: float
    total: float
    delivery_address: str
    delivery_phone: Optional[str]
    delivery_date: str

    @property
    def order_summary(self) -> OrderSummary:
        return OrderSummary(self.subtotal, self.tax, self.delivery_fee, self.total)


def _cart_key(lines: List[CartLine]) -> List[Tuple[int, int]]:
    return sorted((line.product_id, line.quantity) for line in lines)


def _check_stock(data: MarketplaceData, lines: List[CartLine]) -> Optional[str]:
    """Return the shortfall message for the first line the store cannot cover."""
    for line in lines:
        product = data.product(line.product_id)
        if product is None or product.stock < line.quantity:
            return f"Insufficient stock for {line.name}"
    return None


class CheckoutWorkflow:
    def __init__(
        self,
        repository: MarketplaceRepository,
        cart: ShoppingCart,
        settings: Optional[Settings] = None,
        monitor: Optional["InventoryMonitor"] = None,
        notifier: Optional["OrderNotifier"] = None,
        auth: Optional["AuthManager"] = None,
    ) -> None:
        self.repository = repository
        self.cart = cart
        self.settings = settings or Settings()
        self.monitor = monitor
        self.notifier = notifier
        self.auth = auth
        self.state = CheckoutState.IDLE
        self.summary: Optional[PurchaseSummary] = None
        self.order: Optional[Order] = None
        self._session: Optional[Session] = None

    # ---- transitions ----

    def begin(self, session: Session) -> Tuple[bool, str]:
        """Validate the cart and show the purchase summary."""
        if self.state is not CheckoutState.IDLE:
            raise CheckoutStateError(f"cannot begin checkout from {self.state.value}")
        error_type: Optional[str] = None
        try:
            lines = self.cart.lines
            if not lines:
                error_type = "empty_cart"
                return False, CART_EMPTY
            user = session.user
            if not (user.address or "").strip():
                error_type = "missing_address"
                return False, ADDRESS_REQUIRED
            shortfall = _check_stock(self.repository.snapshot(), lines)
            if shortfall:
                error_type = "stock_insufficient"
                return False, shortfall
            money = compute_summary(sum(line.line_total for line in lines), self.settings)
            self.summary = PurchaseSummary(
                lines=lines,
                subtotal=money.subtotal,
                tax=money.tax,
                delivery_fee=money.delivery_fee,
                total=money.total,
                delivery_address=user.address,
                delivery_phone=user.phone,
                delivery_date=self._delivery_date(),
            )
            self._session = session
            self.state = CheckoutState.SUMMARY_SHOWN
            return True, "Review your order"
        finally:
            if error_type:
                CHECKOUT_ERROR_TOTAL.inc(type=error_type)
                logger.info(
                    "Checkout rejected",
                    extra={"user_id": session.user_id, "extra": {"reason": error_type}},
                )

    def confirm(self) -> Tuple[bool, str]:
        """Place the order shown in the summary.

        If the cart changed after ``begin``, or on a stock shortfall or a
        concurrent write, the workflow returns to ``IDLE`` with the cart and
        storage left as they were.
        """
        if self.state is not CheckoutState.SUMMARY_SHOWN or self.summary is None:
            raise CheckoutStateError(f"cannot confirm checkout from {self.state.value}")
        session = self._session
        summary = self.summary
        start_time = time.perf_counter()
        error_type: Optional[str] = None
        try:
            if _cart_key(self.cart.lines) != _cart_key(summary.lines):
                error_type = "cart_changed"
                self._abort()
                return False, CART_CHANGED
            try:
                with self.repository.transaction() as data:
                    # Commit-time recheck; stock may have moved since begin()
                    shortfall = _check_stock(data, summary.lines)
                    if shortfall:
                        raise Rollback(shortfall)
                    for line in summary.lines:
                        product = data.product(line.product_id)
                        product.stock = max(0, product.stock - line.quantity)
                    order = self._build_order(data, session, summary)
                    data.orders.append(order)
            except Rollback as e:
                error_type = "stock_insufficient"
                self._abort()
                return False, str(e)
            except ConcurrentModificationError:
                error_type = "conflict"
                self._abort()
                logger.warning("Checkout commit lost to a concurrent write", extra={"user_id": session.user_id})
                return False, ORDER_CONFLICT

            self.order = order
            self.state = CheckoutState.CONFIRMED
            self.cart.clear()
            ORDERS_CREATED_TOTAL.inc(channel="cart")
            logger.info(
                "Order placed",
                extra={
                    "request_id": str(order.id),
                    "user_id": session.user_id,
                    "extra": {"total": order.amount, "items": len(order.items)},
                },
            )
            self._after_order(order, session)
            return True, f"Order placed successfully! Order #{order.id}"
        finally:
            CHECKOUT_DURATION_SECONDS.observe(
                time.perf_counter() - start_time, outcome="failed" if error_type else "placed"
            )
            if error_type:
                CHECKOUT_ERROR_TOTAL.inc(type=error_type)

    def cancel(self) -> None:
        if self.state is not CheckoutState.SUMMARY_SHOWN:
            raise CheckoutStateError(f"cannot cancel checkout from {self.state.value}")
        self.state = CheckoutState.CANCELLED
        self.summary = None
        self._session = None

    def reset(self) -> None:
        """Return to ``IDLE`` so a new checkout may begin."""
        self.state = CheckoutState.IDLE
        self.summary = None
        self.order = None
        self._session = None

    # ---- direct "order now" ----

    def place_direct_order(
        self,
        session: Session,
        product_id: int,
        quantity: int,
        delivery_name: str,
        delivery_address: str,
        delivery_phone: str,
        payment_method: str = "cod",
    ) -> Tuple[bool, str]:
        """Buy one product without going through the cart.

        The delivery details are also saved to the customer's profile.
        Returns ``(True, message)`` and sets ``self.order`` on success.
        """
        delivery_name = (delivery_name or "").strip()
        delivery_address = (delivery_address or "").strip()
        delivery_phone = (delivery_phone or "").strip()
        start_time = time.perf_counter()
        error_type: Optional[str] = None
        try:
            if not delivery_name or not delivery_address or not delivery_phone:
                error_type = "missing_delivery_details"
                return False, "Please fill in all delivery details"
            if not is_whole_quantity(quantity):
                error_type = "invalid_quantity"
                return False, INVALID_QUANTITY
            if quantity <= 0:
                error_type = "invalid_quantity"
                return False, "Quantity must be positive."
            try:
                with self.repository.transaction() as data:
                    product = data.product(product_id)
                    if product is None:
                        raise Rollback("Product not found")
                    if product.stock < quantity:
                        raise Rollback(INSUFFICIENT_STOCK)
                    product.stock -= quantity
                    money = compute_summary(product.price * quantity, self.settings)
                    order = Order(
                        id=data.next_order_id(),
                        user_id=session.user_id,
                        user_name=delivery_name,
                        farmer_id=product.farmer_id,
                        farmer_name=product.farmer_name,
                        status="pending",
                        order_date=date.today().isoformat(),
                        delivery_date=self._delivery_date(),
                        items=[OrderItem.from_dict(CartLine.from_product(product, quantity).to_dict())],
                        delivery_address=delivery_address,
                        delivery_phone=delivery_phone,
                        payment_method=payment_method,
                        order_summary=money,
                        total=money.total,
                    )
                    data.orders.append(order)
                    user = data.user(session.user_id)
                    if user is not None:
                        user.name = delivery_name
                        user.address = delivery_address
                        user.phone = delivery_phone
            except Rollback as e:
                error_type = "stock_insufficient" if str(e) == INSUFFICIENT_STOCK else "product_missing"
                return False, str(e)
            except ConcurrentModificationError:
                error_type = "conflict"
                return False, ORDER_CONFLICT

            self.order = order
            if self.auth is not None:
                self.auth.refresh(session, user)
            elif user is not None:
                session.user = user
            ORDERS_CREATED_TOTAL.inc(channel="direct")
            logger.info(
                "Order placed",
                extra={
                    "request_id": str(order.id),
                    "user_id": session.user_id,
                    "extra": {"total": order.amount, "product_id": product_id, "direct": True},
                },
            )
            self._after_order(order, session)
            return True, "Order placed successfully!"
        finally:
            CHECKOUT_DURATION_SECONDS.observe(
                time.perf_counter() - start_time, outcome="failed" if error_type else "placed"
            )
            if error_type:
                CHECKOUT_ERROR_TOTAL.inc(type=error_type)

    # ---- helpers ----

    def _delivery_date(self) -> str:
        return (date.today() + timedelta(days=self.settings.delivery_days)).isoformat()

    def _build_order(self, data: MarketplaceData, session: Session, summary: PurchaseSummary) -> Order:
        first = summary.lines[0]
        farmers = {line.farmer_id for line in summary.lines}
        if len(farmers) > 1:
            logger.warning(
                "Cart spans several farmers; order credited to the first",
                extra={"user_id": session.user_id,
                       "extra": {"farmer_ids": sorted(f for f in farmers if f is not None)}},
            )
        return Order(
            id=data.next_order_id(),
            user_id=session.user_id,
            user_name=session.user.name,
            farmer_id=first.farmer_id,
            farmer_name=first.farmer_name,
            status="pending",
            order_date=date.today().isoformat(),
            delivery_date=summary.delivery_date,
            items=[OrderItem.from_dict(line.to_dict()) for line in summary.lines],
            delivery_address=summary.delivery_address,
            delivery_phone=summary.delivery_phone,
            order_summary=summary.order_summary,
            total=summary.total,
        )

    def _after_order(self, order: Order, session: Session) -> None:
        if self.monitor is not None:
            try:
                self.monitor.scan_low_stock()
            except Exception:
                logger.exception("Low-stock scan after checkout failed")
        if self.notifier is not None:
            self.notifier.order_placed(order, session.user)

    def _abort(self) -> None:
        self.state = CheckoutState.IDLE
        self.summary = None
        self._session = None
