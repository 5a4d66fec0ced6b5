"""
Role dashboards: the queries and mutations behind the customer, farmer and
admin views.

Each dashboard method takes the caller's :class:`~auth.Session`.  Asking a
dashboard for data with a session of the wrong role raises
:class:`PermissionError`; validation failures on mutations come back as
``(False, message)`` like everywhere else in the application.
"""

from __future__ import annotations

import logging
from collections import Counter, OrderedDict
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple

from auth import AuthManager, Session
from config import Settings
from models import (
    CATEGORIES,
    DEFAULT_PRODUCT_IMAGE,
    ORDER_STATUSES,
    UNITS,
    LowStockAlert,
    Order,
    Product,
    User,
)
from repository import SAVE_CONFLICT, ConcurrentModificationError, MarketplaceRepository, Rollback

if TYPE_CHECKING:
    from outbox import OrderNotifier

logger = logging.getLogger(__name__)

# Fields a farmer may set on their own products
PRODUCT_FIELDS = (
    "name",
    "description",
    "price",
    "unit",
    "category",
    "stock",
    "low_stock_threshold",
    "is_organic",
    "image",
)


def order_total(order: Order) -> float:
    if order.order_summary is not None:
        return order.order_summary.total
    return order.total or 0.0


def month_label(value: Optional[str]) -> str:
    """``"2024-12-20"`` -> ``"Dec 24"``; unreadable dates group under ``"Unknown"``."""
    try:
        return datetime.strptime((value or "")[:10], "%Y-%m-%d").strftime("%b %y")
    except ValueError:
        return "Unknown"


def monthly_revenue(orders: List[Order]) -> Dict[str, float]:
    totals: Dict[str, float] = OrderedDict()
    for order in orders:
        label = month_label(order.order_date)
        totals[label] = totals.get(label, 0.0) + order_total(order)
    return dict(totals)


def _require(session: Optional[Session], role: str) -> Session:
    if session is None or not session.has_role(role):
        raise PermissionError(f"{role} access required")
    return session


def validate_product_fields(fields: Dict[str, Any]) -> Optional[str]:
    """Return an error message for the first invalid product field, or None."""
    if "name" in fields and not str(fields["name"] or "").strip():
        return "Product name is required"
    if "price" in fields:
        price = fields["price"]
        if isinstance(price, bool) or not isinstance(price, (int, float)) or price <= 0:
            return "Price must be a positive number"
    for key in ("stock", "low_stock_threshold"):
        if key in fields:
            value = fields[key]
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                return f"{key.replace('_', ' ').capitalize()} must be a non-negative integer"
    if "category" in fields and fields["category"] not in CATEGORIES:
        return f"Unknown category: {fields['category']}"
    if "unit" in fields and fields["unit"] not in UNITS:
        return f"Unknown unit: {fields['unit']}"
    return None


# ---------------------------------------------------------------------------
# Customer
# ---------------------------------------------------------------------------


class CustomerDashboard:
    def __init__(self, repository: MarketplaceRepository,
                 notifier: Optional["OrderNotifier"] = None) -> None:
        self.repository = repository
        self.notifier = notifier

    def browse_products(
        self,
        search: str = "",
        category: Optional[str] = None,
        organic_only: bool = False,
    ) -> List[Product]:
        """Catalogue filtered by a name/description search, category and organic flag."""
        term = (search or "").strip().lower()
        results = []
        for product in self.repository.snapshot().products:
            if term and term not in product.name.lower() and term not in (product.description or "").lower():
                continue
            if category and product.category != category:
                continue
            if organic_only and not product.is_organic:
                continue
            results.append(product)
        return results

    def my_orders(self, session: Session) -> List[Order]:
        """The customer's orders, newest first."""
        _require(session, "user")
        orders = [o for o in self.repository.snapshot().orders if o.user_id == session.user_id]
        return list(reversed(orders))

    def deliver_pending_receipts(self, session: Session) -> List[Order]:
        """Queue a receipt and delivery e-mail for each delivered order not yet sent.

        Orders are marked ``receiptSent`` before the tasks run, so a receipt
        is never queued twice for the same order.
        """
        _require(session, "user")
        snapshot = self.repository.snapshot()
        if not any(
            o.user_id == session.user_id and o.status == "delivered" and not o.receipt_sent
            for o in snapshot.orders
        ):
            return []
        marked: List[Order] = []
        try:
            with self.repository.transaction() as data:
                for order in data.orders:
                    if order.user_id == session.user_id and order.status == "delivered" and not order.receipt_sent:
                        order.receipt_sent = True
                        marked.append(order)
        except ConcurrentModificationError:
            logger.warning("Receipt marking lost to a concurrent write", extra={"user_id": session.user_id})
            return []
        if self.notifier is not None:
            for order in marked:
                self.notifier.order_delivered(order, session.user)
        return marked


# ---------------------------------------------------------------------------
# Farmer
# ---------------------------------------------------------------------------


@dataclass
class FarmerOverview:
    product_count: int
    order_count: int
    pending_orders: int
    revenue: float
    alerts: List[LowStockAlert]
    low_stock_products: List[Product]
    recent_orders: List[Order]


@dataclass
class FarmerAnalytics:
    revenue: float
    order_count: int
    product_count: int
    average_order_value: float
    monthly_sales: Dict[str, float] = field(default_factory=dict)
    product_quantities: Dict[str, int] = field(default_factory=dict)


class FarmerDashboard:
    def __init__(self, repository: MarketplaceRepository, auth: AuthManager,
                 settings: Optional[Settings] = None) -> None:
        self.repository = repository
        self.auth = auth
        self.settings = settings or Settings()

    def overview(self, session: Session) -> FarmerOverview:
        _require(session, "farmer")
        data = self.repository.snapshot()
        products = [p for p in data.products if p.farmer_id == session.user_id]
        orders = [o for o in data.orders if o.farmer_id == session.user_id]
        return FarmerOverview(
            product_count=len(products),
            order_count=len(orders),
            pending_orders=sum(1 for o in orders if o.status == "pending"),
            revenue=sum(order_total(o) for o in orders),
            alerts=[a for a in data.low_stock_alerts if a.farmer_id == session.user_id],
            low_stock_products=[p for p in products if p.is_low_stock(self.settings.low_stock_threshold)],
            recent_orders=list(reversed(orders[-5:])),
        )

    def my_products(self, session: Session) -> List[Product]:
        _require(session, "farmer")
        return [p for p in self.repository.snapshot().products if p.farmer_id == session.user_id]

    def add_product(self, session: Session, **fields: Any) -> Tuple[bool, str]:
        _require(session, "farmer")
        unknown = set(fields) - set(PRODUCT_FIELDS)
        if unknown:
            return False, f"Unknown product fields: {', '.join(sorted(unknown))}"
        for required in ("name", "price", "unit", "category", "stock"):
            if required not in fields:
                return False, f"Missing product field: {required}"
        error = validate_product_fields(fields)
        if error:
            return False, error
        farmer = session.user
        try:
            with self.repository.transaction() as data:
                product = Product(
                    id=data.next_product_id(),
                    name=str(fields["name"]).strip(),
                    description=fields.get("description") or "",
                    price=float(fields["price"]),
                    unit=fields["unit"],
                    category=fields["category"],
                    farmer_id=farmer.id,
                    farmer_name=farmer.display_name,
                    stock=fields["stock"],
                    low_stock_threshold=fields.get("low_stock_threshold", self.settings.low_stock_threshold),
                    is_organic=bool(fields.get("is_organic", False)),
                    image=fields.get("image") or DEFAULT_PRODUCT_IMAGE,
                    harvest_date=date.today().isoformat(),
                    added_date=datetime.now(timezone.utc).isoformat(),
                )
                data.products.append(product)
        except ConcurrentModificationError:
            return False, SAVE_CONFLICT
        logger.info("Product added", extra={"user_id": farmer.id, "extra": {"product_id": product.id}})
        return True, "Product added successfully"

    def edit_product(self, session: Session, product_id: int, **fields: Any) -> Tuple[bool, str]:
        _require(session, "farmer")
        unknown = set(fields) - set(PRODUCT_FIELDS)
        if unknown:
            return False, f"Unknown product fields: {', '.join(sorted(unknown))}"
        error = validate_product_fields(fields)
        if error:
            return False, error
        if "name" in fields:
            fields["name"] = str(fields["name"]).strip()
        try:
            with self.repository.transaction() as data:
                product = data.product(product_id)
                if product is None or product.farmer_id != session.user_id:
                    raise Rollback("Product not found")
                for key, value in fields.items():
                    setattr(product, key, value)
        except Rollback as e:
            return False, str(e)
        except ConcurrentModificationError:
            return False, SAVE_CONFLICT
        logger.info("Product updated", extra={"user_id": session.user_id,
                                              "extra": {"product_id": product_id, "fields": sorted(fields)}})
        return True, "Product updated successfully"

    def delete_product(self, session: Session, product_id: int) -> Tuple[bool, str]:
        _require(session, "farmer")
        try:
            with self.repository.transaction() as data:
                product = data.product(product_id)
                if product is None or product.farmer_id != session.user_id:
                    raise Rollback("Product not found")
                data.products = [p for p in data.products if p.id != product_id]
        except Rollback as e:
            return False, str(e)
        except ConcurrentModificationError:
            return False, SAVE_CONFLICT
        logger.info("Product deleted", extra={"user_id": session.user_id, "extra": {"product_id": product_id}})
        return True, "Product deleted successfully"

    def orders(self, session: Session) -> List[Order]:
        _require(session, "farmer")
        return [o for o in self.repository.snapshot().orders if o.farmer_id == session.user_id]

    def update_order_status(self, session: Session, order_id: Any, status: str) -> Tuple[bool, str]:
        _require(session, "farmer")
        if status not in ORDER_STATUSES:
            return False, f"Unknown order status: {status}"
        try:
            with self.repository.transaction() as data:
                order = data.order(order_id)
                if order is None or order.farmer_id != session.user_id:
                    raise Rollback("Failed to update order status (order not found)")
                previous = order.status
                order.status = status
        except Rollback as e:
            logger.warning(str(e), extra={"user_id": session.user_id, "extra": {"order_id": order_id}})
            return False, str(e)
        except ConcurrentModificationError:
            return False, SAVE_CONFLICT
        logger.info(
            "Order status changed",
            extra={"request_id": str(order_id), "user_id": session.user_id,
                   "extra": {"from": previous, "to": status}},
        )
        return True, f"Order #{order_id} status updated to {status}"

    def analytics(self, session: Session) -> FarmerAnalytics:
        _require(session, "farmer")
        data = self.repository.snapshot()
        orders = [o for o in data.orders if o.farmer_id == session.user_id]
        revenue = sum(order_total(o) for o in orders)
        quantities: Counter = Counter()
        for order in orders:
            for item in order.items:
                quantities[item.name] += item.quantity
        return FarmerAnalytics(
            revenue=revenue,
            order_count=len(orders),
            product_count=sum(1 for p in data.products if p.farmer_id == session.user_id),
            average_order_value=revenue / len(orders) if orders else 0.0,
            monthly_sales=monthly_revenue(orders),
            product_quantities=dict(quantities),
        )

    def update_profile(self, session: Session, **fields: Any) -> Tuple[bool, str]:
        _require(session, "farmer")
        return self.auth.update_profile(session, **fields)


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------


@dataclass
class AdminOverview:
    customer_count: int
    active_farmers: int
    product_count: int
    order_count: int
    revenue: float
    monthly_revenue: Dict[str, float]
    category_distribution: Dict[str, int]
    recent_orders: List[Order]


@dataclass
class AdminAnalytics:
    revenue: float
    order_count: int
    average_order_value: float
    monthly_revenue: Dict[str, float]
    category_distribution: Dict[str, int]
    farmer_performance: Dict[str, float]


class AdminDashboard:
    def __init__(self, repository: MarketplaceRepository) -> None:
        self.repository = repository

    def overview(self, session: Session) -> AdminOverview:
        _require(session, "admin")
        data = self.repository.snapshot()
        return AdminOverview(
            customer_count=sum(1 for u in data.users if u.role == "user"),
            active_farmers=sum(1 for u in data.users if u.role == "farmer" and u.active),
            product_count=len(data.products),
            order_count=len(data.orders),
            revenue=sum(order_total(o) for o in data.orders),
            monthly_revenue=monthly_revenue(data.orders),
            category_distribution=dict(Counter(p.category for p in data.products)),
            recent_orders=list(reversed(data.orders[-5:])),
        )

    def users(self, session: Session) -> List[User]:
        _require(session, "admin")
        return [u for u in self.repository.snapshot().users if u.role == "user"]

    def farmers(self, session: Session) -> List[User]:
        """Every farmer, removed ones included."""
        _require(session, "admin")
        return [u for u in self.repository.snapshot().users if u.role == "farmer"]

    def products(self, session: Session, search: str = "", category: Optional[str] = None) -> List[Product]:
        _require(session, "admin")
        term = (search or "").strip().lower()
        return [
            p for p in self.repository.snapshot().products
            if (not term or term in p.name.lower() or term in (p.farmer_name or "").lower())
            and (not category or p.category == category)
        ]

    def orders(self, session: Session) -> List[Order]:
        _require(session, "admin")
        return list(reversed(self.repository.snapshot().orders))

    def analytics(self, session: Session) -> AdminAnalytics:
        _require(session, "admin")
        data = self.repository.snapshot()
        revenue = sum(order_total(o) for o in data.orders)
        performance: Dict[str, float] = {}
        for order in data.orders:
            name = order.farmer_name or "Unknown"
            performance[name] = performance.get(name, 0.0) + order_total(order)
        return AdminAnalytics(
            revenue=revenue,
            order_count=len(data.orders),
            average_order_value=revenue / len(data.orders) if data.orders else 0.0,
            monthly_revenue=monthly_revenue(data.orders),
            category_distribution=dict(Counter(p.category for p in data.products)),
            farmer_performance=performance,
        )

    def _set_farmer_active(self, farmer_id: int, active: bool) -> int:
        """Flip the soft-delete flag; deactivation also drops the farmer's products."""
        with self.repository.transaction() as data:
            farmer = data.user(farmer_id)
            if farmer is None or farmer.role != "farmer":
                raise Rollback("Farmer not found")
            farmer.is_active = active
            removed = 0
            if not active:
                kept = [p for p in data.products if p.farmer_id != farmer_id]
                removed = len(data.products) - len(kept)
                data.products = kept
        return removed

    def remove_farmer(self, session: Session, farmer_id: int) -> Tuple[bool, str]:
        """Deactivate a farmer and delete every product they list."""
        _require(session, "admin")
        try:
            removed = self._set_farmer_active(farmer_id, False)
        except Rollback as e:
            return False, str(e)
        except ConcurrentModificationError:
            return False, SAVE_CONFLICT
        logger.info("Farmer removed", extra={"user_id": session.user_id,
                                             "extra": {"farmer_id": farmer_id, "products_removed": removed}})
        return True, "Farmer removed successfully"

    def restore_farmer(self, session: Session, farmer_id: int) -> Tuple[bool, str]:
        """Reactivate a farmer.  Their deleted products are not brought back."""
        _require(session, "admin")
        try:
            self._set_farmer_active(farmer_id, True)
        except Rollback as e:
            return False, str(e)
        except ConcurrentModificationError:
            return False, SAVE_CONFLICT
        logger.info("Farmer restored", extra={"user_id": session.user_id, "extra": {"farmer_id": farmer_id}})
        return True, "Farmer restored successfully"

    def remove_product(self, session: Session, product_id: int) -> Tuple[bool, str]:
        _require(session, "admin")
        try:
            with self.repository.transaction() as data:
                if data.product(product_id) is None:
                    raise Rollback("Product not found")
                data.products = [p for p in data.products if p.id != product_id]
        except Rollback as e:
            return False, str(e)
        except ConcurrentModificationError:
            return False, SAVE_CONFLICT
        logger.info("Product removed", extra={"user_id": session.user_id, "extra": {"product_id": product_id}})
        return True, "Product removed successfully"
