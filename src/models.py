"""
Domain records for the marketplace.

Each record is a dataclass that converts to and from the JSON shape stored
in the data slot.  Stored keys are camelCase (``lowStockThreshold``,
``orderSummary``...); attribute names are snake_case.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import Any, ClassVar, Dict, List, Optional, Tuple

ROLES = ("user", "farmer", "admin")
ORDER_STATUSES = ("pending", "processing", "delivered")
CATEGORIES = ("vegetables", "fruits", "dairy")
UNITS = ("per lb", "per dozen", "per head", "per bag", "each")
DEFAULT_PRODUCT_IMAGE = (
    "https://images.pexels.com/photos/1656663/pexels-photo-1656663.jpeg"
    "?auto=compress&cs=tinysrgb&w=400"
)
DEFAULT_LOW_STOCK_THRESHOLD = 10


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


class Record:
    """Mixin providing dict conversion for the dataclasses below.

    ``_nested`` maps a field name to ``(record_class, is_list)`` for fields
    holding other records.
    """

    _nested: ClassVar[Dict[str, Tuple[type, bool]]] = {}

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        for f in fields(self):  # type: ignore[arg-type]
            value = getattr(self, f.name)
            if f.name in self._nested and value is not None:
                _, is_list = self._nested[f.name]
                value = [v.to_dict() for v in value] if is_list else value.to_dict()
            out[_camel(f.name)] = value
        return out

    @classmethod
    def from_dict(cls, data: Dict[str, Any]):
        if not isinstance(data, dict):
            raise TypeError(f"{cls.__name__} record must be an object, got {type(data).__name__}")
        kwargs: Dict[str, Any] = {}
        for f in fields(cls):  # type: ignore[arg-type]
            key = _camel(f.name)
            if key not in data:
                continue
            value = data[key]
            if f.name in cls._nested and value is not None:
                sub_cls, is_list = cls._nested[f.name]
                value = [sub_cls.from_dict(v) for v in value] if is_list else sub_cls.from_dict(value)
            kwargs[f.name] = value
        return cls(**kwargs)


@dataclass
class Rating(Record):
    """A customer's rating of a farmer, kept on the farmer's profile."""

    rating: int
    comment: str = ""
    date: str = ""
    user_id: Optional[int] = None
    user_name: Optional[str] = None
    order_id: Optional[int] = None


@dataclass
class User(Record):
    id: int
    name: str
    email: str
    password: str
    role: str
    phone: Optional[str] = None
    address: Optional[str] = None
    joined_date: Optional[str] = None
    # Farmer profile
    farm_name: Optional[str] = None
    location: Optional[str] = None
    description: Optional[str] = None
    rating: Optional[float] = None
    total_ratings: Optional[int] = None
    ratings: List[Rating] = field(default_factory=list)
    is_active: Optional[bool] = None
    # Admin profile
    department: Optional[str] = None

    _nested: ClassVar[Dict[str, Tuple[type, bool]]] = {"ratings": (Rating, True)}

    @property
    def display_name(self) -> str:
        """Farm name for farmers, personal name otherwise."""
        return self.farm_name or self.name

    @property
    def active(self) -> bool:
        return self.is_active is not False


@dataclass
class Product(Record):
    id: int
    name: str
    price: float
    unit: str
    category: str
    farmer_id: int
    stock: int
    farmer_name: Optional[str] = None
    description: str = ""
    low_stock_threshold: int = DEFAULT_LOW_STOCK_THRESHOLD
    is_organic: bool = False
    harvest_date: Optional[str] = None
    image: Optional[str] = None
    added_date: Optional[str] = None

    def threshold(self, default: int = DEFAULT_LOW_STOCK_THRESHOLD) -> int:
        return self.low_stock_threshold or default

    def is_low_stock(self, default: int = DEFAULT_LOW_STOCK_THRESHOLD) -> bool:
        return self.stock <= self.threshold(default)


@dataclass
class OrderItem(Record):
    """Snapshot copy of a purchased line; never a live product reference."""

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


@dataclass
class OrderSummary(Record):
    subtotal: float
    tax: float
    delivery_fee: float
    total: float


@dataclass
class FarmerRating(Record):
    rating: int
    comment: str = ""
    date: str = ""


@dataclass
class Order(Record):
    id: int
    user_id: Optional[int]
    farmer_id: Optional[int]
    status: str
    items: List[OrderItem]
    order_summary: OrderSummary
    user_name: Optional[str] = None
    farmer_name: Optional[str] = None
    order_date: Optional[str] = None
    delivery_date: Optional[str] = None
    delivery_address: str = ""
    delivery_phone: Optional[str] = None
    payment_method: Optional[str] = None
    total: Optional[float] = None
    farmer_rating: Optional[FarmerRating] = None
    receipt_sent: bool = False

    _nested: ClassVar[Dict[str, Tuple[type, bool]]] = {
        "items": (OrderItem, True),
        "order_summary": (OrderSummary, False),
        "farmer_rating": (FarmerRating, False),
    }

    @property
    def amount(self) -> float:
        """Order total as recorded at creation."""
        return self.order_summary.total


@dataclass
class LowStockAlert(Record):
    id: str
    product_id: int
    product_name: str
    farmer_id: Optional[int]
    current_stock: int
    threshold: int
    date: str
    message: str
    farmer_name: Optional[str] = None

    @staticmethod
    def alert_id(product_id: int) -> str:
        return f"low-stock-{product_id}"


@dataclass
class Notification(Record):
    id: int
    type: str
    message: str
    date: str
    farmer_id: Optional[int] = None
    read: bool = False


@dataclass
class MarketplaceData:
    """The whole data slot: every entity list the marketplace keeps."""

    users: List[User] = field(default_factory=list)
    products: List[Product] = field(default_factory=list)
    orders: List[Order] = field(default_factory=list)
    notifications: List[Notification] = field(default_factory=list)
    low_stock_alerts: List[LowStockAlert] = field(default_factory=list)

    # Stored key -> record class, in storage order
    SECTIONS: ClassVar[Dict[str, Tuple[str, type]]] = {
        "users": ("users", User),
        "products": ("products", Product),
        "orders": ("orders", Order),
        "notifications": ("notifications", Notification),
        "lowStockAlerts": ("low_stock_alerts", LowStockAlert),
    }

    def to_dict(self) -> Dict[str, Any]:
        return {
            key: [r.to_dict() for r in getattr(self, attr)]
            for key, (attr, _) in self.SECTIONS.items()
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MarketplaceData":
        """Build from the stored shape.  Missing sections become empty lists.

        Raises:
            TypeError, KeyError, ValueError: if a section or record is malformed.
        """
        if not isinstance(data, dict):
            raise TypeError("marketplace data must be an object")
        kwargs: Dict[str, Any] = {}
        for key, (attr, record_cls) in cls.SECTIONS.items():
            section = data.get(key) or []
            if not isinstance(section, list):
                raise TypeError(f"section {key!r} must be a list")
            kwargs[attr] = [record_cls.from_dict(r) for r in section]
        return cls(**kwargs)

    # ---- lookups ----

    def user(self, user_id: Optional[int]) -> Optional[User]:
        return next((u for u in self.users if u.id == user_id), None)

    def user_by_email(self, email: str) -> Optional[User]:
        return next((u for u in self.users if u.email == email), None)

    def product(self, product_id: Optional[int]) -> Optional[Product]:
        return next((p for p in self.products if p.id == product_id), None)

    def order(self, order_id: Any) -> Optional[Order]:
        # Ids may arrive as strings from text input
        return next((o for o in self.orders if str(o.id) == str(order_id)), None)

    def alert(self, alert_id: str) -> Optional[LowStockAlert]:
        return next((a for a in self.low_stock_alerts if a.id == alert_id), None)

    # ---- id allocation ----

    def next_user_id(self) -> int:
        return max((u.id for u in self.users), default=0) + 1

    def next_product_id(self) -> int:
        return max((p.id for p in self.products), default=0) + 1

    def next_order_id(self) -> int:
        """Max existing numeric order id plus one; 1001 for the first order."""
        if not self.orders:
            return 1000 + 1
        return max(int(o.id or 0) for o in self.orders) + 1

    def next_notification_id(self) -> int:
        return max((n.id for n in self.notifications), default=0) + 1
