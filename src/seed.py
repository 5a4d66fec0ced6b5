"""Demo dataset loaded into an empty store, and used when the stored data
cannot be parsed.

Three demo accounts share the password ``demo123``:
``customer@demo.com`` (user), ``farmer@demo.com`` (farmer) and
``admin@demo.com`` (admin).
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


DEMO_PASSWORD = "demo123"
DEMO_ACCOUNTS = {
    "user": "customer@demo.com",
    "farmer": "farmer@demo.com",
    "admin": "admin@demo.com",
}

_FARM = "Green Valley Farm"

_PRODUCTS: List[Dict[str, Any]] = [
    dict(id=1, name="Organic Tomatoes", description="Fresh, juicy organic tomatoes grown without pesticides",
         price=4.99, unit="per lb", category="vegetables", stock=50, isOrganic=True,
         harvestDate="2024-12-20", lowStockThreshold=10),
    dict(id=2, name="Fresh Lettuce", description="Crisp romaine lettuce perfect for salads",
         price=2.99, unit="per head", category="vegetables", stock=30, isOrganic=True,
         harvestDate="2024-12-22", lowStockThreshold=5),
    dict(id=3, name="Farm Fresh Eggs", description="Free-range chicken eggs from happy hens",
         price=6.99, unit="per dozen", category="dairy", stock=25, isOrganic=True,
         harvestDate="2024-12-23", lowStockThreshold=12),
    dict(id=4, name="Sweet Carrots", description="Crunchy orange carrots packed with vitamins",
         price=3.49, unit="per lb", category="vegetables", stock=40, isOrganic=False,
         harvestDate="2024-12-21", lowStockThreshold=15),
    dict(id=5, name="Red Apples", description="Sweet and crisp red apples, perfect for snacking",
         price=5.99, unit="per lb", category="fruits", stock=60, isOrganic=True,
         harvestDate="2024-12-19", lowStockThreshold=20),
    dict(id=6, name="Fresh Spinach", description="Nutrient-rich baby spinach leaves",
         price=3.99, unit="per bag", category="vegetables", stock=20, isOrganic=True,
         harvestDate="2024-12-22", lowStockThreshold=8),
]


def _order(order_id, status, order_date, delivery_date, items, summary) -> Dict[str, Any]:
    subtotal, tax, total = summary
    return {
        "id": order_id,
        "userId": 1,
        "userName": "John Customer",
        "farmerId": 2,
        "farmerName": _FARM,
        "status": status,
        "orderDate": order_date,
        "deliveryDate": delivery_date,
        "items": [
            {"productId": pid, "name": name, "price": price, "quantity": qty}
            for pid, name, price, qty in items
        ],
        "deliveryAddress": "123 Main St, City, State",
        "orderSummary": {"subtotal": subtotal, "tax": tax, "deliveryFee": 2.99, "total": total},
        "total": total,
        "farmerRating": None,
    }


def default_dataset_dict(now: Optional[datetime] = None) -> Dict[str, Any]:
    """Return the demo dataset in its stored (camelCase) shape."""
    added = (now or datetime.now(timezone.utc)).isoformat()
    users = [
        {"id": 1, "name": "John Customer", "email": DEMO_ACCOUNTS["user"], "password": DEMO_PASSWORD,
         "role": "user", "address": "123 Main St, City, State", "phone": "+1234567890",
         "joinedDate": "2024-01-15", "ratings": []},
        {"id": 2, "name": "Sarah Farmer", "email": DEMO_ACCOUNTS["farmer"], "password": DEMO_PASSWORD,
         "role": "farmer", "farmName": _FARM, "location": "Rural County, State",
         "phone": "+1234567891", "joinedDate": "2024-01-10", "rating": 4.5, "totalRatings": 12,
         "isActive": True, "ratings": []},
        {"id": 3, "name": "Admin User", "email": DEMO_ACCOUNTS["admin"], "password": DEMO_PASSWORD,
         "role": "admin", "department": "Platform Management", "phone": "+1234567892",
         "joinedDate": "2024-01-01"},
    ]
    products = [
        dict(p, farmerId=2, farmerName=_FARM, addedDate=added, image=None) for p in _PRODUCTS
    ]
    orders = [
        _order(1001, "delivered", "2024-12-20", "2024-12-22",
               [(1, "Organic Tomatoes", 4.99, 2), (3, "Farm Fresh Eggs", 6.99, 1),
                (4, "Sweet Carrots", 3.49, 1)],
               (19.47, 1.56, 24.02)),
        _order(1002, "processing", "2024-12-23", "2024-12-25",
               [(2, "Fresh Lettuce", 2.99, 2), (5, "Red Apples", 5.99, 1),
                (6, "Fresh Spinach", 3.99, 1)],
               (14.98, 1.20, 19.17)),
        _order(1003, "pending", "2024-12-24", "2024-12-26",
               [(2, "Fresh Lettuce", 2.99, 1), (1, "Organic Tomatoes", 4.99, 1)],
               (7.98, 0.64, 11.61)),
    ]
    return {
        "users": users,
        "products": products,
        "orders": orders,
        "notifications": [],
        "lowStockAlerts": [],
    }
