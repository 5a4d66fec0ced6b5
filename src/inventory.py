"""
Catalogue maintenance: low-stock alerts and the expired-product sweep.

Alerts fire once per product.  The alert record keeps the stock level and
threshold it was raised at; it stays in place when the product is
restocked, and only :meth:`InventoryMonitor.clear_alert` lets the product
alert again.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Tuple

from config import Settings
from metrics import LOW_STOCK_ALERTS_TOTAL
from models import LowStockAlert, Notification
from repository import MarketplaceRepository

logger = logging.getLogger(__name__)


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        ts = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


class InventoryMonitor:
    def __init__(
        self,
        repository: MarketplaceRepository,
        settings: Optional[Settings] = None,
        on_alert: Optional[Callable[[LowStockAlert], None]] = None,
    ) -> None:
        self.repository = repository
        self.settings = settings or Settings()
        self.on_alert = on_alert
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def scan_low_stock(self) -> List[LowStockAlert]:
        """Raise an alert and a farmer notification for each product newly at
        or below its threshold.  Returns the alerts raised by this scan."""
        default = self.settings.low_stock_threshold
        raised: List[LowStockAlert] = []
        current = self.repository.snapshot()
        if not any(
            p.is_low_stock(default) and not current.alert(LowStockAlert.alert_id(p.id))
            for p in current.products
        ):
            return raised
        with self.repository.transaction() as data:
            now = datetime.now(timezone.utc).isoformat()
            for product in data.products:
                if not product.is_low_stock(default):
                    continue
                alert_id = LowStockAlert.alert_id(product.id)
                if data.alert(alert_id):
                    continue
                alert = LowStockAlert(
                    id=alert_id,
                    product_id=product.id,
                    product_name=product.name,
                    farmer_id=product.farmer_id,
                    farmer_name=product.farmer_name,
                    current_stock=product.stock,
                    threshold=product.threshold(default),
                    date=now,
                    message=f"Low stock alert: {product.name} has only {product.stock} units remaining",
                )
                data.low_stock_alerts.append(alert)
                data.notifications.append(
                    Notification(
                        id=data.next_notification_id(),
                        type="low-stock",
                        message=alert.message,
                        farmer_id=product.farmer_id,
                        date=now,
                    )
                )
                raised.append(alert)
        for alert in raised:
            LOW_STOCK_ALERTS_TOTAL.inc()
            logger.warning(
                alert.message,
                extra={"user_id": alert.farmer_id,
                       "extra": {"product_id": alert.product_id, "stock": alert.current_stock}},
            )
            if self.on_alert is not None:
                try:
                    self.on_alert(alert)
                except Exception:
                    logger.exception("Low-stock alert callback failed")
        return raised

    def clear_alert(self, product_id: int) -> bool:
        """Delete the product's alert so the next scan may raise it again."""
        alert_id = LowStockAlert.alert_id(product_id)
        with self.repository.transaction() as data:
            before = len(data.low_stock_alerts)
            data.low_stock_alerts = [a for a in data.low_stock_alerts if a.id != alert_id]
            cleared = len(data.low_stock_alerts) < before
        if cleared:
            logger.info("Low-stock alert cleared", extra={"extra": {"product_id": product_id}})
        return cleared

    def remove_expired_products(self, now: Optional[datetime] = None) -> int:
        """Drop products added more than ``product_ttl_hours`` ago.

        Products without a readable ``addedDate`` are kept.  Returns the
        number removed; 0 when the sweep is disabled.
        """
        ttl = self.settings.product_ttl_hours
        if not ttl or ttl <= 0:
            return 0
        cutoff = (now or datetime.now(timezone.utc)) - timedelta(hours=ttl)

        def expired(product) -> bool:
            added = _parse_timestamp(product.added_date)
            return added is not None and added <= cutoff

        if not any(expired(p) for p in self.repository.snapshot().products):
            return 0
        with self.repository.transaction() as data:
            kept = [p for p in data.products if not expired(p)]
            removed = len(data.products) - len(kept)
            data.products = kept
        if removed:
            logger.info(f"Removed {removed} expired products")
        return removed

    def run_once(self) -> Tuple[int, List[LowStockAlert]]:
        removed = self.remove_expired_products()
        return removed, self.scan_low_stock()

    # ---- background runner ----

    def _loop(self, interval: float) -> None:
        while not self._stop.wait(interval):
            try:
                self.run_once()
            except Exception:
                logger.exception("Inventory sweep failed")

    def start(self, interval: Optional[float] = None) -> None:
        """Run one sweep now, then every ``interval`` seconds on a daemon thread."""
        if self._thread and self._thread.is_alive():
            return
        self.run_once()
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._loop,
            args=(interval or self.settings.scan_interval_seconds,),
            name="inventory-monitor",
            daemon=True,
        )
        self._thread.start()

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        self._stop.set()
        if self._thread:
            self._thread.join(timeout)
            self._thread = None
