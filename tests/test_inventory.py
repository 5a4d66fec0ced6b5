import unittest
from datetime import datetime, timedelta, timezone

from support import AppTestCase

from inventory import InventoryMonitor
from metrics import LOW_STOCK_ALERTS_TOTAL


class TestLowStockScan(AppTestCase):
    """Alerts fire once per product and only clear_alert re-arms them."""

    def test_scan_creates_alert_and_notification(self):
        # Organic Tomatoes: threshold 10
        self.set_stock(1, 10)
        raised = self.app.monitor.scan_low_stock()
        self.assertEqual([a.id for a in raised], ["low-stock-1"])

        data = self.app.repository.snapshot()
        alert = data.alert("low-stock-1")
        self.assertEqual(alert.current_stock, 10)
        self.assertEqual(alert.threshold, 10)
        self.assertEqual(alert.farmer_id, 2)
        self.assertIn("Organic Tomatoes", alert.message)
        self.assertEqual(len(data.notifications), 1)
        self.assertEqual(data.notifications[0].type, "low-stock")
        self.assertEqual(data.notifications[0].farmer_id, 2)
        self.assertEqual(LOW_STOCK_ALERTS_TOTAL.value(), 1)

    def test_no_alert_above_threshold(self):
        self.set_stock(1, 11)
        self.assertEqual(self.app.monitor.scan_low_stock(), [])
        self.assertEqual(self.app.repository.snapshot().low_stock_alerts, [])

    def test_alert_fires_once(self):
        self.set_stock(1, 3)
        self.assertEqual(len(self.app.monitor.scan_low_stock()), 1)
        self.set_stock(1, 1)
        self.assertEqual(self.app.monitor.scan_low_stock(), [])
        # Restocking does not remove the alert either
        self.set_stock(1, 50)
        self.app.monitor.scan_low_stock()
        self.assertIsNotNone(self.app.repository.snapshot().alert("low-stock-1"))
        self.assertEqual(len(self.app.repository.snapshot().notifications), 1)

    def test_clear_alert_rearms_product(self):
        self.set_stock(1, 3)
        self.app.monitor.scan_low_stock()
        self.assertTrue(self.app.monitor.clear_alert(1))
        self.assertFalse(self.app.monitor.clear_alert(1))
        raised = self.app.monitor.scan_low_stock()
        self.assertEqual([a.product_id for a in raised], [1])

    def test_default_threshold_when_product_has_none(self):
        with self.app.repository.transaction() as data:
            p = data.product(2)
            p.low_stock_threshold = 0
            p.stock = 10
        raised = self.app.monitor.scan_low_stock()
        self.assertEqual([a.product_id for a in raised], [2])
        self.assertEqual(raised[0].threshold, 10)

    def test_on_alert_callback(self):
        seen = []
        monitor = InventoryMonitor(self.app.repository, self.settings, on_alert=seen.append)
        self.set_stock(3, 0)
        monitor.scan_low_stock()
        self.assertEqual([a.product_id for a in seen], [3])

    def test_failing_callback_does_not_break_scan(self):
        def boom(alert):
            raise RuntimeError("callback down")

        monitor = InventoryMonitor(self.app.repository, self.settings, on_alert=boom)
        self.set_stock(3, 0)
        with self.assertLogs("inventory", level="ERROR"):
            raised = monitor.scan_low_stock()
        self.assertEqual(len(raised), 1)
        self.assertIsNotNone(self.app.repository.snapshot().alert("low-stock-3"))


class TestExpiredProductSweep(AppTestCase):
    def _age_product(self, product_id, hours):
        added = datetime.now(timezone.utc) - timedelta(hours=hours)
        with self.app.repository.transaction() as data:
            data.product(product_id).added_date = added.isoformat()

    def test_removes_products_older_than_ttl(self):
        self._age_product(1, 19)
        self._age_product(2, 17)
        removed = self.app.monitor.remove_expired_products()
        self.assertEqual(removed, 1)
        ids = [p.id for p in self.app.repository.snapshot().products]
        self.assertNotIn(1, ids)
        self.assertIn(2, ids)

    def test_products_without_added_date_are_kept(self):
        with self.app.repository.transaction() as data:
            data.product(1).added_date = None
            data.product(2).added_date = "not a date"
        later = datetime.now(timezone.utc) + timedelta(days=30)
        removed = self.app.monitor.remove_expired_products(now=later)
        self.assertEqual(removed, 4)
        ids = sorted(p.id for p in self.app.repository.snapshot().products)
        self.assertEqual(ids, [1, 2])

    def test_nothing_expired_writes_nothing(self):
        version = self.app.dao.get("farm_to_door_data").version
        self.assertEqual(self.app.monitor.remove_expired_products(), 0)
        self.assertEqual(self.app.dao.get("farm_to_door_data").version, version)

    def test_run_once_sweeps_then_scans(self):
        self._age_product(1, 24)
        self.set_stock(2, 1)
        removed, alerts = self.app.monitor.run_once()
        self.assertEqual(removed, 1)
        self.assertEqual([a.product_id for a in alerts], [2])


class TestSweepDisabled(AppTestCase):
    settings_overrides = {"product_ttl_hours": 0}

    def test_zero_ttl_disables_sweep(self):
        later = datetime.now(timezone.utc) + timedelta(days=30)
        self.assertEqual(self.app.monitor.remove_expired_products(now=later), 0)
        self.assertEqual(len(self.app.repository.snapshot().products), 6)


class TestMonitorThread(AppTestCase):
    def test_start_runs_immediately_and_stops(self):
        self.set_stock(1, 0)
        self.app.monitor.start(interval=3600)
        try:
            self.assertIsNotNone(self.app.repository.snapshot().alert("low-stock-1"))
        finally:
            self.app.monitor.stop()
        self.assertIsNone(self.app.monitor._thread)


if __name__ == "__main__":
    unittest.main()
