import unittest

from support import AppTestCase

from cart import INVALID_QUANTITY
from checkout import (
    ADDRESS_REQUIRED,
    CART_CHANGED,
    CART_EMPTY,
    ORDER_CONFLICT,
    CheckoutState,
    CheckoutStateError,
)
from metrics import CHECKOUT_ERROR_TOTAL, ORDERS_CREATED_TOTAL
from repository import DATA_KEY


class TestCheckoutWorkflow(AppTestCase):
    """Cart checkout: guards, stock decrement, order totals and state moves."""

    def setUp(self):
        super().setUp()
        self.session = self.login("user")
        self.checkout = self.app.checkout

    def _buy(self, product_id, qty):
        self.checkout.reset()
        ok, msg = self.app.cart.add_item(product_id, qty)
        self.assertTrue(ok, msg)
        ok, msg = self.checkout.begin(self.session)
        self.assertTrue(ok, msg)
        return self.checkout.confirm()

    def test_checkout_success_decrements_stock_and_creates_order(self):
        self.set_stock(1, 5)
        before = len(self.orders())

        ok, msg = self._buy(1, 3)
        self.assertTrue(ok, msg)
        self.assertEqual(self.checkout.state, CheckoutState.CONFIRMED)
        self.assertEqual(self.product(1).stock, 2)
        self.assertEqual(len(self.orders()), before + 1)

        order = self.orders()[-1]
        self.assertEqual(order.status, "pending")
        self.assertEqual(order.user_id, self.session.user_id)
        self.assertEqual(order.farmer_id, 2)
        self.assertEqual(order.delivery_address, "123 Main St, City, State")
        self.assertAlmostEqual(order.order_summary.subtotal, 3 * 4.99, places=2)
        self.assertAlmostEqual(order.order_summary.delivery_fee, 2.99, places=2)
        self.assertAlmostEqual(order.amount, 3 * 4.99 * 1.08 + 2.99, delta=0.01)
        self.assertEqual(order.total, order.order_summary.total)
        # Totals are internally consistent to the cent
        s = order.order_summary
        self.assertAlmostEqual(s.total, s.subtotal + s.tax + s.delivery_fee, places=2)
        # Cart cleared after success
        self.assertTrue(self.app.cart.is_empty())
        self.assertEqual(ORDERS_CREATED_TOTAL.value(channel="cart"), 1)
        self.assertIn('orders_created_total{channel="cart"} 1', self.app.metrics_text())

    def test_order_items_are_snapshots(self):
        self._buy(1, 1)
        item = self.orders()[-1].items[0]
        self.assertEqual((item.product_id, item.name, item.quantity), (1, "Organic Tomatoes", 1))
        with self.app.repository.transaction() as data:
            data.product(1).price = 100.0
        self.assertAlmostEqual(self.orders()[-1].items[0].price, 4.99)

    def test_new_order_id_exceeds_existing(self):
        existing = max(o.id for o in self.orders())
        self._buy(2, 1)
        self.assertEqual(self.orders()[-1].id, existing + 1)

    def test_first_order_id_on_empty_store(self):
        with self.app.repository.transaction() as data:
            data.orders = []
        self._buy(2, 1)
        self.assertEqual(self.orders()[-1].id, 1001)

    def test_repeated_checkouts_reduce_stock(self):
        initial = self.product(5).stock
        for _ in range(3):
            ok, msg = self._buy(5, 4)
            self.assertTrue(ok, msg)
        self.assertEqual(self.product(5).stock, initial - 3 * 4)

    def test_empty_cart_rejected(self):
        before = len(self.orders())
        ok, msg = self.checkout.begin(self.session)
        self.assertFalse(ok)
        self.assertEqual(msg, CART_EMPTY)
        self.assertEqual(self.checkout.state, CheckoutState.IDLE)
        self.assertEqual(len(self.orders()), before)
        self.assertEqual(CHECKOUT_ERROR_TOTAL.value(type="empty_cart"), 1)

    def test_missing_address_rejected(self):
        ok, _ = self.app.auth.register("No Address", "noaddr@example.com", "pw", "user")
        self.assertTrue(ok)
        session = self.app.auth.login("noaddr@example.com", "pw", "user")
        self.app.cart.add_item(1, 1)
        ok, msg = self.checkout.begin(session)
        self.assertFalse(ok)
        self.assertEqual(msg, ADDRESS_REQUIRED)
        self.assertEqual(self.checkout.state, CheckoutState.IDLE)

    def test_begin_rechecks_stock(self):
        self.set_stock(1, 5)
        self.app.cart.add_item(1, 3)
        self.set_stock(1, 2)
        before = len(self.orders())

        ok, msg = self.checkout.begin(self.session)
        self.assertFalse(ok)
        self.assertEqual(msg, "Insufficient stock for Organic Tomatoes")
        self.assertEqual(self.checkout.state, CheckoutState.IDLE)
        self.assertEqual(self.product(1).stock, 2)
        self.assertEqual(len(self.orders()), before)

    def test_confirm_rechecks_stock_at_commit(self):
        self.set_stock(1, 5)
        self.app.cart.add_item(1, 3)
        ok, _ = self.checkout.begin(self.session)
        self.assertTrue(ok)
        # Someone else buys in between
        self.set_stock(1, 2)
        before = len(self.orders())

        ok, msg = self.checkout.confirm()
        self.assertFalse(ok)
        self.assertEqual(msg, "Insufficient stock for Organic Tomatoes")
        self.assertEqual(self.checkout.state, CheckoutState.IDLE)
        self.assertEqual(self.product(1).stock, 2)
        self.assertEqual(len(self.orders()), before)
        # Cart kept so the customer can adjust it
        self.assertEqual(self.app.cart.find(1).quantity, 3)

    def test_concurrent_write_aborts_without_partial_write(self):
        self.app.cart.add_item(1, 2)
        self.checkout.begin(self.session)
        stock_before = self.product(1).stock
        orders_before = len(self.orders())

        repo = self.app.repository
        original_commit = repo.commit

        def racing_commit(snapshot):
            # Another writer commits first
            self.app.dao.put(DATA_KEY, self.app.dao.get(DATA_KEY).value)
            return original_commit(snapshot)

        repo.commit = racing_commit
        try:
            ok, msg = self.checkout.confirm()
        finally:
            repo.commit = original_commit

        self.assertFalse(ok)
        self.assertEqual(msg, ORDER_CONFLICT)
        self.assertEqual(self.checkout.state, CheckoutState.IDLE)
        self.assertEqual(self.product(1).stock, stock_before)
        self.assertEqual(len(self.orders()), orders_before)
        self.assertFalse(self.app.cart.is_empty())

    def test_cart_changed_after_summary_is_not_ordered(self):
        self.app.cart.add_item(1, 1)
        ok, _ = self.checkout.begin(self.session)
        self.assertTrue(ok)
        self.app.cart.add_item(2, 2)
        stock_before = (self.product(1).stock, self.product(2).stock)
        orders_before = len(self.orders())

        ok, msg = self.checkout.confirm()
        self.assertFalse(ok)
        self.assertEqual(msg, CART_CHANGED)
        self.assertEqual(self.checkout.state, CheckoutState.IDLE)
        self.assertEqual(len(self.orders()), orders_before)
        self.assertEqual((self.product(1).stock, self.product(2).stock), stock_before)
        # Both lines kept for the next attempt
        self.assertEqual(self.app.cart.find(1).quantity, 1)
        self.assertEqual(self.app.cart.find(2).quantity, 2)
        self.assertEqual(CHECKOUT_ERROR_TOTAL.value(type="cart_changed"), 1)

        ok, _ = self.checkout.begin(self.session)
        self.assertTrue(ok)
        ok, msg = self.checkout.confirm()
        self.assertTrue(ok, msg)
        items = sorted((i.product_id, i.quantity) for i in self.orders()[-1].items)
        self.assertEqual(items, [(1, 1), (2, 2)])
        self.assertTrue(self.app.cart.is_empty())

    def test_quantity_change_after_summary_is_not_ordered(self):
        self.app.cart.add_item(1, 1)
        self.checkout.begin(self.session)
        self.app.cart.update_quantity(1, 3)
        ok, msg = self.checkout.confirm()
        self.assertFalse(ok)
        self.assertEqual(msg, CART_CHANGED)
        self.assertEqual(self.app.cart.find(1).quantity, 3)

    def test_cancel_leaves_everything_untouched(self):
        self.app.cart.add_item(1, 2)
        stock_before = self.product(1).stock
        self.checkout.begin(self.session)
        self.checkout.cancel()
        self.assertEqual(self.checkout.state, CheckoutState.CANCELLED)
        self.assertIsNone(self.checkout.summary)
        self.assertEqual(self.app.cart.find(1).quantity, 2)
        self.assertEqual(self.product(1).stock, stock_before)

        # A new attempt needs a reset first
        with self.assertRaises(CheckoutStateError):
            self.checkout.begin(self.session)
        self.checkout.reset()
        ok, _ = self.checkout.begin(self.session)
        self.assertTrue(ok)

    def test_invalid_transitions_raise(self):
        with self.assertRaises(CheckoutStateError):
            self.checkout.confirm()
        with self.assertRaises(CheckoutStateError):
            self.checkout.cancel()

    def test_summary_matches_placed_order(self):
        self.app.cart.add_item(3, 2)
        self.checkout.begin(self.session)
        summary = self.checkout.summary
        self.assertAlmostEqual(summary.subtotal, 13.98, places=2)
        self.assertAlmostEqual(summary.tax, 1.12, places=2)
        self.assertAlmostEqual(summary.total, 13.98 + 1.12 + 2.99, places=2)
        self.assertEqual(summary.delivery_phone, "+1234567890")
        ok, _ = self.checkout.confirm()
        self.assertTrue(ok)
        self.assertEqual(self.checkout.order.order_summary, summary.order_summary)
        self.assertEqual(self.checkout.order.delivery_date, summary.delivery_date)

    def test_order_notifications_queued(self):
        self._buy(1, 1)
        self.assertEqual(self.app.outbox.pending(), 2)
        self.assertEqual(self.app.outbox.run_pending(), 2)
        self.assertEqual(self.app.email.sent[-1].template, "order_placed")
        self.assertEqual(self.app.email.sent[-1].to, "customer@demo.com")
        self.assertTrue(self.app.chat.links[-1].startswith("https://wa.me/?text="))

    def test_low_stock_scan_runs_after_checkout(self):
        # Fresh Spinach: stock 20, threshold 8
        ok, _ = self._buy(6, 13)
        self.assertTrue(ok)
        alerts = self.app.repository.snapshot().low_stock_alerts
        self.assertEqual([a.product_id for a in alerts], [6])
        self.assertEqual(alerts[0].current_stock, 7)

    def test_multi_farmer_cart_credits_first_farmer(self):
        farmer_ok, _ = self.app.auth.register(
            "Tom Grower", "tom@example.com", "pw", "farmer", farm_name="Hill Farm"
        )
        self.assertTrue(farmer_ok)
        tom = self.app.auth.login("tom@example.com", "pw", "farmer")
        ok, msg = self.app.farmer.add_product(
            tom, name="Honey", price=8.0, unit="each", category="dairy", stock=10
        )
        self.assertTrue(ok, msg)
        honey = self.app.farmer.my_products(tom)[0]
        session = self.login("user")

        self.app.cart.add_item(honey.id, 1)
        self.app.cart.add_item(1, 1)
        self.checkout.begin(session)
        with self.assertLogs("checkout", level="WARNING"):
            ok, _ = self.checkout.confirm()
        self.assertTrue(ok)
        order = self.orders()[-1]
        self.assertEqual(order.farmer_id, tom.user_id)
        self.assertEqual(order.farmer_name, "Hill Farm")
        self.assertEqual(len(order.items), 2)


class TestDirectOrder(AppTestCase):
    """Single-product "order now" purchases."""

    def setUp(self):
        super().setUp()
        self.session = self.login("user")

    def test_direct_order_success(self):
        stock = self.product(4).stock
        ok, msg = self.app.checkout.place_direct_order(
            self.session, 4, 2, "Jane Doe", "9 Elm Road", "+15550001", "upi"
        )
        self.assertTrue(ok, msg)
        self.assertEqual(self.product(4).stock, stock - 2)

        order = self.orders()[-1]
        self.assertEqual(order.user_name, "Jane Doe")
        self.assertEqual(order.delivery_phone, "+15550001")
        self.assertEqual(order.payment_method, "upi")
        self.assertEqual(len(order.items), 1)
        self.assertAlmostEqual(order.amount, 2 * 3.49 * 1.08 + 2.99, delta=0.01)

        # Delivery details saved to the profile and the session
        user = self.app.repository.snapshot().user(self.session.user_id)
        self.assertEqual((user.name, user.address, user.phone), ("Jane Doe", "9 Elm Road", "+15550001"))
        self.assertEqual(self.app.auth.current_session().user.address, "9 Elm Road")
        self.assertEqual(ORDERS_CREATED_TOTAL.value(channel="direct"), 1)

    def test_direct_order_requires_delivery_details(self):
        before = len(self.orders())
        ok, msg = self.app.checkout.place_direct_order(self.session, 4, 1, "Jane", "", "+1")
        self.assertFalse(ok)
        self.assertEqual(msg, "Please fill in all delivery details")
        self.assertEqual(len(self.orders()), before)

    def test_direct_order_insufficient_stock(self):
        self.set_stock(4, 1)
        ok, msg = self.app.checkout.place_direct_order(self.session, 4, 2, "Jane", "Addr", "+1")
        self.assertFalse(ok)
        self.assertEqual(msg, "Insufficient stock available")
        self.assertEqual(self.product(4).stock, 1)

    def test_direct_order_quantity_must_be_whole_number(self):
        stock = self.product(4).stock
        for bad in (0.5, True):
            ok, msg = self.app.checkout.place_direct_order(self.session, 4, bad, "Jane", "Addr", "+1")
            self.assertFalse(ok)
            self.assertEqual(msg, INVALID_QUANTITY)
        self.assertEqual(self.product(4).stock, stock)

    def test_direct_order_unknown_product(self):
        ok, msg = self.app.checkout.place_direct_order(self.session, 999, 1, "Jane", "Addr", "+1")
        self.assertFalse(ok)
        self.assertEqual(msg, "Product not found")


if __name__ == "__main__":
    unittest.main()
