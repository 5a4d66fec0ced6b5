# src/app.py
"""
Application wiring for the Farm to Door marketplace.

``FarmToDoorApp`` builds every service over one storage file and exposes
them as attributes (``auth``, ``cart``, ``checkout``, ``customer``,
``farmer``, ``admin``...).  The CLI and the tests both go through it.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional, Tuple

from auth import AuthManager, Session
from cart import ShoppingCart
from checkout import CheckoutWorkflow
from config import Settings
from dao import KeyValueDAO
from dashboards import AdminDashboard, CustomerDashboard, FarmerDashboard
from external_services import ChatShareService, EmailMessage, EmailService, ReceiptService
from inventory import InventoryMonitor
from metrics import generate_metrics_text
from outbox import OrderNotifier, OutboundQueue
from ratings import submit_rating
from repository import MarketplaceRepository

logger = logging.getLogger(__name__)


class FarmToDoorApp:
    def __init__(
        self,
        settings: Optional[Settings] = None,
        email_transport: Optional[Callable[[EmailMessage], None]] = None,
    ) -> None:
        self.settings = settings or Settings.from_env()
        self.dao = KeyValueDAO(self.settings.db_path)
        self.repository = MarketplaceRepository(self.dao)
        self.repository.initialize()

        self.auth = AuthManager(self.repository)
        self.cart = ShoppingCart(self.repository)

        # Third-party integrations only run from the outbound queue
        self.outbox = OutboundQueue()
        self.email = EmailService(self.settings.company_name, email_transport)
        self.receipts = ReceiptService(
            self.settings.receipt_dir, self.settings.company_name, self.settings.currency_symbol
        )
        self.chat = ChatShareService(currency_symbol=self.settings.currency_symbol)
        self.notifier = OrderNotifier(self.outbox, self.email, self.receipts, self.chat)

        self.monitor = InventoryMonitor(self.repository, self.settings)
        self.checkout = CheckoutWorkflow(
            self.repository,
            self.cart,
            self.settings,
            monitor=self.monitor,
            notifier=self.notifier,
            auth=self.auth,
        )
        self.customer = CustomerDashboard(self.repository, self.notifier)
        self.farmer = FarmerDashboard(self.repository, self.auth, self.settings)
        self.admin = AdminDashboard(self.repository)
        logger.info("Marketplace ready", extra={"extra": {"db_path": self.settings.db_path}})

    # ---- lifecycle ----

    def start_background(self) -> None:
        """Start the periodic inventory sweep and the outbound worker."""
        self.monitor.start()
        self.outbox.start()

    def shutdown(self) -> None:
        self.monitor.stop()
        self.outbox.stop()
        self.dao.close()

    def __enter__(self) -> "FarmToDoorApp":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.shutdown()

    # ---- convenience ----

    @property
    def session(self) -> Optional[Session]:
        return self.auth.current_session()

    def submit_rating(self, session: Session, order_id: Any, rating: int, comment: str = "") -> Tuple[bool, str]:
        return submit_rating(self.repository, session, order_id, rating, comment)

    def metrics_text(self) -> str:
        return generate_metrics_text().decode("utf-8")
