# --- path/bootstrap (keep this at the very top) ---
from pathlib import Path
import sys

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

for p in (SRC, ROOT):
    if p.is_dir() and str(p) not in sys.path:
        sys.path.insert(0, str(p))
# --- end path/bootstrap ---

import os
import shutil
import tempfile
import unittest
from contextlib import contextmanager

from app import FarmToDoorApp
from config import Settings
from metrics import reset_all
from repository import DATA_KEY
from seed import DEMO_ACCOUNTS, DEMO_PASSWORD


def fresh_settings(tmpdir: str, **overrides) -> Settings:
    """Settings pointing every file the app writes into ``tmpdir``."""
    values = dict(
        db_path=os.path.join(tmpdir, "farm_to_door.db"),
        log_dir=os.path.join(tmpdir, "logs"),
        receipt_dir=os.path.join(tmpdir, "receipts"),
    )
    values.update(overrides)
    return Settings(**values)


class AppTestCase(unittest.TestCase):
    """
    Base case: a fresh temporary SQLite file seeded with the demo dataset,
    and a ``FarmToDoorApp`` built over it.
    """

    settings_overrides: dict = {}

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp(prefix="farm-to-door-")
        self.settings = fresh_settings(self.tmpdir, **self.settings_overrides)
        reset_all()
        self.app = FarmToDoorApp(self.settings)

    def tearDown(self):
        self.app.shutdown()
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    # ---- helpers ----

    def login(self, role: str = "user"):
        session = self.app.auth.login(DEMO_ACCOUNTS[role], DEMO_PASSWORD, role)
        self.assertIsNotNone(session, f"demo {role} login failed")
        return session

    def set_stock(self, product_id: int, stock: int) -> None:
        with self.app.repository.transaction() as data:
            data.product(product_id).stock = stock

    def product(self, product_id: int):
        return self.app.repository.snapshot().product(product_id)

    def orders(self):
        return self.app.repository.snapshot().orders

    @contextmanager
    def concurrent_writer(self):
        """Make the next repository commits lose to another writer."""
        repo = self.app.repository
        original_commit = repo.commit

        def racing_commit(snapshot):
            self.app.dao.put(DATA_KEY, self.app.dao.get(DATA_KEY).value)
            return original_commit(snapshot)

        repo.commit = racing_commit
        try:
            yield
        finally:
            repo.commit = original_commit
