"""Runtime settings for the marketplace.

All values come from ``FARM_*`` environment variables and fall back to the
defaults below.  ``Settings.from_env()`` is read once by the application
wiring in :mod:`app`; tests build a ``Settings`` directly.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

_THIS_FILE = Path(__file__).resolve()
_DEFAULT_DB_PATH = (_THIS_FILE.parent / ".." / "db" / "farm_to_door.db").resolve()


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number (got {raw!r})")


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer (got {raw!r})")


@dataclass
class Settings:
    db_path: str = str(_DEFAULT_DB_PATH)
    log_dir: str = "logs"
    log_level: int = logging.INFO
    tax_rate: float = 0.08
    delivery_fee: float = 2.99
    low_stock_threshold: int = 10
    scan_interval_seconds: float = 60.0
    # Products older than this are swept from the catalogue; 0 disables.
    product_ttl_hours: float = 18.0
    delivery_days: int = 2
    currency_symbol: str = "₹"
    receipt_dir: str = "receipts"
    company_name: str = field(default="FarmFresh Agro")

    @classmethod
    def from_env(cls) -> "Settings":
        level_name = os.environ.get("FARM_LOG_LEVEL", "INFO").strip().upper()
        level = logging.getLevelName(level_name)
        if not isinstance(level, int):
            raise ValueError(f"FARM_LOG_LEVEL is not a logging level: {level_name!r}")
        return cls(
            db_path=os.environ.get("FARM_DB_PATH", str(_DEFAULT_DB_PATH)),
            log_dir=os.environ.get("FARM_LOG_DIR", "logs"),
            log_level=level,
            tax_rate=_env_float("FARM_TAX_RATE", 0.08),
            delivery_fee=_env_float("FARM_DELIVERY_FEE", 2.99),
            low_stock_threshold=_env_int("FARM_LOW_STOCK_THRESHOLD", 10),
            scan_interval_seconds=_env_float("FARM_SCAN_INTERVAL_SECONDS", 60.0),
            product_ttl_hours=_env_float("FARM_PRODUCT_TTL_HOURS", 18.0),
            delivery_days=_env_int("FARM_DELIVERY_DAYS", 2),
            currency_symbol=os.environ.get("FARM_CURRENCY_SYMBOL", "₹"),
            receipt_dir=os.environ.get("FARM_RECEIPT_DIR", "receipts"),
        )

    def format_currency(self, amount: float) -> str:
        try:
            return f"{self.currency_symbol}{float(amount):,.2f}"
        except (TypeError, ValueError):
            return f"{self.currency_symbol}0.00"
