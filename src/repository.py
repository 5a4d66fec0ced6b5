"""
Marketplace repository: the only code that reads or writes the data slot.

Callers get a decoded :class:`~models.MarketplaceData` either as a
read-only ``snapshot()`` or inside ``transaction()``, which re-reads the
slot, hands out a mutable copy and commits it back with the version it was
read at.  A commit that finds a newer version in storage raises
:class:`ConcurrentModificationError` and writes nothing.

The cart and current-user slots are plain JSON slots with last-writer-wins
semantics, reached through ``read_json`` / ``write_json``.
"""

from __future__ import annotations

import json
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, Optional

from dao import KeyValueDAO
from models import MarketplaceData
from seed import default_dataset_dict

logger = logging.getLogger(__name__)

DATA_KEY = "farm_to_door_data"
CART_KEY = "shopping_cart"
SESSION_KEY = "current_user"

SAVE_CONFLICT = "Your changes could not be saved. Please try again."


class ConcurrentModificationError(RuntimeError):
    """The data slot changed between the read and the commit of a transaction."""


class Rollback(Exception):
    """Raised inside a transaction body to discard its changes.

    The message is the user-facing reason; ``transaction()`` re-raises it
    unchanged for the caller to report.
    """


@dataclass
class Snapshot:
    data: MarketplaceData
    # Version of the slot the data was read at; 0 when the slot did not exist
    version: int


class MarketplaceRepository:
    """Owns exclusive write access to the marketplace data slot."""

    def __init__(
        self,
        dao: KeyValueDAO,
        seed_factory: Callable[[], Dict[str, Any]] = default_dataset_dict,
    ) -> None:
        self._dao = dao
        self._seed_factory = seed_factory
        # Serialises transactions in this process; the version check covers
        # writers in other processes.
        self._lock = threading.RLock()

    # ---- lifecycle ----

    def initialize(self) -> None:
        """Write the demo dataset if the store is empty.

        An existing store without products gets the demo products back;
        everything else is left as stored.
        """
        with self._lock:
            slot = self._dao.get(DATA_KEY)
            if slot is None:
                self._dao.put(DATA_KEY, json.dumps(self._seed_factory()))
                logger.info("Initialised marketplace data with demo dataset")
                return
            if self.snapshot().products:
                return
            with self.transaction() as data:
                data.products = MarketplaceData.from_dict(
                    {"products": self._seed_factory()["products"]}
                ).products
            logger.info("Restored demo products into empty catalogue")

    def reset(self) -> None:
        """Replace stored data with the demo dataset and drop cart/session slots."""
        with self._lock:
            self._dao.put(DATA_KEY, json.dumps(self._seed_factory()))
            self._dao.delete(CART_KEY)
            self._dao.delete(SESSION_KEY)

    # ---- reads ----

    def load(self) -> Snapshot:
        """Decode the data slot.

        Sections that are missing or not lists are replaced by the demo
        dataset's sections.  If the slot cannot be decoded at all the whole
        demo dataset is returned instead, and the next commit overwrites the
        unreadable value.
        """
        slot = self._dao.get(DATA_KEY)
        if slot is None:
            return Snapshot(MarketplaceData.from_dict(self._seed_factory()), 0)
        try:
            raw = json.loads(slot.value)
            if not isinstance(raw, dict):
                raise TypeError("stored data is not an object")
            seed: Optional[Dict[str, Any]] = None
            for key in MarketplaceData.SECTIONS:
                if not isinstance(raw.get(key), list):
                    seed = seed or self._seed_factory()
                    raw[key] = seed[key]
            data = MarketplaceData.from_dict(raw)
        except (ValueError, TypeError, KeyError) as e:
            logger.warning(
                "Stored marketplace data unreadable; using demo dataset",
                extra={"extra": {"error": str(e), "version": slot.version}},
            )
            data = MarketplaceData.from_dict(self._seed_factory())
        return Snapshot(data, slot.version)

    def snapshot(self) -> MarketplaceData:
        """Current data for read-only use.  Mutations are not persisted."""
        return self.load().data

    # ---- writes ----

    def commit(self, snapshot: Snapshot) -> int:
        """Persist ``snapshot.data`` if the slot is still at ``snapshot.version``.

        Returns the new version.

        Raises:
            ConcurrentModificationError: if another writer committed first.
        """
        payload = json.dumps(snapshot.data.to_dict())
        with self._lock:
            if not self._dao.compare_and_put(DATA_KEY, payload, snapshot.version):
                raise ConcurrentModificationError(
                    f"marketplace data changed since version {snapshot.version}"
                )
        return snapshot.version + 1

    @contextmanager
    def transaction(self) -> Iterator[MarketplaceData]:
        """Read, let the caller mutate, then commit.

        If the body raises, nothing is written and the exception propagates.
        """
        with self._lock:
            snapshot = self.load()
            yield snapshot.data
            self.commit(snapshot)

    # ---- side slots ----

    def read_json(self, key: str, default: Any = None) -> Any:
        slot = self._dao.get(key)
        if slot is None:
            return default
        try:
            return json.loads(slot.value)
        except ValueError:
            logger.warning("Slot %s holds invalid JSON; ignoring it", key)
            return default

    def write_json(self, key: str, value: Any) -> None:
        self._dao.put(key, json.dumps(value))

    def delete(self, key: str) -> None:
        self._dao.delete(key)
