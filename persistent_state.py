"""Subscription registry with JSON file persistence.

Layout of the registry: chat_id -> product_id -> TrackedProduct.

File (tracking.json by default), written whole on every save via a temp file
and an atomic replace:

{
  "123456": {
    "100": {
      "productName": "Jacket black",
      "requestedSizes": {"M": true},
      "lastPrices": {"M": 50.0, "L": 0}
    }
  }
}

In memory an out-of-stock size holds ``None``; on disk it is written as 0.

Thread-safety: every registry access goes through a single reader/writer lock.
The lock only covers dictionary work; file writes happen after it is released,
ordered by a separate writer mutex so a later save can never be overwritten by
an earlier one.
"""
from __future__ import annotations

import json
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, Iterator, Set

from config import StartupFailure

logger = logging.getLogger(__name__)

TRACKING_FILE = Path("tracking.json")
OUT_OF_STOCK = 0
CENTS = Decimal("0.01")


class PersistenceError(Exception):
    """The registry could not be written to disk."""


@dataclass
class TrackedProduct:
    product_name: str
    requested_sizes: Set[str] = field(default_factory=set)
    # size -> last known price, None while out of stock
    last_prices: Dict[str, Decimal | None] = field(default_factory=dict)

    @property
    def tracks_all_sizes(self) -> bool:
        return not self.requested_sizes

    def wants(self, size_name: str) -> bool:
        return self.tracks_all_sizes or size_name in self.requested_sizes

    def copy(self) -> "TrackedProduct":
        return TrackedProduct(
            product_name=self.product_name,
            requested_sizes=set(self.requested_sizes),
            last_prices=dict(self.last_prices),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "productName": self.product_name,
            "requestedSizes": {s: True for s in sorted(self.requested_sizes)},
            "lastPrices": {
                size: (OUT_OF_STOCK if price is None else price)
                for size, price in self.last_prices.items()
            },
        }

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "TrackedProduct":
        if not isinstance(raw, dict):
            raise ValueError(f"tracked product must be an object, got {type(raw).__name__}")
        requested = raw.get("requestedSizes") or {}
        if isinstance(requested, dict):
            sizes = {str(k) for k, v in requested.items() if v}
        elif isinstance(requested, list):
            sizes = {str(s) for s in requested}
        else:
            raise ValueError("requestedSizes must be an object or a list")
        prices_raw = raw.get("lastPrices") or {}
        if not isinstance(prices_raw, dict):
            raise ValueError("lastPrices must be an object")
        prices: Dict[str, Decimal | None] = {}
        for size, value in prices_raw.items():
            try:
                price = Decimal(value)
                prices[str(size)] = None if price <= OUT_OF_STOCK else price.quantize(CENTS)
            except (InvalidOperation, TypeError) as e:
                raise ValueError(f"bad price {value!r} for size {size!r}") from e
        return cls(
            product_name=str(raw.get("productName", "")),
            requested_sizes=sizes,
            last_prices=prices,
        )


class ReadWriteLock:
    """Many readers or one writer. Waiting writers block new readers."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    def acquire_read(self) -> None:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1

    def release_read(self) -> None:
        with self._cond:
            self._readers -= 1
            if self._readers == 0:
                self._cond.notify_all()

    def acquire_write(self) -> None:
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True

    def release_write(self) -> None:
        with self._cond:
            self._writer = False
            self._cond.notify_all()

    @contextmanager
    def read(self) -> Iterator[None]:
        self.acquire_read()
        try:
            yield
        finally:
            self.release_read()

    @contextmanager
    def write(self) -> Iterator[None]:
        self.acquire_write()
        try:
            yield
        finally:
            self.release_write()


Registry = Dict[int, Dict[str, TrackedProduct]]


def _copy_registry(data: Registry) -> Registry:
    return {chat_id: {pid: item.copy() for pid, item in products.items()} for chat_id, products in data.items()}


class TrackingStore:
    def __init__(self, path: Path = TRACKING_FILE) -> None:
        self.path = Path(path)
        self._lock = ReadWriteLock()
        self._save_lock = threading.Lock()
        self._data: Registry = {}

    # ---------- Loading / saving ----------

    @classmethod
    def load(cls, path: Path = TRACKING_FILE) -> "TrackingStore":
        """Build a store from the file at ``path``.

        A missing or empty file gives an empty registry. Anything unreadable
        raises StartupFailure.
        """
        store = cls(path)
        if not store.path.is_file():
            logger.info("No tracking file at %s, starting with an empty registry", store.path)
            return store
        try:
            text = store.path.read_text("utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise StartupFailure(f"could not read {store.path}: {e}") from e
        if not text.strip():
            logger.info("Tracking file %s is empty, starting with an empty registry", store.path)
            return store
        try:
            raw = json.loads(text, parse_float=Decimal)
            store._data = store._deserialize(raw)
        except ValueError as e:
            raise StartupFailure(f"corrupt tracking file {store.path}: {e}") from e
        logger.info("Loaded %d tracked products from %s", store.count(), store.path)
        return store

    @staticmethod
    def _deserialize(raw: Any) -> Registry:
        if not isinstance(raw, dict):
            raise ValueError("top level must be an object")
        data: Registry = {}
        for chat_key, products in raw.items():
            chat_id = int(chat_key)
            if not isinstance(products, dict):
                raise ValueError(f"entry for chat {chat_key} must be an object")
            data[chat_id] = {str(pid): TrackedProduct.from_dict(item) for pid, item in products.items()}
        return data

    def _serialize(self) -> Dict[str, Any]:
        return {
            str(chat_id): {pid: item.to_dict() for pid, item in products.items()}
            for chat_id, products in self._data.items()
        }

    def save(self) -> None:
        """Write the whole registry. Raises PersistenceError on failure."""
        with self._save_lock:
            with self._lock.read():
                data = self._serialize()
            text = json.dumps(data, indent=2, ensure_ascii=False, default=float)
            tmp = self.path.with_suffix(self.path.suffix + ".tmp")
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                tmp.write_text(text, encoding="utf-8")
                tmp.replace(self.path)
            except OSError as e:
                logger.error("Failed saving tracking data to %s: %s", self.path, e)
                raise PersistenceError(f"could not write {self.path}: {e}") from e
        logger.debug("Tracking data saved to %s", self.path)

    # ---------- Mutations ----------

    def upsert(self, chat_id: int, product_id: str, item: TrackedProduct) -> None:
        """Replace any existing subscription, then save.

        The in-memory change stays even if the save raises PersistenceError.
        """
        with self._lock.write():
            self._data.setdefault(chat_id, {})[product_id] = item.copy()
        self.save()

    def remove(self, chat_id: int, product_id: str) -> bool:
        with self._lock.write():
            products = self._data.get(chat_id)
            found = products is not None and products.pop(product_id, None) is not None
            if products is not None and not products:
                del self._data[chat_id]
        if found:
            self.save()
        return found

    def update_size_price(self, chat_id: int, product_id: str, size_name: str, price: Decimal | None) -> bool:
        """Set one size's last price without saving.

        Returns False and changes nothing when the subscription has been
        removed since the caller's snapshot was taken.
        """
        with self._lock.write():
            item = self._data.get(chat_id, {}).get(product_id)
            if item is None:
                return False
            item.last_prices[size_name] = price
            return True

    # ---------- Reads ----------

    def get(self, chat_id: int) -> Dict[str, TrackedProduct]:
        with self._lock.read():
            return {pid: item.copy() for pid, item in self._data.get(chat_id, {}).items()}

    def snapshot_all(self) -> Registry:
        with self._lock.read():
            return _copy_registry(self._data)

    def count(self) -> int:
        with self._lock.read():
            return sum(len(products) for products in self._data.values())

    def __len__(self) -> int:
        return self.count()


__all__ = ["TrackedProduct", "TrackingStore", "ReadWriteLock", "PersistenceError", "OUT_OF_STOCK"]
