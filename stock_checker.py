"""Price/stock reconciliation.

Compares freshly fetched size states with the last known prices stored for a
subscription and decides which transitions deserve a notification:

- out of stock -> in stock        : RESTOCKED (notify)
- in stock -> out of stock/absent : STOCKOUT (notify)
- in stock, price went down       : PRICE_DROP (notify)
- in stock, price otherwise moved : PRICE_CHANGED (stored silently)
- size not seen before            : NEW_SIZE (stored silently)
- anything else                   : nothing

Every size ever observed stays in the stored last prices, so a size that shows
up for the first time is adopted with its current price (or as out of stock)
and compared from the next pass on.

`PriceChecker.run_once` runs one pass over every subscription. It works on a
snapshot of the store so the registry lock is never held during network calls,
and it requests products one after another with a fixed delay in between.
"""
from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Awaitable, Callable, Dict, List, Optional

from fetcher import ProductFetchError, ProductSnapshot, SizeState, WildberriesClient
from persistent_state import PersistenceError, TrackedProduct, TrackingStore

logger = logging.getLogger(__name__)

NotifyFn = Callable[[int, str], Awaitable[None]]


class ChangeKind(enum.Enum):
    NONE = "none"
    RESTOCKED = "restocked"
    STOCKOUT = "stockout"
    PRICE_DROP = "price_drop"
    PRICE_CHANGED = "price_changed"
    NEW_SIZE = "new_size"

    @property
    def notifiable(self) -> bool:
        return self in (ChangeKind.RESTOCKED, ChangeKind.STOCKOUT, ChangeKind.PRICE_DROP)


@dataclass(frozen=True)
class Transition:
    kind: ChangeKind
    new_price: Decimal | None


@dataclass(frozen=True)
class SizeChange:
    size_name: str
    kind: ChangeKind
    old_price: Decimal | None
    new_price: Decimal | None
    notify: bool


@dataclass
class CheckSummary:
    checked: int = 0
    failed: int = 0
    notifications: int = 0
    saves: int = 0


def classify_transition(old_price: Decimal | None, new: Optional[SizeState]) -> Transition:
    """Classify one size. ``old_price`` is None while the size was out of stock."""
    was_in_stock = old_price is not None
    now_in_stock = new is not None and new.in_stock and new.price is not None

    if not was_in_stock and not now_in_stock:
        return Transition(ChangeKind.NONE, None)
    if not was_in_stock:
        return Transition(ChangeKind.RESTOCKED, new.price)
    if not now_in_stock:
        return Transition(ChangeKind.STOCKOUT, None)
    if new.price < old_price:
        return Transition(ChangeKind.PRICE_DROP, new.price)
    if new.price != old_price:
        return Transition(ChangeKind.PRICE_CHANGED, new.price)
    return Transition(ChangeKind.NONE, old_price)


def diff_product(item: TrackedProduct, snapshot: ProductSnapshot) -> List[SizeChange]:
    """Return the stored-value changes between ``item`` and a fresh ``snapshot``."""
    fresh: Dict[str, SizeState] = snapshot.size_map()
    changes: List[SizeChange] = []
    for size_name, old_price in item.last_prices.items():
        transition = classify_transition(old_price, fresh.get(size_name))
        if transition.kind is ChangeKind.NONE:
            continue
        changes.append(
            SizeChange(
                size_name=size_name,
                kind=transition.kind,
                old_price=old_price,
                new_price=transition.new_price,
                notify=transition.kind.notifiable and item.wants(size_name),
            )
        )
    for size_name, state in fresh.items():
        if size_name in item.last_prices:
            continue
        changes.append(
            SizeChange(
                size_name=size_name,
                kind=ChangeKind.NEW_SIZE,
                old_price=None,
                new_price=state.price if state.in_stock else None,
                notify=False,
            )
        )
    return changes


class PriceChecker:
    """Runs reconciliation passes over a TrackingStore."""

    def __init__(
        self,
        store: TrackingStore,
        client: WildberriesClient,
        notify: NotifyFn,
        format_change: Callable[[TrackedProduct, str, SizeChange], str],
        request_delay: float = 2,
    ) -> None:
        self.store = store
        self.client = client
        self.notify = notify
        self.format_change = format_change
        self.request_delay = request_delay

    async def run_once(self) -> CheckSummary:
        summary = CheckSummary()
        registry = self.store.snapshot_all()
        logger.info("Price check started for %d subscriptions", sum(len(p) for p in registry.values()))

        for chat_id, products in registry.items():
            for product_id, item in products.items():
                try:
                    await self._check_product(chat_id, product_id, item, summary)
                finally:
                    await asyncio.sleep(self.request_delay)

        logger.info(
            "Price check complete: checked=%d failed=%d notifications=%d saves=%d",
            summary.checked, summary.failed, summary.notifications, summary.saves,
        )
        return summary

    async def _check_product(self, chat_id: int, product_id: str, item: TrackedProduct, summary: CheckSummary) -> None:
        try:
            snapshot = await asyncio.to_thread(self.client.fetch, product_id)
        except ProductFetchError as e:
            summary.failed += 1
            logger.warning("Check of product %s for chat %s failed: %s", product_id, chat_id, e)
            return
        summary.checked += 1

        changed = False
        for change in diff_product(item, snapshot):
            if not self.store.update_size_price(chat_id, product_id, change.size_name, change.new_price):
                logger.info("Product %s was untracked by chat %s during the check; skipping", product_id, chat_id)
                return
            changed = True
            if change.notify:
                message = self.format_change(item, product_id, change)
                logger.info("Change found for chat %s: %s size %s %s", chat_id, product_id, change.size_name, change.kind.value)
                await self.notify(chat_id, message)
                summary.notifications += 1

        if changed:
            try:
                await asyncio.to_thread(self.store.save)
                summary.saves += 1
            except PersistenceError as e:
                logger.error("Could not save updated prices for %s: %s", product_id, e)


__all__ = [
    "ChangeKind",
    "Transition",
    "SizeChange",
    "CheckSummary",
    "classify_transition",
    "diff_product",
    "PriceChecker",
]
