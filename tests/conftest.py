"""Shared fixtures: temp tracking store, fake catalog client, recording notifier."""

from __future__ import annotations

from decimal import Decimal
from typing import Dict, List, Optional, Tuple

import pytest

from fetcher import ProductFetchError, ProductSnapshot, SizeState
from persistent_state import TrackingStore


def make_snapshot(product_id: str, name: str = "Jacket black", **sizes: Optional[str]) -> ProductSnapshot:
    """sizes: size name -> price string, or None for out of stock."""
    return ProductSnapshot(
        product_id=product_id,
        name=name,
        sizes=[
            SizeState(name=size, in_stock=price is not None, price=Decimal(price) if price is not None else None)
            for size, price in sizes.items()
        ],
    )


class FakeClient:
    """Stands in for WildberriesClient; responses are set per product id."""

    def __init__(self) -> None:
        self.responses: Dict[str, ProductSnapshot | ProductFetchError] = {}
        self.calls: List[str] = []
        self.on_fetch = None

    def fetch(self, product_id: str) -> ProductSnapshot:
        self.calls.append(product_id)
        if self.on_fetch is not None:
            self.on_fetch(product_id)
        result = self.responses[product_id]
        if isinstance(result, ProductFetchError):
            raise result
        return result


class RecordingNotifier:
    def __init__(self) -> None:
        self.sent: List[Tuple[int, str]] = []

    async def send(self, chat_id: int, text: str) -> None:
        self.sent.append((chat_id, text))


@pytest.fixture()
def tracking_path(tmp_path):
    return tmp_path / "tracking.json"


@pytest.fixture()
def store(tracking_path):
    return TrackingStore(tracking_path)


@pytest.fixture()
def client():
    return FakeClient()


@pytest.fixture()
def notifier():
    return RecordingNotifier()
