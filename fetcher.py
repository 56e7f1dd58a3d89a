"""Wildberries product card client.

Fetches the current size/price/stock state of a single product from the public
card API. The response (simplified) looks like:

{
    "products": [
        {
            "id": 100,
            "name": "Jacket",
            "colors": [{"id": 0, "name": "black"}],
            "sizes": [
                {"name": "M", "stocks": [{"wh": 1, "qty": 3}], "price": {"product": 4500, "logistics": 500}},
                {"name": "L", "stocks": []}
            ]
        }
    ]
}

A size counts as in stock when it has at least one stock record AND a non-zero
price.
Prices are integer minor units (kopecks); the displayed price is
(product + logistics) / 100.

No retries are done here; callers decide what to do with a failure.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List

import requests

logger = logging.getLogger(__name__)

API_URL = "https://card.wb.ru/cards/v4/detail"
REFERER_TEMPLATE = "https://www.wildberries.by/catalog/{product_id}/detail.aspx"

DEFAULT_HEADERS: Dict[str, str] = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/119.0.0.0 Safari/537.36"
    ),
    "Accept": "application/json",
    "Accept-Language": "ru-RU,ru;q=0.9,en-US;q=0.8,en;q=0.7",
}

CENTS = Decimal("0.01")


class ProductFetchError(Exception):
    """Base class for adapter failures."""


class ProductNotFound(ProductFetchError):
    def __init__(self, product_id: str) -> None:
        super().__init__(f"product {product_id} not found")
        self.product_id = product_id


class TransportError(ProductFetchError):
    """Network error or timeout while talking to the catalog."""


class DecodeError(ProductFetchError):
    """Malformed response body."""


class UpstreamStatusError(ProductFetchError):
    def __init__(self, status_code: int, body: str) -> None:
        super().__init__(f"catalog returned HTTP {status_code}: {body[:200]}")
        self.status_code = status_code
        self.body = body


@dataclass(frozen=True)
class SizeState:
    name: str
    in_stock: bool
    price: Decimal | None = None


@dataclass
class ProductSnapshot:
    product_id: str
    name: str
    sizes: List[SizeState] = field(default_factory=list)

    def size_map(self) -> Dict[str, SizeState]:
        return {s.name: s for s in self.sizes}


def calculate_price(base: int, logistics: int) -> Decimal:
    """Convert a base+logistics pair of minor units into a two-decimal price."""
    return (Decimal(base + logistics) / 100).quantize(CENTS)


def _parse_size(raw: Dict[str, Any]) -> SizeState:
    name = raw.get("name")
    if name is None:
        raise DecodeError(f"size record without name: {raw!r}")
    # WB uses an empty name for one-size products
    name = str(name)
    stocks = raw.get("stocks") or []
    price_info = raw.get("price")
    if stocks and isinstance(price_info, dict):
        try:
            price = calculate_price(int(price_info.get("product", 0)), int(price_info.get("logistics", 0)))
        except (TypeError, ValueError) as e:
            raise DecodeError(f"bad price for size {name!r}: {price_info!r}") from e
        # a zero price cannot be told apart from the stored out-of-stock marker
        if price > 0:
            return SizeState(name=name, in_stock=True, price=price)
    return SizeState(name=name, in_stock=False)


def parse_product(payload: Dict[str, Any], product_id: str) -> ProductSnapshot:
    """Turn a decoded card response into a ProductSnapshot.

    Raises ProductNotFound when the response has no product records and
    DecodeError when the structure is not what we expect.
    """
    if not isinstance(payload, dict):
        raise DecodeError(f"expected JSON object, got {type(payload).__name__}")
    products = payload.get("products")
    if products is None and isinstance(payload.get("data"), dict):
        # older card API versions wrap the list in "data"
        products = payload["data"].get("products")
    if products is None:
        products = []
    if not isinstance(products, list):
        raise DecodeError("'products' is not a list")
    if not products:
        raise ProductNotFound(product_id)

    product = products[0]
    if not isinstance(product, dict):
        raise DecodeError("product record is not an object")
    try:
        return _parse_record(product, product_id)
    except (KeyError, TypeError, AttributeError) as e:
        raise DecodeError(f"malformed product record for {product_id}: {e!r}") from e


def _parse_record(product: Dict[str, Any], product_id: str) -> ProductSnapshot:
    name = str(product.get("name") or "").strip()
    colors = product.get("colors") or []
    if not isinstance(colors, list):
        raise DecodeError("'colors' is not a list")
    if colors and isinstance(colors[0], dict) and colors[0].get("name"):
        name = f"{name} {colors[0]['name']}".strip()
    if not name:
        name = f"#{product_id}"

    raw_sizes = product.get("sizes") or []
    if not isinstance(raw_sizes, list):
        raise DecodeError("'sizes' is not a list")
    sizes = [_parse_size(s) for s in raw_sizes if isinstance(s, dict)]
    return ProductSnapshot(product_id=product_id, name=name, sizes=sizes)


class WildberriesClient:
    """Thin request/response client. Holds no state beyond the HTTP session."""

    def __init__(
        self,
        currency: str = "byn",
        dest: str = "-8144334",
        timeout: float = 10,
        session: requests.Session | None = None,
    ) -> None:
        self.currency = currency
        self.dest = dest
        self.timeout = timeout
        self.session = session or requests.Session()

    def _params(self, product_id: str) -> Dict[str, str]:
        return {
            "appType": "1",
            "curr": self.currency,
            "dest": self.dest,
            "spp": "30",
            "nm": product_id,
        }

    def _headers(self, product_id: str) -> Dict[str, str]:
        headers = dict(DEFAULT_HEADERS)
        headers["Referer"] = REFERER_TEMPLATE.format(product_id=product_id)
        return headers

    def fetch(self, product_id: str) -> ProductSnapshot:
        if not product_id:
            raise ValueError("product_id must not be empty")
        try:
            resp = self.session.get(
                API_URL,
                params=self._params(product_id),
                headers=self._headers(product_id),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise TransportError(f"request for {product_id} failed: {e}") from e

        if not resp.ok:
            raise UpstreamStatusError(resp.status_code, resp.text)

        try:
            payload = resp.json()
        except ValueError as e:
            raise DecodeError(f"invalid JSON for {product_id}: {resp.text[:200]}") from e

        snapshot = parse_product(payload, product_id)
        logger.debug("Fetched %s: %s (%d sizes)", product_id, snapshot.name, len(snapshot.sizes))
        return snapshot


__all__ = [
    "ProductFetchError",
    "ProductNotFound",
    "TransportError",
    "DecodeError",
    "UpstreamStatusError",
    "SizeState",
    "ProductSnapshot",
    "calculate_price",
    "parse_product",
    "WildberriesClient",
]
