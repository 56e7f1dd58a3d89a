"""Tests for the Wildberries card client."""

from __future__ import annotations

from decimal import Decimal

import pytest
import requests

from fetcher import (
    API_URL,
    DecodeError,
    ProductNotFound,
    TransportError,
    UpstreamStatusError,
    WildberriesClient,
    calculate_price,
    parse_product,
)

PAYLOAD = {
    "products": [
        {
            "id": 100,
            "name": "Jacket",
            "colors": [{"id": 1, "name": "black"}],
            "sizes": [
                {"name": "M", "stocks": [{"wh": 1, "qty": 3}], "price": {"product": 4500, "logistics": 500}},
                {"name": "L", "stocks": []},
                {"name": "XL", "stocks": [{"wh": 1, "qty": 1}]},
            ],
        }
    ]
}


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text="", bad_json=False):
        self.status_code = status_code
        self.ok = 200 <= status_code < 300
        self._payload = payload
        self.text = text
        self._bad_json = bad_json

    def json(self):
        if self._bad_json:
            raise ValueError("Expecting value")
        return self._payload


class FakeSession:
    def __init__(self, response=None, exc=None):
        self.response = response
        self.exc = exc
        self.calls = []

    def get(self, url, params=None, headers=None, timeout=None):
        self.calls.append({"url": url, "params": params, "headers": headers, "timeout": timeout})
        if self.exc is not None:
            raise self.exc
        return self.response


def test_calculate_price_adds_logistics_and_scales_to_major_units():
    assert calculate_price(4500, 500) == Decimal("50.00")
    assert calculate_price(1999, 1) == Decimal("20.00")
    assert calculate_price(1234, 0) == Decimal("12.34")


def test_recomputed_prices_compare_exactly():
    assert calculate_price(1010, 20) == calculate_price(1000, 30)


def test_parse_product_builds_sizes_in_order():
    snapshot = parse_product(PAYLOAD, "100")

    assert snapshot.name == "Jacket black"
    assert [s.name for s in snapshot.sizes] == ["M", "L", "XL"]
    m, l, xl = snapshot.sizes
    assert m.in_stock and m.price == Decimal("50.00")
    assert not l.in_stock and l.price is None
    # stock without a price is not purchasable
    assert not xl.in_stock


def test_parse_product_without_colors_uses_plain_name():
    payload = {"products": [{"id": 1, "name": "Cap", "sizes": []}]}
    assert parse_product(payload, "1").name == "Cap"


@pytest.mark.parametrize("payload", [{"products": []}, {}, {"data": {"products": []}}])
def test_parse_product_without_records_is_not_found(payload):
    with pytest.raises(ProductNotFound):
        parse_product(payload, "100")


@pytest.mark.parametrize(
    "payload",
    [
        [],
        {"products": "x"},
        {"products": [{"name": "A", "sizes": 5}]},
        {"products": [{"name": "A", "colors": {"name": "black"}, "sizes": []}]},
        {"products": [{"name": "A", "colors": "black", "sizes": []}]},
        {"products": [{"name": "A", "sizes": [{"name": "M", "stocks": [{"qty": 1}], "price": {"product": "free"}}]}]},
    ],
)
def test_parse_product_rejects_malformed_payload(payload):
    with pytest.raises(DecodeError):
        parse_product(payload, "100")


def test_fetch_sends_browser_headers_and_query():
    session = FakeSession(FakeResponse(payload=PAYLOAD))
    client = WildberriesClient(currency="byn", dest="-1", timeout=10, session=session)

    snapshot = client.fetch("100")

    assert snapshot.product_id == "100"
    call = session.calls[0]
    assert call["url"] == API_URL
    assert call["params"]["nm"] == "100"
    assert call["params"]["curr"] == "byn"
    assert call["params"]["dest"] == "-1"
    assert call["timeout"] == 10
    assert "Mozilla" in call["headers"]["User-Agent"]
    assert call["headers"]["Referer"] == "https://www.wildberries.by/catalog/100/detail.aspx"
    assert "Accept-Language" in call["headers"]


def test_fetch_non_success_status():
    session = FakeSession(FakeResponse(status_code=503, text="maintenance"))
    client = WildberriesClient(session=session)

    with pytest.raises(UpstreamStatusError) as exc_info:
        client.fetch("100")
    assert exc_info.value.status_code == 503
    assert "maintenance" in str(exc_info.value)


def test_fetch_invalid_json():
    client = WildberriesClient(session=FakeSession(FakeResponse(text="<html>", bad_json=True)))
    with pytest.raises(DecodeError):
        client.fetch("100")


@pytest.mark.parametrize("exc", [requests.ConnectionError("refused"), requests.Timeout("slow")])
def test_fetch_network_errors_become_transport_errors(exc):
    client = WildberriesClient(session=FakeSession(exc=exc))
    with pytest.raises(TransportError):
        client.fetch("100")


def test_fetch_empty_products_is_not_found():
    client = WildberriesClient(session=FakeSession(FakeResponse(payload={"products": []})))
    with pytest.raises(ProductNotFound):
        client.fetch("42")


def test_fetch_requires_product_id():
    client = WildberriesClient(session=FakeSession(FakeResponse(payload=PAYLOAD)))
    with pytest.raises(ValueError):
        client.fetch("")


def test_zero_price_counts_as_out_of_stock():
    size = {"name": "", "stocks": [{"qty": 1}], "price": {"product": 0, "logistics": 0}}
    payload = {"products": [{"name": "Gift", "sizes": [size]}]}

    (size,) = parse_product(payload, "1").sizes

    assert not size.in_stock
    assert size.price is None
