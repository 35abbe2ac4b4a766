"""
Tests for product extraction from a loaded page.
"""

import asyncio
from typing import Optional

import pytest

from restock_monitor.enums import StockStatus
from restock_monitor.scraper import DISABLED_BUY_SELECTOR, PRICE_SELECTOR, TITLE_SELECTOR, extract_product_data


def run_async(coro):
    """Helper to run async code in tests."""
    return asyncio.new_event_loop().run_until_complete(coro)


class DomDriver:
    """Driver double answering selector queries from a dict."""

    def __init__(self, texts: dict, selectors: Optional[set] = None) -> None:
        self._texts = texts
        self._selectors = selectors or set()
        self.idle_waits: list[int] = []

    async def wait_for_idle(self, timeout_ms: int) -> None:
        self.idle_waits.append(timeout_ms)

    async def text_content(self, selector: str) -> Optional[str]:
        return self._texts.get(selector)

    async def has_selector(self, selector: str) -> bool:
        return selector in self._selectors

    async def current_url(self) -> str:
        return "https://shop.example/p/1"


class TestExtractionProperty:
    """Property 34: availability is read from page text and the buy button."""

    def test_in_stock_with_title_and_price(self) -> None:
        driver = DomDriver({
            TITLE_SELECTOR: "  Booster Box  ",
            PRICE_SELECTOR: "S$59.90",
            "body": "Add to cart",
        })

        data = run_async(extract_product_data(driver))

        assert data.status == StockStatus.IN_STOCK
        assert data.title == "Booster Box"
        assert data.price == "S$59.90"
        assert data.url == "https://shop.example/p/1"
        assert driver.idle_waits == [15_000]

    @pytest.mark.parametrize("body", ["This item is Out of Stock", "SOLD OUT"])
    def test_out_of_stock_text(self, body: str) -> None:
        driver = DomDriver({TITLE_SELECTOR: "Booster Box", "body": body})
        assert run_async(extract_product_data(driver)).status == StockStatus.OUT_OF_STOCK

    def test_disabled_buy_button(self) -> None:
        driver = DomDriver({TITLE_SELECTOR: "Booster Box", "body": ""}, selectors={DISABLED_BUY_SELECTOR})
        assert run_async(extract_product_data(driver)).status == StockStatus.OUT_OF_STOCK

    def test_no_title_is_unknown(self) -> None:
        driver = DomDriver({TITLE_SELECTOR: "   ", "body": "Welcome"})
        data = run_async(extract_product_data(driver))
        assert data.status == StockStatus.UNKNOWN
        assert data.title is None
        assert data.price is None
