"""
Product extraction for the restock monitor.

Reads title, price and availability from a loaded product page through the
PageDriver. Selectors are deliberately loose since product markup changes
often; a page that shows neither an out-of-stock marker nor a title is
reported as ``unknown``.
"""

import re
from datetime import datetime, timezone
from typing import Optional

from .enums import StockStatus
from .models import ProductData
from .page_driver import PageDriver

TITLE_SELECTOR = "h1"
PRICE_SELECTOR = '[class*="price"]'
DISABLED_BUY_SELECTOR = 'button[disabled][class*="cart"], button[disabled][class*="buy"]'
OUT_OF_STOCK_PATTERN = re.compile(r"out of stock|sold out", re.IGNORECASE)

IDLE_TIMEOUT_MS = 15_000


def _clean(text: Optional[str]) -> Optional[str]:
    if text is None:
        return None
    text = text.strip()
    return text or None


async def extract_product_data(driver: PageDriver) -> ProductData:
    """Extract product fields from the driver's current page."""
    await driver.wait_for_idle(IDLE_TIMEOUT_MS)

    title = _clean(await driver.text_content(TITLE_SELECTOR))
    price = _clean(await driver.text_content(PRICE_SELECTOR))
    body_text = await driver.text_content("body") or ""

    if OUT_OF_STOCK_PATTERN.search(body_text) or await driver.has_selector(DISABLED_BUY_SELECTOR):
        status = StockStatus.OUT_OF_STOCK
    elif title:
        status = StockStatus.IN_STOCK
    else:
        status = StockStatus.UNKNOWN

    return ProductData(
        url=await driver.current_url(),
        title=title,
        price=price,
        status=status,
        scraped_at=datetime.now(timezone.utc).isoformat(),
    )
