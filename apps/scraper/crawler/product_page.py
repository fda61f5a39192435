"""
Product page processor: fetch one product page and extract name, price and image
"""
import math
import time
import logging
from typing import Dict, Optional

import httpx
from bs4 import BeautifulSoup

from core.cancellation import CancelSignal, OperationCancelled
from core.models import ItemResult, WorkItem
from core.net import DEFAULT_TIMEOUT, HTTPClient
from crawler.base import ItemProcessor

logger = logging.getLogger(__name__)

TITLE_SELECTOR = "#productTitle, h1#title, #title_feature_div .a-size-large"
IMAGE_SELECTOR = "#landingImage"
PRICE_SELECTOR = ".a-price-whole"

REQUIRED_FIELDS = ("name", "price")


def parse_price(text: str) -> Optional[float]:
    """Parse a price like "1,299." into 1299.0; None if unparsable, zero or non-finite."""
    raw = text.replace(",", "").strip()
    try:
        price = float(raw)
    except ValueError:
        return None
    if price == 0 or not math.isfinite(price):
        return None
    return price


def extract_product_fields(html: str) -> Dict[str, Optional[object]]:
    """
    Extract product fields from a product page.

    Returns:
        {'name': str|None, 'price': float|None, 'image_url': str|None}
    """
    soup = BeautifulSoup(html, "lxml")

    name = None
    for element in soup.select(TITLE_SELECTOR):
        text = element.get_text().strip()
        if text:
            name = text
            break

    image_url = None
    for element in soup.select(IMAGE_SELECTOR):
        src = element.get("src")
        if src:
            image_url = src

    # Later matches win, as long as they parse
    price = None
    for element in soup.select(PRICE_SELECTOR):
        parsed = parse_price(element.get_text())
        if parsed is not None:
            price = parsed

    return {"name": name, "price": price, "image_url": image_url}


class ProductPageProcessor(ItemProcessor):
    """Scrapes a single product page into an ItemResult"""

    def __init__(
        self,
        http_client: Optional[HTTPClient] = None,
        timeout: float = DEFAULT_TIMEOUT,
        retries: int = 0,
    ):
        super().__init__("product_page")
        self.http_client = http_client or HTTPClient()
        self.timeout = timeout
        self.retries = retries

    async def process(self, item: WorkItem, cancel: CancelSignal) -> ItemResult:
        start_time = time.time()

        if cancel.is_set():
            return ItemResult.cancelled(item.id, cancel.reason or "cancelled")

        try:
            status, _, body = await cancel.guard(
                self.http_client.fetch_with_retries(
                    item.url,
                    retries=self.retries,
                    cancel=cancel,
                    timeout=self.timeout,
                )
            )
        except OperationCancelled as e:
            logger.info(f"[product_page] Cancelled {item.url}: {e.reason}")
            return ItemResult.cancelled(item.id, e.reason, self._elapsed_ms(start_time))
        except (httpx.HTTPError, httpx.InvalidURL, ValueError) as e:
            logger.error(f"[product_page] {item.url} → {e}")
            return ItemResult.failure(item.id, f"{type(e).__name__}: {e}", self._elapsed_ms(start_time))

        if status != 200:
            logger.error(f"[product_page] {item.url} → HTTP {status}")
            return ItemResult.failure(item.id, f"HTTP {status}", self._elapsed_ms(start_time))

        try:
            fields = extract_product_fields(body.decode("utf-8", errors="ignore"))
        except Exception as e:
            logger.error(f"[product_page] Failed to parse {item.url}: {e}")
            return ItemResult.failure(item.id, f"parse error: {e}", self._elapsed_ms(start_time))

        return self._build_result(item, fields, self._elapsed_ms(start_time))

    def _build_result(self, item: WorkItem, fields: Dict, duration_ms: int) -> ItemResult:
        missing = tuple(name for name in REQUIRED_FIELDS if fields.get(name) is None)
        data = {key: value for key, value in fields.items() if value is not None}

        if not missing:
            return ItemResult.success(item.id, data, duration_ms)

        if len(missing) == len(REQUIRED_FIELDS):
            logger.warning(f"[product_page] No product fields found for {item.url}")
            return ItemResult.failure(item.id, "no product fields found", duration_ms)

        logger.warning(f"[product_page] {', '.join(missing)} not found for {item.url}; reporting partial result")
        return ItemResult.partial(item.id, data, missing, duration_ms)

    @staticmethod
    def _elapsed_ms(start_time: float) -> int:
        return int((time.time() - start_time) * 1000)
