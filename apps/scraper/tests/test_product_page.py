"""
Unit tests for product page extraction and the product page processor.
"""
import asyncio

import httpx
import pytest

from core.cancellation import CancelSignal
from core.models import ResultStatus, WorkItem
from core.net import HTTPClient
from crawler.product_page import ProductPageProcessor, extract_product_fields, parse_price

PRODUCT_HTML = """
<html>
  <body>
    <div id="title_feature_div">
      <span id="productTitle">
        Stainless Steel Kettle, 1.7L
      </span>
    </div>
    <img id="landingImage" src="https://images.example.com/kettle.jpg" />
    <span class="a-price"><span class="a-price-whole">1,299.</span></span>
  </body>
</html>
"""

NAME_ONLY_HTML = """
<html><body><h1 id="title">Desk Lamp</h1></body></html>
"""

EMPTY_HTML = "<html><body><p>Page not found</p></body></html>"

ITEM = WorkItem(id="p-1", url="https://shop.example.com/dp/p-1")


def make_processor(handler, **kwargs) -> ProductPageProcessor:
    client = HTTPClient(transport=httpx.MockTransport(handler))
    return ProductPageProcessor(client, **kwargs)


class TestExtraction:

    def test_extracts_all_fields(self):
        fields = extract_product_fields(PRODUCT_HTML)

        assert fields["name"] == "Stainless Steel Kettle, 1.7L"
        assert fields["price"] == 1299.0
        assert fields["image_url"] == "https://images.example.com/kettle.jpg"

    def test_title_fallback_selectors(self):
        fields = extract_product_fields(NAME_ONLY_HTML)

        assert fields["name"] == "Desk Lamp"
        assert fields["price"] is None
        assert fields["image_url"] is None

    def test_first_non_empty_title_wins(self):
        html = '<span id="productTitle">  </span><h1 id="title">Second</h1>'
        assert extract_product_fields(html)["name"] == "Second"

    def test_last_parsable_price_wins(self):
        html = '<span class="a-price-whole">12</span><span class="a-price-whole">n/a</span>'
        assert extract_product_fields(html)["price"] == 12.0

    @pytest.mark.parametrize("text,expected", [
        ("1,299.", 1299.0),
        (" 45 ", 45.0),
        ("0", None),
        ("", None),
        ("free", None),
        ("NaN", None),
        ("inf", None),
    ])
    def test_parse_price(self, text, expected):
        assert parse_price(text) == expected


class TestProductPageProcessor:

    @pytest.mark.asyncio
    async def test_success(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, text=PRODUCT_HTML)

        processor = make_processor(handler)
        result = await processor.process(ITEM, CancelSignal())

        assert result.status == ResultStatus.SUCCESS
        assert result.item_id == "p-1"
        assert result.to_payload() == {
            "product_id": "p-1",
            "name": "Stainless Steel Kettle, 1.7L",
            "price": 1299.0,
            "image_url": "https://images.example.com/kettle.jpg",
        }
        assert seen[0].headers["User-Agent"] == "Mozilla/5.0 (compatible; PriceTracker/1.0)"

    @pytest.mark.asyncio
    async def test_missing_price_is_partial_with_sentinel(self):
        processor = make_processor(lambda request: httpx.Response(200, text=NAME_ONLY_HTML))

        result = await processor.process(ITEM, CancelSignal())

        assert result.status == ResultStatus.PARTIAL
        assert result.missing == ("price",)
        assert result.ok
        assert result.to_payload()["name"] == "Desk Lamp"
        assert result.to_payload()["price"] == -1

    @pytest.mark.asyncio
    async def test_page_without_product_fields_fails(self):
        processor = make_processor(lambda request: httpx.Response(200, text=EMPTY_HTML))

        result = await processor.process(ITEM, CancelSignal())

        assert result.status == ResultStatus.FAILED
        assert result.error == "no product fields found"

    @pytest.mark.asyncio
    async def test_http_error_status_fails(self):
        processor = make_processor(lambda request: httpx.Response(503, text="busy"))

        result = await processor.process(ITEM, CancelSignal())

        assert result.status == ResultStatus.FAILED
        assert result.error == "HTTP 503"

    @pytest.mark.asyncio
    async def test_non_finite_price_is_partial(self):
        html = '<h1 id="title">Desk Lamp</h1><span class="a-price-whole">NaN</span>'
        processor = make_processor(lambda request: httpx.Response(200, text=html))

        result = await processor.process(ITEM, CancelSignal())

        assert result.status == ResultStatus.PARTIAL
        assert result.missing == ("price",)
        assert result.to_payload()["price"] == -1

    @pytest.mark.asyncio
    async def test_malformed_url_fails(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, text=PRODUCT_HTML)

        processor = make_processor(handler)
        result = await processor.process(WorkItem(id="p-9", url="http://"), CancelSignal())

        assert result.status == ResultStatus.FAILED
        assert result.item_id == "p-9"
        assert seen == []

    @pytest.mark.asyncio
    async def test_connection_error_fails(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        processor = make_processor(handler)
        result = await processor.process(ITEM, CancelSignal())

        assert result.status == ResultStatus.FAILED
        assert "ConnectError" in result.error

    @pytest.mark.asyncio
    async def test_transient_error_is_retried(self):
        attempts = []

        def handler(request):
            attempts.append(request)
            if len(attempts) == 1:
                raise httpx.ConnectError("connection reset", request=request)
            return httpx.Response(200, text=PRODUCT_HTML)

        processor = make_processor(handler, retries=1)
        result = await processor.process(ITEM, CancelSignal())

        assert result.status == ResultStatus.SUCCESS
        assert len(attempts) == 2

    @pytest.mark.asyncio
    async def test_cancelled_before_start_makes_no_request(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, text=PRODUCT_HTML)

        cancel = CancelSignal()
        cancel.trip("deadline")
        processor = make_processor(handler)

        result = await processor.process(ITEM, cancel)

        assert result.status == ResultStatus.CANCELLED
        assert result.error == "deadline"
        assert seen == []

    @pytest.mark.asyncio
    async def test_cancelled_during_fetch(self):
        async def handler(request):
            await asyncio.sleep(10)
            return httpx.Response(200, text=PRODUCT_HTML)

        cancel = CancelSignal()
        cancel.trip_after(0.05, "deadline")
        processor = make_processor(handler)

        result = await processor.process(ITEM, cancel)

        assert result.status == ResultStatus.CANCELLED
        assert result.duration_ms < 1000
