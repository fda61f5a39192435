"""
Result sink: posts each scrape result back to the backend
"""
import logging
from typing import Optional

import httpx

from core.models import ItemResult
from core.net import DEFAULT_TIMEOUT, HTTPClient
from crawler.base import ResultSink

logger = logging.getLogger(__name__)

UPDATE_PRICE_PATH = "/api/update-price"


class ResultSinkError(Exception):
    """A result could not be delivered"""


class BackendResultSink(ResultSink):
    """POSTs results to {backend}/api/update-price, one request per result"""

    def __init__(
        self,
        backend_api: str,
        http_client: Optional[HTTPClient] = None,
        timeout: float = DEFAULT_TIMEOUT,
        forward_failed: bool = False,
    ):
        self.backend_api = backend_api.rstrip("/")
        self.http_client = http_client or HTTPClient()
        self.timeout = timeout
        # Failed/cancelled results carry no usable data; posting them would
        # overwrite the stored price with the sentinel
        self.forward_failed = forward_failed

    @property
    def url(self) -> str:
        return self.backend_api + UPDATE_PRICE_PATH

    async def forward(self, result: ItemResult) -> bool:
        if not result.ok and not self.forward_failed:
            logger.debug(f"[result_sink] Not posting {result.status.value} result for {result.item_id}")
            return False

        try:
            status, _, _ = await self.http_client.fetch(
                self.url,
                method="POST",
                json_data=result.to_payload(),
                timeout=self.timeout,
            )
        except httpx.HTTPError as e:
            raise ResultSinkError(f"post result {result.item_id}: {e}") from e

        if not 200 <= status < 300:
            raise ResultSinkError(f"post result {result.item_id}: HTTP {status}")

        return True
