"""
Job source: fetches the list of products to scrape from the backend
"""
import json
import logging
from typing import List, Optional

import httpx

from core.models import WorkItem
from core.net import HTTPClient
from crawler.base import JobSource

logger = logging.getLogger(__name__)

PRODUCTS_PATH = "/api/all-products"


class JobSourceError(Exception):
    """The batch could not be fetched or was malformed"""


class BackendJobSource(JobSource):
    """Pulls the current batch from GET {backend}/api/all-products"""

    def __init__(self, backend_api: str, http_client: Optional[HTTPClient] = None):
        self.backend_api = backend_api.rstrip("/")
        self.http_client = http_client or HTTPClient()

    @property
    def url(self) -> str:
        return self.backend_api + PRODUCTS_PATH

    async def fetch_batch(self, timeout: float) -> List[WorkItem]:
        """
        Fetch one batch. An empty list is a valid (empty) batch.

        Raises:
            JobSourceError: transport failure, non-200 status, or malformed body
        """
        try:
            status, _, body = await self.http_client.fetch(self.url, timeout=timeout)
        except httpx.HTTPError as e:
            raise JobSourceError(f"fetch products: {e}") from e

        if status != 200:
            raise JobSourceError(f"bad status: {status}")

        try:
            payload = json.loads(body)
        except (ValueError, UnicodeDecodeError) as e:
            raise JobSourceError(f"decode products: {e}") from e

        if not isinstance(payload, list):
            raise JobSourceError(f"decode products: expected a list, got {type(payload).__name__}")

        items = []
        seen = set()
        for index, raw in enumerate(payload):
            try:
                item = WorkItem.from_dict(raw)
            except ValueError as e:
                raise JobSourceError(f"malformed product at index {index}: {e}") from e
            if item.id in seen:
                raise JobSourceError(f"duplicate product id {item.id!r}")
            seen.add(item.id)
            items.append(item)

        logger.info(f"[job_source] Fetched {len(items)} product(s) from {self.url}")
        return items
