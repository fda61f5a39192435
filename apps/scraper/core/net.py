"""
HTTP client used for the backend API and product pages
"""
import time
import logging
from typing import Any, Dict, Optional, Tuple

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    stop_when_event_set,
    wait_exponential,
)

from core.cancellation import CancelSignal

logger = logging.getLogger(__name__)

DEFAULT_UA = "Mozilla/5.0 (compatible; PriceTracker/1.0)"
DEFAULT_TIMEOUT = 15.0

TRANSIENT_ERRORS = (httpx.TimeoutException, httpx.ConnectError)


class HTTPClient:
    """Thin httpx wrapper with consistent headers, timeouts and logging"""

    def __init__(
        self,
        user_agent: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.user_agent = user_agent or DEFAULT_UA
        self.timeout = timeout
        # Injected in tests (httpx.MockTransport)
        self.transport = transport

    def _get_headers(self, custom_headers: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        headers = {
            "User-Agent": self.user_agent,
            "Accept": "text/html,application/xhtml+xml,application/json;q=0.9,*/*;q=0.8",
            "Accept-Language": "en-US,en;q=0.9",
        }
        if custom_headers:
            headers.update(custom_headers)
        return headers

    async def fetch(
        self,
        url: str,
        method: str = "GET",
        json_data: Optional[Any] = None,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> Tuple[int, Dict[str, str], bytes]:
        """
        Send one request.

        Returns:
            (status_code, headers, body)
        """
        request_headers = self._get_headers(headers)
        request_timeout = httpx.Timeout(timeout if timeout is not None else self.timeout)

        async with httpx.AsyncClient(
            timeout=request_timeout,
            follow_redirects=True,
            transport=self.transport,
        ) as client:
            start_time = time.time()
            try:
                if method.upper() == "GET":
                    response = await client.get(url, headers=request_headers)
                elif method.upper() == "POST":
                    response = await client.post(url, headers=request_headers, json=json_data)
                else:
                    raise ValueError(f"Unsupported HTTP method: {method}")
            except httpx.TimeoutException as e:
                logger.error(f"[net] Timeout on {method} {url}: {e}")
                raise
            except httpx.ConnectError as e:
                logger.error(f"[net] Connection error on {method} {url}: {e}")
                raise

            elapsed_ms = int((time.time() - start_time) * 1000)
            logger.info(f"[net] {method} {response.status_code} {url} ({len(response.content)} bytes, {elapsed_ms}ms)")

            return (response.status_code, dict(response.headers), response.content)

    async def fetch_with_retries(
        self,
        url: str,
        retries: int = 0,
        cancel: Optional[CancelSignal] = None,
        **kwargs,
    ) -> Tuple[int, Dict[str, str], bytes]:
        """
        Like fetch(), retrying timeouts and connection errors up to `retries`
        extra times. Stops retrying as soon as `cancel` is set.
        """
        stop = stop_after_attempt(retries + 1)
        if cancel is not None:
            stop = stop | stop_when_event_set(cancel)

        async for attempt in AsyncRetrying(
            stop=stop,
            wait=wait_exponential(multiplier=1, min=1, max=10),
            retry=retry_if_exception_type(TRANSIENT_ERRORS),
            reraise=True,
        ):
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.info(f"[net] Retry {attempt.retry_state.attempt_number - 1}/{retries} for {url}")
                result = await self.fetch(url, **kwargs)
        return result
