import asyncio
import logging
from typing import Any

import httpx
import structlog
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

log = structlog.get_logger()
# Standard logger for tenacity callbacks
std_log = logging.getLogger(__name__)

USER_AGENT = "arxiv_explorer/1.0"

_RETRYABLE_STATUS = (408, 429, 500, 502, 503, 504)
_NETWORK_ERRORS = (httpx.TimeoutException, httpx.ConnectError, httpx.RemoteProtocolError)


def should_retry(exception: BaseException) -> bool:
    """Retry on network errors and on 408/429/5xx responses."""
    if isinstance(exception, httpx.HTTPStatusError):
        return exception.response.status_code in _RETRYABLE_STATUS
    return isinstance(exception, _NETWORK_ERRORS)


@retry(
    stop=stop_after_attempt(4),
    wait=wait_exponential(multiplier=1, min=2, max=30),
    retry=retry_if_exception(should_retry),
    before_sleep=before_sleep_log(std_log, logging.WARNING),
    reraise=True,
)
async def get_with_retry(
    client: httpx.AsyncClient,
    url: str,
    params: dict[str, Any] | None = None,
) -> httpx.Response:
    """
    Make an HTTP GET request, retrying transient failures.

    Non-retryable error responses (4xx other than 408/429) are returned to the
    caller instead of raised, so it can decide how to report them.

    Raises:
        httpx.HTTPStatusError: For retryable status codes once retries are exhausted
        httpx.TransportError: For network errors once retries are exhausted
    """
    try:
        resp = await client.get(url, params=params)
        log.debug(
            "http_request_success",
            url=str(resp.request.url),
            status=resp.status_code,
            content_length=len(resp.content) if resp.content else 0,
        )
        resp.raise_for_status()
        return resp
    except httpx.HTTPStatusError as e:
        log.warning(
            "http_status_error",
            url=url,
            status=e.response.status_code,
            response_text=e.response.text[:500] if e.response.text else None,
        )
        if should_retry(e):
            raise
        return e.response
    except _NETWORK_ERRORS as e:
        log.warning("http_network_error", url=url, error=str(e), error_type=type(e).__name__)
        raise


def get_client(timeout: float = 30.0, transport: httpx.AsyncBaseTransport | None = None) -> httpx.AsyncClient:
    """
    Create an httpx AsyncClient with sensible defaults.

    Args:
        timeout: Request timeout in seconds (default: 30)
        transport: Optional transport override (tests pass an ``httpx.MockTransport``)
    """
    limits = httpx.Limits(
        max_keepalive_connections=5,
        max_connections=10,
        keepalive_expiry=30.0,
    )
    return httpx.AsyncClient(
        http2=transport is None,
        headers={"User-Agent": USER_AGENT},
        timeout=timeout,
        limits=limits,
        follow_redirects=True,
        transport=transport,
    )


class RateLimiter:
    """Minimum-interval rate limiter shared by coroutines of one event loop."""

    def __init__(self, calls_per_second: float = 1.0) -> None:
        self.min_interval = 1.0 / calls_per_second
        self.last_call = 0.0
        self._lock: asyncio.Lock | None = None
        self._loop: asyncio.AbstractEventLoop | None = None

    def _ensure_lock(self) -> asyncio.Lock:
        """
        Lazily create the lock in the running event loop.

        A limiter living at module level outlives ``asyncio.run`` calls, so the
        lock is recreated whenever the running loop changes.
        """
        try:
            current_loop = asyncio.get_running_loop()
        except RuntimeError:
            current_loop = None

        if self._lock is None or self._loop is not current_loop:
            self._lock = asyncio.Lock()
            self._loop = current_loop
        return self._lock

    async def acquire(self) -> None:
        """Wait until the rate limit allows the next call."""
        lock = self._ensure_lock()
        async with lock:
            loop = asyncio.get_running_loop()
            elapsed = loop.time() - self.last_call
            if elapsed < self.min_interval:
                wait_time = self.min_interval - elapsed
                log.debug("rate_limit_wait", wait_time=wait_time)
                await asyncio.sleep(wait_time)
            self.last_call = loop.time()
