"""Shared outbound HTTP client for downstream integrations.

One ``httpx.AsyncClient`` with connection pooling is created at startup
and passed to the dispatchers. Every request carries a timeout; transient
failures are retried with bounded exponential backoff.
"""

import logging
import time
from typing import Any

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from evalshop.core.config import Settings
from evalshop.services.exceptions import DownstreamError, TransientDownstreamError

logger = logging.getLogger(__name__)

# Retry configuration
MAX_RETRIES = 3
MIN_WAIT_SECONDS = 1
MAX_WAIT_SECONDS = 10

SLOW_CALL_THRESHOLD_MS = 2000

# Gateway-side failures worth another attempt
RETRYABLE_STATUS_CODES = frozenset({429, 502, 503, 504})


def create_http_client(settings: Settings) -> httpx.AsyncClient:
    """Create the pooled HTTP client used by side-effect dispatchers.

    Args:
        settings: Application settings with timeout and pool sizing.

    Returns:
        httpx.AsyncClient: Client to close on application shutdown.
    """
    client = httpx.AsyncClient(
        timeout=httpx.Timeout(
            settings.http_timeout_seconds,
            connect=settings.http_connect_timeout_seconds,
        ),
        limits=httpx.Limits(
            max_connections=settings.http_max_connections,
            max_keepalive_connections=settings.http_max_connections // 2,
        ),
    )
    logger.debug("Created downstream HTTP client with connection pooling")
    return client


async def close_http_client(client: httpx.AsyncClient) -> None:
    """Close the shared HTTP client if it is still open."""
    if not client.is_closed:
        await client.aclose()
        logger.debug("Closed downstream HTTP client")


@retry(
    retry=retry_if_exception_type((httpx.TransportError, TransientDownstreamError)),
    stop=stop_after_attempt(MAX_RETRIES),
    wait=wait_exponential(multiplier=1, min=MIN_WAIT_SECONDS, max=MAX_WAIT_SECONDS),
    reraise=True,
)
async def _send_with_retry(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    **kwargs: Any,
) -> httpx.Response:
    """Send a request, raising TransientDownstreamError on retryable statuses."""
    response = await client.request(method, url, **kwargs)
    if response.status_code in RETRYABLE_STATUS_CODES:
        raise TransientDownstreamError(
            f"{method} {url} returned {response.status_code}",
            status_code=response.status_code,
        )
    return response


async def send_json(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    payload: dict[str, Any] | None = None,
    params: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
    auth: tuple[str, str] | None = None,
    target: str = "downstream",
) -> dict[str, Any]:
    """Send a JSON request to a downstream system.

    Only network errors and gateway-side statuses (429/502/503/504) are
    retried. Any other non-2xx response fails immediately.

    Args:
        client: Shared HTTP client.
        method: HTTP method.
        url: Absolute URL.
        payload: JSON body.
        params: Query string parameters.
        headers: Extra request headers.
        auth: Optional basic-auth credentials.
        target: Name of the downstream system for logs.

    Returns:
        dict: Decoded JSON body, or an empty dict for empty/non-JSON responses.

    Raises:
        DownstreamError: If the call fails after retries or returns an error status.
    """
    start_time = time.perf_counter()
    request_headers = {"Content-Type": "application/json", "Accept": "application/json"}
    if headers:
        request_headers.update(headers)

    try:
        response = await _send_with_retry(
            client,
            method,
            url,
            json=payload,
            params=params,
            headers=request_headers,
            auth=auth,
        )
    except (httpx.TransportError, TransientDownstreamError) as e:
        logger.error("%s call to %s failed after %d attempts: %s", target, url, MAX_RETRIES, e)
        raise DownstreamError(f"{target} unreachable: {e}") from e
    finally:
        latency_ms = (time.perf_counter() - start_time) * 1000
        if latency_ms > SLOW_CALL_THRESHOLD_MS:
            logger.warning("SLOW %s call: %s %s took %.2fms", target, method, url, latency_ms)
        else:
            logger.debug("%s call: %s %s took %.2fms", target, method, url, latency_ms)

    if response.is_error:
        raise DownstreamError(
            f"{target} returned {response.status_code}: {response.text[:500]}",
            status_code=response.status_code,
        )

    if not response.content:
        return {}
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {"data": body}
