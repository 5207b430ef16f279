"""Shared async HTTP helper with exponential-backoff retry."""

import asyncio
import logging
from typing import Optional

import httpx

logger = logging.getLogger("turtledesk")

# Retry settings
_MAX_RETRIES = 3
_RETRY_BASE_DELAY = 2.0  # seconds; doubles each attempt
_RETRYABLE_STATUS_CODES = {502, 503, 504, 429}


async def request_with_retry(
    method: str,
    url: str,
    *,
    headers: Optional[dict] = None,
    timeout: float = 10.0,
    max_retries: int = _MAX_RETRIES,
    base_delay: float = _RETRY_BASE_DELAY,
    **kwargs,
) -> httpx.Response:
    """Execute an HTTP request with exponential-backoff retry.

    Retries on transient server errors (502, 503, 504) and rate-limits
    (429).  Non-retryable errors are raised immediately.
    """
    last_exc: Optional[Exception] = None

    for attempt in range(max_retries):
        try:
            async with httpx.AsyncClient() as client:
                resp = await getattr(client, method)(
                    url,
                    headers=headers,
                    timeout=timeout,
                    **kwargs,
                )

            if resp.status_code in _RETRYABLE_STATUS_CODES:
                delay = base_delay * (2 ** attempt)
                logger.warning(
                    "%s %s returned %d — retry %d/%d in %.1fs",
                    method.upper(), url, resp.status_code,
                    attempt + 1, max_retries, delay,
                )
                await asyncio.sleep(delay)
                last_exc = httpx.HTTPStatusError(
                    f"Server error '{resp.status_code}'",
                    request=resp.request,
                    response=resp,
                )
                continue

            resp.raise_for_status()
            return resp

        except httpx.TransportError as exc:
            delay = base_delay * (2 ** attempt)
            logger.warning(
                "%s %s transport error (%s) — retry %d/%d in %.1fs",
                method.upper(), url, exc,
                attempt + 1, max_retries, delay,
            )
            last_exc = exc
            await asyncio.sleep(delay)

    # All retries exhausted: raise the last error
    raise last_exc  # type: ignore[misc]
