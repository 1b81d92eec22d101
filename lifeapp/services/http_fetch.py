"""Outbound HTTP helpers shared by the third-party API clients.

``fetch_with_retry`` retries rate-limited (429) and server-side (5xx)
responses, honouring an integer ``Retry-After`` header and otherwise backing
off exponentially (1s, 2s, 4s ... capped at 30s). Any other non-2xx status
fails on the first attempt.
"""
from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import Awaitable, Callable

import httpx

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0
MAX_RETRIES = 3
INITIAL_RETRY_DELAY = 1.0
MAX_RETRY_DELAY = 30.0
LEADING_INT_RE = re.compile(r"\s*[+-]?\d+")


class ExternalFetchError(RuntimeError):
    pass


class FetchTimeoutError(ExternalFetchError):
    pass


class NonRetryableStatusError(ExternalFetchError):
    def __init__(self, message: str, status: int):
        super().__init__(message)
        self.status = status


class RetriesExhaustedError(ExternalFetchError):
    def __init__(self, message: str, status: int, attempts: int, retry_after: str | None):
        super().__init__(message)
        self.status = status
        self.attempts = attempts
        self.retry_after = retry_after


def build_client(timeout: float) -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=timeout, follow_redirects=True)


async def fetch_with_timeout(
    url: str,
    method: str = "GET",
    timeout: float = DEFAULT_TIMEOUT,
    **kwargs,
) -> httpx.Response:
    try:
        async with build_client(timeout) as client:
            return await client.request(method, url, **kwargs)
    except httpx.TimeoutException as exc:
        raise FetchTimeoutError(f"Request timeout after {int(timeout * 1000)}ms") from exc


def is_retryable_status(status: int) -> bool:
    return status == 429 or 500 <= status < 600


def parse_retry_after(value: str | None) -> int | None:
    if value is None:
        return None
    match = LEADING_INT_RE.match(str(value))
    if not match:
        return None
    seconds = int(match.group(0))
    return seconds if seconds > 0 else None


def retry_delay(attempt: int, retry_after: str | None = None) -> float:
    seconds = parse_retry_after(retry_after)
    if seconds is not None:
        return float(min(seconds, MAX_RETRY_DELAY))
    return float(min(INITIAL_RETRY_DELAY * (2 ** attempt), MAX_RETRY_DELAY))


async def fetch_with_retry(
    url: str,
    method: str = "GET",
    *,
    service: str = "external API",
    max_retries: int = MAX_RETRIES,
    timeout: float = DEFAULT_TIMEOUT,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    **kwargs,
) -> httpx.Response:
    last_response: httpx.Response | None = None
    for attempt in range(max_retries + 1):
        try:
            response = await fetch_with_timeout(url, method=method, timeout=timeout, **kwargs)
        except (FetchTimeoutError, httpx.TransportError) as exc:
            if attempt >= max_retries:
                raise
            delay = retry_delay(attempt)
            logger.warning(
                "%s request failed (%s), retrying in %.0fs (attempt %d/%d)",
                service,
                exc,
                delay,
                attempt + 1,
                max_retries,
            )
            await sleep(delay)
            continue

        if response.is_success:
            return response

        if not is_retryable_status(response.status_code):
            raise NonRetryableStatusError(
                f"Non-retryable error from {service}: {response.status_code} "
                f"{response.reason_phrase}. {response.text}",
                status=response.status_code,
            )

        last_response = response
        if attempt >= max_retries:
            break
        delay = retry_delay(attempt, response.headers.get("Retry-After"))
        logger.warning(
            "%s returned %d, retrying in %.0fs (attempt %d/%d)",
            service,
            response.status_code,
            delay,
            attempt + 1,
            max_retries,
        )
        await sleep(delay)

    retry_after = last_response.headers.get("Retry-After")
    raise RetriesExhaustedError(
        f"{service} request failed after {max_retries + 1} attempts. "
        f"Last status: {last_response.status_code} {last_response.reason_phrase}. "
        f"Retry-After header: {retry_after or 'not provided'}. "
        f"Response: {last_response.text}. "
        f"Response headers: {json.dumps(dict(last_response.headers))}",
        status=last_response.status_code,
        attempts=max_retries + 1,
        retry_after=retry_after,
    )
