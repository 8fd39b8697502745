"""Retry helpers for calls to the exchange REST API."""

import asyncio
import random
from dataclasses import dataclass, field
from typing import Any, Optional, Tuple, Type

import httpx

from utils.logger import get_logger

logger = get_logger("retry")


def _default_retryable_exceptions() -> Tuple[Type[Exception], ...]:
    return (
        httpx.TimeoutException,
        httpx.NetworkError,
        ConnectionError,
        asyncio.TimeoutError,
    )


@dataclass
class RetryConfig:
    """Configuration for retry behavior"""

    max_attempts: int = 4
    base_delay: float = 1.0
    max_delay: float = 30.0
    exponential_base: float = 2.0
    jitter: bool = True
    retryable_exceptions: Tuple[Type[Exception], ...] = field(
        default_factory=_default_retryable_exceptions
    )
    retryable_status_codes: Tuple[int, ...] = (429, 500, 502, 503, 504)


def calculate_delay(attempt: int, config: RetryConfig) -> float:
    """Exponential backoff for a 0-based attempt, with optional jitter"""
    delay = min(config.base_delay * (config.exponential_base**attempt), config.max_delay)
    if config.jitter:
        delay = delay * (0.5 + random.random())
    return delay


def is_retryable_error(error: Exception, config: RetryConfig) -> bool:
    if isinstance(error, config.retryable_exceptions):
        return True
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code in config.retryable_status_codes
    return False


class RetryableClient:
    """httpx client wrapper that retries transient failures.

    Non-retryable errors (4xx other than 429, decoding errors) are raised
    on the first attempt.  Retryable ones are raised once attempts run out.
    """

    def __init__(self, client: httpx.AsyncClient, config: Optional[RetryConfig] = None):
        self.client = client
        self.config = config or RetryConfig()

    async def request(self, method: str, url: str, **kwargs) -> httpx.Response:
        last_error: Optional[Exception] = None

        for attempt in range(self.config.max_attempts):
            try:
                response = await self.client.request(method, url, **kwargs)
                response.raise_for_status()
                return response
            except Exception as e:
                last_error = e

                if not is_retryable_error(e, self.config):
                    raise

                if attempt < self.config.max_attempts - 1:
                    delay = calculate_delay(attempt, self.config)

                    if isinstance(e, httpx.HTTPStatusError) and e.response.status_code == 429:
                        retry_after = e.response.headers.get("Retry-After")
                        if retry_after:
                            try:
                                delay = max(delay, float(retry_after))
                            except ValueError:
                                pass

                    logger.warning(
                        "Retrying HTTP request",
                        method=method,
                        url=url,
                        attempt=attempt + 1,
                        delay=round(delay, 2),
                        error=str(e),
                    )
                    await asyncio.sleep(delay)
                else:
                    logger.error(
                        "All retry attempts exhausted",
                        method=method,
                        url=url,
                        attempts=self.config.max_attempts,
                        error=str(e),
                    )

        assert last_error is not None
        raise last_error

    async def get(self, url: str, **kwargs) -> httpx.Response:
        return await self.request("GET", url, **kwargs)

    async def get_json(self, url: str, **kwargs) -> Any:
        response = await self.get(url, **kwargs)
        return response.json()
