"""Retrying HTTP wrapper for rate-limited APIs.

Both remote services throttle with HTTP 429 and no Retry-After hint, so
retries follow a fixed exponential schedule: 1s, 2s, 4s, capped at 5s.
"""

import logging
import time
from typing import Any, Callable, Optional

import httpx
import requests

from .exceptions import RateLimitExceeded, UpstreamUnavailable

logger = logging.getLogger(__name__)

NETWORK_ERRORS = (
    requests.exceptions.ConnectionError,
    requests.exceptions.Timeout,
    httpx.TransportError,
)


def backoff_delay(attempt: int, base_ms: int = 1000, cap_ms: int = 5000) -> float:
    """Delay in seconds before retry number ``attempt`` (1-based)."""
    return min(base_ms * 2 ** (attempt - 1), cap_ms) / 1000


class ResilientClient:
    """
    Send requests through a session, retrying on 429 and network failures.

    The session can be a ``requests.Session`` or an ``httpx.Client``; both
    expose ``request(method, url, **kwargs)`` and a ``status_code`` on the
    response. Other error statuses are returned untouched for the caller to
    interpret. Callers must only send requests that are safe to repeat.
    """

    def __init__(
        self,
        session: Any,
        max_retries: int = 3,
        timeout: int = 30,
        sleep: Callable[[float], None] = time.sleep,
        name: str = 'http',
    ):
        self.session = session
        self.max_retries = max_retries
        self.timeout = timeout
        self.name = name
        self._sleep = sleep

    def send(
        self,
        method: str,
        url: str,
        headers: Optional[dict] = None,
        params: Optional[Any] = None,
        json: Optional[Any] = None,
    ) -> Any:
        """
        Execute a request with bounded retries.

        Returns:
            The provider response (any status other than an exhausted 429)

        Raises:
            RateLimitExceeded: still 429 after max_retries + 1 attempts
            UpstreamUnavailable: network failure on every attempt
        """
        attempts = self.max_retries + 1
        last_error: Optional[Exception] = None

        for attempt in range(attempts):
            if attempt > 0:
                delay = backoff_delay(attempt)
                logger.warning(
                    f"[{self.name}] Retry {attempt}/{self.max_retries} for {method} {url} "
                    f"after {delay:.1f}s"
                )
                self._sleep(delay)

            try:
                response = self.session.request(
                    method,
                    url,
                    headers=headers,
                    params=params,
                    json=json,
                    timeout=self.timeout,
                )
            except NETWORK_ERRORS as e:
                logger.error(
                    f"[{self.name}] Network error on attempt {attempt + 1}/{attempts}: {e}"
                )
                last_error = e
                continue

            if response.status_code == 429:
                logger.warning(
                    f"[{self.name}] Rate limited (429) on attempt {attempt + 1}/{attempts}"
                )
                last_error = None
                continue

            return response

        if last_error is not None:
            raise UpstreamUnavailable(
                f"{method} {url} failed after {attempts} attempts: {last_error}",
                attempts=attempts,
            ) from last_error

        raise RateLimitExceeded(
            f"{method} {url} still rate limited after {attempts} attempts",
            attempts=attempts,
        )
