import asyncio
import logging
import time
from typing import Optional
from urllib.parse import urlparse

import httpx

from kupon.providers.base import CircuitOpenError

logger = logging.getLogger("kupon.http_client")

# Retryable HTTP status codes
_RETRYABLE_STATUSES = {429, 500, 502, 503, 504}


class CircuitBreaker:
    """Simple circuit breaker for external API calls."""

    def __init__(self, failure_threshold: int = 5, recovery_timeout: int = 300):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.failure_count = 0
        self.last_failure_time: Optional[float] = None
        self.is_open = False

    def record_success(self) -> None:
        self.failure_count = 0
        self.is_open = False

    def record_failure(self) -> None:
        self.failure_count += 1
        self.last_failure_time = time.time()
        if self.failure_count >= self.failure_threshold and not self.is_open:
            self.is_open = True
            logger.warning(
                "Circuit breaker OPEN after %d failures", self.failure_count
            )

    def can_attempt(self) -> bool:
        if not self.is_open:
            return True
        # Half-open after the recovery timeout: one call decides.
        if self.last_failure_time and (
            time.time() - self.last_failure_time > self.recovery_timeout
        ):
            logger.info("Circuit breaker half-open, allowing retry")
            return True
        return False


def _parse_retry_after(response: httpx.Response) -> Optional[float]:
    value = response.headers.get("retry-after")
    if value is None:
        return None
    try:
        return float(value)
    except (ValueError, TypeError):
        return None


def _safe_url(url: str) -> str:
    """Strip query params for logging."""
    parsed = urlparse(str(url))
    return f"{parsed.scheme}://{parsed.netloc}{parsed.path}"


class ResilientClient:
    """httpx.AsyncClient wrapper with retry, exponential backoff, and circuit breaker.

    A response that is still retryable after the last attempt counts as a
    circuit failure and is returned to the caller; network errors are raised.
    """

    def __init__(
        self,
        name: str,
        timeout: float = 15.0,
        max_retries: int = 2,
        base_delay: float = 2.0,
    ):
        self._client = httpx.AsyncClient(timeout=timeout)
        self._name = name
        self._max_retries = max_retries
        self._base_delay = base_delay
        self.circuit = CircuitBreaker()

    async def get(self, url: str, **kwargs) -> httpx.Response:
        if not self.circuit.can_attempt():
            raise CircuitOpenError(f"{self._name}: circuit open, skipping {_safe_url(url)}")

        last_exc: Optional[Exception] = None
        last_resp: Optional[httpx.Response] = None
        attempts = self._max_retries + 1

        for attempt in range(attempts):
            try:
                resp = await self._client.get(url, **kwargs)
                if resp.status_code not in _RETRYABLE_STATUSES:
                    self.circuit.record_success()
                    return resp

                last_resp = resp
                logger.warning(
                    "[%s] HTTP %d on GET %s (attempt %d/%d)",
                    self._name, resp.status_code, _safe_url(url), attempt + 1, attempts,
                )
                delay = _parse_retry_after(resp)
            except (httpx.TimeoutException, httpx.ConnectError, httpx.RemoteProtocolError) as exc:
                last_exc = exc
                logger.warning(
                    "[%s] Network error on GET %s (attempt %d/%d): %s",
                    self._name, _safe_url(url), attempt + 1, attempts, exc,
                )
                delay = None

            if attempt < self._max_retries:
                if delay is None:
                    delay = self._base_delay * (2 ** attempt)
                await asyncio.sleep(min(delay, 60.0))

        self.circuit.record_failure()
        if last_resp is not None:
            logger.error(
                "[%s] All %d attempts failed for GET %s (last status: %d)",
                self._name, attempts, _safe_url(url), last_resp.status_code,
            )
            return last_resp

        logger.error(
            "[%s] All %d attempts failed for GET %s: %s",
            self._name, attempts, _safe_url(url), last_exc,
        )
        raise last_exc  # type: ignore[misc]

    async def aclose(self) -> None:
        await self._client.aclose()
