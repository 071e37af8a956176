"""
backend/kupon/providers/api_football.py

Purpose:
    API-Football v3 adapter used as the authoritative status source for
    published fixtures (status short code, elapsed minute, goals).

Dependencies:
    - kupon.providers.http_client
    - kupon.services.provider_rate_limiter
    - kupon.config
"""

import logging
from typing import Any, Optional

import httpx

from kupon.config import settings
from kupon.providers.base import ProviderError, StatusSource
from kupon.providers.http_client import ResilientClient
from kupon.services.provider_rate_limiter import provider_rate_limiter

logger = logging.getLogger("kupon.api_football")

PROVIDER_NAME = "api_football"


def _as_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class ApiFootballProvider(StatusSource):
    """API-Football fixture status lookups (GET /fixtures?id=...)."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        rate_limit_rpm: Optional[int] = None,
    ):
        self._api_key = api_key if api_key is not None else settings.API_FOOTBALL_KEY
        self._base_url = (base_url or settings.API_FOOTBALL_BASE_URL).rstrip("/")
        self._rate_limit_rpm = (
            rate_limit_rpm if rate_limit_rpm is not None else settings.API_FOOTBALL_RATE_LIMIT_RPM
        )
        self._client = ResilientClient(
            PROVIDER_NAME,
            timeout=settings.API_FOOTBALL_TIMEOUT_SECONDS,
            max_retries=settings.API_FOOTBALL_MAX_RETRIES,
            base_delay=settings.API_FOOTBALL_BASE_DELAY_SECONDS,
        )

    @property
    def circuit_open(self) -> bool:
        return self._client.circuit.is_open

    async def _request(self, endpoint: str, params: dict[str, str]) -> list[dict]:
        if not self._api_key:
            raise ProviderError("API_FOOTBALL_KEY is not configured")

        await provider_rate_limiter.acquire(PROVIDER_NAME, self._rate_limit_rpm)
        resp = await self._client.get(
            f"{self._base_url}{endpoint}",
            params=params,
            headers={"x-apisports-key": self._api_key},
        )
        try:
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise ProviderError(f"HTTP {resp.status_code} from {endpoint}") from exc

        try:
            payload = resp.json()
        except ValueError as exc:
            raise ProviderError(f"Malformed JSON from {endpoint}") from exc

        # API-Football reports quota/auth problems with HTTP 200 and a
        # non-empty "errors" list or dict.
        errors = payload.get("errors") if isinstance(payload, dict) else None
        if errors:
            raise ProviderError(f"API-Football error on {endpoint}: {errors}")

        response = payload.get("response") if isinstance(payload, dict) else None
        if not isinstance(response, list):
            raise ProviderError(f"Unexpected payload shape from {endpoint}")
        return response

    async def get_match_status(self, external_id: int) -> Optional[dict[str, Any]]:
        rows = await self._request("/fixtures", {"id": str(external_id)})
        if not rows:
            logger.info("Fixture %s not found at API-Football", external_id)
            return None
        return parse_fixture_status(rows[0])

    async def aclose(self) -> None:
        await self._client.aclose()


def parse_fixture_status(fixture: dict[str, Any]) -> dict[str, Any]:
    """Flatten one API-Football fixture row into the status-source shape."""
    status = (fixture.get("fixture") or {}).get("status") or {}
    goals = fixture.get("goals") or {}
    status_code = str(status.get("short") or "").strip().upper()
    if not status_code:
        raise ProviderError("Fixture payload without status code")
    return {
        "status_code": status_code,
        "elapsed": _as_int(status.get("elapsed")),
        "home_score": _as_int(goals.get("home")),
        "away_score": _as_int(goals.get("away")),
    }
