from abc import ABC, abstractmethod
from typing import Any, Optional


class ProviderError(RuntimeError):
    """Status provider returned an error payload or an unusable response."""


class CircuitOpenError(ProviderError):
    """Provider calls are suspended after repeated failures."""


class StatusSource(ABC):
    """Authoritative live status for published fixtures."""

    @abstractmethod
    async def get_match_status(self, external_id: int) -> Optional[dict[str, Any]]:
        """Fetch the current status of one fixture.

        Returns None when the provider does not know the fixture, otherwise:
        - status_code: str (provider short code, e.g. "1H", "FT", "PST")
        - elapsed: int | None (minutes played)
        - home_score: int | None
        - away_score: int | None

        Raises ProviderError (or an httpx error) on transport/API failure.
        """
        ...
