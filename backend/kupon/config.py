"""
backend/kupon/config.py

Purpose:
    Central settings loading for the grading service.

Dependencies:
    - pydantic-settings
    - pathlib
"""

from pathlib import Path

from pydantic_settings import BaseSettings

# Prefer backend/.env, fallback to project-root .env.
_BACKEND_ENV_FILE = Path(__file__).resolve().parent.parent / ".env"
_ROOT_ENV_FILE = Path(__file__).resolve().parent.parent.parent / ".env"


class Settings(BaseSettings):
    MONGO_URI: str = "mongodb://localhost:27017"
    MONGO_DB: str = "kupon"
    BACKEND_CORS_ORIGINS: str = "http://localhost:5173"

    # Operator endpoints (manual trigger, automation toggle)
    ADMIN_API_KEY: str = ""

    # API-Football (status source)
    API_FOOTBALL_KEY: str = ""
    API_FOOTBALL_BASE_URL: str = "https://v3.football.api-sports.io"
    API_FOOTBALL_RATE_LIMIT_RPM: int = 120
    API_FOOTBALL_TIMEOUT_SECONDS: float = 15.0
    API_FOOTBALL_MAX_RETRIES: int = 2
    API_FOOTBALL_BASE_DELAY_SECONDS: float = 2.0

    # Match status poller
    MATCH_STATUS_INTERVAL_MINUTES: int = 15
    MATCH_SAFETY_TIMEOUT_HOURS: float = 4.0  # force finished after kickoff + 4h
    MATCH_POLL_DELAY_SECONDS: float = 0.5

    # Re-evaluation pass (missing scores + pending bets on finished matches)
    REEVALUATE_SCORE_AFTER_HOURS: float = 2.5
    REEVALUATE_MAX_AGE_DAYS: int = 7
    REEVALUATE_DELAY_SECONDS: float = 0.3

    # Interval job is registered on startup only when this is set;
    # otherwise the persisted admin toggle decides.
    AUTOMATION_ENABLED_ON_STARTUP: bool = False

    model_config = {
        "env_file": (str(_BACKEND_ENV_FILE), str(_ROOT_ENV_FILE)),
        "extra": "ignore",
    }


settings = Settings()
