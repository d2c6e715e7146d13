"""
backend/betsim/config.py

Purpose:
    Central settings loading for the simulator backend: odds provider access,
    MongoDB connection, cache windows and settlement timing.

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
    ODDSAPIKEY: str = ""
    THEODDSAPI_BASE_URL: str = "https://api.the-odds-api.com/v4"
    ODDS_REGIONS: str = "us,uk,eu"

    # Transactions need a replica set (a single-node rs0 is enough).
    MONGO_URI: str = "mongodb://localhost:27017/?replicaSet=rs0"
    MONGO_DB: str = "betsim"
    BACKEND_CORS_ORIGINS: str = "http://localhost:5173"
    LOG_LEVEL: str = "INFO"

    # Gateway HTTP behaviour
    HTTP_TIMEOUT_SECONDS: float = 20.0
    HTTP_MAX_RETRIES: int = 1
    HTTP_RETRY_BASE_DELAY_SECONDS: float = 2.0

    # Cache windows
    ODDS_STALE_MINUTES: int = 15
    ANALYSIS_STALE_MINUTES: int = 60
    ODDS_CACHE_PURGE_MINUTES: int = 60
    CACHE_MAINTENANCE_INTERVAL_MINUTES: int = 30

    # Settlement
    SETTLEMENT_MATCH_BUFFER_HOURS: int = 2  # assumed match length after commence
    SETTLEMENT_RESCHEDULE_MINUTES: int = 30
    SETTLEMENT_MAX_ATTEMPTS: int = 5
    SETTLEMENT_RETRY_BASE_SECONDS: int = 30
    SETTLEMENT_SCORES_DAYS_FROM: int = 3
    SETTLEMENT_JOBSTORE_COLLECTION: str = "settlement_jobs"

    # Wallet
    INITIAL_WALLET_BALANCE: float = 10000.0
    WALLET_CURRENCY: str = "USD"

    model_config = {
        "env_file": (str(_BACKEND_ENV_FILE), str(_ROOT_ENV_FILE)),
        "extra": "ignore",
    }


settings = Settings()
