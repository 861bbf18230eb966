# backend/shopledger/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/shopledger.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///shopledger.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Alert threshold given to new catalog entries when none is supplied
    DEFAULT_MIN_STOCK_LEVEL = int(os.environ.get("DEFAULT_MIN_STOCK_LEVEL", "5"))

    # Label printed next to the tax line when the bill does not name one
    DEFAULT_TAX_TYPE = os.environ.get("DEFAULT_TAX_TYPE", "GST")

    # Bounded retries when two writers collide on a bill serial
    SERIAL_RETRY_ATTEMPTS = int(os.environ.get("SERIAL_RETRY_ATTEMPTS", "3"))

    # When False, an advance larger than the pre-advance total is rejected
    ALLOW_ADVANCE_OVER_TOTAL = _env_bool("ALLOW_ADVANCE_OVER_TOTAL", False)

    # Browser origins allowed to call the API (comma-separated)
    CORS_ORIGINS = {
        o.strip()
        for o in os.environ.get(
            "CORS_ORIGINS",
            "http://localhost:5173,http://127.0.0.1:5173",
        ).split(",")
        if o.strip()
    }
