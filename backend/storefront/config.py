# backend/storefront/config.py
from __future__ import annotations
import os


def _env_float(name: str, default: float | None) -> float | None:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    return float(raw)


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/storefront.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///storefront.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Transactional executor: bounded retries with exponential backoff
    TX_RETRY_ATTEMPTS = int(os.environ.get("TX_RETRY_ATTEMPTS", "3"))
    TX_RETRY_BACKOFF_BASE = _env_float("TX_RETRY_BACKOFF_BASE", 0.1)
    # None disables the wall-clock limit
    TX_TIMEOUT_SECONDS = _env_float("TX_TIMEOUT_SECONDS", None)

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
