# backend/app/config.py
from __future__ import annotations
import os


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.environ.get(name, default))
    except (TypeError, ValueError):
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.environ.get(name, default))
    except (TypeError, ValueError):
        return default


def engine_options(database_uri: str, options: dict | None = None) -> dict:
    """
    Engine options for `database_uri`.

    Server databases run every connection at READ COMMITTED. SQLite has no
    such level; its write units take the lock with BEGIN IMMEDIATE instead.
    """
    options = dict(options or {})
    if not str(database_uri).startswith("sqlite"):
        options.setdefault("isolation_level", "READ COMMITTED")
    return options


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/pos.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///pos.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Lock waits are kept short so contention surfaces instead of queueing.
    LOCK_WAIT_TIMEOUT_SECONDS = _env_int("LOCK_WAIT_TIMEOUT_SECONDS", 5)

    # Bounded retry for units of work that hit lock contention
    RETRY_ATTEMPTS = _env_int("RETRY_ATTEMPTS", 3)
    RETRY_BACKOFF_BASE = _env_float("RETRY_BACKOFF_BASE", 0.05)

    # How far after an order's creation a paired transaction is searched for
    ORDER_TRANSACTION_MATCH_WINDOW_HOURS = _env_int("ORDER_TRANSACTION_MATCH_WINDOW_HOURS", 24)

    SESSION_TTL_HOURS = _env_int("SESSION_TTL_HOURS", 24)
    BCRYPT_ROUNDS = _env_int("BCRYPT_ROUNDS", 12)

    CORS_ALLOWED_ORIGINS = {
        o.strip()
        for o in os.environ.get(
            "CORS_ALLOWED_ORIGINS",
            "http://localhost:5173,http://127.0.0.1:5173,http://localhost:4173,http://127.0.0.1:4173",
        ).split(",")
        if o.strip()
    }
