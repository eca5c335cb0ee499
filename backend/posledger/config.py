# backend/posledger/config.py
from __future__ import annotations
import os


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored next to the process by default
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",  # optional alternative location
        "sqlite:///posledger.sqlite3",  # default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Seconds a SQLite writer waits on a locked database before failing
    SQLITE_BUSY_TIMEOUT = float(os.environ.get("SQLITE_BUSY_TIMEOUT", "30"))

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Sales tax in basis points (800 = 8%)
    TAX_RATE_BPS = int(os.environ.get("TAX_RATE_BPS", "0"))

    PAYMENT_METHODS = ("cash", "card")
    DEFAULT_PAYMENT_METHOD = "cash"

    DEFAULT_REORDER_POINT = int(os.environ.get("DEFAULT_REORDER_POINT", "10"))

    HISTORY_PAGE_LIMIT = 50
    HISTORY_PAGE_MAX = 500

    # Attempts for operations that hit database lock / version conflicts
    WRITE_RETRY_ATTEMPTS = int(os.environ.get("WRITE_RETRY_ATTEMPTS", "3"))
