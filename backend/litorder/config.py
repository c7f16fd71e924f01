# backend/litorder/config.py
from __future__ import annotations
import os


def _env_flag(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/litorder.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///litorder.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # SHIPPED -> DELIVERED books an INCOMING movement at the requesting organization
    RECEIVE_ON_DELIVERY = _env_flag("RECEIVE_ON_DELIVERY", True)

    # Groups order from localities/regions, localities from regions, regions from regions
    ENFORCE_ORDER_HIERARCHY = _env_flag("ENFORCE_ORDER_HIERARCHY", True)

    LOW_STOCK_THRESHOLD = int(os.environ.get("LOW_STOCK_THRESHOLD", "10"))

    # Retries on lock contention / stale version before giving up
    UNIT_OF_WORK_ATTEMPTS = int(os.environ.get("UNIT_OF_WORK_ATTEMPTS", "3"))

    DEFAULT_PAGE_SIZE = 20
    MAX_PAGE_SIZE = 100
