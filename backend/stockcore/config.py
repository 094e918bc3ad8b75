# backend/stockcore/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/stockcore.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///stockcore.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("STOCKCORE_LOG_LEVEL", "INFO")

    # Applied when a product is created without an explicit threshold
    DEFAULT_LOW_STOCK_THRESHOLD = int(os.environ.get("STOCKCORE_DEFAULT_LOW_STOCK_THRESHOLD", "5"))

    # Category that restored products are filed under
    RESTORED_CATEGORY_NAME = os.environ.get("STOCKCORE_RESTORED_CATEGORY", "Restored")

    RETRY_ATTEMPTS = int(os.environ.get("STOCKCORE_RETRY_ATTEMPTS", "3"))


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    LOG_LEVEL = "DEBUG"
    RETRY_ATTEMPTS = 1
