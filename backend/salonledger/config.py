# backend/salonledger/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/salonledger.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///salonledger.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # "permissive" lets a movement drive a tracked product below zero (logged);
    # "strict" rejects it with InsufficientStockError.
    STOCK_NEGATIVE_POLICY = os.environ.get("STOCK_NEGATIVE_POLICY", "permissive")

    CURRENCY = "RWF"

    SETTLEMENT_RETRY_ATTEMPTS = int(os.environ.get("SETTLEMENT_RETRY_ATTEMPTS", "3"))
