# backend/tiendapos/config.py
from __future__ import annotations
import os


def _env_flag(name: str, default: str = "true") -> bool:
    return os.environ.get(name, default).strip().lower() not in {"false", "0", "no", "off"}


class Config:
    # Development default; set SECRET_KEY in production
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # Local SQLite file by default; production sets DATABASE_URL to Postgres
    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL", "sqlite:///tiendapos.sqlite3")
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Comma-separated list of browser origins allowed to call the API
    CORS_ALLOWED_ORIGINS = [
        origin.strip()
        for origin in os.environ.get(
            "CORS_ALLOWED_ORIGINS",
            "http://localhost:3000,http://127.0.0.1:3000,http://localhost:5173,http://127.0.0.1:5173",
        ).split(",")
        if origin.strip()
    ]

    # Kill switch for /api/developer/*
    DEVELOPER_TOOLS_ENABLED = _env_flag("DEVELOPER_TOOLS_ENABLED")

    # Outbound webhook for returns (disabled when base URL is empty)
    EXTERNAL_SYNC_BASE_URL = os.environ.get("EXTERNAL_SYNC_BASE_URL", "")
    EXTERNAL_SYNC_API_KEY = os.environ.get("EXTERNAL_SYNC_API_KEY", "")
    EXTERNAL_SYNC_BEARER_TOKEN = os.environ.get("EXTERNAL_SYNC_BEARER_TOKEN", "")
    EXTERNAL_SYNC_BASIC_USER = os.environ.get("EXTERNAL_SYNC_BASIC_USER", "")
    EXTERNAL_SYNC_BASIC_PASS = os.environ.get("EXTERNAL_SYNC_BASIC_PASS", "")
    EXTERNAL_SYNC_TIMEOUT_SECONDS = float(os.environ.get("EXTERNAL_SYNC_TIMEOUT_SECONDS", "5"))
