# backend/scrapledger/config.py
from __future__ import annotations
import os


def _env_int(name: str, default: int) -> int:
    return int(os.environ.get(name, default))


def _env_float(name: str, default: float) -> float:
    return float(os.environ.get(name, default))


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/scrapledger.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///scrapledger.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Transaction identifiers: "<prefix>-<zero padded number>", e.g. TXN-00000123.
    # The pad width must stay the same for the lifetime of a deployment.
    TRANSACTION_ID_PREFIX = os.environ.get("TRANSACTION_ID_PREFIX", "TXN")
    TRANSACTION_ID_PAD = _env_int("TRANSACTION_ID_PAD", 8)

    # Bounded retry for duplicate-key and lock conflicts on save
    SAVE_RETRY_ATTEMPTS = _env_int("SAVE_RETRY_ATTEMPTS", 3)
    SAVE_RETRY_BACKOFF = _env_float("SAVE_RETRY_BACKOFF", 0.1)

    # Safety net for leaked in-flight save entries (seconds)
    INFLIGHT_SAVE_TTL = _env_float("INFLIGHT_SAVE_TTL", 30.0)

    # Attachment storage: "local" (filesystem) or "http" (object storage endpoint)
    ATTACHMENT_STORAGE = os.environ.get("ATTACHMENT_STORAGE", "local")
    ATTACHMENT_LOCAL_ROOT = os.environ.get("ATTACHMENT_LOCAL_ROOT", "attachments")
    ATTACHMENT_BASE_URL = os.environ.get("ATTACHMENT_BASE_URL")
    ATTACHMENT_HTTP_ENDPOINT = os.environ.get("ATTACHMENT_HTTP_ENDPOINT")
    ATTACHMENT_HTTP_TOKEN = os.environ.get("ATTACHMENT_HTTP_TOKEN")
    ATTACHMENT_UPLOAD_TIMEOUT = _env_float("ATTACHMENT_UPLOAD_TIMEOUT", 10.0)
    ATTACHMENT_MAX_WORKERS = _env_int("ATTACHMENT_MAX_WORKERS", 4)

    # Roles allowed to settle a for-payment transaction
    SETTLEMENT_ROLES = tuple(
        role.strip()
        for role in os.environ.get("SETTLEMENT_ROLES", "owner").split(",")
        if role.strip()
    )
