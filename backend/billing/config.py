# backend/billing/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/billing.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///billing.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Absolute lifetime of an identity session token
    SESSION_TTL_HOURS = int(os.environ.get("SESSION_TTL_HOURS", "24"))

    # Background JSON import
    IMPORT_BATCH_SIZE = int(os.environ.get("IMPORT_BATCH_SIZE", "100"))
    IMPORT_RUN_ASYNC = os.environ.get("IMPORT_RUN_ASYNC", "1") == "1"

    # Celery runs the import worker; eager mode executes tasks in-process
    CELERY = {
        "broker_url": os.environ.get("CELERY_BROKER_URL", "redis://localhost:6379/0"),
        "result_backend": os.environ.get("CELERY_RESULT_BACKEND", "redis://localhost:6379/0"),
        "task_ignore_result": True,
        "task_always_eager": os.environ.get("CELERY_TASK_ALWAYS_EAGER", "0") == "1",
    }

    # Accepted/running import jobs older than this are failed by `flask imports fail-stale`
    IMPORT_STALE_MINUTES = int(os.environ.get("IMPORT_STALE_MINUTES", "60"))
