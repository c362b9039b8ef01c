from __future__ import annotations

import os


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key")
    SQLALCHEMY_DATABASE_URI = os.getenv(
        "DATABASE_URL",
        "sqlite:///gestoria.db",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # Expediente lifecycle policies
    AUTO_ADVANCE_EMPTY_CHECKLIST = _env_flag("AUTO_ADVANCE_EMPTY_CHECKLIST", False)
    RECORD_SAME_STATUS_TRANSITIONS = _env_flag("RECORD_SAME_STATUS_TRANSITIONS", True)

    # Dashboard alerts
    NIE_EXPIRY_ALERT_DAYS = int(os.getenv("NIE_EXPIRY_ALERT_DAYS", "30"))
    STALE_CASE_DAYS = int(os.getenv("STALE_CASE_DAYS", "30"))
