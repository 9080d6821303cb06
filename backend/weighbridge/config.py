# backend/weighbridge/config.py
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

    # SQLite DB stored in backend/instance/weighbridge.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///weighbridge.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Offline sites run the same engine against a local store and issue
    # provisional dockets until the reconciler replays them centrally.
    WEIGHBRIDGE_OFFLINE_MODE = _env_flag("WEIGHBRIDGE_OFFLINE_MODE", False)

    # Docket numbering: "<prefix>-<tenant:03d>-<n:0{pad}d>"
    DOCKET_PREFIX = os.environ.get("DOCKET_PREFIX", "D")
    DOCKET_NUMBER_PAD = int(os.environ.get("DOCKET_NUMBER_PAD", "6"))
    PROVISIONAL_DOCKET_MARKER = os.environ.get("PROVISIONAL_DOCKET_MARKER", "LOCAL")

    # Net weight = gross - tare, floored at zero unless disabled
    NET_WEIGHT_FLOOR_AT_ZERO = _env_flag("NET_WEIGHT_FLOOR_AT_ZERO", True)
