# backend/factory_ledger/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/factory_ledger.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///factory_ledger.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Audit stamp used when the caller supplies no identity
    LEDGER_DEFAULT_ACTOR = os.environ.get("LEDGER_DEFAULT_ACTOR", "system")

    # Unit-of-work retry on lock / optimistic-version errors
    LEDGER_RETRY_ATTEMPTS = int(os.environ.get("LEDGER_RETRY_ATTEMPTS", "3"))
    LEDGER_RETRY_BACKOFF = float(os.environ.get("LEDGER_RETRY_BACKOFF", "0.1"))

    # "gross" consumes materials for defective units too; "net" does not
    BOM_CONSUMPTION_BASIS = os.environ.get("BOM_CONSUMPTION_BASIS", "gross")

    # Manual OUT adjustments may drive stock negative (a warning is returned)
    ALLOW_NEGATIVE_MANUAL_OUT = _env_bool("ALLOW_NEGATIVE_MANUAL_OUT", True)

    # Only APPROVED logs are settled when true; PENDING + APPROVED otherwise
    PAYROLL_REQUIRE_APPROVAL = _env_bool("PAYROLL_REQUIRE_APPROVAL", False)

    # Statutory contribution for SSB-enrolled workers, in basis points
    SSB_RATE_BPS = int(os.environ.get("SSB_RATE_BPS", "200"))
