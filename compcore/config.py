"""Runtime settings loaded from the environment (and ``.env`` when present)."""

import os
from decimal import Decimal
from pathlib import Path

from dotenv import load_dotenv

from .db.utils import resolve_sqlite_url

load_dotenv()

# Project root directory (repo root)
ROOT_DIR = Path(__file__).resolve().parents[1]


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Settings:
    DB_URL = resolve_sqlite_url(os.getenv("DB_URL", "sqlite:///./dev.db"), ROOT_DIR)
    SQL_ECHO = _env_bool("SQL_ECHO", False)

    # Withdrawals below this amount are refused.
    MIN_WITHDRAWAL = Decimal(os.getenv("MIN_WITHDRAWAL", "5.00"))

    # Accepted ranges for prize pool policies.
    PAYOUT_RATIO_MIN = Decimal(os.getenv("PAYOUT_RATIO_MIN", "0.30"))
    PAYOUT_RATIO_MAX = Decimal(os.getenv("PAYOUT_RATIO_MAX", "0.70"))
    INSTANT_SHARE_MIN = Decimal(os.getenv("INSTANT_SHARE_MIN", "0.80"))
    INSTANT_SHARE_MAX = Decimal(os.getenv("INSTANT_SHARE_MAX", "0.99"))


settings = Settings()
