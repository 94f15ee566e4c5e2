"""Application configuration.

Environment variables override all defaults. A local `.env` next to `backend/`
is loaded first.
"""

import os
from decimal import Decimal
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

_BACKEND_DIR = Path(__file__).resolve().parents[2]
load_dotenv(dotenv_path=_BACKEND_DIR / ".env", override=False)


def _decimal_env(name: str, default: Optional[str]) -> Optional[Decimal]:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return Decimal(default) if default is not None else None
    return Decimal(raw)


def _list_env(name: str, default: List[str]) -> List[str]:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return list(default)
    return [item.strip() for item in raw.split(",") if item.strip()]


class Settings:
    # Database Configuration
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./settlement.db")

    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")
    DEBUG: bool = ENVIRONMENT == "development"
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

    # Money
    DEFAULT_CURRENCY: str = os.getenv("DEFAULT_CURRENCY", "SAR")
    # Tolerance used when deciding whether an invoice is settled
    PAYMENT_EPSILON: Decimal = _decimal_env("PAYMENT_EPSILON", "0.01")
    # Unset means the sale composer applies no tax
    POS_TAX_RATE: Optional[Decimal] = _decimal_env("POS_TAX_RATE", None)

    CORS_ORIGINS: List[str] = _list_env(
        "CORS_ORIGINS",
        [
            "http://localhost:3000",
            "http://127.0.0.1:3000",
            "http://localhost:5173",
            "http://127.0.0.1:5173",
        ],
    )


settings = Settings()
