"""Configuration management for the P2P Trade Escrow Engine"""

import os
import logging
from decimal import Decimal
from typing import List

from dotenv import load_dotenv

load_dotenv(os.path.join(os.path.dirname(os.path.abspath(__file__)), '.env'))

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower().strip() in ("1", "true", "yes", "on")


class Config:
    """Application configuration"""

    # Environment detection
    ENVIRONMENT = os.getenv("ENVIRONMENT", "development").lower().strip()
    IS_PRODUCTION = ENVIRONMENT == "production"

    # HTTP server
    SERVER_HOST = os.getenv("SERVER_HOST", "0.0.0.0")
    SERVER_PORT = int(os.getenv("PORT", "8000"))

    # Logging
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

    # Database configuration
    # Production runs on PostgreSQL via asyncpg, local development falls back to SQLite
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./trades.db")
    DATABASE_ECHO = _env_bool("DATABASE_ECHO")
    DATABASE_POOL_SIZE = int(os.getenv("DATABASE_POOL_SIZE", "10"))

    # Trade lifecycle
    TRADE_EXPIRY_HOURS = int(os.getenv("TRADE_EXPIRY_HOURS", "24"))
    DEFAULT_CANCEL_REASON = os.getenv("DEFAULT_CANCEL_REASON", "User cancelled")
    EXPIRY_CANCEL_REASON = os.getenv("EXPIRY_CANCEL_REASON", "Trade expired")
    MIN_DISPUTE_EXPLANATION_LENGTH = int(
        os.getenv("MIN_DISPUTE_EXPLANATION_LENGTH", "10")
    )

    # Expired trades keep their escrow held unless this is switched on
    REFUND_ESCROW_ON_EXPIRY = _env_bool("REFUND_ESCROW_ON_EXPIRY")

    # Trade search pagination
    FILTER_DEFAULT_LIMIT = int(os.getenv("FILTER_DEFAULT_LIMIT", "20"))
    FILTER_MAX_LIMIT = int(os.getenv("FILTER_MAX_LIMIT", "100"))

    # Price oracle (Coinbase exchange rates, BTC base)
    PRICE_API_URL = os.getenv(
        "PRICE_API_URL", "https://api.coinbase.com/v2/exchange-rates?currency=BTC"
    )
    PRICE_CACHE_TTL_SECONDS = int(os.getenv("PRICE_CACHE_TTL_SECONDS", "60"))
    PRICE_API_TIMEOUT_SECONDS = int(os.getenv("PRICE_API_TIMEOUT_SECONDS", "10"))

    # Expiry sweep job
    EXPIRY_SWEEP_ENABLED = _env_bool("EXPIRY_SWEEP_ENABLED", "true")
    EXPIRY_SWEEP_INTERVAL_SECONDS = int(os.getenv("EXPIRY_SWEEP_INTERVAL_SECONDS", "60"))
    EXPIRY_SWEEP_BATCH_SIZE = int(os.getenv("EXPIRY_SWEEP_BATCH_SIZE", "50"))

    # Sanity ceiling on a single trade's notional, in fiat units
    MAX_TRADE_FIAT_AMOUNT = Decimal(os.getenv("MAX_TRADE_FIAT_AMOUNT", "1000000"))

    @classmethod
    def validate(cls) -> List[str]:
        """Return a list of configuration problems (empty when the config is usable)"""
        problems = []

        if not cls.DATABASE_URL:
            problems.append("DATABASE_URL is not set")
        elif cls.IS_PRODUCTION and cls.DATABASE_URL.startswith("sqlite"):
            problems.append("SQLite database configured in production")

        if cls.TRADE_EXPIRY_HOURS <= 0:
            problems.append("TRADE_EXPIRY_HOURS must be positive")
        if cls.PRICE_CACHE_TTL_SECONDS < 0:
            problems.append("PRICE_CACHE_TTL_SECONDS cannot be negative")
        if cls.FILTER_DEFAULT_LIMIT <= 0 or cls.FILTER_DEFAULT_LIMIT > cls.FILTER_MAX_LIMIT:
            problems.append("FILTER_DEFAULT_LIMIT must be between 1 and FILTER_MAX_LIMIT")
        if cls.EXPIRY_SWEEP_INTERVAL_SECONDS <= 0:
            problems.append("EXPIRY_SWEEP_INTERVAL_SECONDS must be positive")
        if cls.EXPIRY_SWEEP_BATCH_SIZE <= 0:
            problems.append("EXPIRY_SWEEP_BATCH_SIZE must be positive")

        return problems

    @classmethod
    def log_summary(cls) -> None:
        """Log the effective configuration (no secrets)"""
        db_kind = cls.DATABASE_URL.split("://", 1)[0]
        logger.info(f"🔧 CONFIG: environment={cls.ENVIRONMENT} database={db_kind}")
        logger.info(
            f"🔧 CONFIG: trade_expiry={cls.TRADE_EXPIRY_HOURS}h "
            f"price_cache_ttl={cls.PRICE_CACHE_TTL_SECONDS}s "
            f"refund_on_expiry={cls.REFUND_ESCROW_ON_EXPIRY}"
        )
        logger.info(
            f"🔧 CONFIG: expiry_sweep enabled={cls.EXPIRY_SWEEP_ENABLED} "
            f"interval={cls.EXPIRY_SWEEP_INTERVAL_SECONDS}s batch={cls.EXPIRY_SWEEP_BATCH_SIZE}"
        )
        for problem in cls.validate():
            logger.warning(f"⚠️ CONFIG_PROBLEM: {problem}")
