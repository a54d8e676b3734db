"""Configuration management for the Jastip escrow reconciliation backend"""

import os
import logging
from datetime import timedelta

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower().strip() in ("1", "true", "yes", "on")


class Config:
    """Application configuration"""

    ENVIRONMENT = os.getenv("ENVIRONMENT", "development").lower().strip()
    IS_PRODUCTION = ENVIRONMENT == "production"

    # Server
    PORT = int(os.getenv("PORT", "3000"))
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

    # Database (async driver URL, e.g. postgresql+asyncpg://...)
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./jastip.db")
    DATABASE_ECHO = _env_bool("DATABASE_ECHO")

    # Reconciliation jobs
    ENABLE_SCHEDULER = _env_bool("ENABLE_SCHEDULER", "true")
    SETTLEMENT_GRACE_PERIOD_SECONDS = int(os.getenv("SETTLEMENT_GRACE_PERIOD_SECONDS", "60"))
    RETURN_RESPONSE_TIMEOUT_MINUTES = int(os.getenv("RETURN_RESPONSE_TIMEOUT_MINUTES", "15"))
    RECONCILIATION_PAGE_SIZE = int(os.getenv("RECONCILIATION_PAGE_SIZE", "200"))
    SETTLEMENT_INTERVAL_SECONDS = int(os.getenv("SETTLEMENT_INTERVAL_SECONDS", "120"))
    RETURN_TIMEOUT_INTERVAL_SECONDS = int(os.getenv("RETURN_TIMEOUT_INTERVAL_SECONDS", "120"))
    CART_CLEANUP_INTERVAL_MINUTES = int(os.getenv("CART_CLEANUP_INTERVAL_MINUTES", "60"))

    # Shared secret for externally-driven cron triggers (optional)
    CRON_TRIGGER_TOKEN = os.getenv("CRON_TRIGGER_TOKEN")

    # Xendit payment gateway
    XENDIT_SECRET_KEY = os.getenv("XENDIT_SECRET_KEY")
    XENDIT_WEBHOOK_TOKEN = os.getenv("XENDIT_WEBHOOK_TOKEN")
    XENDIT_BASE_URL = os.getenv("XENDIT_BASE_URL", "https://api.xendit.co")
    TOPUP_SUCCESS_REDIRECT_URL = os.getenv(
        "TOPUP_SUCCESS_REDIRECT_URL", "https://ngoper.app/topup/success"
    )

    # 100ms live sessions
    HMS_ACCESS_KEY = os.getenv("HMS_ACCESS_KEY", os.getenv("ONHUNDREDMS_ACCESS_KEY"))
    HMS_APP_SECRET = os.getenv("HMS_APP_SECRET", os.getenv("ONHUNDREDMS_APP_SECRET"))
    HMS_API_BASE_URL = os.getenv("HMS_API_BASE_URL", "https://api.100ms.live/v2")

    # Firebase Cloud Messaging (service account; firebase-admin refreshes its access token)
    FIREBASE_PROJECT_ID = os.getenv("FIREBASE_PROJECT_ID")
    FIREBASE_CLIENT_EMAIL = os.getenv("FIREBASE_CLIENT_EMAIL")
    # Env files usually carry the PEM with literal \\n sequences
    FIREBASE_PRIVATE_KEY = (os.getenv("FIREBASE_PRIVATE_KEY") or "").replace("\\n", "\n") or None
    FCM_MAX_BATCH_SIZE = int(os.getenv("FCM_MAX_BATCH_SIZE", "500"))

    @classmethod
    def settlement_grace_period(cls) -> timedelta:
        return timedelta(seconds=cls.SETTLEMENT_GRACE_PERIOD_SECONDS)

    @classmethod
    def return_response_timeout(cls) -> timedelta:
        return timedelta(minutes=cls.RETURN_RESPONSE_TIMEOUT_MINUTES)

    @staticmethod
    def log_environment_config():
        """Log current environment configuration for debugging"""
        logger.info("🔧 Environment Configuration:")
        logger.info(f"   Environment: {Config.ENVIRONMENT.upper()}")
        logger.info(f"   Scheduler enabled: {Config.ENABLE_SCHEDULER}")
        logger.info(
            f"   Settlement grace: {Config.SETTLEMENT_GRACE_PERIOD_SECONDS}s, "
            f"return timeout: {Config.RETURN_RESPONSE_TIMEOUT_MINUTES}min, "
            f"page size: {Config.RECONCILIATION_PAGE_SIZE}"
        )
        logger.info(f"   Xendit: {'configured' if Config.XENDIT_SECRET_KEY else 'missing'}")
        logger.info(f"   Xendit webhook token: {'configured' if Config.XENDIT_WEBHOOK_TOKEN else 'NOT SET'}")
        logger.info(f"   100ms: {'configured' if Config.HMS_ACCESS_KEY and Config.HMS_APP_SECRET else 'missing'}")
        logger.info(f"   FCM: {'configured' if Config.FIREBASE_CLIENT_EMAIL and Config.FIREBASE_PRIVATE_KEY else 'missing'}")

        if Config.IS_PRODUCTION and not Config.XENDIT_WEBHOOK_TOKEN:
            logger.error("❌ Production environment detected but XENDIT_WEBHOOK_TOKEN is not set!")
