"""Environment-based configuration."""

import logging
import os
from pathlib import Path
from typing import List

logger = logging.getLogger(__name__)

DEFAULT_ORIGINS = [
    "http://localhost:3000",
    "http://localhost:5173",
    "http://127.0.0.1:3000",
    "http://127.0.0.1:5173",
]


def _bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


def _list(name: str, default: List[str]) -> List[str]:
    raw = os.getenv(name)
    if not raw:
        return list(default)
    return [item.strip() for item in raw.split(",") if item.strip()]


class Settings:
    """Service configuration loaded from ``DC_*`` environment variables."""

    def __init__(self):
        home = Path.home() / ".dealer-contracts"

        self.host = os.getenv("DC_API_HOST", "0.0.0.0")
        self.port = int(os.getenv("DC_API_PORT", "8000"))
        self.debug = os.getenv("DC_ENV", "production") != "production"
        self.db_path = os.getenv("DC_DATABASE_PATH", str(home / "contracts.db"))

        # Signing links
        self.public_base_url = os.getenv("DC_PUBLIC_BASE_URL", "http://localhost:8000")
        self.link_expiry_days = int(os.getenv("DC_LINK_EXPIRY_DAYS", "7"))
        self.sender_name = os.getenv("DC_SENDER_NAME", "Your dealership")

        # Document store: HTTP blob service when a URL is set, local files otherwise
        self.document_store_url = os.getenv("DC_DOCUMENT_STORE_URL")
        self.document_store_api_key = os.getenv("DC_DOCUMENT_STORE_API_KEY")
        self.document_store_root = os.getenv("DC_DOCUMENT_STORE_ROOT", str(home / "documents"))

        # Staff API keys as JSON: {"<key>": {"tenant_id": ..., "role": ..., "user_id": ...}}
        self.api_keys_json = os.getenv("DC_API_KEYS", "")

        # Notifications
        self.notifications_enabled = _bool("DC_NOTIFICATIONS_ENABLED", "true")
        self.notification_workers = int(os.getenv("DC_NOTIFICATION_WORKERS", "4"))
        self.smtp_host = os.getenv("DC_SMTP_HOST")
        self.smtp_port = int(os.getenv("DC_SMTP_PORT", "587"))
        self.smtp_user = os.getenv("DC_SMTP_USER")
        self.smtp_password = os.getenv("DC_SMTP_PASSWORD")
        self.smtp_use_tls = _bool("DC_SMTP_TLS", "true")
        self.from_email = os.getenv("DC_FROM_EMAIL", self.smtp_user or "")
        self.sms_webhook_url = os.getenv("DC_SMS_WEBHOOK_URL")
        self.whatsapp_webhook_url = os.getenv("DC_WHATSAPP_WEBHOOK_URL")
        self.messaging_api_key = os.getenv("DC_MESSAGING_API_KEY")

        # Field extraction
        self.extraction_url = os.getenv("DC_EXTRACTION_URL")
        self.extraction_api_key = os.getenv("DC_EXTRACTION_API_KEY")
        self.api_base_url = os.getenv("DC_API_BASE_URL", self.public_base_url)

        # Expiry sweeper
        self.sweeper_enabled = _bool("DC_SWEEPER_ENABLED")
        self.sweeper_interval = int(os.getenv("DC_SWEEPER_INTERVAL", "300"))

        # CORS
        self.allowed_origins = _list("DC_CORS_ORIGINS", DEFAULT_ORIGINS)


_settings = None


def _get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reload_settings() -> Settings:
    """Re-read the environment."""
    global _settings
    _settings = Settings()
    return _settings


class _SettingsProxy:
    """Lazy proxy so settings aren't loaded until first access."""

    def __getattr__(self, name):
        return getattr(_get_settings(), name)


settings = _SettingsProxy()
