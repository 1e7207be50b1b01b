"""
arena/config/settings.py
Engine configuration object.

Loaded from the environment (.env via python-dotenv) once at startup and
passed explicitly to every service that needs it. Services never read
os.environ themselves.
"""
import os
from dataclasses import dataclass, field
from typing import Dict

from dotenv import load_dotenv

from arena.config.feature_flags import FeatureFlags, get_bool_env, get_int_env

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./arena.db"

# Lifecycle event -> WhatsApp template name
DEFAULT_TEMPLATES = {
    "submitted": "game_greeting",
    "verified": "verified",
    "rejected": "not_eligible",
    "tournament_update": "pending",
}


@dataclass
class Settings:
    database_url: str = DEFAULT_DATABASE_URL
    sql_echo: bool = False

    status_sweep_interval_seconds: int = 600
    notification_retry_interval_seconds: int = 60
    notification_max_retries: int = 3
    notification_backoff_seconds: int = 30
    notification_batch_size: int = 10
    notification_templates: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_TEMPLATES))

    default_group_size: int = 20
    server_status_cache_ttl_seconds: int = 30
    server_status_cache_size: int = 256

    blob_storage_dir: str = "./uploads"
    blob_base_url: str = "/uploads"

    whatsapp_api_url: str = "https://graph.facebook.com/v18.0"
    whatsapp_phone_number_id: str = ""
    whatsapp_access_token: str = ""

    flags: FeatureFlags = field(default_factory=FeatureFlags)

    @classmethod
    def from_env(cls, load_dotenv_file: bool = True) -> "Settings":
        if load_dotenv_file:
            load_dotenv()
        return cls(
            database_url=os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL),
            sql_echo=get_bool_env("SQL_ECHO", False),
            status_sweep_interval_seconds=get_int_env("STATUS_SWEEP_INTERVAL_SECONDS", 600),
            notification_retry_interval_seconds=get_int_env("NOTIFICATION_RETRY_INTERVAL_SECONDS", 60),
            notification_max_retries=get_int_env("NOTIFICATION_MAX_RETRIES", 3),
            notification_backoff_seconds=get_int_env("NOTIFICATION_BACKOFF_SECONDS", 30),
            notification_batch_size=get_int_env("NOTIFICATION_BATCH_SIZE", 10),
            default_group_size=get_int_env("DEFAULT_GROUP_SIZE", 20),
            server_status_cache_ttl_seconds=get_int_env("SERVER_STATUS_CACHE_TTL_SECONDS", 30),
            server_status_cache_size=get_int_env("SERVER_STATUS_CACHE_SIZE", 256),
            blob_storage_dir=os.getenv("BLOB_STORAGE_DIR", "./uploads"),
            blob_base_url=os.getenv("BLOB_BASE_URL", "/uploads"),
            whatsapp_api_url=os.getenv("WHATSAPP_API_URL", "https://graph.facebook.com/v18.0"),
            whatsapp_phone_number_id=os.getenv("WHATSAPP_PHONE_NUMBER_ID", ""),
            whatsapp_access_token=os.getenv("WHATSAPP_ACCESS_TOKEN", ""),
            flags=FeatureFlags.from_env(),
        )

    @property
    def whatsapp_configured(self) -> bool:
        return bool(self.whatsapp_phone_number_id and self.whatsapp_access_token)

    def template_for(self, event_type: str) -> str:
        return self.notification_templates.get(event_type, event_type)
