import os
from dataclasses import dataclass


def _get_bool(env_name: str, default: bool = False) -> bool:
    val = os.getenv(env_name)
    if val is None:
        return default
    return str(val).strip().lower() in {"1", "true", "yes", "y", "on"}


@dataclass
class Settings:
    # App
    APP_HOST: str = os.getenv("APP_HOST", "0.0.0.0")
    APP_PORT: int = int(os.getenv("APP_PORT", "8000"))
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Database (SQLite by default in a Docker volume)
    DB_URL: str = os.getenv("DB_URL", "sqlite+aiosqlite:////data/data.db")
    DB_ECHO: bool = _get_bool("DB_ECHO", False)

    # Remote shop platform
    SHOPIFY_API_VERSION: str = os.getenv("SHOPIFY_API_VERSION", "2024-01")
    REMOTE_TIMEOUT_SECONDS: float = float(os.getenv("REMOTE_TIMEOUT_SECONDS", "10"))
    WEBHOOK_SECRET: str = os.getenv("WEBHOOK_SECRET", "")

    # Sync
    SYNC_TRANSPORT: str = os.getenv("SYNC_TRANSPORT", "local")  # local | kafka
    SYNC_WORKERS: int = int(os.getenv("SYNC_WORKERS", "4"))
    SYNC_QUEUE_SIZE: int = int(os.getenv("SYNC_QUEUE_SIZE", "1000"))
    SYNC_PAGE_LIMIT: int = int(os.getenv("SYNC_PAGE_LIMIT", "250"))
    SYNC_MAX_PAGES: int = int(os.getenv("SYNC_MAX_PAGES", "1"))

    # Kafka
    KAFKA_BOOTSTRAP_SERVERS: str = os.getenv("KAFKA_BOOTSTRAP_SERVERS", "kafka:9092")
    SYNC_TOPIC: str = os.getenv("SYNC_TOPIC", "sync-push")

    # Defaults for seeding
    DEFAULT_OWNER_ID: int = int(os.getenv("DEFAULT_OWNER_ID", "1"))
    DEFAULT_SHOP_DOMAIN: str = os.getenv("DEFAULT_SHOP_DOMAIN", "demo-store.myshopify.com")
    DEFAULT_ACCESS_TOKEN: str = os.getenv("DEFAULT_ACCESS_TOKEN", "")


settings = Settings()

# Remote platforms refuse larger pages.
MAX_PAGE_LIMIT = 250
