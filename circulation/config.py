import os
from dataclasses import dataclass, field
from typing import List, Optional
from dotenv import load_dotenv

load_dotenv()


def _env_flag(name: str, default: str = "False") -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


@dataclass
class Settings:
    # API Ayarları
    api_host: str = os.getenv("API_HOST", "127.0.0.1")
    api_port: int = int(os.getenv("API_PORT", "8000"))
    # Ayarlanmışsa değişiklik yapan rotalar X-API-Key ister
    api_key: Optional[str] = os.getenv("API_KEY") or None
    cors_origins: List[str] = field(
        default_factory=lambda: [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
    )

    # Depolama Ayarları
    storage_backend: str = os.getenv("LIBRARY_STORAGE", "sqlite").lower()
    db_file: str = os.getenv("LIBRARY_DB_FILE", "library.db")

    # Ödünç Verme Kuralları
    activity_limit: int = int(os.getenv("ACTIVITY_LIMIT", "50"))
    default_loan_days: int = int(os.getenv("DEFAULT_LOAN_DAYS", "14"))

    # Uygulama Ayarları
    app_name: str = os.getenv("APP_NAME", "Library Circulation API")
    app_version: str = os.getenv("APP_VERSION", "1.0.0")
    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()
    debug: bool = _env_flag("DEBUG")
    environment: str = os.getenv("ENVIRONMENT", "development")


settings = Settings()
