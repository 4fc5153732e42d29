"""
core/config.py
Centralized configuration using environment variables.
"""
import os
from pathlib import Path
from dotenv import load_dotenv

load_dotenv()

# Base directory
BASE_DIR = Path(__file__).resolve().parent.parent.parent


def _env_bool(key: str, default: bool) -> bool:
    value = os.getenv(key)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Settings:
    # App
    APP_HOST: str = os.getenv("APP_HOST", "0.0.0.0")
    APP_PORT: int = int(os.getenv("APP_PORT", 4000))
    FRONTEND_ORIGIN: str = os.getenv("FRONTEND_ORIGIN", "http://localhost:5173")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # MongoDB
    MONGO_URI: str = os.getenv("MONGO_URI", "mongodb://localhost:27017")
    MONGO_DB_NAME: str = os.getenv("MONGO_DB_NAME", "certiflow")

    # Paths
    STORAGE_DIR: Path = Path(os.getenv("STORAGE_DIR", BASE_DIR / "storage"))
    DEFAULT_OUTPUT_PATH: str = os.getenv(
        "DEFAULT_OUTPUT_PATH", str(STORAGE_DIR / "certificates")
    )
    FONTS_DIR: Path = Path(os.getenv("FONTS_DIR", BASE_DIR / "fonts"))

    # Certificates
    DEFAULT_NAMING_PATTERN: str = os.getenv("DEFAULT_NAMING_PATTERN", "{{sn}}_{{name}}")
    CERT_DPI: int = int(os.getenv("CERT_DPI", 300))
    MIN_FONT_SIZE: int = int(os.getenv("MIN_FONT_SIZE", 8))
    # A4 landscape, used when a template's size cannot be probed
    DEFAULT_PAGE_WIDTH: float = 842.0
    DEFAULT_PAGE_HEIGHT: float = 595.0

    # Email
    EMAIL_DELAY_MS: int = int(os.getenv("EMAIL_DELAY_MS", 3000))
    MAX_EMAILS_PER_DAY: int = int(os.getenv("MAX_EMAILS_PER_DAY", 500))
    SMTP_TIMEOUT_SECONDS: float = float(os.getenv("SMTP_TIMEOUT_SECONDS", 60))
    SMTP_VALIDATE_CERTS: bool = _env_bool("SMTP_VALIDATE_CERTS", True)

    # Uploads
    MAX_UPLOAD_BYTES: int = int(os.getenv("MAX_UPLOAD_BYTES", 50 * 1024 * 1024))

settings = Settings()

# Ensure directories exist
settings.STORAGE_DIR.mkdir(parents=True, exist_ok=True)
Path(settings.DEFAULT_OUTPUT_PATH).mkdir(parents=True, exist_ok=True)
