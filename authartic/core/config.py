from pathlib import Path

from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_DIR = Path(__file__).resolve().parent.parent.parent  # project root
ENV_PATH = BASE_DIR / ".env"

# Load .env into the process environment before Settings reads it
load_dotenv(dotenv_path=ENV_PATH)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        extra="ignore",
        case_sensitive=False,
    )

    DATABASE_URL: str

    JWT_SECRET: str
    JWT_ALG: str = "HS256"
    JWT_ACCESS_MINUTES: int = 720

    # Claim URLs are built as <CLAIM_URL_BASE>/certificate/claim-certificate/<id>/scan
    CLAIM_URL_BASE: str = "http://localhost:8000"
    FRONTEND_URL: str = "http://localhost:3000"

    MAIL_API_BASE_URL: str = "http://localhost:8025"
    MAIL_API_TOKEN: str = "change-me"
    MAIL_FROM: str = "no-reply@authartic.local"
    MAIL_TIMEOUT_SECONDS: int = 15

    SUBSCRIPTION_TERM_DAYS: int = 30
    FREE_CERTIFICATES_FEATURE: str = "Free Monthly Certificates"

    EXPIRY_SWEEP_ENABLED: bool = True
    EXPIRY_SWEEP_HOUR_UTC: int = 0

    LOG_LEVEL: str = "INFO"


settings = Settings()
