"""
Application settings for the reimbursement review service.
"""
from pydantic_settings import BaseSettings
from typing import List


class Settings(BaseSettings):
    # Database
    DATABASE_URL: str = "sqlite:///./data/reimbursements.db"

    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # CORS
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:4321"]

    # Storage
    DATA_DIR: str = "./data"
    FILES_BASE_URL: str = "http://127.0.0.1:8090"
    FILE_TOKEN: str = ""

    # Notifications (empty URL -> log only)
    NOTIFICATION_WEBHOOK_URL: str = ""
    NOTIFICATION_TIMEOUT_SECONDS: float = 10.0

    # Audit journal
    JOURNAL_PAGE_SIZE: int = 5
    NOTE_MAX_LENGTH: int = 500
    NOTE_PREVIEW_LENGTH: int = 50

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
