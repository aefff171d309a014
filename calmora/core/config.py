# calmora/core/config.py
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore")

    APP_NAME: str = "Calmora API"
    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: list[str] = ["http://localhost:5173", "http://127.0.0.1:5173"]

    JWT_SECRET: str = Field(...)
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    # full URL wins over the DB_* parts (tests use sqlite+aiosqlite)
    DATABASE_URL: str | None = None
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432
    DB_USER: str = "calmora"
    DB_PASSWORD: str = ""
    DB_NAME: str = "calmora"
    STORAGE_TIMEOUT_SECONDS: float = 5.0

    # --- 2FA ---
    TOTP_ISSUER: str = "Calmora"
    TOTP_INTERVAL: int = 30
    TOTP_DIGITS: int = 6
    TOTP_VALID_WINDOW: int = 1
    BACKUP_CODE_COUNT: int = 8

    # --- AI providers ---
    OPENAI_API_KEY: str | None = None
    OPENAI_MODEL: str = "gpt-5-2025-08-07"
    OPENAI_URL: str = "https://api.openai.com/v1/chat/completions"
    GEMINI_API_KEY: str | None = None
    GEMINI_MODEL: str = "gemini-1.5-flash-latest"
    GEMINI_URL: str = "https://generativelanguage.googleapis.com/v1beta/models"
    AI_TIMEOUT_SECONDS: float = 30.0

    @property
    def async_database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (f"postgresql+asyncpg://{self.DB_USER}:{self.DB_PASSWORD}"
                f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}")

settings = Settings()  # type: ignore[call-arg]
