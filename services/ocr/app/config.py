from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """OCR proxy configuration loaded from environment variables."""

    model_config = SettingsConfigDict(env_prefix="OCR_", env_file=".env", extra="ignore")

    # vision | tesseract
    engine: str = "vision"
    host: str = "0.0.0.0"
    port: int = 5000
    max_pdf_pages: int = 5
    cors_origins: list[str] = ["*"]

    # Rate limiting is skipped when redis_url is empty
    redis_url: str = ""
    rate_limit: str = "60/minute"
    log_level: str = "info"


settings = Settings()
