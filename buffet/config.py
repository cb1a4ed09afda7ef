from pydantic_settings import BaseSettings, SettingsConfigDict
class Settings(BaseSettings):
    APP_ENV: str = "dev"
    APP_SECRET: str
    DB_URL: str
    JWT_ISS: str = "buffet"
    JWT_EXP_MIN: int = 12*60
    TZ: str = "Asia/Bangkok"
    LOG_LEVEL: str = "INFO"
    # customer-facing ordering page; the session id is appended for the QR payload
    FRONTEND_URL: str = "http://localhost:3001"
    WARNING_WEBHOOK_URL: str | None = None
    WEBHOOK_TIMEOUT_SECONDS: float = 3.0
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")
settings = Settings()
