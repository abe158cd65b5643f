from decimal import Decimal
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration"""

    DATABASE_URL: str
    MONGO_URL: str
    MONGO_DB_NAME: str = "hospital_front_office"
    REDIS_URL: str

    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # bootstrap account, created only when the users table is empty
    FIRST_ADMIN_USERNAME: str = "admin"
    FIRST_ADMIN_EMAIL: str = "admin@frontoffice-hospital.org"
    FIRST_ADMIN_PASSWORD: str = "admin12345"

    # defaults for the general fee schedule until an administrator sets one
    CONSULTATION_FEE: Decimal = Decimal("75.00")
    CHECKUP_FEE: Decimal = Decimal("50.00")
    INVOICE_DUE_DAYS: int = 30
    LOW_STOCK_THRESHOLD: int = 10
    ACTIVITY_LOG_LIMIT: int = 100

    LOG_LEVEL: str = "INFO"
    SQL_ECHO: bool = False

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True
    )


settings = Settings()
