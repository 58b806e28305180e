from pydantic_settings import BaseSettings
from typing import List, Optional
from urllib.parse import quote_plus

class Settings(BaseSettings):
    ENV: str = "local"
    LOG_LEVEL: str = "INFO"

    postgres_user: str = "postgres"
    postgres_password: str = "postgres"
    postgres_db: str = "checkout"
    postgres_host: str = "localhost"
    postgres_port: str = "5432"
    DATABASE_URL: Optional[str] = None

    secret_key: str = "change-me"
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 60

    # Card gateway. The publishable key is handed to the browser for tokenization.
    STRIPE_SECRET_KEY: str = ""
    STRIPE_PUBLISHABLE_KEY: str = ""

    # Mobile money / bank transfer gateway
    PAYTEK_BASE_URL: str = "https://api.paytek.co.mz/v1"
    PAYTEK_API_KEY: str = ""

    GATEWAY_TIMEOUT_SECONDS: int = 10
    DEFAULT_CURRENCY: str = "MZN"

    BANK_TRANSFER_BANK: str = "BIM"
    BANK_TRANSFER_ACCOUNT: str = "1234567890"
    BANK_TRANSFER_HOLDER: str = "Sua Plataforma LTDA"
    BANK_TRANSFER_PENDING_DAYS: int = 2
    AWAITING_EXPIRY_DAYS: Optional[int] = None

    # Remote access-status service, when grants are owned elsewhere
    ACCESS_STATUS_BASE_URL: Optional[str] = None

    BREVO_API_KEY: str = ""
    MAIL_FROM: str = "no-reply@example.com"
    STORE_NAME: str = "Plataforma"

    CORS_ORIGINS: List[str] = [
        "http://localhost:5173",
        "http://localhost:3000",
        "http://127.0.0.1:5173",
    ]

    @property
    def database_url(self):
        if self.DATABASE_URL:
            return self.DATABASE_URL
        encoded_password = quote_plus(self.postgres_password)
        return (
            f"postgresql+psycopg2://{self.postgres_user}:"
            f"{encoded_password}@{self.postgres_host}:"
            f"{self.postgres_port}/{self.postgres_db}"
        )

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "allow"

settings = Settings()
