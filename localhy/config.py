from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Dict, List, Optional
from urllib.parse import quote_plus


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file="localhy/.env",
        env_file_encoding="utf-8",
        extra="allow",
    )
    # Application
    APP_NAME: str = "Localhy Credits API"
    PROJECT_NAME: str = "Localhy Credits API"
    API_V1_STR: str = "/api/v1"
    ENVIRONMENT: str = "development"
    DEBUG: bool = False

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "simple"  # simple | json

    # Database
    POSTGRES_HOST: str = ""
    POSTGRES_PORT: int = 5432
    POSTGRES_USERNAME: str = ""
    POSTGRES_PASSWORD: str = ""
    POSTGRES_DATABASE: str = ""
    POSTGRES_SCHEMA: str = "public"

    # Full URL wins over the POSTGRES_* components (sqlite is used in tests)
    DATABASE_URL: Optional[str] = None
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20

    @property
    def database_url(self) -> str:
        """Construct database URL from individual components"""
        if self.DATABASE_URL:
            return self.DATABASE_URL

        # URL encode the password to handle special characters
        encoded_password = quote_plus(self.POSTGRES_PASSWORD)
        return f"postgresql+psycopg2://{self.POSTGRES_USERNAME}:{encoded_password}@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DATABASE}"

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    # Security (tokens are issued by the auth collaborator)
    SECRET_KEY: str = ""
    JWT_ALGORITHM: str = "HS256"

    # CORS
    CORS_ORIGINS: List[str] = ["*"]

    # Credits
    CREDIT_EXCHANGE_RATE: int = 1  # 1 unit of provider currency = 1 credit
    PAID_ACTION_COSTS: Dict[str, int] = {"create_referral_job": 5}
    SIGNUP_BONUS_CREDITS: int = 10
    REFERRAL_REWARD_CREDITS: int = 5
    LEDGER_MAX_RETRIES: int = 3
    CREDITS_PURCHASE_PATH: str = "/dashboard/wallet?tab=purchase"

    # Payment providers
    PAYPAL_IPN_VERIFY_URL: str = "https://ipnpb.paypal.com/cgi-bin/webscr"
    PAYPAL_RECEIVER_EMAIL: str = ""
    CREEM_WEBHOOK_SECRET: str = ""
    CREEM_SIGNATURE_HEADER: str = "creem-signature"
    WEBHOOK_TIMEOUT_SECONDS: float = 30.0

    # Change feed (SQS forwarding is optional)
    CHANGE_FEED_QUEUE: Optional[str] = None
    AWS_REGION: str = "us-east-1"
    AWS_ACCESS_KEY_ID: Optional[str] = None
    AWS_SECRET_ACCESS_KEY: Optional[str] = None
    SQS_ENDPOINT_URL: Optional[str] = None


settings = Settings()
