from pathlib import Path
from typing import Annotated

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

ENV_PATH = Path(__file__).resolve().parent.parent / ".env.local"

# Auto-reply the OpenPhone inbox sends while staff are busy; never part of a transcript
DEFAULT_IGNORED_AUTO_REPLY = (
    "Thank you for reaching out to Dr. Zelisko's office. I am currently assisting "
    "another patient and want to provide you with the same focused attention. So we "
    "can best prepare to assist you, please reply with your name and a brief reason "
    "for your call. We will be in touch as soon as we are available."
)

CsvList = Annotated[list[str], NoDecode]


class Settings(BaseSettings):
    # Environment settings
    environment: str = "development"
    debug: bool = False

    # Supabase settings
    SUPABASE_URL: str
    SUPABASE_JWKS_URL: str | None = None
    SUPABASE_DB_URL: str

    # Redis settings (run leases, cached Gmail access tokens)
    UPSTASH_REDIS_REST_URL: str
    UPSTASH_REDIS_REST_TOKEN: str

    # AI providers
    PERPLEXITY_API_KEY: str | None = None
    PERPLEXITY_BASE_URL: str = "https://api.perplexity.ai"
    PERPLEXITY_MODEL: str = "sonar"
    OPENAI_API_KEY: str | None = None
    OPENAI_MODEL: str = "gpt-4o-mini"
    AI_TEMPERATURE: float = 0.1
    AI_MAX_TOKENS: int = 1000
    AI_MAX_RETRIES: int = 2
    AI_TIMEOUT_SECONDS: float = 30.0
    TRANSCRIPT_CHAR_BUDGET: int = 8000
    EMAIL_BODY_CHAR_BUDGET: int = 3000

    # OpenPhone
    OPENPHONE_API_KEY: str | None = None
    MAX_CONVERSATIONS_PER_RUN: int = 25
    MAX_MESSAGES_PER_CONVERSATION: int = 500
    OPENPHONE_IGNORED_AUTO_REPLIES: CsvList = [DEFAULT_IGNORED_AUTO_REPLY]

    # Static suppression lists (comma-separated in the environment)
    RESPONSE_BLOCKLIST_PHONES: CsvList = []
    RESPONSE_BLOCKLIST_PHRASES: CsvList = []

    # Gmail OAuth settings
    GOOGLE_CLIENT_ID: str | None = None
    GOOGLE_CLIENT_SECRET: str | None = None
    GMAIL_DEFAULT_LOOKBACK_DAYS: int = 14

    ENCRYPTION_KEY: str | None = None

    # Access control
    CRON_SECRET: str | None = None
    ADMIN_EMAILS: CsvList = []

    RUN_LOCK_TTL_SECONDS: int = 900

    # Request context
    TRUST_X_FORWARDED_FOR: bool = False
    TRUSTED_PROXY_IPS: CsvList = []

    # =================================================================
    # DATABASE POOL SETTINGS
    # =================================================================
    DB_POOL_MIN_SIZE: int = 2
    DB_POOL_MAX_SIZE: int = 8
    DB_POOL_TIMEOUT: float = 30.0
    DB_POOL_MAX_IDLE: float = 600.0  # 10 minutes
    DB_POOL_MAX_LIFETIME: float = 3600.0  # 1 hour

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator(
        "RESPONSE_BLOCKLIST_PHONES",
        "RESPONSE_BLOCKLIST_PHRASES",
        "ADMIN_EMAILS",
        "TRUSTED_PROXY_IPS",
        mode="before",
    )
    @classmethod
    def _split_csv(cls, value):
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        return value

    @field_validator("OPENPHONE_IGNORED_AUTO_REPLIES", mode="before")
    @classmethod
    def _split_auto_replies(cls, value):
        # Auto-reply texts contain commas, so the env form is "||"-separated
        if isinstance(value, str):
            return [item.strip() for item in value.split("||") if item.strip()]
        return value

    # derive sensible defaults if not provided
    def jwks_url(self) -> str:
        if self.SUPABASE_JWKS_URL:
            return self.SUPABASE_JWKS_URL
        base = self.SUPABASE_URL.rstrip("/")
        return f"{base}/auth/v1/.well-known/jwks.json"

    def admin_emails(self) -> set[str]:
        return {email.lower() for email in self.ADMIN_EMAILS}

    def get_db_pool_config(self) -> dict:
        """
        Get database pool configuration.
        Adjust environment-specific settings based on self.environment.
        """
        config = {
            "min_size": self.DB_POOL_MIN_SIZE,
            "max_size": self.DB_POOL_MAX_SIZE,
            "timeout": self.DB_POOL_TIMEOUT,
            "max_idle": self.DB_POOL_MAX_IDLE,
            "max_lifetime": self.DB_POOL_MAX_LIFETIME,
        }

        if self.environment == "development":
            # Batch runs are sequential; a small pool is plenty locally
            config.update({"min_size": 1, "max_size": 4, "timeout": 15.0})

        return config


settings = Settings()
