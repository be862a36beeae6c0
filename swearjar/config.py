"""
Application configuration using Pydantic Settings.

All configuration is loaded from environment variables, with an optional .env file
as a fallback. Secrets (the JWT verification secret, the bank token encryption key
and the settlement webhook secret) have no defaults, so a deployment that forgets
them fails at import time instead of running with a guessable value.

Usage:
    from swearjar.config import settings
    print(settings.DATABASE_URL)
"""

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Central configuration for the Swear Jar ledger service.

    Required fields (no defaults) MUST be set in .env or environment:
      - JWT_SECRET: Secret used to verify bearer tokens issued by the identity provider
      - BANK_TOKEN_ENCRYPTION_KEY: Fernet key for encrypting bank access tokens at rest
      - SETTLEMENT_WEBHOOK_SECRET: Shared secret the settlement adapter presents on callbacks
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # --- Application ---
    APP_NAME: str = "Swear Jar Ledger API"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False

    # --- Logging ---
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    # --- Database ---
    # SQLite for local development; use postgresql+asyncpg://... in production
    DATABASE_URL: str = "sqlite+aiosqlite:///./data/swearjar.db"

    # --- Authentication ---
    # Tokens are issued elsewhere (e.g. Supabase Auth); we only verify them.
    JWT_SECRET: str
    JWT_ALGORITHM: str = "HS256"
    JWT_AUDIENCE: str | None = "authenticated"

    # --- Bank accounts ---
    # Generate with: python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"
    BANK_TOKEN_ENCRYPTION_KEY: str

    # --- Settlement ---
    SETTLEMENT_WEBHOOK_SECRET: str

    # --- Ledger defaults ---
    # Penalty charged for a word that has no configured amount on the jar
    DEFAULT_PENALTY_CENTS: int = 100
    DEFAULT_MINIMUM_DEPOSIT_CENTS: int = 1
    DEFAULT_MAXIMUM_DEPOSIT_CENTS: int = 100_000

    # --- CORS ---
    ALLOWED_ORIGINS: list[str] = ["http://localhost:3000"]

    @model_validator(mode="after")
    def deposit_defaults_are_ordered(self):
        if self.DEFAULT_MINIMUM_DEPOSIT_CENTS > self.DEFAULT_MAXIMUM_DEPOSIT_CENTS:
            raise ValueError("DEFAULT_MINIMUM_DEPOSIT_CENTS exceeds DEFAULT_MAXIMUM_DEPOSIT_CENTS")
        return self


# Singleton: import this instance everywhere instead of creating new Settings()
settings = Settings()
