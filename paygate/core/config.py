from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List, Optional

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    PROJECT_NAME: str = "Paygate"
    LOG_LEVEL: str = "INFO"
    PUBLIC_API_BASE: str = "http://localhost:8000"
    BACKEND_CORS_ORIGINS: List[str] = ["http://localhost:3000"]

    # Database (async SQLAlchemy URL). Empty = in-memory store, single process only.
    DATABASE_URL: Optional[str] = None

    # Access tokens
    ACCESS_TOKEN_SECRET: str = "dev-secret-change-me"
    ACCESS_TOKEN_TTL_SECONDS: int = 300

    # Payment intents
    PAYMENT_TTL_MINUTES: int = 10

    # Locators (32 bytes, hex)
    LOCATOR_SECRET_KEY: Optional[str] = None

    # Ledger
    LEDGER_RPC_URL: str = "https://api.devnet.solana.com"
    LEDGER_TIMEOUT_SECONDS: float = 10.0
    LEDGER_PROGRAM_ID: str = "paygate-program"
    LEDGER_CLUSTER: str = "devnet"
    USDC_MINT_ADDRESS: str = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"

    # Storage
    STORAGE_BACKEND: str = "local"  # local | b2
    STORAGE_LOCAL_ROOT: str = "uploads"
    STORAGE_TIMEOUT_SECONDS: float = 30.0

    # B2 Storage
    B2_APPLICATION_KEY_ID: Optional[str] = None
    B2_APPLICATION_KEY: Optional[str] = None
    B2_BUCKET_NAME: str = "paygate-encrypted-content"

    # Rate limits (requests per minute per client)
    RATE_LIMIT_PER_MINUTE: int = 100
    PAYWALL_RATE_LIMIT_PER_MINUTE: int = 30

    @property
    def payment_ttl_seconds(self) -> int:
        return self.PAYMENT_TTL_MINUTES * 60

settings = Settings()
