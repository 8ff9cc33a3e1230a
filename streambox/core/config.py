from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List, Literal, Optional

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    PROJECT_NAME: str = "StreamBox Marketplace"
    API_V1_STR: str = "/api"
    LOG_LEVEL: str = "INFO"
    RATE_LIMIT_PER_MINUTE: int = 100
    PURCHASE_RATE_LIMIT_PER_MINUTE: int = 20
    BACKEND_CORS_ORIGINS: List[str] = ["http://localhost:3000"]

    # Database
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = ""
    POSTGRES_DB: str = "streambox"
    DATABASE_URL: Optional[str] = None

    @property
    def async_database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"

    # JWT
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24

    # Payments
    PLATFORM_RECIPIENT_ADDRESS: str
    PRICE_TOKEN_DECIMALS: int = 18
    PAYMENT_TOKEN_ADDRESS: Optional[str] = None # ERC-20 used by the "token" payment method

    # Ledger (EVM JSON-RPC, Filecoin Calibration by default)
    LEDGER_RPC_URL: str = "https://api.calibration.node.glif.io/rpc/v1"
    LEDGER_CHAIN_ID: int = 314159
    LEDGER_TIMEOUT_SECONDS: float = 10.0
    LEDGER_MIN_CONFIRMATIONS: int = 1

    # Content-addressed store (IPFS HTTP API compatible)
    CONTENT_STORE_API_URL: str = "https://node.lighthouse.storage"
    CONTENT_STORE_GATEWAY_URL: str = "https://gateway.lighthouse.storage"
    CONTENT_STORE_API_KEY: Optional[str] = None
    CONTENT_STORE_TIMEOUT_SECONDS: float = 60.0

    # Uploads
    UPLOAD_BACKEND: Literal["ipfs", "b2", "local"] = "ipfs"
    MAX_UPLOAD_BYTES: int = 2 * 1024 * 1024 * 1024
    LOCAL_STORAGE_DIR: str = "static/uploads"
    # Hosts that http(s) content references may point at; empty disables URL references
    CONTENT_REFERENCE_HOSTS: List[str] = []

    # Streaming
    STREAM_CHUNK_BYTES: int = 4 * 1024 * 1024

    # B2 Storage
    B2_APPLICATION_KEY_ID: Optional[str] = None
    B2_APPLICATION_KEY: Optional[str] = None
    B2_BUCKET_NAME: str = "streambox-media"

settings = Settings()
