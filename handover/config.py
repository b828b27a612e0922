from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    PORT: int = 3002
    DB_PATH: str = "/data/handover.db"
    BLOB_ROOT: str = "/data/blobs"
    LOG_LEVEL: str = "info"

    TOKEN_TTL_HOURS: int = 24
    TOKEN_BYTES: int = 9

    UPLOAD_TIMEOUT_SECONDS: float = 30.0
    CLAIM_TIMEOUT_SECONDS: float = 10.0
    MAX_UPLOAD_BYTES: int = 25 * 1024 * 1024

    # Empty URL disables outbound enrichment requests.
    ENRICHMENT_URL: str = ""
    ENRICHMENT_TIMEOUT_SECONDS: float = 10.0
    ENRICHMENT_CALLBACK_SECRET: str = ""

    # Empty key leaves the admin routes open (local development).
    ADMIN_API_KEY: str = ""

    # Reconciliation ignores rows and files younger than this.
    RECONCILE_GRACE_MINUTES: int = 60


settings = Settings()
