"""Configuration management using Pydantic Settings"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables"""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Database (ledger state, notification log, outbound webhook queue)
    database_url: str = "sqlite:///./peerpool.db"

    # Value-transfer service
    transfer_backend: str = "memory"  # "memory" | "http"
    token_api_base: str = "http://localhost:8001"
    pool_account: str = "peerpool"

    # Identity
    owner_id: str = "owner"

    # Notifications
    notification_webhook_url: str = "http://localhost:8002/mock-notifications"

    # Service
    service_name: str = "peerpool-ledger"
    log_level: str = "INFO"

    # HTTP Client
    http_timeout_seconds: float = 5.0
    webhook_max_retries: int = 5
    webhook_backoff_base: float = 1.0  # Exponential backoff base in seconds
    webhook_batch_size: int = 50
    webhook_max_delivery_attempts: int = 10  # Delivery runs before a notification is given up on
    webhook_claim_lease_seconds: int = 300  # Rows held by a run that died become deliverable again


settings = Settings()
