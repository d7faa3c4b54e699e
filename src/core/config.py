"""Configuration management for tendly."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Docustore Configuration
    docustore_contract_address: str | None = Field(
        default=None, description="Address of the docustore smart contract"
    )
    docustore_lcd_url: str | None = Field(
        default=None, description="LCD/REST endpoint used for smart-contract queries"
    )
    docustore_signer_url: str | None = Field(
        default=None, description="Signing relay endpoint that broadcasts execute messages"
    )
    docustore_fee_denom: str = Field(default="uxion", description="Fee denomination for mutating transactions")
    docustore_fee_amount: str = Field(default="1000", description="Fee amount for mutating transactions")
    docustore_gas: str = Field(default="200000", description="Gas budget for mutating transactions")

    # Sync Configuration
    confirmation_attempts: int = Field(default=10, description="Polls before a write is marked unconfirmed")
    confirmation_interval_seconds: float = Field(default=2.0, description="Delay between confirmation polls")
    remote_retry_attempts: int = Field(default=3, description="Attempts for a single remote call")
    remote_retry_base_delay: float = Field(default=0.5, description="Base delay for remote call backoff")
    outbox_flush_interval_seconds: int = Field(default=60, description="Background outbox flush interval")

    # Local Cache Configuration
    sqlite_db_path: str = Field(default="./tendly_data/tendly.db", description="SQLite local cache file")

    # Account Configuration
    local_user_id: str = Field(default="user1", description="Owner id used while no wallet is connected")
    wallet_account_id: str | None = Field(default=None, description="Pre-connected wallet account (dev only)")

    # Pydantic Logfire Configuration (optional)
    logfire_token: str | None = Field(default=None, description="Pydantic Logfire token for observability")

    @property
    def remote_configured(self) -> bool:
        """Whether enough docustore settings exist to reach the remote store."""
        return bool(self.docustore_contract_address and self.docustore_lcd_url)


# Application Constants
class Constants:
    """Application-wide constants."""

    # API Configuration
    API_TIMEOUT_SECONDS: int = 30

    # Local cache keys (one entry per aggregate)
    CACHE_KEY_TASKS: str = "tasks"
    CACHE_KEY_PLANTS: str = "plants"
    CACHE_KEY_COMPOST: str = "compost"
    CACHE_KEY_LEVEL: str = "level"
    CACHE_KEY_PROFILE: str = "profile"
    CACHE_KEY_ACHIEVEMENTS: str = "achievements"
    CACHE_KEY_FOCUS_SESSIONS: str = "focus-sessions"
    CACHE_KEY_OUTBOX: str = "sync-outbox"

    # Remote collections
    COLLECTION_TASKS: str = "tasks"
    COLLECTION_PLANTS: str = "plants"
    COLLECTION_GARDEN: str = "garden"

    # Docustore query defaults
    DEFAULT_QUERY_LIMIT: int = 100
    STORED_EVENT_TYPES: tuple[str, ...] = ("docustore.document_stored", "wasm")
    STORED_EVENT_ID_KEYS: tuple[str, ...] = ("id", "document_id")

    # Garden economy
    STARTING_COMPOST: int = 128
    INITIAL_PLANT_GROWTH: int = 25
    INITIAL_PLANT_HEALTH: int = 100
    MAX_PLANT_STAT: int = 100
    HEALTHY_PLANT_THRESHOLD: int = 80
    SESSION_COMPOST_PER_MINUTE: int = 2
    SESSION_GROWTH_CONTRIBUTION: int = 10
    SESSION_HEALTH_CONTRIBUTION: int = 2
    SESSION_DISTRACTION_PENALTY: int = 10

    # Retry cap for exponential backoff
    MAX_BACKOFF_SECONDS: float = 30.0

    # Read-only gateway queries retried on transport errors
    QUERY_TRANSPORT_ATTEMPTS: int = 2
    QUERY_RETRY_BASE_DELAY: float = 0.25


def get_settings() -> Settings:
    """Get application settings (singleton pattern)."""
    return Settings()


# Global settings instance
settings = get_settings()
constants = Constants()
