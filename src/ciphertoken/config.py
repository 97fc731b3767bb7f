"""Application configuration using pydantic-settings.

Every option can be set through the environment or a local ``.env`` file.
"""

from functools import lru_cache
from typing import Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

VERSION = "0.1.0"

TESTNET_PASSPHRASE = "Test SDF Network ; September 2015"
FUTURENET_PASSPHRASE = "Test SDF Future Network ; October 2022"
PUBLIC_PASSPHRASE = "Public Global Stellar Network ; September 2015"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # ======================
    # Ledger
    # ======================
    stellar_rpc_url: str = Field(
        default="https://soroban-testnet.stellar.org", description="Soroban RPC URL"
    )
    stellar_network_passphrase: str = Field(
        default=TESTNET_PASSPHRASE, description="Network passphrase used for signing"
    )
    contract_id: str = Field(default="", description="Encrypted token contract ID")
    source_secret_key: Optional[str] = Field(
        default=None, description="Server manager secret seed (S...)"
    )
    rpc_timeout: float = Field(default=30.0, description="RPC request timeout in seconds")

    # ======================
    # Transactions
    # ======================
    base_fee: int = Field(default=100, description="Base inclusion fee in stroops")
    tx_timeout_seconds: int = Field(default=30, description="Transaction validity window")
    tx_max_attempts: int = Field(
        default=30, description="getTransaction attempts before giving up"
    )
    tx_poll_delay_ms: int = Field(
        default=2000, description="Delay between getTransaction attempts"
    )

    # ======================
    # Event poller
    # ======================
    poll_interval_ms: int = Field(default=5000, description="Delay between event polls")
    start_ledger: Optional[int] = Field(
        default=None, description="Ledger to start from (default: current tip)"
    )
    event_lookback_ledgers: int = Field(
        default=1000, description="Ledgers re-queried on every poll"
    )
    ledger_delay: int = Field(
        default=10, description="Ledgers held back to allow for event indexing lag"
    )
    dedup_window_size: int = Field(
        default=1024, description="Recently dispatched event IDs remembered"
    )
    auto_start: bool = Field(
        default=True, description="Start the poller when the server boots"
    )

    # ======================
    # Reconciliation
    # ======================
    allow_index_fallback: bool = Field(
        default=False,
        description="Use the raw stored index when it cannot be unwrapped (testing only)",
    )

    # ======================
    # API
    # ======================
    api_host: str = Field(default="0.0.0.0", description="API server host")
    api_port: int = Field(
        default=3000,
        validation_alias=AliasChoices("api_port", "API_PORT", "PORT"),
        description="API server port",
    )

    # ======================
    # Environment
    # ======================
    environment: str = Field(default="development", description="Runtime environment")
    debug: bool = Field(default=False, description="Enable debug logging")

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"

    @property
    def has_credentials(self) -> bool:
        """Check if the poller has everything it needs to run."""
        return bool(self.contract_id and self.source_secret_key)

    @property
    def contract_ids(self) -> list[str]:
        """Contracts the poller listens to (empty = all contracts)."""
        return [self.contract_id] if self.contract_id else []

    @property
    def network_name(self) -> str:
        """Human readable network name."""
        names = {
            TESTNET_PASSPHRASE: "Testnet",
            FUTURENET_PASSPHRASE: "Futurenet",
            PUBLIC_PASSPHRASE: "Mainnet",
        }
        return names.get(self.stellar_network_passphrase, "Unknown")

    def get_safe_dict(self) -> dict:
        """Return settings dict with secrets redacted."""
        return {
            "environment": self.environment,
            "debug": self.debug,
            "rpc_url": self.stellar_rpc_url,
            "network": self.network_name,
            "contract_id": self.contract_id or "(not set)",
            "source_secret_key": "***" if self.source_secret_key else "(not set)",
            "poll_interval_ms": self.poll_interval_ms,
            "poller": {
                "start_ledger": self.start_ledger,
                "lookback_ledgers": self.event_lookback_ledgers,
                "ledger_delay": self.ledger_delay,
                "auto_start": self.auto_start,
            },
            "transactions": {
                "max_attempts": self.tx_max_attempts,
                "poll_delay_ms": self.tx_poll_delay_ms,
            },
        }


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
