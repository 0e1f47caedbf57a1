"""
Configuration for the vault TVL watcher.
"""
from decimal import Decimal
from typing import Optional

from pydantic_settings import BaseSettings


class ConfigurationError(Exception):
    """Raised when the watcher cannot start with the given settings."""


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    # Database
    DATABASE_URL: str = "sqlite:///./vault_watcher.db"

    # Chain access
    RPC_URL: Optional[str] = None
    RPC_WS_URL: Optional[str] = None
    RPC_TIMEOUT_SECONDS: int = 10

    # Tracked asset (e.g. USDC on Base) and the vault holding it
    ASSET_ADDRESS: Optional[str] = None
    VAULT_ADDRESS: Optional[str] = None
    NETWORK: str = "base"

    # Replay the simulated sequence instead of reading the chain
    MOCK_MODE: bool = False

    # Base produces a block every ~2s; polling slower keeps RPC usage low
    POLL_INTERVAL_SECONDS: float = 12.0
    MOCK_INTERVAL_SECONDS: float = 5.0

    # Drop between consecutive blocks that raises an alert (inclusive)
    TVL_DROP_THRESHOLD: Decimal = Decimal("0.20")

    # API Settings
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 3001
    RUN_WATCHER_IN_API: bool = True

    class Config:
        env_file = ".env"
        extra = "ignore"

    @property
    def rpc_endpoint(self) -> Optional[str]:
        """WebSocket endpoint when configured, HTTP otherwise."""
        return self.RPC_WS_URL or self.RPC_URL


def validate_watcher_settings(config: Settings) -> None:
    """
    Check that the watcher has everything it needs to run.

    The vault address is always required. Live mode additionally needs an
    RPC endpoint and the asset contract address.

    Raises:
        ConfigurationError: listing every missing variable
    """
    missing = []

    if not config.VAULT_ADDRESS:
        missing.append("VAULT_ADDRESS")

    if not config.MOCK_MODE:
        if not config.rpc_endpoint:
            missing.append("RPC_URL or RPC_WS_URL")
        if not config.ASSET_ADDRESS:
            missing.append("ASSET_ADDRESS")

    if missing:
        raise ConfigurationError(
            f"Missing required environment variables: {', '.join(missing)}"
        )


settings = Settings()
