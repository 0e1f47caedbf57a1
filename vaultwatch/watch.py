"""
Standalone vault watcher process.

Reads configuration from the environment (or .env), creates the tables if
needed and watches the configured vault until interrupted. With MOCK_MODE
enabled the simulated TVL sequence is replayed and the process exits when it
is done.

    python -m vaultwatch.watch
"""
import asyncio
import logging
import signal

from vaultwatch.core.config import ConfigurationError, Settings, settings, validate_watcher_settings
from vaultwatch.core.database import init_db
from vaultwatch.fetchers.base import ObservationSource
from vaultwatch.fetchers.chain import build_chain_source, is_websocket_url
from vaultwatch.fetchers.simulated import SimulatedObservationSource
from vaultwatch.services.gateway import PersistenceGateway
from vaultwatch.services.watcher import VaultWatcher

logger = logging.getLogger(__name__)


def build_source(config: Settings) -> ObservationSource:
    """Pick the simulated or live source from MOCK_MODE."""
    if config.MOCK_MODE:
        return SimulatedObservationSource(interval_seconds=config.MOCK_INTERVAL_SECONDS)

    return build_chain_source(
        rpc_url=config.rpc_endpoint,
        asset_address=config.ASSET_ADDRESS,
        vault_address=config.VAULT_ADDRESS,
        poll_interval_seconds=config.POLL_INTERVAL_SECONDS,
        timeout_seconds=config.RPC_TIMEOUT_SECONDS,
    )


def create_watcher(config: Settings, gateway: PersistenceGateway = None) -> VaultWatcher:
    """
    Validate the configuration and build a watcher for it.

    Raises:
        ConfigurationError: if required settings are missing
    """
    validate_watcher_settings(config)
    log_configuration(config)

    return VaultWatcher(
        source=build_source(config),
        gateway=gateway or PersistenceGateway(),
        vault_address=config.VAULT_ADDRESS,
        network=config.NETWORK,
        drop_threshold=config.TVL_DROP_THRESHOLD,
    )


def log_configuration(config: Settings) -> None:
    logger.info("Configuration:")
    logger.info(f"- Network: {config.NETWORK}")
    logger.info(f"- Vault: {config.VAULT_ADDRESS}")
    logger.info(f"- Asset: {config.ASSET_ADDRESS}")
    logger.info(f"- Mock Mode: {config.MOCK_MODE}")
    if config.rpc_endpoint:
        transport = "WebSocket" if is_websocket_url(config.rpc_endpoint) else "HTTP"
        logger.info(f"- RPC: {transport}")


async def run(config: Settings = settings) -> int:
    """Run one watcher until its source ends or a shutdown signal arrives."""
    try:
        watcher = create_watcher(config)
    except ConfigurationError as e:
        logger.error(str(e))
        return 1

    logger.info("Initializing database...")
    init_db()

    shutdown = asyncio.Event()
    loop = asyncio.get_running_loop()
    handled = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, shutdown.set)
            handled.append(sig)
        except (NotImplementedError, RuntimeError):
            # No signal handlers on Windows loops or outside the main thread
            pass

    await watcher.start()

    finished = asyncio.ensure_future(watcher.wait())
    interrupted = asyncio.ensure_future(shutdown.wait())
    try:
        await asyncio.wait({finished, interrupted}, return_when=asyncio.FIRST_COMPLETED)
        if interrupted.done():
            logger.info("Shutting down gracefully...")
    finally:
        interrupted.cancel()
        await watcher.stop()
        for sig in handled:
            loop.remove_signal_handler(sig)

    stats = dict(watcher.gateway.stats)
    if watcher.error is not None:
        logger.error(f"Watcher stopped on error: {watcher.error} ({stats})")
        return 1

    logger.info(f"Watcher finished: {stats}")
    return 0


def main():
    """Main entry point for the watcher process."""
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    raise SystemExit(asyncio.run(run()))


if __name__ == "__main__":
    main()
