"""
Vault watcher: drop detection over consecutive TVL observations.

Each observation is stored, compared with the previous one, and an alert is
written when TVL fell by the threshold (20% by default) or more. Only the
immediately preceding observation is kept in memory, so slow multi-block
drains are not reported.
"""
import asyncio
import enum
import logging
from contextlib import aclosing
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from vaultwatch.core.config import settings
from vaultwatch.fetchers.base import Observation, ObservationSource
from vaultwatch.services.gateway import PersistenceGateway

logger = logging.getLogger(__name__)


class WatcherState(str, enum.Enum):
    STOPPED = "stopped"
    RUNNING = "running"


@dataclass(frozen=True)
class DropAlert:
    """Alert details as computed by the watcher."""
    block_number: int
    drop_pct: Decimal
    tvl_before: Decimal
    tvl_after: Decimal


def compute_drop(previous_tvl: Decimal, current_tvl: Decimal) -> Optional[Decimal]:
    """
    Fractional decline from previous_tvl to current_tvl.

    Returns:
        The drop (negative when TVL grew), or None when previous_tvl is not
        positive and no meaningful percentage exists
    """
    if previous_tvl <= 0:
        return None
    return (previous_tvl - current_tvl) / previous_tvl


class VaultWatcher:
    """
    Watches one vault on one network.

    Observations from `source` are processed strictly one at a time; the
    last processed observation is the only detection state and belongs to
    this instance.
    """

    def __init__(
        self,
        source: ObservationSource,
        gateway: PersistenceGateway,
        vault_address: str,
        network: str,
        drop_threshold: Decimal = settings.TVL_DROP_THRESHOLD,
    ):
        self.source = source
        self.gateway = gateway
        self.vault_address = vault_address.lower()
        self.network = network
        self.drop_threshold = Decimal(str(drop_threshold))

        self.last_observation: Optional[Observation] = None
        self.state = WatcherState.STOPPED
        # Set when the loop ended on an unexpected error
        self.error: Optional[Exception] = None

        self._task: Optional[asyncio.Task] = None
        self._processing = asyncio.Lock()
        self._stopping = False

    @property
    def is_running(self) -> bool:
        return self.state is WatcherState.RUNNING

    async def start(self) -> None:
        """Begin consuming the source in a background task."""
        if self.is_running:
            logger.warning(f"Watcher for {self.vault_address} already running")
            return

        logger.info(f"Starting vault watcher for {self.vault_address} ({self.source.mode} mode)")
        self.last_observation = None
        self.error = None
        self._stopping = False
        self.state = WatcherState.RUNNING
        self._task = asyncio.create_task(self._run(), name=f"vault_watcher:{self.vault_address}")

    async def stop(self) -> None:
        """
        Stop watching and release the source.

        An observation already being processed finishes first; nothing is
        processed after this returns.
        """
        task = self._task
        if task is None:
            self.state = WatcherState.STOPPED
            return

        self._stopping = True
        async with self._processing:
            task.cancel()
        # asyncio.wait neither raises the task's cancellation nor hides our own
        await asyncio.wait({task})

        self._task = None
        self.last_observation = None
        self.state = WatcherState.STOPPED
        logger.info(f"Vault watcher for {self.vault_address} stopped")

    async def wait(self) -> None:
        """Wait until the source is exhausted or the watcher is stopped."""
        if self._task is not None:
            await asyncio.shield(self._task)

    async def _run(self) -> None:
        try:
            async with aclosing(self.source.observations()) as observations:
                async for observation in observations:
                    async with self._processing:
                        if self._stopping:
                            break
                        try:
                            await self.process_observation(observation.block_number, observation.tvl)
                        except Exception as e:
                            logger.error(
                                f"Error processing block {observation.block_number}: {e}",
                                exc_info=True
                            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.error = e
            logger.error(f"Vault watcher for {self.vault_address} failed: {e}", exc_info=True)
        finally:
            if not self._stopping:
                logger.info(f"Observation source for {self.vault_address} finished")
                self.state = WatcherState.STOPPED
                self._task = None

    async def process_observation(self, block_number: int, tvl: Decimal) -> Optional[DropAlert]:
        """
        Store one observation and alert on a large drop from the previous one.

        The previous observation is replaced whether or not the writes
        succeed, so the next comparison is always against the latest TVL.

        Returns:
            The alert raised for this block, or None
        """
        tvl = Decimal(str(tvl))
        previous = self.last_observation
        alert = None

        try:
            await self._write(
                self.gateway.upsert_observation,
                self.vault_address, self.network, block_number, tvl
            )

            drop_pct = compute_drop(previous.tvl, tvl) if previous is not None else None

            if drop_pct is not None and drop_pct >= self.drop_threshold:
                alert = DropAlert(
                    block_number=block_number,
                    drop_pct=drop_pct,
                    tvl_before=previous.tvl,
                    tvl_after=tvl,
                )
                logger.critical(
                    f"ALERT: TVL drop of {drop_pct:.2%} detected in block {block_number} "
                    f"for {self.vault_address}: {previous.tvl:,.2f} → {tvl:,.2f}"
                )

                await self._write(
                    self.gateway.insert_alert,
                    self.vault_address, self.network, block_number,
                    drop_pct, previous.tvl, tvl
                )

            logger.info(f"Block {block_number}: TVL {tvl:,.2f}")

        finally:
            self.last_observation = Observation(block_number=block_number, tvl=tvl)

        return alert

    async def _write(self, operation, *args) -> bool:
        # Database calls block; run them off the event loop, one at a time
        try:
            return await asyncio.to_thread(operation, *args)
        except Exception as e:
            logger.error(f"Persistence call {getattr(operation, '__name__', operation)} failed: {e}", exc_info=True)
            return False
