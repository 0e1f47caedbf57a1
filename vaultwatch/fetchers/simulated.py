"""
Deterministic TVL replay for demos and tests.

The default sequence contains two drops over the alert threshold:
101000 -> 75000 (-25.7%) and 75000 -> 50000 (-33.3%).
"""
import asyncio
import logging
from decimal import Decimal
from typing import AsyncIterator, Iterable, List, Optional, Tuple

from vaultwatch.fetchers.base import Observation, ObservationSource, Sleep

logger = logging.getLogger(__name__)

MOCK_START_BLOCK = 1_000_000
MOCK_BASE_TVL = Decimal("100000")

# Multipliers applied to the base TVL at consecutive blocks
MOCK_TVL_FACTORS = (
    Decimal("1.00"),
    Decimal("1.02"),  # +2%
    Decimal("1.01"),  # -1%
    Decimal("0.75"),  # -25.7% drop
    Decimal("0.50"),  # -33.3% second drop
    Decimal("0.48"),  # -4%
)


def default_sequence(
    start_block: int = MOCK_START_BLOCK,
    base_tvl: Decimal = MOCK_BASE_TVL,
) -> List[Tuple[int, Decimal]]:
    """Build the default replay as (block_number, tvl) pairs."""
    return [
        (start_block + offset, base_tvl * factor)
        for offset, factor in enumerate(MOCK_TVL_FACTORS)
    ]


class SimulatedObservationSource(ObservationSource):
    """Replays a fixed sequence once, one observation per interval."""

    mode = "simulated"

    def __init__(
        self,
        sequence: Optional[Iterable[Tuple[int, Decimal]]] = None,
        interval_seconds: float = 5.0,
        sleep: Sleep = asyncio.sleep,
    ):
        self._sleep = sleep
        if sequence is None:
            sequence = default_sequence()
        self._sequence = [
            Observation(block_number=int(block), tvl=Decimal(str(tvl)))
            for block, tvl in sequence
        ]
        self.interval_seconds = interval_seconds
        self._consumed = False

    def __len__(self) -> int:
        return len(self._sequence)

    async def observations(self) -> AsyncIterator[Observation]:
        if self._consumed:
            raise RuntimeError("Simulated sequence already replayed; create a new source")
        self._consumed = True

        for observation in self._sequence:
            await self._sleep(self.interval_seconds)
            logger.info(f"Mock block {observation.block_number}: TVL {observation.tvl:,.2f}")
            yield observation

        logger.info("Mock simulation complete")
