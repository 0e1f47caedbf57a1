"""
Observation sources feeding the vault watcher.

A source yields Observation values in block order. How a tick is triggered
(new block, polling timer, replay cadence) is the source's business; the
watcher only iterates.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import AsyncIterator, Awaitable, Callable

Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class Observation:
    """TVL of the vault at one block, in asset units."""
    block_number: int
    tvl: Decimal


class ObservationSource(ABC):
    """Produces the next observation on each trigger."""

    #: Short label used in startup logs
    mode: str = "unknown"

    @abstractmethod
    def observations(self) -> AsyncIterator[Observation]:
        """
        Iterate observations until the source is exhausted or closed.

        Failed ticks are logged and skipped, never raised.
        """
