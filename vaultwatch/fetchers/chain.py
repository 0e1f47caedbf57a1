"""
Live TVL reads from an EVM chain.

TVL is the ERC-20 balance of the vault address at a block, scaled by the
token's decimals. Blocks come either from a WebSocket newHeads subscription
or from polling the current block number on a coarse timer.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from contextlib import aclosing
from decimal import Decimal
from typing import AsyncIterator, Optional

import aiohttp
from web3 import AsyncHTTPProvider, AsyncWeb3, WebSocketProvider

from vaultwatch.fetchers.base import Observation, ObservationSource, Sleep

logger = logging.getLogger(__name__)

# Minimal ERC-20 ABI: only what the watcher reads
ERC20_ABI = [
    {
        "constant": True,
        "inputs": [{"name": "owner", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "", "type": "uint256"}],
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [],
        "name": "decimals",
        "outputs": [{"name": "", "type": "uint8"}],
        "type": "function",
    },
]


def to_units(raw_balance: int, decimals: int) -> Decimal:
    """Convert a raw token amount to human units without rounding."""
    return Decimal(int(raw_balance)).scaleb(-int(decimals))


def is_websocket_url(url: str) -> bool:
    return url.startswith(("ws://", "wss://"))


class Erc20BalanceReader:
    """Reads balanceOf/decimals from one ERC-20 contract."""

    def __init__(self, w3: AsyncWeb3, asset_address: str):
        self.contract = w3.eth.contract(
            address=AsyncWeb3.to_checksum_address(asset_address),
            abi=ERC20_ABI,
        )
        self._decimals: Optional[int] = None

    async def balance_of(self, owner: str, block_number: int) -> int:
        return await self.contract.functions.balanceOf(
            AsyncWeb3.to_checksum_address(owner)
        ).call(block_identifier=block_number)

    async def decimals(self) -> int:
        # Token decimals never change; read once
        if self._decimals is None:
            self._decimals = int(await self.contract.functions.decimals().call())
        return self._decimals


class BlockSource(ABC):
    """Yields block numbers, one per tick."""

    transport: str = "unknown"

    @abstractmethod
    def block_numbers(self) -> AsyncIterator[int]:
        ...


class PollingBlockSource(BlockSource):
    """Polls the current block number every `interval_seconds`."""

    transport = "HTTP"

    def __init__(self, w3: AsyncWeb3, interval_seconds: float = 12.0, sleep: Sleep = asyncio.sleep):
        self.w3 = w3
        self.interval_seconds = interval_seconds
        self._sleep = sleep

    async def block_numbers(self) -> AsyncIterator[int]:
        last_block = None
        try:
            while True:
                try:
                    block_number = await self.w3.eth.block_number
                except Exception as e:
                    logger.error(f"Error polling for new blocks: {e}", exc_info=True)
                else:
                    if block_number != last_block:
                        last_block = block_number
                        yield block_number

                await self._sleep(self.interval_seconds)
        finally:
            await _disconnect(self.w3)


class SubscriptionBlockSource(BlockSource):
    """
    Pushes block numbers from an eth_subscribe('newHeads') stream.

    A failed connect, a failed subscribe or a dropped socket is logged and
    the subscription is re-established after a backoff that doubles up to
    `max_backoff_seconds` and resets once a block arrives.
    """

    transport = "WebSocket"

    def __init__(
        self,
        w3: AsyncWeb3,
        initial_backoff_seconds: float = 1.0,
        max_backoff_seconds: float = 30.0,
        sleep: Sleep = asyncio.sleep,
    ):
        self.w3 = w3
        self.initial_backoff_seconds = initial_backoff_seconds
        self.max_backoff_seconds = max_backoff_seconds
        self._sleep = sleep

    async def block_numbers(self) -> AsyncIterator[int]:
        backoff = self.initial_backoff_seconds
        try:
            while True:
                try:
                    await self.w3.provider.connect()
                    subscription_id = await self.w3.eth.subscribe("newHeads")
                    logger.info(f"Subscribed to new blocks ({subscription_id})")

                    async for message in self.w3.socket.process_subscriptions():
                        header = message.get("result") or {}
                        block_number = header.get("number")
                        if block_number is None:
                            logger.warning(f"Ignoring subscription message without block number: {message}")
                            continue
                        backoff = self.initial_backoff_seconds
                        yield int(block_number)

                    logger.warning("Block subscription ended")
                except Exception as e:
                    logger.error(f"Block subscription error: {e}", exc_info=True)

                await _disconnect(self.w3)
                logger.info(f"Resubscribing in {backoff:.1f}s")
                await self._sleep(backoff)
                backoff = min(backoff * 2.0, self.max_backoff_seconds)
        finally:
            await _disconnect(self.w3)


async def _disconnect(w3: AsyncWeb3) -> None:
    try:
        await w3.provider.disconnect()
    except Exception as e:
        logger.warning(f"Error closing RPC connection: {e}")


class ChainObservationSource(ObservationSource):
    """Reads the vault's asset balance at every block from `blocks`."""

    mode = "live"

    def __init__(self, reader: Erc20BalanceReader, blocks: BlockSource, vault_address: str):
        self.reader = reader
        self.blocks = blocks
        self.vault_address = vault_address.lower()

    async def get_tvl_at_block(self, block_number: int) -> Decimal:
        balance = await self.reader.balance_of(self.vault_address, block_number)
        decimals = await self.reader.decimals()
        return to_units(balance, decimals)

    async def observations(self) -> AsyncIterator[Observation]:
        async with aclosing(self.blocks.block_numbers()) as block_numbers:
            async for block_number in block_numbers:
                try:
                    tvl = await self.get_tvl_at_block(block_number)
                except Exception as e:
                    logger.error(f"Error handling block {block_number}: {e}", exc_info=True)
                    continue

                yield Observation(block_number=block_number, tvl=tvl)


def build_chain_source(
    rpc_url: str,
    asset_address: str,
    vault_address: str,
    poll_interval_seconds: float = 12.0,
    timeout_seconds: float = 10.0,
) -> ChainObservationSource:
    """
    Wire a live source for the given endpoint.

    A ws:// or wss:// endpoint subscribes to new blocks; anything else is
    treated as HTTP and polled.
    """
    if is_websocket_url(rpc_url):
        w3 = AsyncWeb3(WebSocketProvider(rpc_url, request_timeout=timeout_seconds))
        blocks: BlockSource = SubscriptionBlockSource(w3)
    else:
        w3 = AsyncWeb3(AsyncHTTPProvider(
            rpc_url,
            request_kwargs={"timeout": aiohttp.ClientTimeout(total=timeout_seconds)},
        ))
        blocks = PollingBlockSource(w3, interval_seconds=poll_interval_seconds)

    reader = Erc20BalanceReader(w3, asset_address)
    return ChainObservationSource(reader, blocks, vault_address)
