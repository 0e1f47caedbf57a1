import asyncio
import time
from decimal import Decimal


class FakeGateway:
    """
    In-memory stand-in for PersistenceGateway.

    Records every call in order. Set `fail_upserts` / `fail_alerts` to make
    the corresponding call report a storage failure, or `raise_on` to a
    method name to make it raise.
    """
    def __init__(self):
        self.calls = []
        self.points = {}
        self.alerts = []
        self.fail_upserts = False
        self.fail_alerts = False
        self.raise_on = None

    def upsert_observation(self, vault_address, network, block_number, tvl):
        self.calls.append(("upsert_observation", block_number))
        if self.raise_on == "upsert_observation":
            raise RuntimeError("database unavailable")
        if self.fail_upserts:
            return False
        self.points.setdefault((vault_address, block_number), (network, tvl))
        return True

    def insert_alert(self, vault_address, network, block_number, drop_pct, tvl_before, tvl_after):
        self.calls.append(("insert_alert", block_number))
        if self.raise_on == "insert_alert":
            raise RuntimeError("database unavailable")
        if self.fail_alerts:
            return False
        self.alerts.append({
            "vault_address": vault_address,
            "network": network,
            "block_number": block_number,
            "drop_pct": drop_pct,
            "tvl_before": tvl_before,
            "tvl_after": tvl_after,
        })
        return True


class FakeReader:
    """
    ERC-20 reader returning scripted raw balances per block.

    A balance given as an Exception instance is raised for that block.
    """
    def __init__(self, balances, decimals=6):
        self.balances = dict(balances)
        self._decimals = decimals
        self.balance_calls = []
        self.decimals_calls = 0

    async def balance_of(self, owner, block_number):
        self.balance_calls.append((owner, block_number))
        value = self.balances[block_number]
        if isinstance(value, Exception):
            raise value
        return value

    async def decimals(self):
        self.decimals_calls += 1
        return self._decimals


class FakeBlockSource:
    """Yields the given block numbers, then finishes. Tracks closing."""
    transport = "fake"

    def __init__(self, blocks):
        self.blocks = list(blocks)
        self.closed = False

    async def block_numbers(self):
        try:
            for block in self.blocks:
                await asyncio.sleep(0)
                yield block
        finally:
            self.closed = True


class FakeEth:
    """Scripted `w3.eth.block_number` results; Exceptions are raised."""
    def __init__(self, results):
        self.results = list(results)
        self.calls = 0

    @property
    def block_number(self):
        return self._next()

    async def _next(self):
        self.calls += 1
        value = self.results.pop(0)
        if isinstance(value, Exception):
            raise value
        return value


class FakeProvider:
    def __init__(self):
        self.disconnected = False

    async def disconnect(self):
        self.disconnected = True


class FakeWeb3:
    def __init__(self, block_results):
        self.eth = FakeEth(block_results)
        self.provider = FakeProvider()


class FakeSubscriptionProvider:
    """Counts connects/disconnects; the first `connect_failures` connects raise."""
    def __init__(self, connect_failures=0):
        self.connect_failures = connect_failures
        self.connects = 0
        self.disconnects = 0

    async def connect(self):
        self.connects += 1
        if self.connect_failures > 0:
            self.connect_failures -= 1
            raise ConnectionError("connection refused")

    async def disconnect(self):
        self.disconnects += 1


class FakeSubscriptionEth:
    def __init__(self):
        self.subscriptions = []

    async def subscribe(self, kind):
        self.subscriptions.append(kind)
        return f"0xsub{len(self.subscriptions)}"


class FakeSubscriptionWeb3:
    """
    Stand-in for a WebSocket AsyncWeb3.

    Each subscription replays the next round of scripted messages; an
    Exception in a round is raised as a socket failure. Once the rounds are
    used up the stream stays open without messages.
    """
    def __init__(self, rounds, connect_failures=0):
        self.rounds = [list(r) for r in rounds]
        self.provider = FakeSubscriptionProvider(connect_failures)
        self.eth = FakeSubscriptionEth()
        self.socket = self

    async def process_subscriptions(self):
        if not self.rounds:
            await asyncio.Event().wait()
        for message in self.rounds.pop(0):
            await asyncio.sleep(0)
            if isinstance(message, Exception):
                raise message
            yield message


def new_head(block_number):
    return {"subscription": "0xsub", "result": {"number": block_number}}


class ManualSleep:
    """
    Replacement for asyncio.sleep that lets a test release ticks one by one.

    Each call records the requested delay and waits for `tick()`.
    """
    def __init__(self):
        self.delays = []
        self._released = asyncio.Semaphore(0)

    async def __call__(self, seconds):
        self.delays.append(seconds)
        await self._released.acquire()

    def tick(self, n=1):
        for _ in range(n):
            self._released.release()


async def no_sleep(seconds):
    await asyncio.sleep(0)


def d(value) -> Decimal:
    return Decimal(str(value))


async def wait_until(predicate, timeout: float = 2.0):
    """Poll `predicate` until it is true or timeout."""
    start = time.time()
    while time.time() - start < timeout:
        if predicate():
            return
        await asyncio.sleep(0.01)
    raise AssertionError("Timed out waiting for condition")
