import sys
import os
import logging
import asyncio
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from vaultwatch.core.config import settings
from vaultwatch.core.database import SessionLocal, init_db
from vaultwatch.fetchers.simulated import SimulatedObservationSource
from vaultwatch.models.models import Alert
from vaultwatch.services.gateway import PersistenceGateway
from vaultwatch.services.watcher import VaultWatcher

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

DEMO_VAULT = "0x616a4e1db48e22028f6bbf20444cd3b8e3273738"


async def replay(vault_address: str):
    """Replay the simulated TVL sequence with no delay between blocks."""
    watcher = VaultWatcher(
        source=SimulatedObservationSource(interval_seconds=0),
        gateway=PersistenceGateway(),
        vault_address=vault_address,
        network=settings.NETWORK,
        drop_threshold=settings.TVL_DROP_THRESHOLD,
    )
    await watcher.start()
    await watcher.wait()
    await watcher.stop()


def print_alerts(vault_address: str):
    db = SessionLocal()
    try:
        alerts = db.query(Alert).filter(
            Alert.vault_address == vault_address
        ).order_by(Alert.id).all()
    finally:
        db.close()

    if alerts:
        print("\n" + "="*50)
        print(f"SUCCESS! {len(alerts)} ALERTS STORED:")
        for alert in alerts:
            print(
                f"[block {alert.block_number}] drop {float(alert.drop_pct):.2%}: "
                f"{float(alert.tvl_before):,.0f} -> {float(alert.tvl_after):,.0f}"
            )
        print("="*50 + "\n")
    else:
        print("\nNo alerts stored. Check logic.\n")


if __name__ == "__main__":
    vault = (settings.VAULT_ADDRESS or DEMO_VAULT).lower()

    print("DEMO: Simulating a vault drain")
    print("1. Ensuring tables exist...")
    init_db()

    print("2. Replaying simulated blocks...")
    asyncio.run(replay(vault))

    print("3. Reading alerts...")
    print_alerts(vault)
