"""
Persistence for TVL observations and alerts.

Writes never raise on storage errors: the watcher keeps running through a
database outage, so every call reports success as a bool and logs failures.
"""
import logging
from collections import Counter
from decimal import Decimal

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import sessionmaker

from vaultwatch.core.database import SessionLocal
from vaultwatch.models.models import Alert, TvlPoint

logger = logging.getLogger(__name__)

_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


class PersistenceGateway:
    """Idempotent observation upserts and append-only alert inserts."""

    def __init__(self, session_factory: sessionmaker = SessionLocal):
        self.session_factory = session_factory
        self.stats = Counter()

    def upsert_observation(
        self,
        vault_address: str,
        network: str,
        block_number: int,
        tvl: Decimal
    ) -> bool:
        """
        Store a TVL point unless one already exists for the vault/block.

        Uses INSERT ... ON CONFLICT DO NOTHING, so the first write wins and
        repeating a call is a no-op.

        Returns:
            True if stored or already present, False on storage failure
        """
        db = self.session_factory()
        try:
            insert = _INSERTS.get(db.get_bind().dialect.name)
            if insert is None:
                raise NotImplementedError(
                    f"Upsert not supported for dialect {db.get_bind().dialect.name}"
                )

            stmt = insert(TvlPoint).values(
                vault_address=vault_address,
                network=network,
                block_number=block_number,
                tvl=tvl,
            ).on_conflict_do_nothing(index_elements=["vault_address", "block_number"])

            result = db.execute(stmt)
            db.commit()

            if result.rowcount == 0:
                self.stats["observations_duplicate"] += 1
                logger.info(f"Duplicate TVL point for {vault_address} at block {block_number} - skipped")
            else:
                self.stats["observations_stored"] += 1
            return True

        except Exception as e:
            db.rollback()
            self.stats["observations_failed"] += 1
            logger.error(
                f"Error storing TVL point for {vault_address} at block {block_number}: {e}",
                exc_info=True
            )
            return False

        finally:
            db.close()

    def insert_alert(
        self,
        vault_address: str,
        network: str,
        block_number: int,
        drop_pct: Decimal,
        tvl_before: Decimal,
        tvl_after: Decimal
    ) -> bool:
        """
        Append an alert row. Repeated drops always produce new rows.

        Returns:
            True if stored, False on storage failure
        """
        db = self.session_factory()
        try:
            alert = Alert(
                vault_address=vault_address,
                network=network,
                block_number=block_number,
                drop_pct=drop_pct,
                tvl_before=tvl_before,
                tvl_after=tvl_after,
            )
            db.add(alert)
            db.commit()

            self.stats["alerts_stored"] += 1
            logger.info(f"Stored alert for {vault_address} at block {block_number}")
            return True

        except Exception as e:
            db.rollback()
            self.stats["alerts_failed"] += 1
            logger.error(
                f"Error storing alert for {vault_address} at block {block_number}: {e}",
                exc_info=True
            )
            return False

        finally:
            db.close()
