from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from vaultwatch.models.models import Alert, TvlPoint
from vaultwatch.services.gateway import PersistenceGateway


def test_upsert_stores_point(gateway, session_factory, vault):
    assert gateway.upsert_observation(vault, "base", 1000, Decimal("100000.5"))

    db = session_factory()
    try:
        point = db.query(TvlPoint).one()
    finally:
        db.close()

    assert point.vault_address == vault
    assert point.network == "base"
    assert point.block_number == 1000
    assert point.tvl == Decimal("100000.5")
    assert point.recorded_at is not None
    assert gateway.stats["observations_stored"] == 1


def test_upsert_first_write_wins(gateway, session_factory, vault):
    assert gateway.upsert_observation(vault, "base", 1000, Decimal("100000"))
    assert gateway.upsert_observation(vault, "base", 1000, Decimal("1"))
    assert gateway.upsert_observation(vault, "base", 1000, Decimal("100000"))

    db = session_factory()
    try:
        points = db.query(TvlPoint).all()
    finally:
        db.close()

    assert len(points) == 1
    assert points[0].tvl == Decimal("100000")
    assert gateway.stats["observations_duplicate"] == 2


def test_same_block_for_other_vault_is_separate(gateway, session_factory, vault):
    gateway.upsert_observation(vault, "base", 1000, Decimal("1"))
    gateway.upsert_observation("0x" + "1" * 40, "base", 1000, Decimal("2"))

    db = session_factory()
    try:
        assert db.query(TvlPoint).count() == 2
    finally:
        db.close()


def test_insert_alert_appends(gateway, session_factory, vault):
    for _ in range(2):
        assert gateway.insert_alert(
            vault, "base", 1001, Decimal("0.25"), Decimal("100000"), Decimal("75000")
        )

    db = session_factory()
    try:
        alerts = db.query(Alert).order_by(Alert.id).all()
    finally:
        db.close()

    assert len(alerts) == 2
    assert alerts[0].id != alerts[1].id
    alert = alerts[0]
    assert alert.block_number == 1001
    assert alert.drop_pct == Decimal("0.25")
    assert alert.tvl_before == Decimal("100000")
    assert alert.tvl_after == Decimal("75000")
    assert alert.confirmed is False
    assert alert.created_at is not None


def test_storage_failure_is_reported_not_raised(session_factory, vault, caplog):
    gateway = PersistenceGateway(session_factory=session_factory)

    class BrokenSession:
        def __init__(self, real):
            self._real = real

        def __getattr__(self, name):
            return getattr(self._real, name)

        def execute(self, *args, **kwargs):
            raise OperationalError("INSERT", {}, Exception("database is locked"))

        def commit(self):
            raise OperationalError("COMMIT", {}, Exception("database is locked"))

    gateway.session_factory = lambda: BrokenSession(session_factory())

    assert gateway.upsert_observation(vault, "base", 1, Decimal("1")) is False
    assert gateway.insert_alert(vault, "base", 1, Decimal("0.5"), Decimal("2"), Decimal("1")) is False
    assert gateway.stats["observations_failed"] == 1
    assert gateway.stats["alerts_failed"] == 1
    assert "Error storing TVL point" in caplog.text


def test_unsupported_dialect_fails_cleanly(session_factory, vault):
    class OtherDialectSession:
        def __init__(self, real):
            self._real = real

        def __getattr__(self, name):
            return getattr(self._real, name)

        def get_bind(self):
            class _Bind:
                class dialect:
                    name = "oracle"
            return _Bind()

    gateway = PersistenceGateway(session_factory=lambda: OtherDialectSession(session_factory()))
    assert gateway.upsert_observation(vault, "base", 1, Decimal("1")) is False


@pytest.mark.asyncio
async def test_watcher_against_database(gateway, session_factory, vault):
    from helpers.fakes import no_sleep
    from vaultwatch.fetchers.simulated import SimulatedObservationSource
    from vaultwatch.services.watcher import VaultWatcher

    watcher = VaultWatcher(
        source=SimulatedObservationSource(interval_seconds=0, sleep=no_sleep),
        gateway=gateway,
        vault_address=vault,
        network="base",
    )
    await watcher.start()
    await watcher.wait()

    db = session_factory()
    try:
        points = db.query(TvlPoint).order_by(TvlPoint.block_number).all()
        alerts = db.query(Alert).order_by(Alert.id).all()
    finally:
        db.close()

    assert [p.tvl for p in points] == [
        Decimal(v) for v in ("100000", "102000", "101000", "75000", "50000", "48000")
    ]
    assert [a.block_number for a in alerts] == [1_000_003, 1_000_004]
    assert float(alerts[0].drop_pct) == pytest.approx(26000 / 101000)
    assert float(alerts[1].drop_pct) == pytest.approx(1 / 3)
