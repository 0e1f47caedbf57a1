"""
SQLAlchemy models for vault TVL monitoring.
"""
from sqlalchemy import (
    BigInteger, Boolean, Column, DateTime, Integer, Numeric, String, UniqueConstraint, false,
)
from sqlalchemy.sql import func

from vaultwatch.core.database import Base


class TvlPoint(Base):
    """
    One TVL observation for a vault at a block.

    Attributes:
        vault_address: Lowercased vault address
        network: Chain label (e.g., 'base')
        block_number: Block the balance was read at
        tvl: Asset balance in human units (already decimal-adjusted)
        recorded_at: When the row was written
    """
    __tablename__ = "tvl_points"

    id = Column(Integer, primary_key=True, autoincrement=True)
    vault_address = Column(String(42), nullable=False, index=True)
    network = Column(String(32), nullable=False)
    block_number = Column(BigInteger, nullable=False)
    tvl = Column(Numeric(38, 18), nullable=False)
    recorded_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    # First write wins for a vault/block pair
    __table_args__ = (
        UniqueConstraint('vault_address', 'block_number', name='uq_vault_block'),
    )

    def __repr__(self):
        return f"<TvlPoint({self.vault_address}, block={self.block_number}, TVL={self.tvl})>"


class Alert(Base):
    """
    A TVL drop between two consecutive observed blocks.

    Attributes:
        block_number: The later block of the compared pair
        drop_pct: (tvl_before - tvl_after) / tvl_before, as a fraction
        confirmed: Reserved for a confirmation workflow; never set by the watcher
    """
    __tablename__ = "alerts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    vault_address = Column(String(42), nullable=False, index=True)
    network = Column(String(32), nullable=False)
    block_number = Column(BigInteger, nullable=False)
    drop_pct = Column(Numeric(20, 18), nullable=False)
    tvl_before = Column(Numeric(38, 18), nullable=False)
    tvl_after = Column(Numeric(38, 18), nullable=False)
    confirmed = Column(Boolean, nullable=False, default=False, server_default=false())
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<Alert({self.vault_address}, block={self.block_number}, drop={self.drop_pct})>"
