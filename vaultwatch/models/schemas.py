"""
Pydantic schemas for API responses.
"""
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field


class ServiceInfo(BaseModel):
    """Root endpoint response."""
    name: str = "DeFi Vault Tracker API"
    version: str = "1.0.0"
    description: str


class TvlPointResponse(BaseModel):
    """One stored TVL observation."""
    vault_address: str
    block_number: int
    tvl: float = Field(..., description="TVL in asset units")
    recorded_at: datetime

    class Config:
        from_attributes = True


class TvlHistory(BaseModel):
    """TVL observations for a vault in chronological order."""
    vault_address: str
    data: List[TvlPointResponse]


class AlertResponse(BaseModel):
    """Alert response model."""
    id: int
    vault_address: str
    network: str
    block_number: int
    drop_pct: float = Field(..., description="Drop as a fraction (0-1)")
    tvl_before: float
    tvl_after: float
    confirmed: bool = False
    created_at: datetime

    class Config:
        from_attributes = True


class AlertList(BaseModel):
    """Alerts for a vault, newest first."""
    vault_address: str
    alerts: List[AlertResponse]


class HealthCheck(BaseModel):
    """API health check response."""
    status: Literal["healthy", "unhealthy"] = "healthy"
    timestamp: Optional[datetime] = None
    error: Optional[str] = None
