"""
FastAPI application for vault TVL monitoring.

Read-only endpoints over the rows written by the watcher:
- GET /api/v1/vaults/{address}/tvl/latest - Latest TVL point
- GET /api/v1/vaults/{address}/tvl - TVL history
- GET /api/v1/vaults/{address}/alerts - Recent alerts
- GET /api/v1/vaults/health - Database health
"""
import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import desc, text
from sqlalchemy.orm import Session

from vaultwatch.core.config import ConfigurationError, settings
from vaultwatch.core.database import get_db, init_db
from vaultwatch.models.models import Alert, TvlPoint
from vaultwatch.models.schemas import (
    AlertList, AlertResponse, HealthCheck, ServiceInfo, TvlHistory, TvlPointResponse,
)

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title="DeFi Vault Tracker API",
    description="Monitors the TVL of a vault and alerts on sudden drops",
    version="1.0.0"
)

# Add CORS middleware for the dashboard
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

router = APIRouter(prefix="/api/v1/vaults")

# Watcher started with the API when RUN_WATCHER_IN_API is set
_watcher = None


@app.on_event("startup")
async def startup():
    """Initialize database and start the vault watcher."""
    global _watcher

    logger.info("Initializing database...")
    init_db()
    logger.info("Database initialized")

    if not settings.RUN_WATCHER_IN_API:
        return

    # Imported here so the API alone does not pull in web3
    from vaultwatch.watch import create_watcher

    try:
        _watcher = create_watcher(settings)
    except ConfigurationError as e:
        logger.error(f"Failed to start watcher: {e}")
        raise

    await _watcher.start()


@app.on_event("shutdown")
async def shutdown():
    """Stop the vault watcher."""
    global _watcher

    if _watcher is not None:
        logger.info("Shutting down gracefully...")
        await _watcher.stop()
        _watcher = None


@app.get("/", response_model=ServiceInfo)
async def root():
    """Service information."""
    return ServiceInfo(description=f"Monitoring vault {settings.VAULT_ADDRESS} on {settings.NETWORK}")


@router.get("/health", response_model=HealthCheck)
def health_check(db: Session = Depends(get_db)):
    """
    Health check endpoint.

    Returns 500 if the database cannot be queried.
    """
    try:
        db.execute(text("SELECT 1"))
    except Exception as e:
        logger.error(f"Health check failed: {e}")
        return JSONResponse(
            status_code=500,
            content={"status": "unhealthy", "error": "Database connection failed"}
        )

    return HealthCheck(status="healthy", timestamp=datetime.now(timezone.utc))


@router.get("/{vault_address}/tvl/latest", response_model=TvlPointResponse)
def get_latest_tvl(vault_address: str, db: Session = Depends(get_db)):
    """
    Get the most recently recorded TVL point for a vault.

    Args:
        vault_address: Vault address (any case)
    """
    latest = db.query(TvlPoint).filter(
        TvlPoint.vault_address == vault_address.lower()
    ).order_by(desc(TvlPoint.recorded_at), desc(TvlPoint.block_number)).first()

    if not latest:
        raise HTTPException(status_code=404, detail="No TVL data found for vault")

    return _point_response(latest)


@router.get("/{vault_address}/tvl", response_model=TvlHistory)
def get_tvl_history(
    vault_address: str,
    from_: Optional[datetime] = Query(default=None, alias="from", description="Earliest recorded_at"),
    to: Optional[datetime] = Query(default=None, description="Latest recorded_at"),
    limit: int = Query(default=100, ge=1, le=10000, description="Maximum points"),
    db: Session = Depends(get_db)
):
    """
    Get TVL history for a vault.

    Returns the most recent `limit` points in the window, oldest first.
    """
    address = vault_address.lower()
    query = db.query(TvlPoint).filter(TvlPoint.vault_address == address)

    if from_:
        query = query.filter(TvlPoint.recorded_at >= from_)
    if to:
        query = query.filter(TvlPoint.recorded_at <= to)

    points = query.order_by(
        desc(TvlPoint.recorded_at), desc(TvlPoint.block_number)
    ).limit(limit).all()

    return TvlHistory(
        vault_address=address,
        data=[_point_response(p) for p in reversed(points)]
    )


@router.get("/{vault_address}/alerts", response_model=AlertList)
def get_alerts(
    vault_address: str,
    limit: int = Query(default=10, ge=1, le=1000, description="Maximum alerts"),
    db: Session = Depends(get_db)
):
    """Get the most recent alerts for a vault, newest first."""
    address = vault_address.lower()

    alerts = db.query(Alert).filter(
        Alert.vault_address == address
    ).order_by(desc(Alert.created_at), desc(Alert.id)).limit(limit).all()

    return AlertList(
        vault_address=address,
        alerts=[
            AlertResponse(
                id=a.id,
                vault_address=a.vault_address,
                network=a.network,
                block_number=a.block_number,
                drop_pct=float(a.drop_pct),
                tvl_before=float(a.tvl_before),
                tvl_after=float(a.tvl_after),
                confirmed=a.confirmed,
                created_at=a.created_at
            )
            for a in alerts
        ]
    )


def _point_response(point: TvlPoint) -> TvlPointResponse:
    return TvlPointResponse(
        vault_address=point.vault_address,
        block_number=point.block_number,
        tvl=float(point.tvl),
        recorded_at=point.recorded_at
    )


app.include_router(router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.API_HOST, port=settings.API_PORT)
