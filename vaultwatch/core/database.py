"""
Database engine, session factory and schema bootstrap.
"""
import logging

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from vaultwatch.core.config import settings

logger = logging.getLogger(__name__)


def make_engine(database_url: str):
    """Create an engine; SQLite connections are shared with worker threads."""
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    return create_engine(database_url, connect_args=connect_args, pool_pre_ping=True)


engine = make_engine(settings.DATABASE_URL)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """FastAPI dependency yielding a session that is always closed."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind=None):
    """Create the tvl_points and alerts tables if they do not exist."""
    # Register models on Base.metadata
    from vaultwatch.models import models  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    try:
        init_db()
        logger.info("Database migration completed successfully")
    except Exception as e:
        logger.error(f"Migration failed: {e}", exc_info=True)
        raise SystemExit(1)
