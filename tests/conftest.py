import pytest
from sqlalchemy.orm import sessionmaker

from vaultwatch.core.database import init_db, make_engine
from vaultwatch.services.gateway import PersistenceGateway

VAULT = "0x616a4e1db48e22028f6bbf20444cd3b8e3273738"


@pytest.fixture
def vault():
    return VAULT


@pytest.fixture
def engine(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'vault_watcher.db'}")
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def gateway(session_factory):
    return PersistenceGateway(session_factory=session_factory)
