import pytest

from app_utils.deduplication import DedupEngine
from config import Settings
from crud import TicketStore
from database import create_db_engine, create_tables


@pytest.fixture
def settings(tmp_path):
    return Settings(database_url=f"sqlite:///{tmp_path / 'tickets.db'}", pool_timeout=30)


@pytest.fixture
def store(settings):
    engine = create_db_engine(settings)
    create_tables(engine)
    store = TicketStore(engine, lock_timeout=30)
    yield store
    store.close()


@pytest.fixture
def dedup(store):
    return DedupEngine(store, threshold_m=25)
