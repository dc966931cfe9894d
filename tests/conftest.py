import os
import tempfile
from typing import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker
from sqlmodel import SQLModel, create_engine

from app.core import database
from app.core.config import settings
from app.core.database import DBSession
from app.main import app

# Use file-based SQLite to avoid in-memory connection issues
test_db_file = tempfile.NamedTemporaryFile(delete=False, suffix='.db')
engine = create_engine(
    f'sqlite:///{test_db_file.name}',
    connect_args={'check_same_thread': False},
)
TestingSessionLocal = sessionmaker(class_=DBSession, autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(autouse=True)
def use_test_session_factory(monkeypatch):
    """Use test session factory for all tests"""
    monkeypatch.setattr(database, 'SessionCls', TestingSessionLocal)


@pytest.fixture(autouse=True)
def test_settings(monkeypatch):
    """No waiting between retries, and a known set of credentials"""
    monkeypatch.setattr(settings, 'testing', True)
    monkeypatch.setattr(settings, 'app_mode', 'development')
    monkeypatch.setattr(settings, 'hubspot_retry_delay', 0)
    monkeypatch.setattr(settings, 'moca_retry_delay', 0)
    monkeypatch.setattr(settings, 'hubspot_webhook_secret', 'hs-secret')
    monkeypatch.setattr(settings, 'moca_secret', 'moca-secret')
    monkeypatch.setattr(settings, 'moca_app_id', '25681700')
    monkeypatch.setattr(settings, 'moca_sync_enabled', True)
    return settings


@pytest.fixture(name='session')
def session_fixture() -> Generator[DBSession, None, None]:
    """Create a new database session for a test"""
    SQLModel.metadata.create_all(bind=engine)

    with TestingSessionLocal() as session:
        yield session

    SQLModel.metadata.drop_all(bind=engine)


# Clean up temp file on exit
import atexit

atexit.register(lambda: os.unlink(test_db_file.name))


@pytest.fixture(name='client')
def client_fixture(session: DBSession):
    """Create a test client"""

    def get_session_override():
        return session

    from app.core.database import get_db

    app.dependency_overrides[get_db] = get_session_override
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()


@pytest.fixture(name='db')
def db_fixture(session: DBSession):
    return session


from tests.factories import CompanyFactory, ContactFactory, DealFactory, LineItemFactory  # noqa: E402


@pytest.fixture
def test_contact(db: DBSession):
    return ContactFactory.create_with_db(db, hubspot_id='101', email='jane@example.com')


@pytest.fixture
def test_company(db: DBSession, test_contact):
    return CompanyFactory.create_with_db(db, contact_id=test_contact.id)


@pytest.fixture
def test_deal(db: DBSession, test_contact):
    return DealFactory.create_with_db(db, contact_id=test_contact.id, has_line_items=True)


@pytest.fixture
def test_line_item(db: DBSession, test_deal):
    return LineItemFactory.create_with_db(db, deal_id=test_deal.id)
