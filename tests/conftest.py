import os

os.environ["ENV"] = "test"
os.environ.setdefault("WHATSAPP_APP_SECRET", "test-app-secret")
os.environ.setdefault("WHATSAPP_VERIFY_TOKEN", "test-verify-token")

import pytest  # noqa: E402

import app.models  # noqa: E402,F401
from app.db import Base, db_manager  # noqa: E402
from app.utils.db.db_session_helper import db_session  # noqa: E402

pytest_plugins = [
    "tests.fixtures.whatsapp_fixtures",
    "tests.fixtures.conversation_fixtures",
]


@pytest.fixture(scope="function")
def engine():
    """Shared in-memory SQLite engine (StaticPool: one connection for every session)."""
    engine = db_manager.engine
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)


@pytest.fixture(scope="function")
def db(engine):
    session = db_manager.SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture(scope="function")
def session_factory(engine):
    """Context-manager session factory bound to the test database."""
    return db_session


@pytest.fixture(scope="function")
def client_no_auth(db):
    """Test client with the db dependency bound to the test session."""
    from fastapi.testclient import TestClient

    from app.db import get_db
    from app.main import create_app

    app = create_app(testing=True)

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
