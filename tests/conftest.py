import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session, create_engine, SQLModel
from sqlmodel.pool import StaticPool

import core.db  # noqa: F401  registers the SQLite foreign key pragma
from api.files.services import FileRegistry
from core.config import get_settings
from core.deps import get_db
from main import app

from tests.fixtures.files import USER_ID, OTHER_USER_ID


@pytest.fixture(autouse=True)
def global_file_removal_enabled(monkeypatch):
    """Every test starts with DISABLE_REMOVE_GLOBAL_FILE unset"""
    monkeypatch.delenv("DISABLE_REMOVE_GLOBAL_FILE", raising=False)
    monkeypatch.delenv("ENV_SECRETS", raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture(name="session")
def session_fixture():
    engine = create_engine(
        "sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool
    )
    SQLModel.metadata.create_all(engine)
    with Session(engine) as session:
        yield session
    SQLModel.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture(name="registry")
def registry_fixture(session: Session) -> FileRegistry:
    """Registry scoped to the primary test user"""
    return FileRegistry(session=session, user_id=USER_ID)


@pytest.fixture(name="other_registry")
def other_registry_fixture(session: Session) -> FileRegistry:
    """Registry scoped to a second user sharing the same database"""
    return FileRegistry(session=session, user_id=OTHER_USER_ID)


@pytest.fixture(name="client")
def client_fixture(session: Session):
    def get_db_override():
        return session

    app.dependency_overrides[get_db] = get_db_override

    client = TestClient(app, headers={"X-User-Id": USER_ID})
    yield client
    app.dependency_overrides.clear()
