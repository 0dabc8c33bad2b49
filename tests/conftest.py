import os

os.environ["TESTING"] = "1"
os.environ.setdefault("JWT_SECRET", "planner-test-secret-0123456789")

from datetime import datetime  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from jose import jwt  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

import planner.database as _db_mod  # noqa: E402
import planner.dependencies.auth as _auth_mod  # noqa: E402
from planner.database import Base  # noqa: E402
from planner.database import get_db  # noqa: E402
from planner.database import make_engine  # noqa: E402
from planner.database import make_sessionmaker  # noqa: E402
from planner.models import models  # noqa: E402,F401

# Create a test database - using in-memory SQLite for tests
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

test_engine = make_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,  # Use StaticPool for in-memory database
)

TestingSessionLocal = make_sessionmaker(test_engine)

# Anything resolving the default factory (db_session(), get_db()) uses the test DB
_db_mod.default_session_factory = TestingSessionLocal

# Import app after engine setup is in place
from planner.main import app  # noqa: E402

OWNER = "user-1"
OTHER_OWNER = "user-2"


@pytest.fixture
def db_session():
    """
    Creates a fresh database for each test, then tears it down after the test is done.
    """
    Base.metadata.create_all(bind=test_engine)

    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture
def client(db_session):
    """
    Create a FastAPI TestClient with the test database dependency.
    """

    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db

    client = TestClient(app)
    yield client

    app.dependency_overrides = {}


def make_token(sub, secret=None):
    return jwt.encode({"sub": sub}, secret or os.environ["JWT_SECRET"], algorithm="HS256")


@pytest.fixture
def jwt_auth(monkeypatch):
    """Switch the API from the dev bypass to bearer-token authentication."""
    monkeypatch.setattr(_auth_mod, "AUTH_DISABLED", False)
    monkeypatch.setattr(_auth_mod, "_strategy_cache", {})
    yield


@pytest.fixture
def auth_headers(jwt_auth):
    return {"Authorization": f"Bearer {make_token(OWNER)}"}


@pytest.fixture
def other_auth_headers(jwt_auth):
    return {"Authorization": f"Bearer {make_token(OTHER_OWNER)}"}


@pytest.fixture
def seed(db_session):
    """Insert a stored row directly, bypassing the push handler.

    Lets tests pin exact change-times (e.g. two rows sharing one).
    """

    def _seed(collection, document, owner=OWNER, change_time=None):
        values = collection.codec.encode(document, owner)
        row = collection.model(**values, change_time=change_time or datetime(2024, 1, 1, 12, 0, 0))
        db_session.add(row)
        db_session.commit()
        return row

    return _seed
