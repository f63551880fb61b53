"""Pytest configuration and fixtures."""

import os

import pytest
from factories import RecordingConnection
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from feedboard import models  # noqa: F401
from feedboard.config import Settings
from feedboard.database import Base, get_db
from feedboard.main import create_app
from feedboard.models import Board, DietEntry, Feed, Horse

# Use test database - whatever TEST_DATABASE_URL points at, SQLite locally
SQLALCHEMY_DATABASE_URL = os.getenv("TEST_DATABASE_URL", "sqlite:///./test.db")

connect_args = {"check_same_thread": False} if "sqlite" in SQLALCHEMY_DATABASE_URL else {}
engine = create_engine(SQLALCHEMY_DATABASE_URL, connect_args=connect_args)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Background timers are effectively off; tests drive sweeps and ranks directly
test_settings = Settings(
    database_url=SQLALCHEMY_DATABASE_URL,
    keepalive_interval_seconds=3600,
    override_sweep_interval_seconds=3600,
    note_sweep_interval_seconds=3600,
    ranking_debounce_ms=50,
    cors_origins=[],
)
app = create_app(settings=test_settings, session_factory=TestingSessionLocal)


@pytest.fixture(scope="session", autouse=True)
def setup_test_database():
    """Create test database schema once at the start of the test session."""
    Base.metadata.create_all(bind=engine)
    yield
    # Don't drop database - each test cleans up after itself


@pytest.fixture(scope="function", autouse=True)
def db():
    """Create a fresh database session for each test with cleanup."""
    session = TestingSessionLocal()

    yield session

    # Clean up all data after test
    session.rollback()
    for table in reversed(Base.metadata.sorted_tables):
        session.execute(table.delete())
    session.commit()
    session.close()


@pytest.fixture(scope="function")
def client(db):
    """Create a test client with database override."""

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def board_id(client) -> str:
    """Create a board through the API and return its id."""
    response = client.post("/api/boards", json={"timezone": "Australia/Sydney"})
    assert response.status_code == 201
    return response.json()["data"]["id"]


@pytest.fixture
def subscriber(client, board_id) -> RecordingConnection:
    """A push client registered on ``board_id`` the way the events endpoint does it."""
    connection = RecordingConnection()
    client.app.state.publisher.subscribe(board_id, connection)
    return connection


@pytest.fixture
def stable(db):
    """A board with horses H1, H2 and feeds F1, F2, F3 (in that insertion order)."""
    board = Board(timezone="UTC")
    db.add(board)
    db.flush()

    horses = [Horse(board_id=board.id, name=name) for name in ("H1", "H2")]
    feeds = [
        Feed(board_id=board.id, name=name, position=position)
        for position, name in enumerate(("F1", "F2", "F3"), start=1)
    ]
    db.add_all(horses + feeds)
    db.commit()

    return {
        "board": board,
        "horses": {h.name: h for h in horses},
        "feeds": {f.name: f for f in feeds},
    }


@pytest.fixture
def add_diet(db):
    """Write a diet entry directly to the database."""

    def _add(horse: Horse, feed: Feed, am: float | None = None, pm: float | None = None) -> DietEntry:
        entry = DietEntry(horse_id=horse.id, feed_id=feed.id, am_amount=am, pm_amount=pm)
        db.add(entry)
        db.commit()
        return entry

    return _add
