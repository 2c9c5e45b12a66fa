"""Shared test fixtures for labdash tests."""

import os

# Must be set before labdash.config is imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["WEBHOOK_SECRET"] = "test-secret"
os.environ["EMAIL_USER"] = ""
os.environ["EMAIL_PASSWORD"] = ""
os.environ["RECIPIENT_EMAIL"] = ""
os.environ["SMTP_SECURE"] = "False"
os.environ["OBSERVER_URL"] = ""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from labdash import config
from labdash import db as database
from labdash import models  # noqa: F401
from labdash.db import Base, get_db

WEBHOOK_TOKEN = "test-secret"


@pytest.fixture
def engine(tmp_path):
    """Temporary SQLite database file with all tables created."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'labdash.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine, monkeypatch):
    """Session factory bound to the test database, also used by background tasks."""
    factory = sessionmaker(bind=engine, autoflush=False, autocommit=False)
    monkeypatch.setattr(database, "SessionLocal", factory)
    return factory


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def reports_dir(tmp_path, monkeypatch):
    path = tmp_path / "reports"
    monkeypatch.setattr(config, "REPORTS_DIR", path)
    return path


@pytest.fixture
def client(session_factory, reports_dir):
    """TestClient against the app with get_db pointed at the test database."""
    from labdash.main import app

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    return {config.WEBHOOK_TOKEN_HEADER: WEBHOOK_TOKEN}
