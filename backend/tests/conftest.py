"""Shared pytest fixtures for backend tests."""

from __future__ import annotations

import asyncio
import os
from typing import Callable, Iterator

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("CHAT_NOTIFICATION_PURGE_INTERVAL_SECONDS", "0")

import pytest
from fastapi.testclient import TestClient
from passlib.context import CryptContext
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app import database as app_database
from app.core import security
from app.database import get_db
from app.main import app
from app.models import Base, User
from app.monitoring.registry import registry as metrics_registry
from murmur.realtime import managers

security.pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


@pytest.fixture()
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture(autouse=True)
def reset_realtime_state() -> Iterator[None]:
    """Start every test with empty connection, room and typing tables."""

    def _reset() -> None:
        managers.presence_registry._by_user.clear()
        managers.presence_registry._by_id.clear()
        managers.room_directory._rooms.clear()
        managers.room_directory._joined.clear()
        managers.typing_aggregator._entries.clear()
        for manager in (managers.presence_registry, managers.room_directory, managers.typing_aggregator):
            manager._lock = asyncio.Lock()
        for name in ("realtime_events_total", "chat_messages_total", "chat_notifications_total"):
            metric = metrics_registry.get(name)
            if metric is not None:
                metric.clear()

    _reset()
    yield
    _reset()


@pytest.fixture()
def test_engine() -> Iterator[Engine]:
    """Provide an in-memory SQLite engine for isolated tests."""

    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture()
def session_factory(test_engine) -> sessionmaker[Session]:
    """Return a session factory bound to the test engine."""

    return sessionmaker(bind=test_engine, autoflush=False, future=True)


@pytest.fixture()
def db_session(session_factory) -> Iterator[Session]:
    """Yield a SQLAlchemy session for unit tests."""

    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def make_user(db_session) -> Callable[..., User]:
    """Insert a user row directly, bypassing the registration endpoint."""

    counter = iter(range(1, 10_000))

    def _make(login: str | None = None, display_name: str | None = None, **fields) -> User:
        login = login or f"user{next(counter)}"
        user = User(
            login=login,
            display_name=display_name or login.title(),
            hashed_password=security.get_password_hash("password123"),
            **fields,
        )
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _make


@pytest.fixture()
def client(session_factory, monkeypatch) -> Iterator[TestClient]:
    """Yield a FastAPI TestClient with the database dependency overridden.

    Websocket handlers open their own short-lived sessions, so the module level
    session factory is pointed at the test engine as well.
    """

    def override_get_db() -> Iterator[Session]:
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    monkeypatch.setattr(app_database, "SessionLocal", session_factory)
    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
