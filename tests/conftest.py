from __future__ import annotations

from datetime import datetime, timezone
from typing import Generator

import pytest
from flask import Flask
from flask.testing import FlaskClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from ttlpaste import create_app
from ttlpaste.db import Base, get_engine
from ttlpaste.domain.clock import FixedClock
from ttlpaste.repositories.paste_repository import PasteRepository
from ttlpaste.services.paste_service import PasteService


T0 = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture(scope="function")
def engine() -> Generator:
    """
    Create a fresh in-memory SQLite engine for each test function.

    This keeps tests focused on domain behavior while using a real database
    session for repository/service operations.
    """

    engine = create_engine("sqlite+pysqlite:///:memory:", future=True)
    Base.metadata.create_all(engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture
def session_factory(engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


@pytest.fixture(scope="function")
def session(session_factory) -> Generator[Session, None, None]:
    with session_factory() as session:
        yield session
        session.rollback()


@pytest.fixture
def paste_repo(session: Session) -> PasteRepository:
    return PasteRepository(session=session)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(T0)


@pytest.fixture
def paste_service(session_factory, clock: FixedClock) -> PasteService:
    """Service with its own session factory; each call gets a new session from the test engine."""
    return PasteService(session_factory=session_factory, clock=clock)


@pytest.fixture
def app() -> Generator[Flask, None, None]:
    app = create_app("testing")
    Base.metadata.create_all(get_engine())
    try:
        yield app
    finally:
        Base.metadata.drop_all(get_engine())
        get_engine().dispose()


@pytest.fixture
def client(app: Flask) -> FlaskClient:
    return app.test_client()
