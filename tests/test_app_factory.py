from __future__ import annotations

from datetime import timedelta

from flask import Flask

from ttlpaste import create_app
from ttlpaste.config import DevelopmentConfig, ProductionConfig, TestingConfig, get_config
from ttlpaste.domain.models import Paste, PasteStatus
from ttlpaste.worker.purge_worker import purge_once, start_purge_worker

from .conftest import T0


def test_create_app_returns_flask_instance() -> None:
    app = create_app("testing")
    assert isinstance(app, Flask)
    assert app.config["TESTING"] is True
    assert app.config["TEST_MODE"] is True
    assert "api" in app.blueprints


def test_get_config_resolves_names() -> None:
    assert get_config("test") is TestingConfig
    assert get_config("prod") is ProductionConfig
    assert get_config(None) is DevelopmentConfig
    assert get_config("unknown") is DevelopmentConfig
    assert ProductionConfig.TEST_MODE is False


def test_purge_worker_disabled_without_interval() -> None:
    app = create_app("testing")
    assert start_purge_worker(app) is False


def test_purge_once_deletes_dead_pastes(session, session_factory) -> None:
    session.add_all(
        [
            Paste(id="live0001", content="a", created_at=T0, view_count=0, status=PasteStatus.ALIVE),
            Paste(
                id="dead0001",
                content="b",
                created_at=T0,
                expires_at=T0 + timedelta(seconds=1),
                view_count=0,
                status=PasteStatus.ALIVE,
            ),
        ]
    )
    session.commit()

    assert purge_once(session_factory) == 1
    session.expire_all()
    assert session.get(Paste, "live0001") is not None
    assert session.get(Paste, "dead0001") is None
