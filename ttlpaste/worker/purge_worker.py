from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timezone
from typing import NoReturn

from flask import Flask
from sqlalchemy import inspect
from sqlalchemy.exc import ProgrammingError

from ttlpaste.db import SessionLocal
from ttlpaste.repositories.paste_repository import PasteRepository


logger = logging.getLogger(__name__)

WORKER_CORRELATION_ID = "purge-worker"

_worker_started = False
_worker_lock = threading.Lock()


def purge_once(session_factory=SessionLocal) -> int:
    """
    Delete dead pastes in one transaction and return how many went.

    Returns 0 without touching anything while the ``pastes`` table is missing.
    """

    session = session_factory()
    try:
        # If tables haven't been created yet (no migrations run), skip work
        # instead of spamming errors.
        if not inspect(session.get_bind()).has_table("pastes"):
            logger.info(
                "Purge worker: 'pastes' table not found; skipping cycle",
                extra={
                    "event": "purge_worker_no_table",
                    "correlation_id": WORKER_CORRELATION_ID,
                },
            )
            return 0

        purged = PasteRepository(session=session).purge_dead(datetime.now(timezone.utc))
        session.commit()
        if purged:
            logger.info(
                "Purge worker: deleted dead pastes",
                extra={
                    "event": "purge_worker_deleted",
                    "purged": purged,
                    "correlation_id": WORKER_CORRELATION_ID,
                },
            )
        return purged
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def _purge_loop(app: Flask, interval: float) -> NoReturn:
    """Background loop that periodically reclaims space held by dead pastes."""

    with app.app_context():
        while True:
            try:
                purge_once()
            except ProgrammingError:
                # If the table goes missing for some reason, avoid noisy stack traces.
                logger.warning(
                    "Purge worker: database schema not ready; skipping cycle",
                    extra={
                        "event": "purge_worker_schema_error",
                        "correlation_id": WORKER_CORRELATION_ID,
                    },
                )
            except Exception:  # pragma: no cover - keep the thread alive
                logger.exception(
                    "Error in purge worker loop",
                    extra={
                        "event": "purge_worker_error",
                        "correlation_id": WORKER_CORRELATION_ID,
                    },
                )

            time.sleep(interval)


def start_purge_worker(app: Flask) -> bool:
    """
    Start the purge worker in a background thread.

    Does nothing when ``PURGE_INTERVAL_SECONDS`` is not positive. Idempotent:
    at most one worker thread runs per process. Returns ``True`` if a thread
    was started by this call.
    """

    global _worker_started
    interval = float(app.config.get("PURGE_INTERVAL_SECONDS", 0) or 0)
    if interval <= 0:
        return False

    with _worker_lock:
        if _worker_started:
            return False

        thread = threading.Thread(
            target=_purge_loop,
            args=(app, interval),
            name="purge-worker",
            daemon=True,
        )
        thread.start()
        _worker_started = True
        return True
