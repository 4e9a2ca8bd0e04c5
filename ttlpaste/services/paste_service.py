from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session

from ttlpaste.domain.clock import Clock, SystemClock, as_utc, effective_now
from ttlpaste.domain.lifecycle import evaluate, remaining_views
from ttlpaste.domain.models import Paste, PasteStatus
from ttlpaste.observability import get_correlation_id
from ttlpaste.repositories.paste_repository import (
    LIMIT_REACHED,
    DuplicatePasteIdError,
    PasteRepository,
)
from ttlpaste.services.helpers import generate_paste_id


logger = logging.getLogger(__name__)

__all__ = [
    "DuplicatePasteIdError",
    "PasteError",
    "PasteExpiredError",
    "PasteGoneError",
    "PasteNotFoundError",
    "PasteService",
    "PasteValidationError",
    "PasteViewLimitError",
    "StoreUnavailableError",
]


def _paste_to_dto(paste: Paste, *, view_count: Optional[int] = None) -> dict[str, Any]:
    """Convert a Paste ORM entity to a plain dict DTO. Datetimes are UTC-aware."""
    count = paste.view_count if view_count is None else view_count
    return {
        "id": paste.id,
        "content": paste.content,
        "created_at": as_utc(paste.created_at),
        "expires_at": as_utc(paste.expires_at) if paste.expires_at is not None else None,
        "max_views": paste.max_views,
        "view_count": count,
        "remaining_views": remaining_views(paste.max_views, count),
        "status": paste.status.value,
    }


class PasteError(Exception):
    """Base class for paste-related errors."""


class PasteValidationError(PasteError):
    """Raised when creating a paste with invalid parameters."""


class PasteGoneError(PasteError):
    """A paste that cannot be served. Subclasses say why, for diagnostics only."""

    error_type = "gone"


class PasteNotFoundError(PasteGoneError):
    """Raised when a paste cannot be found."""

    error_type = "not_found"


class PasteExpiredError(PasteGoneError):
    """Raised when a paste is past its deadline."""

    error_type = "expired"


class PasteViewLimitError(PasteGoneError):
    """Raised when a paste has no views left."""

    error_type = "view_limit"


class StoreUnavailableError(PasteError):
    """Raised when the database cannot complete a call."""


_GONE_BY_STATUS: dict[PasteStatus, type[PasteGoneError]] = {
    PasteStatus.EXPIRED: PasteExpiredError,
    PasteStatus.EXHAUSTED: PasteViewLimitError,
}


def _validate_content(content: Any) -> str:
    if not isinstance(content, str):
        raise PasteValidationError("content must be a string.")
    if not content.strip():
        raise PasteValidationError("content must be a non-empty string.")
    return content


def _validate_positive_int(name: str, value: Any) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise PasteValidationError(f"{name} must be an integer.")
    if value < 1:
        raise PasteValidationError(f"{name} must be >= 1.")
    return value


@dataclass
class PasteService:
    """
    Application service for the paste lifecycle.

    Owns session lifecycle: creates a session per use case, commits on success,
    rolls back on exception, and closes the session in a finally block.
    Returns plain dict DTOs; no ORM entities escape this layer.

    ``clock`` supplies real time: it stamps ``created_at`` and is the default
    "now" for expiry checks. A read may pass ``now_override`` instead, which
    affects only that read's expiry check.
    """

    session_factory: Callable[[], Session]
    clock: Clock = field(default_factory=SystemClock)
    id_generator: Callable[[], str] = generate_paste_id
    max_id_attempts: int = 5

    # -------------------------------------------------------------------------
    # Creation
    # -------------------------------------------------------------------------
    def create_paste(
        self,
        *,
        content: str,
        ttl_seconds: Optional[int] = None,
        max_views: Optional[int] = None,
    ) -> dict[str, Any]:
        """
        Create a new paste enforcing business rules:

        - ``content`` must be a non-blank string
        - ``ttl_seconds`` and ``max_views`` (if provided) must be integers >= 1

        A clashing id is replaced by a fresh one up to ``max_id_attempts``
        times before ``DuplicatePasteIdError`` propagates.
        """
        try:
            content = _validate_content(content)
            ttl_seconds = _validate_positive_int("ttl_seconds", ttl_seconds)
            max_views = _validate_positive_int("max_views", max_views)
        except PasteValidationError:
            logger.warning(
                "Invalid parameters when creating paste",
                extra={
                    "event": "paste_create_invalid_parameters",
                    "error_type": "validation",
                    "correlation_id": get_correlation_id(),
                },
            )
            raise

        last_error: Optional[DuplicatePasteIdError] = None
        for attempt in range(1, self.max_id_attempts + 1):
            created_at = as_utc(self.clock.now())
            paste = Paste(
                id=self.id_generator(),
                content=content,
                created_at=created_at,
                expires_at=(
                    created_at + timedelta(seconds=ttl_seconds)
                    if ttl_seconds is not None
                    else None
                ),
                max_views=max_views,
                view_count=0,
                status=PasteStatus.ALIVE,
            )

            session = self.session_factory()
            try:
                PasteRepository(session=session).insert(paste)
                session.commit()
                logger.info(
                    "Paste created",
                    extra={
                        "event": "paste_created",
                        "paste_id": paste.id,
                        "correlation_id": get_correlation_id(),
                    },
                )
                return _paste_to_dto(paste)
            except DuplicatePasteIdError as exc:
                session.rollback()
                last_error = exc
                logger.warning(
                    "Paste id collision",
                    extra={
                        "event": "paste_id_collision",
                        "error_type": "duplicate_id",
                        "attempt": attempt,
                        "correlation_id": get_correlation_id(),
                    },
                )
            except DBAPIError as exc:
                session.rollback()
                raise StoreUnavailableError("Paste store is unavailable.") from exc
            except Exception:
                session.rollback()
                raise
            finally:
                session.close()

        logger.error(
            "Could not allocate a paste id",
            extra={
                "event": "paste_id_exhausted",
                "error_type": "duplicate_id",
                "attempt": self.max_id_attempts,
                "correlation_id": get_correlation_id(),
            },
        )
        raise last_error or DuplicatePasteIdError("No paste id attempts were made.")

    # -------------------------------------------------------------------------
    # Retrieval / viewing
    # -------------------------------------------------------------------------
    def get_paste(
        self,
        paste_id: str,
        *,
        now_override: Optional[datetime] = None,
    ) -> dict[str, Any]:
        """
        Read a paste, consuming one view.

        Rules, in order:
        - unknown id → PasteNotFoundError
        - already dead → the error of the policy that killed it
        - ``now > expires_at`` → mark EXPIRED, PasteExpiredError
        - ``view_count >= max_views`` → mark EXHAUSTED, PasteViewLimitError
        - otherwise consume a view with one conditional UPDATE; a reader
          that loses the race for the last view gets PasteViewLimitError

        The returned DTO carries the post-increment ``view_count``.
        """
        session = self.session_factory()
        try:
            repo = PasteRepository(session=session)

            paste = repo.find_by_id(paste_id)
            if paste is None:
                raise self._gone(PasteNotFoundError, paste_id)

            now = effective_now(self.clock, now_override)
            verdict = evaluate(paste, now)
            if verdict is not PasteStatus.ALIVE:
                if paste.status is PasteStatus.ALIVE:
                    repo.mark_dead(paste, verdict)
                    session.commit()
                raise self._gone(_GONE_BY_STATUS[verdict], paste_id)

            outcome = repo.increment_view_if_below_limit(paste.id, paste.max_views)
            if outcome is None:
                raise self._gone(PasteNotFoundError, paste_id)
            if outcome is LIMIT_REACHED:
                status = repo.status_of(paste_id)
                if status is None:
                    raise self._gone(PasteNotFoundError, paste_id)
                raise self._gone(
                    _GONE_BY_STATUS.get(status, PasteViewLimitError), paste_id
                )

            dto = _paste_to_dto(paste, view_count=outcome)
            session.commit()
            logger.info(
                "Paste access successful",
                extra={
                    "event": "paste_access_success",
                    "paste_id": paste_id,
                    "correlation_id": get_correlation_id(),
                },
            )
            return dto
        except DBAPIError as exc:
            session.rollback()
            logger.error(
                "Paste store failure during read",
                extra={
                    "event": "paste_store_error",
                    "paste_id": paste_id,
                    "error_type": "store_unavailable",
                    "correlation_id": get_correlation_id(),
                },
            )
            raise StoreUnavailableError("Paste store is unavailable.") from exc
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    @staticmethod
    def _gone(error_cls: type[PasteGoneError], paste_id: str) -> PasteGoneError:
        logger.info(
            "Paste unavailable",
            extra={
                "event": "paste_access_denied",
                "paste_id": paste_id,
                "error_type": error_cls.error_type,
                "correlation_id": get_correlation_id(),
            },
        )
        return error_cls(f"Paste {paste_id} is not available.")
