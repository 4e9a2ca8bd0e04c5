from __future__ import annotations

import enum
import logging
from datetime import datetime
from typing import Optional, Union

from sqlalchemy import Delete, Select, Update, case, delete, literal, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.util import identity_key

from ttlpaste.domain.lifecycle import validate_transition
from ttlpaste.domain.models import Paste, PasteStatus
from ttlpaste.observability import get_correlation_id


logger = logging.getLogger(__name__)


class DuplicatePasteIdError(Exception):
    """Raised when a new paste's id is already taken."""


class LimitReached(enum.Enum):
    """Outcome of a conditional increment that found no view left to consume."""

    LIMIT_REACHED = "limit_reached"


LIMIT_REACHED = LimitReached.LIMIT_REACHED


class PasteRepository:
    """
    Repository for Paste records.

    All database interaction for Paste should go through this class.
    Callers own the transaction: nothing here commits.
    """

    def __init__(self, session: Session) -> None:
        self._session = session

    def insert(self, paste: Paste) -> Paste:
        """
        Persist a new Paste.

        Raises ``DuplicatePasteIdError`` if the id is already in use; the
        session must then be rolled back by the caller.
        """

        self._session.add(paste)
        try:
            # Flush so that a primary key clash surfaces here.
            self._session.flush()
        except IntegrityError as exc:
            raise DuplicatePasteIdError(f"Paste id {paste.id} already exists.") from exc
        return paste

    def find_by_id(self, paste_id: str) -> Optional[Paste]:
        """Return a Paste by its id, or ``None`` if not found."""

        stmt: Select[tuple[Paste]] = select(Paste).where(Paste.id == paste_id)
        return self._session.execute(stmt).scalar_one_or_none()

    def status_of(self, paste_id: str) -> Optional[PasteStatus]:
        """Read the stored status directly, bypassing the identity map."""

        stmt = select(Paste.status).where(Paste.id == paste_id)
        return self._session.execute(stmt).scalar_one_or_none()

    def increment_view_if_below_limit(
        self,
        paste_id: str,
        limit: Optional[int],
    ) -> Union[int, LimitReached, None]:
        """
        Consume one view in a single conditional UPDATE.

        Returns the new ``view_count``, ``LIMIT_REACHED`` when the paste is no
        longer ALIVE or already has ``limit`` views, or ``None`` if no Paste
        with the given id exists. With ``limit=None`` the increment is
        unconditional apart from the ALIVE check. The view that reaches
        ``limit`` also moves the paste to EXHAUSTED.
        """

        new_count = Paste.view_count + 1
        stmt: Update = update(Paste).where(
            Paste.id == paste_id,
            Paste.status == PasteStatus.ALIVE,
        )
        if limit is None:
            stmt = stmt.values(view_count=new_count)
        else:
            stmt = stmt.where(Paste.view_count < limit).values(
                view_count=new_count,
                status=case(
                    (
                        new_count >= limit,
                        literal(PasteStatus.EXHAUSTED, Paste.__table__.c.status.type),
                    ),
                    else_=Paste.status,
                ),
            )
        stmt = stmt.returning(Paste.view_count).execution_options(
            synchronize_session=False
        )

        row = self._session.execute(stmt).one_or_none()
        if row is not None:
            self._expire_cached(paste_id)
            (count,) = row
            return int(count)

        exists = self._session.execute(
            select(Paste.id).where(Paste.id == paste_id)
        ).scalar_one_or_none()
        if exists is None:
            return None
        return LIMIT_REACHED

    def mark_dead(self, paste: Paste, next_status: PasteStatus) -> bool:
        """
        Record that ``paste`` died by ``next_status``.

        The transition is validated by the lifecycle rules and applied only
        while the stored row is still ALIVE, so concurrent readers cannot
        overwrite each other's verdict. Returns ``True`` if this call made
        the change.
        """

        current = paste.status
        validate_transition(current_state=current, next_state=next_status)

        stmt: Update = (
            update(Paste)
            .where(Paste.id == paste.id, Paste.status == PasteStatus.ALIVE)
            .values(status=next_status)
            .returning(Paste.id)
            .execution_options(synchronize_session=False)
        )
        changed = self._session.execute(stmt).one_or_none() is not None

        if changed:
            logger.info(
                "Paste status transition",
                extra={
                    "event": "paste_status_transition",
                    "paste_id": paste.id,
                    "status_from": current.value,
                    "status_to": next_status.value,
                    "correlation_id": get_correlation_id(),
                },
            )
            self._expire_cached(paste.id)

        # Caller is responsible for committing.
        return changed

    def _expire_cached(self, paste_id: str) -> None:
        # Bulk UPDATEs bypass the identity map; drop any stale copy.
        cached = self._session.identity_map.get(identity_key(Paste, paste_id))
        if cached is not None:
            self._session.expire(cached)

    def purge_dead(self, now: datetime) -> int:
        """
        Delete records no read can be served from any more.

        Space reclamation only; reads re-check both policies themselves.
        Returns the number of deleted rows.
        """

        stmt: Delete = (
            delete(Paste)
            .where(
                or_(
                    Paste.status != PasteStatus.ALIVE,
                    Paste.expires_at < now,
                    (Paste.max_views.isnot(None))
                    & (Paste.view_count >= Paste.max_views),
                )
            )
            .execution_options(synchronize_session=False)
        )
        return int(self._session.execute(stmt).rowcount or 0)
