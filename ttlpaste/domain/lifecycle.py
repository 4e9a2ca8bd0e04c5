from __future__ import annotations

from datetime import datetime
from typing import Optional

from .clock import as_utc
from .models import Paste, PasteStatus


class InvalidPasteStateTransition(Exception):
    """Raised when an invalid state transition is requested for a Paste."""


# Both dead states are terminal.
_ALLOWED_TRANSITIONS: set[tuple[PasteStatus, PasteStatus]] = {
    (PasteStatus.ALIVE, PasteStatus.EXPIRED),
    (PasteStatus.ALIVE, PasteStatus.EXHAUSTED),
}


def validate_transition(current_state: PasteStatus, next_state: PasteStatus) -> None:
    """Raise ``InvalidPasteStateTransition`` unless ``current_state`` may become ``next_state``.

    Staying in the same state is always allowed.
    """

    if current_state is next_state:
        return

    if (current_state, next_state) not in _ALLOWED_TRANSITIONS:
        raise InvalidPasteStateTransition(
            f"Cannot transition Paste from {current_state.value} to {next_state.value}."
        )


def evaluate(paste: Paste, now: datetime) -> PasteStatus:
    """
    Return the status a read at ``now`` observes for ``paste``.

    A recorded dead status always wins. Otherwise the time policy is checked
    before the view policy, so a paste past its deadline reports EXPIRED even
    when its views are also used up.
    """

    if paste.status is not PasteStatus.ALIVE:
        return paste.status

    if paste.expires_at is not None and as_utc(now) > as_utc(paste.expires_at):
        return PasteStatus.EXPIRED

    if paste.max_views is not None and paste.view_count >= paste.max_views:
        return PasteStatus.EXHAUSTED

    return PasteStatus.ALIVE


def remaining_views(max_views: Optional[int], view_count: int) -> Optional[int]:
    if max_views is None:
        return None
    return max(0, max_views - view_count)
