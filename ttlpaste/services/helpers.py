from __future__ import annotations

import secrets
import string

from ttlpaste.domain.models import PASTE_ID_LENGTH


ALPHABET = string.ascii_letters + string.digits


def generate_paste_id(length: int = PASTE_ID_LENGTH) -> str:
    # 62**8 ids; collisions are left to the insert retry.
    return "".join(secrets.choice(ALPHABET) for _ in range(length))
