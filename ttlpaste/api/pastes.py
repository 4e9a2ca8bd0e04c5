from __future__ import annotations

from datetime import datetime
from http import HTTPStatus
from typing import Optional

from flask import Blueprint, current_app, render_template_string, request, url_for
from pydantic import ValidationError

from ttlpaste.api.schemas import (
    HealthResponse,
    PasteCreateRequest,
    PasteCreateResponse,
    PasteReadResponse,
)
from ttlpaste.db import SessionLocal, check_connection
from ttlpaste.domain.clock import from_epoch_ms
from ttlpaste.services.paste_service import (
    DuplicatePasteIdError,
    PasteGoneError,
    PasteService,
    PasteValidationError,
    StoreUnavailableError,
)

api_bp = Blueprint("api", __name__)

NOW_OVERRIDE_HEADER = "X-Test-Now-Ms"

# Not-found, expired and view-exhausted all look the same from outside.
GONE_BODY = {"error": "Paste not found"}
INTERNAL_ERROR_BODY = {"error": "Internal Server Error"}

_HOME_PAGE = """<!doctype html>
<html>
<head><meta charset="utf-8"><title>New paste</title></head>
<body>
<form id="pasteForm">
<textarea id="content" name="content" rows="12" cols="80" required></textarea>
<p><label>Expires after (seconds) <input id="ttl" name="ttl_seconds" type="number" min="1"></label></p>
<p><label>Max views <input id="maxViews" name="max_views" type="number" min="1"></label></p>
<button type="submit">Create paste</button>
</form>
<p id="result" hidden>Share: <a id="pasteLink"></a></p>
<script>
document.getElementById("pasteForm").addEventListener("submit", async (event) => {
  event.preventDefault();
  const form = event.target;
  const payload = {content: form.content.value};
  if (form.ttl_seconds.value) payload.ttl_seconds = parseInt(form.ttl_seconds.value, 10);
  if (form.max_views.value) payload.max_views = parseInt(form.max_views.value, 10);
  const response = await fetch({{ create_url|tojson }}, {
    method: "POST",
    headers: {"Content-Type": "application/json"},
    body: JSON.stringify(payload),
  });
  const body = await response.json();
  if (!response.ok) {
    alert("Failed to create paste: " + body.error);
    return;
  }
  const link = document.getElementById("pasteLink");
  link.href = body.url;
  link.textContent = body.url;
  document.getElementById("result").hidden = false;
});
</script>
</body>
</html>
"""

_PASTE_PAGE = """<!doctype html>
<html>
<head><meta charset="utf-8"><title>Paste {{ paste.id }}</title></head>
<body>
<pre>{{ paste.content }}</pre>
{% if paste.remaining_views is not none %}<p>Views left: {{ paste.remaining_views }}</p>{% endif %}
{% if paste.expires_at %}<p>Expires at: {{ paste.expires_at.isoformat() }}</p>{% endif %}
</body>
</html>
"""

_NOT_FOUND_PAGE = """<!doctype html>
<html>
<head><meta charset="utf-8"><title>Not found</title></head>
<body><p>This paste does not exist or is no longer available.</p></body>
</html>
"""


def _paste_service() -> PasteService:
    return PasteService(
        session_factory=SessionLocal,
        max_id_attempts=current_app.config.get("PASTE_ID_ATTEMPTS", 5),
    )


def _now_override() -> Optional[datetime]:
    """
    Return the test clock override for this request, if any.

    The header is only honoured when the app runs with ``TEST_MODE``.
    """
    if not current_app.config.get("TEST_MODE", False):
        return None

    raw = request.headers.get(NOW_OVERRIDE_HEADER)
    if raw is None or not raw.strip():
        return None
    try:
        return from_epoch_ms(int(raw))
    except (ValueError, OverflowError, OSError) as exc:
        raise PasteValidationError(
            f"{NOW_OVERRIDE_HEADER} must be an integer number of milliseconds."
        ) from exc


def _share_url(paste_id: str) -> str:
    base = current_app.config.get("PUBLIC_BASE_URL") or request.host_url
    return f"{base.rstrip('/')}/p/{paste_id}"


@api_bp.route("/api/healthz", methods=["GET"])
def health() -> tuple[dict, int]:
    """Report whether the paste store is reachable."""

    store_ok = check_connection()
    body = HealthResponse(ok=store_ok, store="up" if store_ok else "down").model_dump()
    return body, HTTPStatus.OK if store_ok else HTTPStatus.SERVICE_UNAVAILABLE


@api_bp.route("/api/pastes", methods=["POST"])
def create_paste() -> tuple[dict, int]:
    """
    Create a new paste.

    Shape validation is handled by Pydantic; business rules by the service layer.
    """
    try:
        payload = PasteCreateRequest.model_validate(request.get_json(silent=True) or {})
    except ValidationError as exc:
        return {"error": "Invalid request body", "details": str(exc)}, HTTPStatus.BAD_REQUEST

    try:
        dto = _paste_service().create_paste(
            content=payload.content,
            ttl_seconds=payload.ttl_seconds,
            max_views=payload.max_views,
        )
    except PasteValidationError as exc:
        return {"error": str(exc)}, HTTPStatus.BAD_REQUEST
    except (DuplicatePasteIdError, StoreUnavailableError):
        current_app.logger.exception("Paste creation failed")
        return INTERNAL_ERROR_BODY, HTTPStatus.INTERNAL_SERVER_ERROR

    body = PasteCreateResponse(id=dto["id"], url=_share_url(dto["id"])).model_dump()
    return body, HTTPStatus.CREATED


@api_bp.route("/api/pastes/<paste_id>", methods=["GET"])
def read_paste(paste_id: str) -> tuple[dict, int]:
    """Return a paste's content. Every successful call consumes a view."""
    try:
        now_override = _now_override()
    except PasteValidationError as exc:
        return {"error": str(exc)}, HTTPStatus.BAD_REQUEST

    try:
        dto = _paste_service().get_paste(paste_id, now_override=now_override)
    except PasteGoneError:
        return GONE_BODY, HTTPStatus.NOT_FOUND
    except StoreUnavailableError:
        current_app.logger.exception("Paste read failed")
        return INTERNAL_ERROR_BODY, HTTPStatus.INTERNAL_SERVER_ERROR

    body = PasteReadResponse(
        content=dto["content"],
        remaining_views=dto["remaining_views"],
        expires_at=dto["expires_at"],
    ).model_dump(mode="json")
    return body, HTTPStatus.OK


@api_bp.route("/", methods=["GET"])
def home_page() -> tuple[str, int]:
    """Form for creating a paste through the JSON API."""
    return (
        render_template_string(_HOME_PAGE, create_url=url_for("api.create_paste")),
        HTTPStatus.OK,
    )


@api_bp.route("/p/<paste_id>", methods=["GET"])
def view_paste_page(paste_id: str) -> tuple[str, int]:
    """HTML view of a paste; consumes a view like the JSON read."""
    try:
        now_override = _now_override()
    except PasteValidationError as exc:
        return str(exc), HTTPStatus.BAD_REQUEST

    try:
        dto = _paste_service().get_paste(paste_id, now_override=now_override)
    except PasteGoneError:
        return render_template_string(_NOT_FOUND_PAGE), HTTPStatus.NOT_FOUND
    except StoreUnavailableError:
        current_app.logger.exception("Paste page failed")
        return "Internal Server Error", HTTPStatus.INTERNAL_SERVER_ERROR

    return render_template_string(_PASTE_PAGE, paste=dto), HTTPStatus.OK
