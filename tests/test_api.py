from __future__ import annotations

import time
from datetime import datetime

from flask import Flask
from flask.testing import FlaskClient

import ttlpaste.api.pastes as pastes_api
from ttlpaste.services.paste_service import PasteService, StoreUnavailableError


def _now_ms() -> int:
    return int(time.time() * 1000)


def _create(client: FlaskClient, **payload) -> str:
    response = client.post("/api/pastes", json=payload)
    assert response.status_code == 201, response.get_json()
    return response.get_json()["id"]


def test_health_reports_store_up(client: FlaskClient) -> None:
    response = client.get("/api/healthz")
    assert response.status_code == 200
    assert response.get_json() == {"ok": True, "store": "up"}


def test_health_reports_store_down(client: FlaskClient, monkeypatch) -> None:
    monkeypatch.setattr(pastes_api, "check_connection", lambda: False)

    response = client.get("/api/healthz")
    assert response.status_code == 503
    assert response.get_json() == {"ok": False, "store": "down"}


def test_create_returns_id_and_share_url(client: FlaskClient) -> None:
    response = client.post("/api/pastes", json={"content": "hello"})

    assert response.status_code == 201
    body = response.get_json()
    assert set(body) == {"id", "url"}
    assert body["url"] == f"http://localhost/p/{body['id']}"


def test_create_uses_public_base_url(app: Flask, client: FlaskClient) -> None:
    app.config["PUBLIC_BASE_URL"] = "https://paste.example.com/"

    body = client.post("/api/pastes", json={"content": "hello"}).get_json()
    assert body["url"] == f"https://paste.example.com/p/{body['id']}"


def test_create_validation_errors(client: FlaskClient) -> None:
    for payload in (
        {},
        {"content": ""},
        {"content": "   "},
        {"content": 12},
        {"content": "x", "ttl_seconds": 0},
        {"content": "x", "max_views": 0},
        {"content": "x", "max_views": "many"},
        {"content": "x", "max_views": True},
        {"content": "x", "ttl_seconds": "60"},
        {"content": "x", "max_views": 1.0},
        {"content": "x", "ttl_seconds": 1.5},
    ):
        response = client.post("/api/pastes", json=payload)
        assert response.status_code == 400, payload
        assert "error" in response.get_json()


def test_create_rejects_coercible_limits_without_storing(client: FlaskClient) -> None:
    response = client.post("/api/pastes", json={"content": "x", "max_views": True})

    assert response.status_code == 400
    assert "id" not in response.get_json()


def test_create_accepts_lower_bounds(client: FlaskClient) -> None:
    response = client.post("/api/pastes", json={"content": "x", "ttl_seconds": 1, "max_views": 1})
    assert response.status_code == 201


def test_single_view_scenario(client: FlaskClient) -> None:
    paste_id = _create(client, content="hello", max_views=1)

    first = client.get(f"/api/pastes/{paste_id}")
    assert first.status_code == 200
    assert first.get_json() == {"content": "hello", "remaining_views": 0, "expires_at": None}

    second = client.get(f"/api/pastes/{paste_id}")
    assert second.status_code == 404


def test_ttl_scenario_with_test_clock_header(client: FlaskClient) -> None:
    before = _now_ms()
    paste_id = _create(client, content="hi", ttl_seconds=60)
    after = _now_ms()

    ok = client.get(f"/api/pastes/{paste_id}", headers={"X-Test-Now-Ms": str(before + 59_000)})
    assert ok.status_code == 200
    body = ok.get_json()
    assert body["content"] == "hi"
    assert body["remaining_views"] is None
    expires_ms = datetime.fromisoformat(body["expires_at"].replace("Z", "+00:00")).timestamp() * 1000
    assert before + 60_000 - 1 <= expires_ms <= after + 60_000 + 1

    gone = client.get(f"/api/pastes/{paste_id}", headers={"X-Test-Now-Ms": str(after + 61_000)})
    assert gone.status_code == 404


def test_gone_responses_are_indistinguishable(client: FlaskClient) -> None:
    exhausted = _create(client, content="a", max_views=1)
    client.get(f"/api/pastes/{exhausted}")
    expired = _create(client, content="b", ttl_seconds=1)
    future = str(_now_ms() + 3_600_000)

    responses = [
        client.get("/api/pastes/neverwas"),
        client.get(f"/api/pastes/{exhausted}"),
        client.get(f"/api/pastes/{expired}", headers={"X-Test-Now-Ms": future}),
    ]

    assert {r.status_code for r in responses} == {404}
    assert all(r.get_json() == {"error": "Paste not found"} for r in responses)


def test_clock_header_ignored_outside_test_mode(app: Flask, client: FlaskClient) -> None:
    app.config["TEST_MODE"] = False
    paste_id = _create(client, content="real time", ttl_seconds=60)

    far_future = str(_now_ms() + 3_600_000)
    response = client.get(f"/api/pastes/{paste_id}", headers={"X-Test-Now-Ms": far_future})
    assert response.status_code == 200


def test_malformed_clock_header_is_rejected(client: FlaskClient) -> None:
    paste_id = _create(client, content="x", max_views=1)

    response = client.get(f"/api/pastes/{paste_id}", headers={"X-Test-Now-Ms": "soon"})
    assert response.status_code == 400

    # The rejected request did not consume the only view.
    assert client.get(f"/api/pastes/{paste_id}").status_code == 200


def test_store_failure_maps_to_internal_error(client: FlaskClient, monkeypatch) -> None:
    def broken(self, paste_id, *, now_override=None):
        raise StoreUnavailableError("down")

    monkeypatch.setattr(PasteService, "get_paste", broken)

    response = client.get("/api/pastes/anything")
    assert response.status_code == 500
    assert response.get_json() == {"error": "Internal Server Error"}


def test_html_view_consumes_a_view_and_escapes(client: FlaskClient) -> None:
    paste_id = _create(client, content="<script>alert(1)</script>", max_views=1)

    page = client.get(f"/p/{paste_id}")
    assert page.status_code == 200
    html = page.get_data(as_text=True)
    assert "&lt;script&gt;" in html
    assert "<script>" not in html

    assert client.get(f"/p/{paste_id}").status_code == 404
    assert client.get(f"/api/pastes/{paste_id}").status_code == 404


def test_home_page_serves_create_form(client: FlaskClient) -> None:
    page = client.get("/")

    assert page.status_code == 200
    html = page.get_data(as_text=True)
    assert 'id="pasteForm"' in html
    assert 'name="content"' in html
    assert 'name="ttl_seconds"' in html
    assert 'name="max_views"' in html
    assert "/api/pastes" in html


def test_correlation_id_is_echoed(client: FlaskClient) -> None:
    response = client.get("/api/healthz", headers={"X-Correlation-ID": "abc-123"})
    assert response.headers["X-Correlation-ID"] == "abc-123"
