import os
import sqlite3
import sys
from datetime import datetime, timezone

from fastapi.testclient import TestClient

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from app.main import app
from app.services.case_board import CaseBoardRegistry
from app.services.case_store import case_store
from app.services.triage import severity_priority

client = TestClient(app)


def _login(user_id: str) -> str:
    login = client.post("/auth/login", json={"user_id": user_id, "password": "casedesk-demo"})
    assert login.status_code == 200
    return login.json()["access_token"]


def _insert_triage_booking(pet_name: str) -> int:
    now = datetime.now(timezone.utc).isoformat()
    with sqlite3.connect(case_store.db_path) as conn:
        cursor = conn.execute(
            """
            INSERT INTO consultation_bookings (
                pet_name, consultation_type, consultation_reason, status, customer_name, created_at, updated_at
            )
            VALUES (?, 'Triage Consultation', 'Swallowed a sock', 'pending', 'Noor Ali', ?, ?)
            """,
            (pet_name, now, now),
        )
        conn.commit()
        return cursor.lastrowid


def test_health_ok():
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_ready_reports_store():
    response = client.get("/ready")
    assert response.status_code == 200
    assert response.json() == {"status": "ready", "case_store": "ok"}


def test_auth_login_and_me():
    token = _login("nurse_1")

    me = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    assert me.json()["user_id"] == "nurse_1"


def test_auth_login_rejects_wrong_password():
    response = client.post("/auth/login", json={"user_id": "nurse_1", "password": "nope"})
    assert response.status_code == 401


def test_worklist_is_ordered_by_severity():
    response = client.get("/cases", params={"user_id": "nurse_1"})
    assert response.status_code == 200
    payload = response.json()

    assert payload["state"] == "ready"
    cards = payload["cases"]
    assert cards[0]["case"]["id"] == "booking_2"
    assert cards[0]["severity_label"] == "Emergency"
    priorities = [severity_priority(card["case"]["severity"]) for card in cards]
    assert priorities == sorted(priorities, reverse=True)
    assert payload["total"] == len(cards) == 6
    assert payload["counts"]["pending"] == 2
    # case_3 belongs to another nurse
    assert "case_3" not in [card["case"]["id"] for card in cards]


def test_worklist_filter_and_search():
    response = client.get("/cases", params={"user_id": "nurse_1", "filter": "assigned"})
    assert [card["case"]["id"] for card in response.json()["cases"]] == ["case_1"]

    response = client.get("/cases", params={"user_id": "nurse_1", "q": "MILO"})
    cards = response.json()["cases"]
    assert [card["case"]["id"] for card in cards] == ["booking_1"]
    assert cards[0]["can_quick_assess"] is True
    assert cards[0]["primary_action"] == "Start Triage"

    response = client.get("/cases", params={"user_id": "nurse_1", "sort_by": "bogus"})
    assert response.status_code == 422


def test_filter_counts_endpoint():
    response = client.get("/cases/filters", params={"user_id": "nurse_1"})
    assert response.status_code == 200
    counts = response.json()
    assert counts["all"] == 6
    assert counts["assigned"] == 1
    assert sum(counts[level] for level in ("emergency", "serious", "moderate", "mild", "pending")) == 6


def test_quick_assess_writes_back_and_leaves_queue_on_refresh():
    booking_id = _insert_triage_booking("Sprout")
    token = _login("nurse_quick")
    headers = {"Authorization": f"Bearer {token}"}

    refreshed = client.post("/cases/refresh", json={"actor_user_id": "nurse_quick"}, headers=headers)
    assert refreshed.status_code == 200
    assert refreshed.json()["state"] == "ready"

    response = client.post(
        f"/cases/booking_{booking_id}/quick-assess",
        json={"actor_user_id": "nurse_quick", "severity": "serious"},
        headers=headers,
    )
    assert response.status_code == 200
    payload = response.json()
    assert payload["applied"] is True
    assert payload["case"]["severity"] == "serious"
    assert payload["case"]["status"] == "assessed"

    with sqlite3.connect(case_store.db_path) as conn:
        row = conn.execute(
            "SELECT triage_priority, status FROM consultation_bookings WHERE id = ?", (booking_id,)
        ).fetchone()
    assert row == ("serious", "assessed")

    client.post("/cases/refresh", json={"actor_user_id": "nurse_quick"}, headers=headers)
    listing = client.get("/cases", params={"user_id": "nurse_quick"})
    assert f"booking_{booking_id}" not in [card["case"]["id"] for card in listing.json()["cases"]]


def test_quick_assess_stale_and_ineligible_cases():
    stale = client.post(
        "/cases/booking_999999/quick-assess",
        json={"actor_user_id": "nurse_1", "severity": "mild"},
    )
    assert stale.status_code == 200
    assert stale.json()["applied"] is False

    ineligible = client.post(
        "/cases/booking_2/quick-assess",
        json={"actor_user_id": "nurse_1", "severity": "mild"},
    )
    assert ineligible.status_code == 409


def test_severity_update_rejects_mismatched_token():
    token = _login("nurse_2")
    response = client.post(
        "/cases/case_1/severity",
        json={"actor_user_id": "nurse_1", "severity": "mild"},
        headers={"Authorization": f"Bearer {token}"},
    )
    assert response.status_code == 403


def test_severity_update_rejects_unknown_severity():
    response = client.post("/cases/case_1/severity", json={"actor_user_id": "nurse_1", "severity": "critical"})
    assert response.status_code == 422


def test_missing_case_tables_surface_setup_required(monkeypatch, fake_store):
    fake_store.missing_tables.add("cases")
    monkeypatch.setattr("app.routers.cases.case_boards", CaseBoardRegistry(fake_store))

    response = client.get("/cases", params={"user_id": "nurse_1"})

    assert response.status_code == 503
    assert response.json()["detail"]["state"] == "setup_required"


def test_worklist_reads_reject_mismatched_token():
    token = _login("nurse_2")
    headers = {"Authorization": f"Bearer {token}"}

    assert client.get("/cases", params={"user_id": "nurse_1"}, headers=headers).status_code == 403
    assert client.get("/cases/filters", params={"user_id": "nurse_1"}, headers=headers).status_code == 403

    own = client.get("/cases", params={"user_id": "nurse_2"}, headers=headers)
    assert own.status_code == 200


def test_board_registry_stays_bounded(monkeypatch, fake_store):
    registry = CaseBoardRegistry(fake_store, max_boards=2)
    monkeypatch.setattr("app.routers.cases.case_boards", registry)

    for user_id in ("nurse_x1", "nurse_x2", "nurse_x3", "nurse_x4"):
        assert client.get("/cases", params={"user_id": user_id}).status_code == 200

    assert len(registry) == 2
