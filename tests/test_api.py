import csv
import io
import sys
from pathlib import Path

import httpx
import pytest
from fastapi.testclient import TestClient

sys.path.append(str(Path(__file__).resolve().parents[1]))

from otplus.app import create_app
from otplus.infrastructure import ClockifyClient, InMemoryKeyValueStore


async def _no_sleep(seconds: float) -> None:
    return None


def _clockify_handler(request: httpx.Request) -> httpx.Response:
    path = request.url.path
    if path.endswith("/reports/detailed"):
        return httpx.Response(
            200,
            json={
                "timeentries": [
                    {
                        "_id": "r1",
                        "userId": "u1",
                        "userName": "Ada",
                        "timeInterval": {"start": "2024-03-04T08:00:00Z", "duration": 36000},
                        "hourlyRate": {"amount": 10000},
                    }
                ]
            },
        )
    if path.endswith("/users"):
        return httpx.Response(200, json=[{"id": "u1", "name": "Ada"}])
    if "/member-profile/" in path:
        return httpx.Response(200, json={"workCapacity": "PT8H", "workingDays": ["MONDAY"]})
    if path.endswith("/holidays/in-period"):
        return httpx.Response(200, json=[])
    if path.endswith("/time-off/requests"):
        return httpx.Response(200, json=[])
    return httpx.Response(404)


@pytest.fixture()
def storage():
    return InMemoryKeyValueStore()


@pytest.fixture()
def client(storage):
    seen: list[tuple[str, dict]] = []

    def factory(token, claims):
        seen.append((token, claims))
        return ClockifyClient(
            token,
            claims,
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(_clockify_handler)),
            sleep=_no_sleep,
        )

    app = create_app(storage=storage, client_factory=factory)
    with TestClient(app) as test_client:
        test_client.factory_calls = seen
        yield test_client


def _entry(entry_id: str, day: str, duration: str, **extra) -> dict:
    return {
        "id": entry_id,
        "user_id": "u1",
        "user_name": "Ada",
        "time_interval": {"start": f"{day}T09:00:00Z", "duration": duration},
        "hourly_rate": {"amount": "10000"},
        **extra,
    }


def test_root_landing(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.json()["docs"] == "/docs"


def test_override_lifecycle(client, storage):
    response = client.patch("/api/workspaces/ws1/overrides/u1", json={"capacity": 6, "multiplier": "2"})
    assert response.status_code == 200
    assert response.json()["override"] == {"mode": "global", "capacity": "6", "multiplier": "2"}

    response = client.patch("/api/workspaces/ws1/overrides/u1/days/2024-03-04", json={"capacity": 4})
    assert response.status_code == 200
    assert response.json()["override"]["mode"] == "perDay"

    listing = client.get("/api/workspaces/ws1/overrides").json()
    assert listing["items"]["u1"]["per_day_overrides"] == {"2024-03-04": {"capacity": "4"}}
    assert storage.get("overtime_overrides_ws1") is not None

    response = client.post("/api/workspaces/ws1/overrides/u1/copy-to-days", json={"dates": ["2024-03-05"]})
    assert response.status_code == 200
    assert response.json()["override"]["per_day_overrides"]["2024-03-05"] == {"capacity": "6", "multiplier": "2"}

    assert client.delete("/api/workspaces/ws1/overrides/u1").status_code == 200
    assert client.get("/api/workspaces/ws1/overrides/u1").status_code == 404


def test_override_rejections(client):
    assert client.patch("/api/workspaces/ws1/overrides/u1", json={"capacity": -1}).status_code == 400
    assert client.patch("/api/workspaces/ws1/overrides/u1", json={"capacity": "Infinity"}).status_code == 400
    assert client.patch("/api/workspaces/ws1/overrides/u1", json={"colour": "red"}).status_code == 400
    assert client.put("/api/workspaces/ws1/overrides/u1/mode", json={"mode": "weekly"}).status_code == 400
    assert client.patch("/api/workspaces/ws1/overrides/u1/days/not-a-date", json={"capacity": 4}).status_code == 400
    assert client.get("/api/workspaces/ws1/overrides/u1").status_code == 404


def test_config_update_and_validation_error_payload(client):
    response = client.patch(
        "/api/workspaces/ws1/config",
        json={"config": {"overtime_basis": "weekly"}, "calc_params": {"daily_threshold": "7.5"}},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["config"]["overtime_basis"] == "weekly"
    assert body["calc_params"]["daily_threshold"] == "7.5"

    response = client.patch("/api/workspaces/ws1/config", json={"config": {"group_by": "galaxy"}})
    assert response.status_code == 400
    assert response.json()["error"]["type"] == "VALIDATION_ERROR"
    assert client.get("/api/workspaces/ws1/config").json()["config"]["overtime_basis"] == "weekly"


def test_analysis_endpoint(client):
    client.patch("/api/workspaces/ws1/overrides/u1", json={"capacity": 6})
    payload = {
        "entries": [_entry("e1", "2024-03-04", "PT9H"), None],
        "start": "2024-03-04",
        "end": "2024-03-05",
        "group_by": "date",
    }
    response = client.post("/api/workspaces/ws1/analysis", json=payload)
    assert response.status_code == 200
    body = response.json()

    assert body["group_by"] == "date"
    user = body["users"][0]
    assert user["user_id"] == "u1"
    assert user["totals"]["overtime_hours"] == "3.0000"
    assert [day["date"] for day in user["days"]] == ["2024-03-04", "2024-03-05"]
    assert [group["key"] for group in body["groups"]] == ["2024-03-04"]


def test_analysis_rejects_bad_input(client):
    bad_group = client.post("/api/workspaces/ws1/analysis", json={"entries": [], "group_by": "galaxy"})
    assert bad_group.status_code == 400
    assert "galaxy" in bad_group.json()["detail"]

    bad_range = client.post(
        "/api/workspaces/ws1/analysis", json={"entries": [], "start": "2024-03-05", "end": "2024-03-01"}
    )
    assert bad_range.status_code == 400

    bad_entries = client.post("/api/workspaces/ws1/analysis", json={"entries": [{"billable": "maybe"}]})
    assert bad_entries.status_code == 400


def test_export_endpoint_sanitizes_labels(client):
    payload = {
        "entries": [_entry("e1", "2024-03-04", "PT2H", project_id="p1", project_name="=HYPERLINK(1)")],
        "group_by": "project",
    }
    response = client.post("/api/workspaces/ws1/analysis/export", json=payload)
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")

    rows = list(csv.DictReader(io.StringIO(response.text)))
    assert rows[0]["group"] == "'=HYPERLINK(1)"
    assert rows[0]["entries"] == "1"


def test_report_endpoint_fetches_and_analyses(client):
    response = client.post(
        "/api/workspaces/ws1/reports",
        json={"backend_url": "https://api.clockify.me/api", "start": "2024-03-04", "end": "2024-03-04"},
        headers={"X-Addon-Token": "secret"},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["users_ok"] is True
    assert body["result"]["users"][0]["totals"]["overtime_hours"] == "2.0000"
    assert body["status"]["profiles_attempted"] == 1

    token, claims = client.factory_calls[0]
    assert token == "secret"
    assert claims["workspaceId"] == "ws1"


def test_report_endpoint_requires_token_and_backend(client):
    missing_token = client.post("/api/workspaces/ws1/reports", json={"backend_url": "https://api.clockify.me/api"})
    assert missing_token.status_code == 401

    missing_backend = client.post("/api/workspaces/ws1/reports", json={}, headers={"X-Addon-Token": "t"})
    assert missing_backend.status_code == 400

    bad_backend = client.post(
        "/api/workspaces/ws1/reports",
        json={"backend_url": "nowhere", "start": "2024-03-04", "end": "2024-03-04"},
        headers={"X-Addon-Token": "t"},
    )
    assert bad_backend.status_code == 400
