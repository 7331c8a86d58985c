from zoneinfo import ZoneInfo

import pytest
from fastapi.testclient import TestClient

import main
from errors import StoreError
from reports import BOM
from schemas import TimeEntry
from tracker import TimeTracker


@pytest.fixture
def client(gateway):
    main.app.state.tracker = TimeTracker(gateway)
    with TestClient(main.app) as c:
        yield c
    del main.app.state.tracker


@pytest.fixture
def bare_client(monkeypatch):
    monkeypatch.setattr(main, "db", None)
    with TestClient(main.app) as c:
        yield c


def test_root(client):
    assert client.get("/").json() == {"message": "Time Tracker API"}


def test_schema_lists_models(client):
    body = client.get("/schema").json()
    assert set(body) == {"project", "time_entry"}


def test_tracker_routes_need_a_database(bare_client):
    assert bare_client.get("/state").status_code == 503
    assert bare_client.get("/test").json()["connection_status"] == "Not Connected"


def test_initial_state(client):
    state = client.get("/state").json()

    assert state["loading"] is False
    assert state["entries"] == []
    assert state["active_entry"] is None
    assert state["elapsed_seconds"] == 0


def test_timer_start_and_stop(client, clock):
    started = client.post("/timer/start", json={"task_name": "Write spec"})
    assert started.status_code == 200
    entry_id = started.json()["id"]

    state = client.get("/state").json()
    assert state["active_entry"]["id"] == entry_id
    assert state["recent_task_names"] == ["Write spec"]

    clock.advance(65)
    stopped = client.post("/timer/stop")

    assert stopped.status_code == 200
    assert stopped.json()["duration_seconds"] == 65
    assert client.get("/state").json()["active_entry"] is None


def test_second_start_conflicts(client):
    client.post("/timer/start", json={"task_name": "One"})

    response = client.post("/timer/start", json={"task_name": "Two"})

    assert response.status_code == 409
    assert len(client.get("/entries").json()) == 1


def test_blank_start_and_idle_stop_rejected(client):
    assert client.post("/timer/start", json={"task_name": " "}).status_code == 400
    assert client.post("/timer/stop").status_code == 400


def test_project_lifecycle(client):
    created = client.post("/projects", json={"name": "Work", "color": "#ff0000"})
    assert created.status_code == 201
    project_id = created.json()["id"]

    patched = client.patch(f"/projects/{project_id}", json={"name": "Client"})
    assert patched.json()["name"] == "Client"
    assert patched.json()["color"] == "#ff0000"

    client.post("/timer/start", json={"task_name": "Build", "project_id": project_id})
    client.post("/timer/stop")

    entries = client.get("/entries").json()
    assert entries[0]["project"]["name"] == "Client"

    blocked = client.delete(f"/projects/{project_id}")
    assert blocked.status_code == 409
    assert "active entries" in blocked.json()["detail"]


def test_project_default_color(client):
    created = client.post("/projects", json={"name": "Misc"})
    assert created.json()["color"] == "#5c7cfa"


def test_delete_unreferenced_project(client):
    project_id = client.post("/projects", json={"name": "Tmp"}).json()["id"]

    assert client.delete(f"/projects/{project_id}").json() == {"success": True}
    assert client.get("/projects").json() == []


def test_running_entry_is_locked(client):
    entry_id = client.post("/timer/start", json={"task_name": "Busy"}).json()["id"]

    assert client.patch(f"/entries/{entry_id}", json={"task_name": "x"}).status_code == 409
    assert client.delete(f"/entries/{entry_id}").status_code == 409


def test_edit_and_delete_stopped_entry(client, clock):
    client.post("/timer/start", json={"task_name": "Draft"})
    clock.advance(10)
    entry = client.post("/timer/stop").json()

    edited = client.patch(f"/entries/{entry['id']}", json={"task_name": "Final", "duration_seconds": 3600})
    assert edited.status_code == 200
    assert edited.json()["task_name"] == "Final"
    assert edited.json()["duration_seconds"] == 3600
    assert edited.json()["end_time"] == entry["end_time"]

    assert client.delete(f"/entries/{entry['id']}").status_code == 200
    assert client.delete(f"/entries/{entry['id']}").status_code == 404


def test_report_and_csv(client, clock, monkeypatch):
    monkeypatch.setattr(main, "local_now", lambda: clock().astimezone())
    work_id = client.post("/projects", json={"name": "Work", "color": "#ff0000"}).json()["id"]
    client.post("/timer/start", json={"task_name": "foo, bar", "project_id": work_id})
    clock.advance(1800)
    client.post("/timer/stop")
    client.post("/timer/start", json={"task_name": "Running"})

    report = client.get("/reports/day").json()
    assert report["grand_total"] == 1800
    assert report["groups"][0]["name"] == "Work"
    assert report["groups"][0]["fraction"] == 1.0
    assert report["summary"] == "You've tracked a total of 0h 30m for the current day."

    csv_response = client.get("/reports/day/csv")
    assert csv_response.status_code == 200
    assert csv_response.headers["content-type"].startswith("text/csv")
    today = clock().astimezone().date().isoformat()
    assert f"report-day-{today}.csv" in csv_response.headers["content-disposition"]

    text = csv_response.content.decode("utf-8")
    assert text.startswith(BOM)
    lines = text[len(BOM):].split("\n")
    assert lines[0] == "Task,Project,Start,End,Duration (s)"
    assert len(lines) == 2
    assert lines[1].startswith('"foo, bar",Work,')


def test_unknown_report_period(client):
    assert client.get("/reports/year").status_code == 422


def test_start_response_is_a_time_entry(client):
    started = client.post("/timer/start", json={"task_name": "Build"})

    assert set(started.json()) == set(TimeEntry.model_fields)


def test_state_shows_elapsed_clock(client, clock):
    client.post("/timer/start", json={"task_name": "Build"})
    clock.advance(3725)

    state = client.get("/state").json()

    assert state["elapsed_seconds"] == 3725
    assert state["elapsed"] == "01:02:05"


def test_null_task_name_edit_rejected(client, clock):
    client.post("/timer/start", json={"task_name": "Build"})
    clock.advance(10)
    entry = client.post("/timer/stop").json()

    response = client.patch(f"/entries/{entry['id']}", json={"task_name": None})
    assert response.status_code == 422

    assert client.post("/timer/start", json={"task_name": "Next"}).status_code == 200
    state = client.post("/refresh").json()
    assert state["active_entry"]["task_name"] == "Next"
    assert [e["task_name"] for e in state["entries"]] == ["Next", "Build"]
    assert client.post("/timer/start", json={"task_name": "Third"}).status_code == 409


def test_edit_duration_from_clock_text(client, clock):
    client.post("/timer/start", json={"task_name": "Build"})
    clock.advance(10)
    entry = client.post("/timer/stop").json()

    edited = client.patch(f"/entries/{entry['id']}", json={"duration": "01:30"})

    assert edited.status_code == 200
    assert edited.json()["duration_seconds"] == 5400


def test_unknown_project_reference_rejected(client):
    missing = "5f0000000000000000000000"

    response = client.post("/timer/start", json={"task_name": "Build", "project_id": missing})
    assert response.status_code == 404
    assert client.get("/entries").json() == []

    client.post("/timer/start", json={"task_name": "Build"})
    entry = client.post("/timer/stop").json()
    patched = client.patch(f"/entries/{entry['id']}", json={"project_id": missing})
    assert patched.status_code == 404
    assert client.get("/entries").json()[0]["project_id"] is None


def test_update_project_errors(client, gateway, monkeypatch):
    missing = client.patch("/projects/5f0000000000000000000000", json={"name": "Nope"})
    assert missing.status_code == 404

    project_id = client.post("/projects", json={"name": "Work"}).json()["id"]

    def down(project_id, patch):
        raise StoreError("network down")

    monkeypatch.setattr(gateway, "update_project", down)

    assert client.patch(f"/projects/{project_id}", json={"name": "Client"}).status_code == 502


def test_local_now_uses_configured_zone(monkeypatch):
    monkeypatch.setattr(main, "TIMEZONE", "Europe/Berlin")
    assert main.local_now().tzinfo == ZoneInfo("Europe/Berlin")

    monkeypatch.setattr(main, "TIMEZONE", None)
    assert main.local_now().tzinfo is None
