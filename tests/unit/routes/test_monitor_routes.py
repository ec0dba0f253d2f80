import pytest

from sizewatch.services.monitor_runner import get_monitor_runner


@pytest.mark.unit
def test_health_basic(app) -> None:
    response = app.test_client().get("/health/api/basic")

    assert response.status_code == 200
    payload = response.get_json()
    assert payload["success"] is True
    assert payload["data"]["status"] == "healthy"
    assert payload["data"]["database"] is True
    assert payload["data"]["version"] == app.config["APP_VERSION"]


@pytest.mark.unit
def test_run_with_wait_returns_report(app) -> None:
    response = app.test_client().post("/api/monitor/run?wait=true")

    assert response.status_code == 200
    data = response.get_json()["data"]
    assert data["status"] == "completed"
    assert data["report"]["trigger_source"] == "manual"
    assert data["report"]["status"] == "completed"


@pytest.mark.unit
def test_run_while_cycle_running_returns_conflict(app) -> None:
    runner = get_monitor_runner(app)
    assert runner._guard.acquire()
    try:
        response = app.test_client().post("/api/monitor/run")
    finally:
        runner._guard.release()

    assert response.status_code == 409
    payload = response.get_json()
    assert payload["success"] is False
    assert payload["message_code"] == "CYCLE_ALREADY_RUNNING"
    assert payload["extra"] == {"status": "already_running"}


@pytest.mark.unit
def test_status_reports_last_cycle(app) -> None:
    client = app.test_client()
    assert client.get("/api/monitor/status").get_json()["data"]["last_report"] is None

    client.post("/api/monitor/run?wait=true")
    data = client.get("/api/monitor/status").get_json()["data"]

    assert data["running"] is False
    assert data["scheduler_running"] is False
    assert data["next_run_time"] is None
    assert data["last_report"]["trigger_source"] == "manual"


@pytest.mark.unit
def test_unknown_route_uses_error_envelope(app) -> None:
    response = app.test_client().get("/does-not-exist")

    assert response.status_code == 404
    assert response.get_json()["success"] is False
