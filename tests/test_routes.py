import pytest
from starlette.testclient import TestClient

from src.local.supervisor import Supervisor
from src.web.setup import create_app
from tests.conftest import FakeProber


@pytest.fixture
def liveness():
    return FakeProber(False)


@pytest.fixture
def client(settings, liveness):
    app = create_app(Supervisor(settings, prober=liveness))
    with TestClient(app) as test_client:
        yield test_client


def test_status_reports_stopped_instance(client):
    response = client.get("/api/comfyui/status", params={"lang": "en"})

    assert response.status_code == 200
    body = response.json()
    assert body["running"] is False
    assert body["pid"] is None
    assert body["uptime"] is None
    assert set(body["versions"]) == {"comfyui", "frontend", "app"}
    assert body["gpuMode"] in ("shared", "independent")


def test_security_headers_are_set(client):
    response = client.get("/api/comfyui/status")

    assert response.headers["X-Content-Type-Options"] == "nosniff"
    assert response.headers["X-Frame-Options"] == "DENY"


def test_start_when_already_running_is_not_an_error(client, liveness):
    liveness.script(True)

    response = client.post("/api/comfyui/start", params={"lang": "en"})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["alreadyRunning"] is True
    assert body["message"] == "ComfyUI is already running"


def test_start_failure_returns_logs(client):
    response = client.post("/api/comfyui/start", params={"lang": "en"})

    assert response.status_code == 500
    body = response.json()
    assert body["success"] is False
    assert body["message"] == "ComfyUI failed to start or timed out"
    assert body["logs"][0].endswith("] Received request to start ComfyUI")
    assert any(line.endswith("ERROR: ComfyUI failed to start or timed out") for line in body["logs"])


def test_stop_when_stopped_succeeds(client):
    response = client.post("/api/comfyui/stop", params={"lang": "en"})

    assert response.status_code == 200
    assert response.json() == {"success": True, "message": "ComfyUI is already stopped"}


def test_stop_failure_is_reported(client, liveness):
    liveness.script(True)

    response = client.post("/api/comfyui/stop", params={"lang": "en"})

    assert response.status_code == 500
    body = response.json()
    assert body["success"] is False
    assert body["error"] == "Unable to stop ComfyUI, even after forced termination"
    assert body["logs"][0].endswith("] Received request to stop ComfyUI")
    assert any(line.endswith("ERROR: Unable to stop ComfyUI, even after forced termination") for line in body["logs"])


def test_logs_follow_accept_language(client):
    client.post("/api/comfyui/stop")

    english = client.get("/api/comfyui/logs", headers={"Accept-Language": "en-US,en;q=0.9"}).json()
    chinese = client.get("/api/comfyui/logs", headers={"Accept-Language": "zh-CN"}).json()

    assert english["logs"][0].endswith("] Received request to stop ComfyUI")
    assert not chinese["logs"][0].endswith("Received request to stop ComfyUI")


def test_reset_uses_mode_and_language_from_body(client, settings):
    (settings.COMFYUI_PATH / "models").mkdir()
    (settings.COMFYUI_PATH / "custom_nodes").mkdir()
    (settings.COMFYUI_PATH / "main.py").write_text("", encoding="utf-8")

    response = client.post("/api/comfyui/reset", json={"mode": "hard", "lang": "en"})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["message"] == "ComfyUI has been reset successfully"
    assert any(line.endswith("] Using hard reset mode: preserving only models, input and output")
               for line in body["logs"])
    assert sorted(p.name for p in settings.COMFYUI_PATH.iterdir()) == ["models"]


def test_reset_logs_before_and_after_reset(client):
    empty = client.get("/api/comfyui/reset-logs", params={"lang": "en"}).json()
    client.post("/api/comfyui/reset", json={"lang": "en"})
    filled = client.get("/api/comfyui/reset-logs", params={"lang": "en"}).json()

    assert empty == {"success": True, "message": "No reset logs found", "logs": []}
    assert filled["success"] is True
    assert filled["message"] == f"Retrieved {len(filled['logs'])} reset log entries"
    assert filled["logs"][-1].endswith("] ComfyUI reset completed successfully")
