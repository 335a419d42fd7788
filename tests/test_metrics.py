from fastapi.testclient import TestClient
from prometheus_client import REGISTRY

from src.projectline.api.main import app
from src.projectline.observability.metrics import record_action, sanitize_path


client = TestClient(app)


def test_metrics_endpoint_exposes_histogram():
    r = client.get("/health")
    assert r.status_code == 200

    m = client.get("/metrics")
    assert m.status_code == 200
    body = m.text

    assert "# HELP projectline_request_latency_seconds" in body
    assert "# TYPE projectline_request_latency_seconds histogram" in body
    assert "projectline_ai_actions" in body
    assert "projectline_llm_requests" in body


def test_sanitize_path():
    assert sanitize_path("") == "/"
    assert sanitize_path("/") == "/"
    assert sanitize_path("/chat/conversations/abc123/messages") == "/chat"
    assert sanitize_path("/api/chat/conversations/abc123?x=1") == "/api/chat"
    assert sanitize_path("/api") == "/api"


def test_record_action_counts_outcomes():
    labels = {"type": "create_note", "outcome": "error"}
    before = REGISTRY.get_sample_value("projectline_ai_actions_total", labels) or 0.0
    record_action("create_note", False)
    assert REGISTRY.get_sample_value("projectline_ai_actions_total", labels) == before + 1


def test_health_reports_llm_component(monkeypatch):
    monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant")
    body = client.get("/api/health").json()
    assert body["status"] == "ok"
    assert body["components"]["llm"] == "anthropic"
