from fastapi.testclient import TestClient
from prometheus_client import REGISTRY

from app.main import app


def _get_metric_count(name: str, labels: dict) -> float:
    val = REGISTRY.get_sample_value(name, labels)
    return float(val) if val is not None else 0.0


def test_http_metrics_increment_on_2xx_and_4xx():
    client = TestClient(app)

    # Baselines
    before_ok = _get_metric_count(
        "speechbridge_http_requests_total", {"method": "GET", "path": "/health", "status_class": "2xx"}
    )
    before_dur_ok = _get_metric_count(
        "speechbridge_http_request_duration_seconds_count", {"method": "GET", "path": "/health"}
    )
    before_401 = _get_metric_count(
        "speechbridge_http_requests_total", {"method": "GET", "path": "/api/speech/progress", "status_class": "4xx"}
    )

    assert client.get("/health").status_code == 200
    assert client.get("/api/speech/progress").status_code == 401

    after_ok = _get_metric_count(
        "speechbridge_http_requests_total", {"method": "GET", "path": "/health", "status_class": "2xx"}
    )
    after_dur_ok = _get_metric_count(
        "speechbridge_http_request_duration_seconds_count", {"method": "GET", "path": "/health"}
    )
    after_401 = _get_metric_count(
        "speechbridge_http_requests_total", {"method": "GET", "path": "/api/speech/progress", "status_class": "4xx"}
    )

    assert after_ok >= before_ok + 1
    assert after_dur_ok >= before_dur_ok + 1
    assert after_401 >= before_401 + 1


def test_metrics_endpoint_exposes_prometheus_text():
    client = TestClient(app)
    client.get("/health")
    r = client.get("/metrics")
    assert r.status_code == 200
    assert r.headers["content-type"].startswith("text/plain")
    assert "speechbridge_http_requests_total" in r.text


def test_health_is_ok():
    client = TestClient(app)
    body = client.get("/health").json()
    assert body["status"] == "ok"


def test_path_label_is_route_template(client, signup_payload):
    client.post("/api/auth/signup", json=signup_payload)
    template = {"method": "GET", "path": "/api/chat/messages/{session_id}", "status_class": "2xx"}
    before = _get_metric_count("speechbridge_http_requests_total", template)
    before_unmatched = _get_metric_count(
        "speechbridge_http_requests_total", {"method": "GET", "path": "unmatched", "status_class": "4xx"}
    )

    for i in range(5):
        assert client.get(f"/api/chat/messages/session-{i}").status_code == 200
    assert client.get("/no/such/route-1").status_code == 404
    assert client.get("/no/such/route-2").status_code == 404

    assert _get_metric_count("speechbridge_http_requests_total", template) >= before + 5
    assert _get_metric_count(
        "speechbridge_http_requests_total", {"method": "GET", "path": "unmatched", "status_class": "4xx"}
    ) >= before_unmatched + 2

    raw_paths = {
        s.labels["path"]
        for metric in REGISTRY.collect()
        if metric.name == "speechbridge_http_requests"
        for s in metric.samples
        if s.labels.get("path", "").startswith(("/api/chat/messages/session-", "/no/such/"))
    }
    assert raw_paths == set()
