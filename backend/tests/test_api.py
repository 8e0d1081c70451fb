"""
Integration tests for API endpoints.
"""
import json
import pytest
from io import BytesIO
from fastapi.testclient import TestClient
from main import app
from datastory.api.routes import get_record_store
from datastory.core.config import get_settings, reload_settings
from datastory.core.storage import CHARTS, InMemoryRecordStore
from datastory.services import insights as insights_service

USER = {"X-User-Id": "user-1"}
OTHER_USER = {"X-User-Id": "user-2"}
CSV = b"region,sales,day\nalpha,10,2021-01-01\nbeta,20,2021-01-02\ngamma,30,2021-01-03\nalpha,40,2021-01-04\n"

AI_RESPONSE = json.dumps({
    "insights": [{"title": "Alpha leads", "content": "Alpha has the highest total sales."}],
    "plotGroups": [
        {"groupTitle": "Regions", "plots": [
            {"type": "bar", "spec": {"xKey": "region", "yKey": "sales", "aggregation": "sum"}},
            {"type": "pie", "spec": {"xKey": "region", "aggregation": "count"}},
        ]},
        {"groupTitle": "Timeline", "plots": [
            {"type": "line", "spec": {"xKey": "day", "yKey": "sales"}},
            {"type": "histogram", "spec": {"xKey": "sales"}},
        ]},
    ],
    "summaryMarkdown": "Sales are concentrated in alpha.",
})


@pytest.fixture(autouse=True)
def no_rate_limit():
    limiter = app.state.limiter
    enabled = limiter.enabled
    limiter.enabled = False
    yield
    limiter.enabled = enabled


@pytest.fixture
def store():
    store = InMemoryRecordStore()
    app.dependency_overrides[get_record_store] = lambda: store
    yield store
    app.dependency_overrides.pop(get_record_store, None)


@pytest.fixture
def client(store):
    """Create a test client."""
    return TestClient(app)


@pytest.fixture
def ai_answers(monkeypatch):
    answers = []
    monkeypatch.setattr(
        insights_service,
        "call_ai_with_fallback",
        lambda prompt, system_prompt, **kwargs: answers.pop(0) if answers else None,
    )
    return answers


def upload(client, content=CSV, filename="sales.csv", headers=USER, content_type="text/csv"):
    return client.post(
        "/api/datasets",
        files={"file": (filename, BytesIO(content), content_type)},
        headers=headers,
    )


def upload_id(client, **kwargs):
    response = upload(client, **kwargs)
    assert response.status_code == 200
    return response.json()["datasetId"]


@pytest.mark.integration
def test_health_check(client):
    """Test health check endpoint."""
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


@pytest.mark.integration
def test_root_endpoint(client):
    """Test root endpoint."""
    response = client.get("/")
    assert response.status_code == 200
    assert "message" in response.json()


@pytest.mark.integration
def test_security_headers(client):
    """Test that security headers are present."""
    response = client.get("/api/health")
    assert response.headers["X-Content-Type-Options"] == "nosniff"
    assert response.headers["X-Frame-Options"] == "DENY"
    assert "default-src 'none'" in response.headers["Content-Security-Policy"]


@pytest.mark.integration
def test_correlation_id_echoed(client):
    """Test that a supplied correlation ID is echoed back."""
    response = client.get("/api/health", headers={"X-Correlation-ID": "trace-123"})
    assert response.headers["X-Correlation-ID"] == "trace-123"
    assert "X-Response-Time" in response.headers


@pytest.mark.integration
def test_metrics_endpoint(client):
    """Test performance metrics endpoint."""
    client.get("/api/health")
    response = client.get("/api/metrics")

    assert response.status_code == 200
    assert "request_duration" in response.json()["performance"]


@pytest.mark.integration
@pytest.mark.parametrize("headers", [{}, {"X-User-Id": ""}, {"X-User-Id": "bad user!"}])
def test_requests_without_valid_user_are_rejected(client, headers):
    """Test that missing or malformed user IDs are rejected."""
    response = client.get("/api/datasets", headers=headers)

    assert response.status_code == 401
    assert response.json()["detail"]["code"] == "UNAUTHORIZED"


@pytest.mark.integration
def test_upload_csv_file(client, store):
    """Test uploading a valid CSV file."""
    response = upload(client)

    assert response.status_code == 200
    data = response.json()
    assert data["columns"] == ["region", "sales", "day"]
    assert data["rowCount"] == 4
    assert store.get("datasets", data["datasetId"])["name"] == "sales"


@pytest.mark.integration
def test_upload_with_custom_name(client):
    """Test uploading with an explicit dataset name."""
    response = client.post(
        "/api/datasets",
        files={"file": ("sales.csv", BytesIO(CSV), "text/csv")},
        data={"name": "Quarterly sales"},
        headers=USER,
    )
    assert response.status_code == 200

    datasets = client.get("/api/datasets", headers=USER).json()["datasets"]
    assert datasets[0]["name"] == "Quarterly sales"


@pytest.mark.integration
@pytest.mark.parametrize("kwargs,code", [
    ({"filename": "notes.txt", "content_type": "text/plain"}, "INVALID_FILE_TYPE"),
    ({"content_type": "text/html"}, "INVALID_FILE_TYPE"),
    ({"content": b""}, "FILE_EMPTY"),
    ({"content": b"region,sales\n"}, "FILE_EMPTY"),
    ({"content": b"a,a\n1,2\n"}, "INVALID_HEADER"),
    ({"content": b"a,b\n1,2\n3,4,5,6\n"}, "PARSE_ERROR"),
])
def test_upload_rejections(client, kwargs, code):
    """Test that invalid uploads are rejected with an error code."""
    response = upload(client, **kwargs)

    assert response.status_code == 400
    detail = response.json()["detail"]
    assert detail["code"] == code
    assert "correlation_id" in detail


@pytest.mark.integration
def test_upload_file_too_large(client, monkeypatch):
    """Test that oversized uploads return 413."""
    monkeypatch.setenv("MAX_FILE_SIZE_MB", "1")
    try:
        reload_settings()
        content = b"region,sales\n" + b"alpha,10\n" * 150000
        response = upload(client, content=content)
    finally:
        monkeypatch.undo()
        reload_settings()

    assert response.status_code == 413
    assert response.json()["detail"]["code"] == "FILE_TOO_LARGE"


@pytest.mark.integration
def test_datasets_are_scoped_to_their_owner(client):
    """Test that users only see their own datasets."""
    mine = upload_id(client)
    upload_id(client, headers=OTHER_USER)

    listed = client.get("/api/datasets", headers=USER).json()["datasets"]
    assert [d["id"] for d in listed] == [mine]
    assert listed[0]["rowCount"] == 4

    response = client.get("/api/insights", params={"datasetId": mine}, headers=OTHER_USER)
    assert response.status_code == 404


@pytest.mark.integration
def test_delete_dataset(client):
    """Test deleting a dataset."""
    dataset_id = upload_id(client)

    assert client.delete(f"/api/datasets/{dataset_id}", headers=OTHER_USER).status_code == 404

    response = client.delete(f"/api/datasets/{dataset_id}", headers=USER)
    assert response.status_code == 200
    assert response.json() == {"ok": True, "deleted": 1}
    assert client.delete(f"/api/datasets/{dataset_id}", headers=USER).status_code == 404


@pytest.mark.integration
def test_get_insights_requires_dataset_id(client):
    """Test that fetching insights requires a dataset ID."""
    response = client.get("/api/insights", headers=USER)

    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "MISSING_PARAMETER"


@pytest.mark.integration
def test_get_insights_before_generation(client):
    """Test fetching insights before any were generated."""
    dataset_id = upload_id(client)
    data = client.get("/api/insights", params={"datasetId": dataset_id}, headers=USER).json()

    assert data["dataset"]["id"] == dataset_id
    assert data["insights"] == []
    assert data["plotGroups"] == []
    assert data["report"] is None


@pytest.mark.integration
def test_generate_insights(client, ai_answers):
    """Test generating insights for an uploaded dataset."""
    dataset_id = upload_id(client)
    ai_answers.append(AI_RESPONSE)

    response = client.post("/api/insights", json={"datasetId": dataset_id}, headers=USER)

    assert response.status_code == 200
    result = response.json()
    assert result["ok"] is True
    assert result["mode"] == "fast"

    data = client.get("/api/insights", params={"datasetId": dataset_id}, headers=USER).json()
    assert 4 <= len(data["plotGroups"]) <= 5
    assert data["plotGroups"][0]["groupTitle"] == "Regions"
    assert result["created"] == len(data["insights"]) + len(data["charts"]) + 1
    assert data["report"]["markdown"]
    assert data["ideas"]


@pytest.mark.integration
def test_generate_deep_mode(client, ai_answers):
    """Test generating insights over the full file."""
    dataset_id = upload_id(client)
    ai_answers.append(AI_RESPONSE)

    response = client.post(
        "/api/insights", json={"datasetId": dataset_id, "useSampling": False}, headers=USER
    )

    assert response.status_code == 200
    assert response.json()["mode"] == "deep"


@pytest.mark.integration
def test_existing_insights_are_kept_unless_regenerated(client, store, ai_answers):
    """Test that generation is skipped when content exists."""
    dataset_id = upload_id(client)
    ai_answers.append(AI_RESPONSE)
    client.post("/api/insights", json={"datasetId": dataset_id}, headers=USER)
    first_charts = {c["id"] for c in store.find(CHARTS, dataset_id=dataset_id)}

    response = client.post("/api/insights", json={"datasetId": dataset_id}, headers=USER)
    assert response.json() == {"ok": True, "created": 0, "mode": "existing"}

    ai_answers.append(AI_RESPONSE)
    response = client.post("/api/insights", json={"datasetId": dataset_id, "regenerate": True}, headers=USER)
    assert response.status_code == 200
    assert response.json()["mode"] == "fast"

    second_charts = {c["id"] for c in store.find(CHARTS, dataset_id=dataset_id)}
    assert second_charts
    assert not first_charts & second_charts


@pytest.mark.integration
def test_failed_regeneration_keeps_existing_content(client, store, ai_answers):
    """Test that a failed regeneration leaves stored content alone."""
    dataset_id = upload_id(client)
    ai_answers.append(AI_RESPONSE)
    client.post("/api/insights", json={"datasetId": dataset_id}, headers=USER)
    charts_before = len(store.find(CHARTS, dataset_id=dataset_id))

    response = client.post("/api/insights", json={"datasetId": dataset_id, "regenerate": True}, headers=USER)

    assert response.status_code == 502
    assert response.json()["detail"]["code"] == "AI_ERROR"
    assert len(store.find(CHARTS, dataset_id=dataset_id)) == charts_before


@pytest.mark.integration
def test_generate_with_unusable_ai_answer(client, ai_answers):
    """Test that an unusable AI answer returns 502."""
    dataset_id = upload_id(client)
    ai_answers.append("I am unable to produce JSON today.")

    response = client.post("/api/insights", json={"datasetId": dataset_id}, headers=USER)

    assert response.status_code == 502
    assert "unable to produce JSON" in response.json()["detail"]["detail"]


@pytest.mark.integration
def test_generate_for_unknown_dataset(client):
    """Test generating insights for a missing dataset."""
    response = client.post("/api/insights", json={"datasetId": "missing"}, headers=USER)
    assert response.status_code == 404

    response = client.post("/api/insights", json={}, headers=USER)
    assert response.status_code == 400


@pytest.mark.integration
def test_chart_data_for_stored_chart(client, ai_answers):
    """Test chart data for a stored chart."""
    dataset_id = upload_id(client)
    ai_answers.append(AI_RESPONSE)
    client.post("/api/insights", json={"datasetId": dataset_id}, headers=USER)
    chart = client.get("/api/insights", params={"datasetId": dataset_id}, headers=USER).json()["charts"][0]

    response = client.get(f"/api/datasets/{dataset_id}/charts/{chart['id']}/data", headers=USER)

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["chartType"] == "bar"
    assert data["valueKey"] == "sales"
    assert data["data"][0] == {"region": "alpha", "sales": 50.0}

    missing = client.get(f"/api/datasets/{dataset_id}/charts/nope/data", headers=USER)
    assert missing.status_code == 404


@pytest.mark.integration
def test_ad_hoc_chart_data(client):
    """Test chart data for a posted chart specification."""
    dataset_id = upload_id(client)

    response = client.post(
        f"/api/datasets/{dataset_id}/chart-data",
        json={"type": "bar", "spec": {"xKey": "region", "aggregation": "count"}},
        headers=USER,
    )

    assert response.status_code == 200
    assert response.json()["data"] == [
        {"region": "alpha", "value": 2},
        {"region": "beta", "value": 1},
        {"region": "gamma", "value": 1},
    ]


@pytest.mark.integration
def test_ad_hoc_chart_data_reports_bad_config(client):
    """Test that a bad chart specification reports invalid_config."""
    dataset_id = upload_id(client)

    response = client.post(
        f"/api/datasets/{dataset_id}/chart-data",
        json={"type": "bar", "spec": {"xKey": "profit"}},
        headers=USER,
    )
    assert response.status_code == 200
    assert response.json()["status"] == "invalid_config"

    response = client.post(
        f"/api/datasets/{dataset_id}/chart-data",
        json={"type": "radar", "spec": {"xKey": "region"}},
        headers=USER,
    )
    assert response.status_code == 422


@pytest.mark.integration
def test_upload_rate_limit(client):
    """Test that uploads past the per-minute limit return 429."""
    limiter = app.state.limiter
    limiter.enabled = True
    limiter.reset()
    limit = get_settings().rate_limit_per_minute

    statuses = [upload(client).status_code for _ in range(limit + 1)]
    limiter.reset()

    assert statuses[:limit] == [200] * limit
    assert statuses[-1] == 429
