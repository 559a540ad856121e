"""HTTP surface tests using FastAPI's TestClient."""
import pytest
from fastapi.testclient import TestClient

from report_service.main import create_app

from .fakes import make_responder


@pytest.fixture
def build_client(make_pipeline):
    clients = []

    def build(behaviors):
        pipeline, fake = make_pipeline(behaviors)
        client = TestClient(create_app(pipeline))
        client.__enter__()
        clients.append(client)
        return client, pipeline, fake

    yield build
    for client in clients:
        client.__exit__(None, None, None)


class TestHealth:

    def test_health(self, build_client):
        client, _, _ = build_client({"model-a": "OK"})
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["model"] is None
        assert data["knowledge"]["total_chunks"] == 9

    def test_request_id_echoed(self, build_client):
        client, _, _ = build_client({})
        response = client.get("/health", headers={"X-Request-Id": "req-abc"})
        assert response.headers["X-Request-Id"] == "req-abc"

    def test_request_id_generated(self, build_client):
        client, _, _ = build_client({})
        assert client.get("/health").headers["X-Request-Id"]


class TestAnalyzeEndpoints:

    def test_analyze_test_report(self, build_client, sample_analysis_text):
        client, _, _ = build_client({"model-a": make_responder(sample_analysis_text)})
        response = client.post(
            "/patients/p-1/test-reports/analyze",
            files={"file": ("report.txt", b"HbA1c: 10.5 %", "text/plain")},
            headers={"X-User-Id": "dr-lee", "X-Request-Id": "req-1"},
        )
        assert response.status_code == 200
        data = response.json()
        assert data["reportId"].startswith("tr-")
        assert data["requestId"] == "req-1"
        assert data["model"] == "model-a"
        assert data["result"]["tests"][0]["referenceRange"] == "<5.7%"
        assert data["result"]["overallSeverity"] == "High"
        assert data["alerts"][0]["subjectRef"] == "HbA1c"
        assert data["alerts"][0]["severity"] == "critical"

    def test_unsupported_upload(self, build_client):
        client, _, fake = build_client({"model-a": "unused"})
        response = client.post(
            "/patients/p-1/test-reports/analyze",
            files={"file": ("archive.zip", b"PK\x03\x04", "application/zip")},
        )
        assert response.status_code == 415
        assert response.json()["errorKind"] == "unsupported_media"
        assert fake.models.calls == []

    def test_model_unavailable(self, build_client):
        client, _, _ = build_client({})
        response = client.post(
            "/patients/p-1/test-reports/analyze",
            files={"file": ("report.txt", b"LDL 200", "text/plain")},
        )
        assert response.status_code == 502
        body = response.json()
        assert body["errorKind"] == "model_unavailable:not_found"
        assert body["requestId"]

    def test_missing_file(self, build_client):
        client, _, _ = build_client({})
        assert client.post("/patients/p-1/test-reports/analyze").status_code == 422

    def test_analyze_prescription(self, build_client):
        reply = '{"medications": [{"name": "Warfarin"}, {"name": "Ibuprofen"}]}'
        client, _, _ = build_client({"model-a": make_responder(reply)})
        response = client.post(
            "/patients/p-1/prescriptions/analyze",
            files={"file": ("rx.txt", b"warfarin ibuprofen", "text/plain")},
        )
        assert response.status_code == 200
        data = response.json()
        assert data["reportId"].startswith("rx-")
        assert data["prescription"]["medications"][1]["name"] == "Ibuprofen"
        assert data["interactions"][0]["medicationPair"] == ["ibuprofen", "warfarin"]
        assert data["alerts"][0]["type"] == "medication_interaction"


class TestInteractions:

    def test_check(self, build_client):
        client, _, _ = build_client({})
        response = client.post("/interactions/check", json={
            "medications": [{"name": "Aspirin"}, {"name": "Warfarin", "dosage": "5mg"}],
        })
        assert response.status_code == 200
        data = response.json()
        assert data["hasInteractions"] is True
        assert data["interactions"][0]["severity"] == "severe"

    def test_none(self, build_client):
        client, _, _ = build_client({})
        data = client.post("/interactions/check", json={"medications": [{"name": "Paracetamol"}]}).json()
        assert data == {"hasInteractions": False, "interactions": []}


class TestKnowledgeAdmin:

    def test_add_chunk(self, build_client):
        client, pipeline, _ = build_client({})
        response = client.post("/knowledge/chunks", json={
            "category": "Oncology", "keywords": [" PSA "], "content": "PSA above 4 ng/mL warrants follow-up.",
        })
        assert response.status_code == 201
        chunk = response.json()
        assert chunk["keywords"] == ["psa"]
        assert client.get("/knowledge/stats").json()["total_chunks"] == 10
        assert pipeline.retriever.retrieve("psa").chunks[0].id == chunk["id"]

    def test_add_chunk_rejects_blank(self, build_client):
        client, _, _ = build_client({})
        response = client.post("/knowledge/chunks", json={"category": " ", "keywords": ["x"], "content": "c"})
        assert response.status_code == 422


class TestModelsAndAlerts:

    def test_reprobe(self, build_client):
        client, pipeline, _ = build_client({"model-b": "OK"})
        response = client.post("/models/reprobe")
        assert response.json() == {"model": "model-b"}
        assert pipeline.resolver.cached_model == "model-b"

    def test_reprobe_exhausted(self, build_client):
        client, _, _ = build_client({"model-a": RuntimeError("403 permission denied")})
        response = client.post("/models/reprobe")
        assert response.status_code == 502
        assert response.json()["errorKind"] == "model_unavailable:not_found"

    def test_acknowledge_alert(self, build_client):
        client, _, _ = build_client({})
        first = client.post("/alerts/alert-123/acknowledge", headers={"X-User-Id": "dr-lee"}).json()
        second = client.post("/alerts/alert-123/acknowledge", headers={"X-User-Id": "dr-kim"}).json()
        assert first["acknowledged"] is True
        assert first["acknowledgedAt"] == second["acknowledgedAt"]
        assert client.app.state.ledger.acknowledged_by("alert-123") == "dr-lee"
