"""Tests for the HTTP API."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from leadpipe.api.deps import get_compliance_poller, get_journey_aggregator
from leadpipe.core.encryption import EncryptionService, generate_encryption_key
from leadpipe.domain.services.journey_aggregator import JourneyAggregator
from leadpipe.domain.services.source_fetchers import SourceFetchers
from leadpipe.main import app
from leadpipe.settings import settings
from leadpipe.workers.compliance_poller import CompliancePoller

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)
TENANT = "tenant-1"

TABLES = {
    "dados_cliente": [
        {"id": "c1", "nome": "Maria Silva", "telefone": "(31) 99997-2368", "cpf": "12345678901",
         "tenant_id": TENANT, "created_at": "2024-01-01T10:00:00Z"},
    ],
    "form_submissions": [
        {"id": "f1", "contact_phone": "31999972368", "passed": True, "total_score": 90,
         "tenant_id": TENANT, "updated_at": "2024-01-02T10:00:00Z"},
    ],
    "cpf_compliance_resultados": [
        {"id": 7, "cpf": "12345678901", "status": "approved", "risco": 10, "processos": 0,
         "data_consulta": "2024-01-03T10:00:00Z", "tenant_id": TENANT},
    ],
}


@pytest.fixture
def client(make_remote, tmp_path, monkeypatch):
    """Create a test FastAPI client backed by fake sources."""
    monkeypatch.setattr(settings, "compliance_poll_enabled", False)

    encryption = EncryptionService(generate_encryption_key())
    aggregator = JourneyAggregator(
        SourceFetchers(make_remote(tables=TABLES), encryption=encryption), clock=lambda: NOW
    )
    poller = CompliancePoller(
        client=make_remote(configured=False),
        lead_status=MagicMock(),
        encryption=encryption,
        state_path=tmp_path / "state.json",
        clock=lambda: NOW,
    )

    app.dependency_overrides[get_journey_aggregator] = lambda: aggregator
    app.dependency_overrides[get_compliance_poller] = lambda: poller

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


def test_list_lead_journeys(client):
    response = client.get(f"/api/v1/tenants/{TENANT}/lead-journeys")

    assert response.status_code == 200
    journeys = response.json()
    assert len(journeys) == 1
    journey = journeys[0]
    assert journey["id"] == "c1"
    assert journey["telefoneNormalizado"] == "5531999972368"
    assert journey["pipelineStatus"] == "cpf-aprovado"
    assert journey["pipelineStageLabel"] == "CPF Aprovado"
    assert journey["matchLevels"] == {"form": "phone", "cpf": "cpf"}
    assert journey["cpfData"]["riskScore"] == 10
    assert [e["type"] for e in journey["timeline"]] == ["contact", "form", "cpf"]


def test_get_lead_journey_by_phone(client):
    response = client.get(f"/api/v1/tenants/{TENANT}/lead-journeys/by-phone/31999972368")
    assert response.status_code == 200
    assert response.json()["nome"] == "Maria Silva"

    missing = client.get(f"/api/v1/tenants/{TENANT}/lead-journeys/by-phone/21988887777")
    assert missing.status_code == 404


def test_list_lead_journeys_by_stage(client):
    response = client.get(f"/api/v1/tenants/{TENANT}/lead-journeys/stages/cpf-aprovado")
    assert [j["id"] for j in response.json()] == ["c1"]

    unknown = client.get(f"/api/v1/tenants/{TENANT}/lead-journeys/stages/not-a-stage")
    assert unknown.status_code == 200
    assert unknown.json() == []


def test_pipeline_stage_counts(client):
    response = client.get(f"/api/v1/tenants/{TENANT}/pipeline/stage-counts")

    assert response.status_code == 200
    body = response.json()
    assert body["total"] == 1
    assert len(body["stages"]) == 11
    counts = {s["stage"]: s["count"] for s in body["stages"]}
    assert counts["cpf-aprovado"] == 1
    assert counts["contato-inicial"] == 0


def test_blank_tenant_is_rejected(client):
    response = client.get("/api/v1/tenants/%20/lead-journeys")
    assert response.status_code == 400


def test_run_compliance_poller(client):
    response = client.post("/api/v1/compliance-poller/run")

    assert response.status_code == 200
    assert response.json() == {"success": True, "processedCount": 0, "error": None, "skipped": False}


def test_compliance_poller_state(client):
    client.post("/api/v1/compliance-poller/run")
    response = client.get("/api/v1/compliance-poller/state")

    assert response.status_code == 200
    body = response.json()
    assert body["totalProcessed"] == 0
    assert body["totalErrors"] == 0
    assert body["lastPolledAt"].startswith("2024-06-01T12:00:00")


def test_health(client):
    assert client.get("/health").json() == {"status": "healthy"}


def test_lifespan_starts_and_stops_poller(monkeypatch):
    monkeypatch.setattr(settings, "compliance_poll_enabled", True)
    poller = MagicMock()
    poller.stop = AsyncMock()

    with patch("leadpipe.main.get_compliance_poller", return_value=poller):
        with TestClient(app) as test_client:
            assert test_client.get("/health").status_code == 200
            poller.start.assert_called_once()

    poller.stop.assert_awaited_once()
