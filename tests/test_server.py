"""HTTP layer tests — caller identity, error mapping and a few end-to-end
routes through FastAPI's TestClient.

Mock strategy: the app is built with ``create_app()`` but the lifespan is
never entered (TestClient is used without a ``with`` block), so no catalog
loading or database pool happens.  Instead the tests place a
``ClinicalDecisionEngine`` backed by ``MockRepository`` on ``app.state``
and override ``get_db`` with an AsyncMock session.
"""

from unittest.mock import AsyncMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from cds_knowledge.engine import ClinicalDecisionEngine
from cds_knowledge.errors import (
    InvalidStateError,
    KnowledgeEngineError,
    NotFoundError,
    ValidationFailure,
)
from cds_server.app import create_app
from cds_server.config import ServerSettings
from cds_server.dependencies import get_db
from cds_server.errors import engine_error_handler, generic_error_handler, status_for

# Import mock infrastructure from test_engine
from test_engine import ACTOR, ORG, MockRepository


HEADERS = {"X-User-ID": ACTOR, "X-Organization-ID": ORG}


# =====================================================================
# Fixtures
# =====================================================================


@pytest.fixture
def mock_repo():
    return MockRepository()


def _build_client(kb, mock_repo, settings=None) -> TestClient:
    app = create_app(settings or ServerSettings())
    engine = ClinicalDecisionEngine(kb)
    engine._repo = mock_repo
    app.state.kb = kb
    app.state.engine = engine

    async def _mock_db():
        yield AsyncMock()

    app.dependency_overrides[get_db] = _mock_db
    return TestClient(app, raise_server_exceptions=False)


@pytest.fixture
def client(kb, mock_repo):
    return _build_client(kb, mock_repo)


# =====================================================================
# Caller identity
# =====================================================================


class TestCallerIdentity:

    def test_missing_user_header(self, client):
        resp = client.get("/api/v1/reference/red-flags", headers={"X-Organization-ID": ORG})
        assert resp.status_code == 401
        assert resp.json()["detail"] == "X-User-ID header is required"

    def test_missing_organization_header(self, client):
        resp = client.get("/api/v1/reference/red-flags", headers={"X-User-ID": ACTOR})
        assert resp.status_code == 401
        assert resp.json()["detail"] == "X-Organization-ID header is required"

    def test_proxy_secret_enforced(self, kb, mock_repo):
        client = _build_client(kb, mock_repo, ServerSettings(trusted_proxy_secret="s3cret"))

        assert client.get("/api/v1/reference/red-flags", headers=HEADERS).status_code == 403
        wrong = {**HEADERS, "X-Proxy-Secret": "nope"}
        assert client.get("/api/v1/reference/red-flags", headers=wrong).status_code == 403
        right = {**HEADERS, "X-Proxy-Secret": "s3cret"}
        assert client.get("/api/v1/reference/red-flags", headers=right).status_code == 200


# =====================================================================
# Error mapping
# =====================================================================


class TestErrorMapping:

    @pytest.fixture
    def error_client(self):
        app = FastAPI()
        app.add_exception_handler(KnowledgeEngineError, engine_error_handler)
        app.add_exception_handler(Exception, generic_error_handler)

        @app.get("/not-found")
        async def not_found():
            raise NotFoundError("Patient 1234 not found")

        @app.get("/conflict")
        async def conflict():
            raise InvalidStateError("Alert is not active")

        @app.get("/invalid")
        async def invalid():
            raise ValidationFailure("Reason is required")

        @app.get("/boom")
        async def boom():
            raise RuntimeError("database exploded")

        return TestClient(app, raise_server_exceptions=False)

    @pytest.mark.parametrize(
        "path, status, detail",
        [
            ("/not-found", 404, "Resource not found"),
            ("/conflict", 409, "Request conflicts with the current state of the resource"),
            ("/invalid", 422, "Invalid request"),
            ("/boom", 500, "Internal server error"),
        ],
    )
    def test_status_and_safe_message(self, error_client, path, status, detail):
        resp = error_client.get(path)
        assert resp.status_code == status
        assert resp.json() == {"detail": detail}

    def test_base_error_is_bad_request(self):
        assert status_for(KnowledgeEngineError("x")) == 400


# =====================================================================
# Routes end to end
# =====================================================================


class TestReferenceRoutes:

    def test_red_flags(self, client):
        resp = client.get("/api/v1/reference/red-flags", headers=HEADERS)
        assert resp.status_code == 200
        assert "cauda_equina" in [flag["type"] for flag in resp.json()]

    def test_guidelines_by_code(self, client):
        resp = client.get(
            "/api/v1/reference/guidelines", params={"codes": ["M54.5"]}, headers=HEADERS,
        )
        assert resp.status_code == 200
        assert resp.json()[0]["guideline_code"] == "CCGPP-LBP-2016"

    def test_treatment_recommendation(self, client):
        resp = client.post(
            "/api/v1/reference/treatment-recommendation",
            json={"diagnosis_code": "M54.5", "include_enrichment": False},
            headers=HEADERS,
        )
        assert resp.status_code == 200
        assert resp.json()["protocol_name"] == "Acute Low Back Pain"


class TestClinicalRoutes:

    def _check(self, client, patient_id, **body):
        return client.post(
            f"/api/v1/patients/{patient_id}/contraindication-checks",
            json={"procedure": "Diversified Technique", **body},
            headers=HEADERS,
        )

    def test_unknown_patient_is_404(self, client):
        resp = self._check(client, "not-a-uuid")
        assert resp.status_code == 404
        assert resp.json() == {"detail": "Resource not found"}

    def test_check_then_override_flow(self, client, mock_repo):
        patient = mock_repo.add_patient(age=45)
        resp = self._check(client, patient.id, medications=["Warfarin"])
        assert resp.status_code == 200
        result = resp.json()
        assert result["safety_status"] == "RELATIVE"
        finding_id = result["new_finding_ids"][0]

        short = client.post(
            f"/api/v1/contraindications/{finding_id}/override",
            json={"reason": "ok", "risk_acknowledged": True},
            headers=HEADERS,
        )
        assert short.status_code == 422

        done = client.post(
            f"/api/v1/contraindications/{finding_id}/override",
            json={"reason": "Low-force technique only", "risk_acknowledged": True},
            headers=HEADERS,
        )
        assert done.status_code == 200
        assert done.json()["is_overridden"] is True

        again = client.post(
            f"/api/v1/contraindications/{finding_id}/override",
            json={"reason": "Low-force technique only", "risk_acknowledged": True},
            headers=HEADERS,
        )
        assert again.status_code == 409

    def test_absolute_finding_cannot_be_overridden(self, client, mock_repo):
        patient = mock_repo.add_patient(age=45)
        result = self._check(client, patient.id, clinical_notes="saddle anesthesia").json()
        assert result["safety_status"] == "ABSOLUTE"
        assert result["can_proceed"] is False

        resp = client.post(
            f"/api/v1/contraindications/{result['new_finding_ids'][0]}/override",
            json={"reason": "Patient insists on treatment", "risk_acknowledged": True},
            headers=HEADERS,
        )
        assert resp.status_code == 409

    def test_alerts_listed_and_acknowledged(self, client, mock_repo):
        patient = mock_repo.add_patient(age=45)
        self._check(client, patient.id, clinical_notes="bowel dysfunction")

        alerts = client.get(f"/api/v1/patients/{patient.id}/alerts", headers=HEADERS).json()
        assert [a["severity"] for a in alerts] == ["CRITICAL"]

        ack = client.post(
            f"/api/v1/alerts/{alerts[0]['id']}/acknowledge",
            json={"note": "Referred to ED"},
            headers=HEADERS,
        )
        assert ack.status_code == 200
        assert ack.json()["status"] == "ACKNOWLEDGED"

        assert client.get(f"/api/v1/patients/{patient.id}/alerts", headers=HEADERS).json() == []
        second = client.post(f"/api/v1/alerts/{alerts[0]['id']}/acknowledge", headers=HEADERS)
        assert second.status_code == 409


class TestHealth:

    def test_reports_catalogs_when_database_down(self, client, monkeypatch):
        def _no_database():
            raise RuntimeError("connection refused")

        monkeypatch.setattr("cds_server.app.get_engine", _no_database)
        body = client.get("/health").json()
        assert body["status"] == "error"
        assert body["detail"] == "database unavailable"
        assert body["catalogs"]["red_flags"] == "2026.1"
        assert body["enrichment"] is False
