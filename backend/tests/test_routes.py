"""Tests for the API routes via FastAPI TestClient."""

from collections.abc import Generator
from pathlib import Path
from typing import Any

import pytest
from fastapi import FastAPI, HTTPException
from fastapi.testclient import TestClient
from pydantic import TypeAdapter
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from affiliations.services._types import DbInfoDict
from affiliations.services.errors import (
    AlreadyFinalizedError,
    DuplicateCodeError,
    LifecycleError,
    NotFoundError,
)
from affiliations.services.lifecycle import LifecycleEngine
from affiliations.services.onboarding import OnboardingService
from app import dependencies
from app.dependencies import (
    get_api_key,
    get_db,
    get_db_session_factory,
    get_lifecycle_engine,
    get_onboarding_service,
)
from app.main import register_error_handlers, status_for
from app.routes import affiliations, catalog, health, observations, requests
from app.routes.health import get_db_info
from config import Settings
from db.connection import session_scope
from factories import ScriptedProvider


def _create_test_app() -> FastAPI:
    """Minimal app without lifespan (no migrations)."""
    test_app: FastAPI = FastAPI()
    register_error_handlers(test_app)

    test_app.include_router(health.router)
    test_app.include_router(affiliations.router)
    test_app.include_router(requests.router)
    test_app.include_router(observations.router)
    test_app.include_router(catalog.router)
    return test_app


_test_app: FastAPI = _create_test_app()


@pytest.fixture()
def client(
    factory: sessionmaker[Session],
    lifecycle: LifecycleEngine,
    onboarding: OnboardingService,
) -> Generator[TestClient, None, None]:
    """TestClient with DB and service dependencies bound to the in-memory database."""

    def _override_db() -> Generator[Session, None, None]:
        with session_scope(factory) as sess:
            yield sess

    _test_app.dependency_overrides[get_db] = _override_db
    _test_app.dependency_overrides[get_db_session_factory] = lambda: factory
    _test_app.dependency_overrides[get_lifecycle_engine] = lambda: lifecycle
    _test_app.dependency_overrides[get_onboarding_service] = lambda: onboarding
    _test_app.dependency_overrides[get_api_key] = lambda: ""
    with TestClient(_test_app, raise_server_exceptions=True) as c:
        yield c
    _test_app.dependency_overrides.clear()


# ---------- seed helpers ----------


def _open_request(client: TestClient, product_id: int = 2) -> dict[str, Any]:
    resp = client.post(
        "/api/affiliations",
        json={
            "businessName": "Bodega Lima",
            "ruc": "20111111111",
            "productId": product_id,
            "channelId": 1,
            "openRequest": True,
        },
    )
    assert resp.status_code == 200
    return resp.json()


def _observe(client: TestClient, request_id: int) -> dict[str, Any]:
    resp = client.post(
        f"/api/requests/{request_id}/validations",
        json={"codes": ["PLAFT_RISK", "BLACKLIST_MATCH"], "documentNumber": "87654321"},
    )
    assert resp.status_code == 200
    return resp.json()


class TestHealth:
    def test_health(self, client: TestClient) -> None:
        assert client.get("/health").json() == {"status": "ok"}

    def test_db_info_on_seeded_schema(self, engine: Engine) -> None:
        info = get_db_info(engine)
        assert info["schema_initialized"] is True
        assert info["tables_missing"] == []
        assert info["products"] == 3
        assert info["observation_types"] == 10
        assert "error" not in info

    def test_db_info_validates_as_response_model(self, engine: Engine) -> None:
        info = get_db_info(engine)
        assert TypeAdapter(DbInfoDict).validate_python(info) == info

    def test_db_info_on_empty_database(self) -> None:
        empty: Engine = create_engine("sqlite://")
        try:
            info = get_db_info(empty)
        finally:
            empty.dispose()
        assert info["schema_initialized"] is False
        assert "t_affiliation_request" in info["tables_missing"]
        assert "products" not in info


class TestAffiliationRoutes:
    def test_create_and_get(self, client: TestClient) -> None:
        created: dict[str, Any] = _open_request(client)
        assert created["success"] is True
        assert created["requestId"] is not None

        detail = client.get(f"/api/affiliations/{created['affiliationId']}").json()
        assert detail["affiliationRequestId"] == created["requestId"]
        assert detail["productName"] == "CulqiOnline"
        assert len(client.get("/api/affiliations").json()) == 1

    def test_unknown_product(self, client: TestClient) -> None:
        resp = client.post(
            "/api/affiliations",
            json={"businessName": "X", "ruc": "1", "productId": 99, "channelId": 1},
        )
        assert resp.status_code == 404
        assert resp.json()["type"] == "NotFoundError"

    def test_missing_affiliation(self, client: TestClient) -> None:
        assert client.get("/api/affiliations/aff_missing").status_code == 404

    def test_steps_then_finalize(self, client: TestClient) -> None:
        resp = client.post(
            "/api/affiliations",
            json={"businessName": "Shop", "ruc": "20222222222", "productId": 2, "channelId": 1},
        )
        affiliation_id: str = resp.json()["affiliationId"]

        step = client.post(
            f"/api/affiliations/{affiliation_id}/steps",
            json={
                "validationCode": "PLAFT_RISK",
                "status": "observed",
                "comment": "Medium risk",
                "nextStep": 3,
            },
        )
        assert step.status_code == 200
        assert step.json()["validationResultId"] > 0

        final = client.post(f"/api/affiliations/{affiliation_id}/finalize").json()
        assert final["requestCreated"] is True
        observations = client.get(f"/api/requests/{final['requestId']}/observations").json()
        assert [o["observationCode"] for o in observations] == ["PLAFT_RISK"]


class TestRequestRoutes:
    def test_validations_observe_request(self, client: TestClient) -> None:
        request_id: int = _open_request(client)["requestId"]
        result: dict[str, Any] = _observe(client, request_id)

        assert result["newStatus"] == "observed"
        assert result["decision"] == "observe"
        assert len(result["observationIds"]) == 1

        detail = client.get(f"/api/requests/{request_id}").json()
        assert detail["status"] == "observed"
        assert detail["canBeObserved"] is True
        assert {v["code"] for v in detail["validations"]} == {"PLAFT_RISK", "BLACKLIST_MATCH"}
        assert len(client.get("/api/requests", params={"status": "observed"}).json()) == 1

    def test_manual_observation_and_bad_cause(self, client: TestClient) -> None:
        request_id: int = _open_request(client)["requestId"]
        ok = client.post(
            f"/api/requests/{request_id}/observations",
            json={"observationTypeId": 3, "causeIds": [1, 2], "comment": "No cart"},
        )
        assert ok.status_code == 200
        assert ok.json()["requestStatus"] == "observed"

        bad = client.post(
            f"/api/requests/{request_id}/observations",
            json={"observationTypeId": 3, "causeIds": [6]},
        )
        assert bad.status_code == 500
        assert bad.json()["success"] is False
        assert bad.json()["type"] == "DataIntegrityError"

    def test_resolve_twice_conflicts(self, client: TestClient) -> None:
        request_id: int = _open_request(client)["requestId"]
        first = client.post(f"/api/requests/{request_id}/resolve", json={"status": "approved"})
        assert first.status_code == 200
        assert first.json()["newStatus"] == "approved"

        second = client.post(f"/api/requests/{request_id}/resolve", json={"status": "rejected"})
        assert second.status_code == 409
        assert second.json()["type"] == "AlreadyFinalizedError"

        history = client.get(f"/api/requests/{request_id}/history").json()
        assert [h["newStatus"] for h in history] == ["approved", "pending"]

    def test_resolve_rejects_non_final_status(self, client: TestClient) -> None:
        request_id: int = _open_request(client)["requestId"]
        resp = client.post(f"/api/requests/{request_id}/resolve", json={"status": "observed"})
        assert resp.status_code == 422

    def test_status_update_same_status(self, client: TestClient) -> None:
        request_id: int = _open_request(client)["requestId"]
        resp = client.put(f"/api/requests/{request_id}/status", json={"status": "pending"})
        assert resp.status_code == 422
        assert resp.json()["type"] == "InvalidOperationError"

    def test_missing_request(self, client: TestClient) -> None:
        assert client.get("/api/requests/999").status_code == 404


class TestObservationRoutes:
    def test_retry_then_audit_trail(self, client: TestClient) -> None:
        request_id: int = _open_request(client)["requestId"]
        obs_id: int = _observe(client, request_id)["observationIds"][0]

        retried = client.post(f"/api/observations/{obs_id}/retry", json={"actor": "ops"})
        assert retried.status_code == 200
        body: dict[str, Any] = retried.json()
        assert body["requestStatus"] == "pending"
        assert body["attemptNumber"] == 2

        detail = client.get(f"/api/requests/{request_id}").json()
        plaft = next(v for v in detail["validations"] if v["code"] == "PLAFT_RISK")
        attempts = client.get(f"/api/validation-results/{plaft['id']}/history").json()
        assert [a["attemptNumber"] for a in attempts] == [2, 1]

        response = client.get(f"/api/provider-responses/{body['providerResponseId']}").json()
        assert response["validationCode"] == "PLAFT_RISK"
        assert client.get("/api/provider-responses/999").status_code == 404

    def test_retry_failure_is_bad_gateway(
        self, client: TestClient, provider: ScriptedProvider
    ) -> None:
        request_id: int = _open_request(client)["requestId"]
        obs_id: int = _observe(client, request_id)["observationIds"][0]
        provider.fail("PLAFT_RISK")

        resp = client.post(f"/api/observations/{obs_id}/retry")
        assert resp.status_code == 502
        assert resp.json()["type"] == "ProviderFailureError"

    def test_resolve(self, client: TestClient) -> None:
        request_id: int = _open_request(client, product_id=1)["requestId"]
        obs_id: int = _observe(client, request_id)["observationIds"][0]

        resp = client.post(f"/api/observations/{obs_id}/resolve", json={"status": "approved"})
        assert resp.status_code == 200
        assert resp.json()["cascaded"] is True
        assert resp.json()["requestStatus"] == "approved"


class TestCatalogRoutes:
    def test_observation_types(self, client: TestClient) -> None:
        assert len(client.get("/api/observation-types").json()) == 10
        manual = client.get("/api/products/2/manual-observation-types").json()
        assert [t["code"] for t in manual] == ["WEB_NO_ECOMMERCE", "WEB_INCOMPLETE"]

    def test_add_type_and_duplicate(self, client: TestClient) -> None:
        payload: dict[str, Any] = {
            "code": "LOGO_MISSING",
            "title": "Logo missing",
            "kind": "manual",
            "causes": ["No logo"],
            "productIds": [1],
        }
        created = client.post("/api/observation-types", json=payload)
        assert created.status_code == 200
        assert created.json()["observationType"]["causes"][0]["label"] == "No logo"
        assert len(client.get("/api/products/1/manual-observation-types").json()) == 1

        dupe = client.post("/api/observation-types", json=payload)
        assert dupe.status_code == 409

    def test_request_configs(self, client: TestClient) -> None:
        resp = client.put("/api/request-configs/1", json={"autoApprove": True})
        assert resp.status_code == 200
        assert resp.json()["config"]["autoApprove"] is True
        configs = client.get("/api/request-configs").json()
        assert configs[0]["autoApprove"] is True
        assert client.put("/api/request-configs/9", json={"autoApprove": True}).status_code == 404


class TestErrorMapping:
    @pytest.mark.parametrize(
        ("exc", "code"),
        [
            (NotFoundError("x"), 404),
            (AlreadyFinalizedError("x"), 409),
            (DuplicateCodeError("x"), 409),
            (LifecycleError("x"), 400),
            (RuntimeError("x"), 500),
        ],
    )
    def test_status_for(self, exc: Exception, code: int) -> None:
        assert status_for(exc) == code


class TestApiKey:
    def test_rejects_wrong_key(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        monkeypatch.setattr(
            dependencies, "get_settings", lambda: Settings(api_key="secret", data_dir=tmp_path)
        )
        assert get_api_key("secret") == "secret"
        with pytest.raises(HTTPException) as exc_info:
            get_api_key("nope")
        assert exc_info.value.status_code == 401
