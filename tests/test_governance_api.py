from __future__ import annotations

from pathlib import Path
from typing import Iterator

import pytest
from fastapi.testclient import TestClient

from apps.governance_api.main import app, get_context
from kctgov.core.config import GovernanceConfig
from kctgov.models.content import Modality
from kctgov.pipeline.context import GovernanceContext, build_context
from tests.mocks.curriculum import make_class, make_content


@pytest.fixture()
def context(tmp_path: Path) -> Iterator[GovernanceContext]:
    ctx = build_context(GovernanceConfig(), repo_root=tmp_path)
    app.dependency_overrides[get_context] = lambda: ctx
    try:
        yield ctx
    finally:
        app.dependency_overrides.pop(get_context, None)


@pytest.fixture()
def client(context: GovernanceContext) -> TestClient:
    return TestClient(app)


def _create(client: TestClient, label: str = "v1.0", **content_kwargs) -> dict:
    content = make_content(**content_kwargs).model_dump(mode="json")
    response = client.post(
        "/versions",
        json={"framework_id": "kct-ge", "version_label": label, "content": content, "created_by": "author"},
    )
    assert response.status_code == 201, response.text
    return response.json()


def _publish(client: TestClient, label: str = "v1.0", **content_kwargs) -> dict:
    version = _create(client, label, **content_kwargs)
    assert client.post(f"/versions/{version['id']}/submit", json={"actor": "author"}).status_code == 200
    decision = client.post(f"/versions/{version['id']}/decision", json={"reviewer": "rev", "decision": "approve"})
    assert decision.json()["state"] == "approved"
    return client.post(f"/versions/{version['id']}/publish", json={"actor": "publisher"}).json()


def test_health_reports_backend(client: TestClient) -> None:
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "storage_backend": "memory", "rules": 11}


def test_policy_round_trip(client: TestClient, context: GovernanceContext) -> None:
    response = client.patch("/policy", json={"updated_by": "admin", "changes": {"hoursTolerance": 10}})
    assert response.status_code == 200
    assert response.json()["hours_tolerance"] == 10
    assert client.get("/policy").json()["policy"]["hours_tolerance"] == 10
    assert context.audit.events("PolicyUpdated")[-1].actor == "admin"

    bad = client.patch("/policy", json={"updated_by": "admin", "changes": {"nope": 1}})
    assert bad.status_code == 422


def test_rules_listing_and_update(client: TestClient) -> None:
    mapping = client.get("/rules", params={"category": "mapping"}).json()
    assert len(mapping) == 5

    updated = client.patch("/rules/mapping-age-fit", json={"updated_by": "admin", "enabled": False})
    assert updated.status_code == 200
    assert updated.json()["enabled"] is False
    assert client.patch("/rules/unknown", json={"updated_by": "admin"}).status_code == 404


def test_version_lifecycle_over_http(client: TestClient) -> None:
    first = _publish(client, "v1.0")
    assert first["state"] == "published"
    second = _publish(client, "v1.1", unit_hours=(20, 20, 10))

    history = client.get("/frameworks/kct-ge/versions").json()
    assert [(v["version_label"], v["state"]) for v in history] == [("v1.1", "published"), ("v1.0", "archived")]
    stats = client.get("/frameworks/kct-ge/stats").json()
    assert stats["published_versions"] == 1

    diff = client.get(f"/versions/{second['id']}/diff").json()
    assert diff[0]["description"] == "Total hours changed from 40h to 50h"

    rolled = client.post("/frameworks/kct-ge/rollback", json={"version_id": first["id"], "actor": "publisher"})
    assert rolled.status_code == 200
    assert rolled.json()["state"] == "published"


def test_publish_blocked_maps_to_422(client: TestClient) -> None:
    version = _create(client, "v1.2", unit_hours=(59, 59), total_hours=100)
    readiness = client.get(f"/versions/{version['id']}/readiness").json()
    assert readiness["checks"]["hoursValidation"] is False

    client.post(f"/versions/{version['id']}/submit", json={"actor": "author"})
    client.post(f"/versions/{version['id']}/decision", json={"reviewer": "rev", "decision": "approve"})
    response = client.post(f"/versions/{version['id']}/publish", json={"actor": "publisher"})

    assert response.status_code == 422
    detail = response.json()["detail"]
    assert detail["code"] == "PUBLISH_BLOCKED"
    assert detail["details"]["blocking_issues"]


def test_invalid_transition_and_missing_version(client: TestClient) -> None:
    version = _create(client)
    response = client.post(f"/versions/{version['id']}/publish", json={"actor": "publisher"})
    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "INVALID_TRANSITION"

    assert client.get("/versions/ver-missing").status_code == 404
    duplicate = client.post(
        "/versions",
        json={
            "framework_id": "kct-ge",
            "version_label": "v1.0",
            "content": make_content().model_dump(mode="json"),
            "created_by": "author",
        },
    )
    assert duplicate.status_code == 409


def test_mapping_and_rollout(client: TestClient, context: GovernanceContext) -> None:
    version = _publish(client)
    fit = make_class("cls-fit").model_dump(mode="json")
    assert client.put("/classes/cls-fit", json=fit).status_code == 200
    context.repository.put_class(make_class("cls-c1", level="C1", modality=Modality.ONLINE))

    mapping = client.post(f"/versions/{version['id']}/mapping", json={"class_ids": ["cls-fit", "cls-c1"]})
    assert mapping.status_code == 200
    body = mapping.json()
    assert body["status"] == "blocked"
    assert body["report"]["risk_level"] == "high"

    mismatch = client.put("/classes/other", json=fit)
    assert mismatch.status_code == 422

    plan = client.post(
        "/rollouts",
        json={
            "version_id": version["id"],
            "scope": "campus",
            "target_class_ids": ["cls-fit", "cls-c1"],
            "scheduled_at": "2025-03-01T08:00:00Z",
            "created_by": "ops",
        },
    )
    assert plan.status_code == 201
    plan_id = plan.json()["id"]
    context.rollout.schedule(plan_id)
    context.rollout.execute(plan_id)

    fetched = client.get(f"/rollouts/{plan_id}").json()
    assert fetched["status"] == "completed"
    assert fetched["targets"]["cls-fit"]["state"] == "applied"
    assert fetched["targets"]["cls-c1"]["state"] == "failed"
    assert [p["id"] for p in client.get("/rollouts", params={"version_id": version["id"]}).json()] == [plan_id]
    assert client.get("/rollouts/plan-missing").status_code == 404
    assert client.get("/classes/cls-fit").json()["applied_version"]["version_label"] == "v1.0"

    stats = client.get("/rollouts/stats", params={"version_id": version["id"]}).json()
    assert (stats["applied_targets"], stats["failed_targets"]) == (1, 1)
    assert stats["success_rate"] == 0.5
    trail = client.get("/audit", params={"subject": "cls-c1"}).json()
    assert {"MappingValidated", "RolloutTargetFailed"} <= {event["event"] for event in trail}
    failed = client.get("/audit", params={"subject": plan_id, "event": "RolloutTargetFailed"}).json()
    assert [event["payload"]["class_id"] for event in failed] == ["cls-c1"]
