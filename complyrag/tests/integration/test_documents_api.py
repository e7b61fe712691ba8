from __future__ import annotations

import json

import pytest
from httpx import ASGITransport, AsyncClient

from complyrag.apps.api.main import create_app
from complyrag.providers.llm.fake import FakeCompletionProvider
from complyrag.tests.utils.fakes import RoutedCompletionProvider, make_container


ADMIN_HEADERS = {"X-Subject-Id": "admin-1", "X-Roles": "admin"}
VIEWER_HEADERS = {"X-Subject-Id": "viewer-1", "X-Roles": "viewer"}

RULES = [{"name": "Encryption at rest", "description": "Backups are encrypted.", "priority": "high"}]
RISKS = [{"title": "Unencrypted backup", "probability": "medium", "impact": "high"}]


def _client(container=None) -> AsyncClient:
    app = create_app(container=container or make_container())
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


async def _upload(client: AsyncClient, body: bytes = b"Backups must be encrypted at rest.", **form) -> dict:
    response = await client.post(
        "/v1/documents",
        files={"file": ("backup-policy.txt", body, "text/plain")},
        data=form,
        headers=ADMIN_HEADERS,
    )
    assert response.status_code == 201, response.text
    return response.json()["data"]


@pytest.mark.asyncio
async def test_upload_returns_enveloped_document_and_version() -> None:
    async with _client() as client:
        response = await client.post(
            "/v1/documents",
            files={"file": ("backup-policy.txt", b"Backups must be encrypted.", "text/plain")},
            data={"view_roles": "admin, viewer", "tags": "security,backup"},
            headers={**ADMIN_HEADERS, "X-Request-Id": "req-123"},
        )

    assert response.status_code == 201
    body = response.json()
    assert body["meta"] == {"request_id": "req-123", "api_version": "v1"}
    assert response.headers["X-Request-Id"] == "req-123"
    document = body["data"]["document"]
    assert document["status"] == "draft"
    assert document["index_state"] == "completed"
    assert document["view_roles"] == ["admin", "viewer"]
    assert document["tags"] == ["security", "backup"]
    assert body["data"]["version"]["version_number"] == 1
    assert body["data"]["version"]["is_current"] is True


@pytest.mark.asyncio
async def test_missing_subject_header_is_unauthorized() -> None:
    async with _client() as client:
        response = await client.get("/v1/documents/anything")

    assert response.status_code == 401
    assert response.json()["error"]["code"] == "AUTH_UNAUTHORIZED"


@pytest.mark.asyncio
async def test_viewer_cannot_read_restricted_document() -> None:
    async with _client() as client:
        created = await _upload(client, view_roles="admin")
        response = await client.get(f"/v1/documents/{created['document']['id']}", headers=VIEWER_HEADERS)
        missing = await client.get("/v1/documents/does-not-exist", headers=ADMIN_HEADERS)

    assert response.status_code == 403
    assert response.json()["error"]["code"] == "AUTH_FORBIDDEN"
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_versions_are_listed_newest_first_and_can_be_restored() -> None:
    async with _client() as client:
        created = await _upload(client)
        document_id = created["document"]["id"]
        first_version = created["version"]["id"]
        second = await client.post(
            f"/v1/documents/{document_id}/versions",
            files={"file": ("backup-policy-v2.txt", b"Backups are encrypted with AES-256.", "text/plain")},
            data={"change_description": "name the cipher"},
            headers=ADMIN_HEADERS,
        )
        assert second.status_code == 201
        listed = await client.get(f"/v1/documents/{document_id}/versions", headers=ADMIN_HEADERS)
        restored = await client.post(
            f"/v1/documents/{document_id}/versions/{first_version}/set-current", headers=ADMIN_HEADERS
        )

    versions = listed.json()["data"]
    assert [v["version_number"] for v in versions] == [2, 1]
    assert [v["is_current"] for v in versions] == [True, False]
    assert versions[0]["change_description"] == "name the cipher"
    assert restored.status_code == 200
    assert restored.json()["data"]["current_version_id"] == first_version
    assert restored.json()["data"]["name"] == "backup-policy.txt"


@pytest.mark.asyncio
async def test_status_changes_follow_the_workflow() -> None:
    async with _client() as client:
        created = await _upload(client)
        document_id = created["document"]["id"]
        rejected = await client.post(
            f"/v1/documents/{document_id}/status", json={"status": "approved"}, headers=ADMIN_HEADERS
        )
        accepted = await client.post(
            f"/v1/documents/{document_id}/status", json={"status": "inReview"}, headers=ADMIN_HEADERS
        )
        unknown = await client.post(
            f"/v1/documents/{document_id}/status", json={"status": "published"}, headers=ADMIN_HEADERS
        )

    assert rejected.status_code == 409
    error = rejected.json()["error"]
    assert error["code"] == "INVALID_TRANSITION"
    assert error["details"] == {"current": "draft", "target": "approved"}
    assert accepted.status_code == 200
    assert accepted.json()["data"]["status"] == "inReview"
    assert accepted.json()["data"]["status_changed_by"] == "admin-1"
    assert unknown.status_code == 400


@pytest.mark.asyncio
async def test_delete_removes_document() -> None:
    async with _client() as client:
        created = await _upload(client)
        document_id = created["document"]["id"]
        deleted = await client.delete(f"/v1/documents/{document_id}", headers=ADMIN_HEADERS)
        after = await client.get(f"/v1/documents/{document_id}", headers=ADMIN_HEADERS)

    assert deleted.json()["data"] == {"document_id": document_id, "deleted": True}
    assert after.status_code == 404


@pytest.mark.asyncio
async def test_empty_upload_is_rejected() -> None:
    async with _client() as client:
        response = await client.post(
            "/v1/documents",
            files={"file": ("empty.txt", b"", "text/plain")},
            headers=ADMIN_HEADERS,
        )

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"


@pytest.mark.asyncio
async def test_suggestions_batch_and_entity_edit_flow() -> None:
    container = make_container(completion=RoutedCompletionProvider(rules=RULES, risks=RISKS))
    async with _client(container) as client:
        created = await _upload(client)
        document_id = created["document"]["id"]
        suggested = await client.post(f"/v1/documents/{document_id}/suggestions", headers=ADMIN_HEADERS)
        batch = await client.post("/v1/suggestions/batch", headers=ADMIN_HEADERS)
        forbidden_batch = await client.post("/v1/suggestions/batch", headers=VIEWER_HEADERS)

        data = suggested.json()["data"]
        rule_id = data["rules"][0]["id"]
        risk_id = data["risks"][0]["id"]
        rule_patch = await client.patch(
            f"/v1/rules/{rule_id}", json={"status": "active"}, headers=ADMIN_HEADERS
        )
        risk_patch = await client.patch(
            f"/v1/risks/{risk_id}",
            json={"impact": "low"},
            headers={"X-Subject-Id": "rm-1", "X-Roles": "risk_manager"},
        )
        bad_patch = await client.patch(
            f"/v1/rules/{rule_id}", json={"name": "renamed"}, headers=ADMIN_HEADERS
        )

    assert suggested.status_code == 200
    assert data["rules"][0]["label"] == "Encryption at rest"
    assert data["rules"][0]["created"] is True
    assert data["errors"] == []

    summary = batch.json()["data"]
    assert summary["rulesProcessed"] == 1
    assert summary["risksProcessed"] == 1
    assert summary["errorsCount"] == 0
    assert summary["summary"][-1] == "Batch run completed."
    assert forbidden_batch.status_code == 403

    assert rule_patch.status_code == 200
    assert rule_patch.json()["data"]["status"] == "active"
    assert risk_patch.status_code == 200
    assert risk_patch.json()["data"]["risk_score"] == 2
    assert bad_patch.status_code == 422


@pytest.mark.asyncio
async def test_risk_assessment_rates_free_text() -> None:
    assessment = {"category": "Compliance", "probability": "Mittel", "impact": "Hoch", "measures": ["Vier-Augen-Prinzip"]}
    container = make_container(completion=FakeCompletionProvider(response=json.dumps(assessment)))
    async with _client(container) as client:
        rated = await client.post(
            "/v1/risks/assess",
            json={"description": "Payments above 10k are released by one person."},
            headers={"X-Subject-Id": "rm-1", "X-Roles": "risk_manager"},
        )
        blank = await client.post("/v1/risks/assess", json={"description": " "}, headers=ADMIN_HEADERS)
        forbidden = await client.post(
            "/v1/risks/assess", json={"description": "Anything"}, headers=VIEWER_HEADERS
        )

    assert rated.status_code == 200
    assert rated.json()["data"] == {
        "category": "Compliance",
        "probability": "medium",
        "impact": "high",
        "risk_score": 6,
        "measures": ["Vier-Augen-Prinzip"],
        "errors": [],
    }
    assert blank.status_code == 400
    assert forbidden.status_code == 403


@pytest.mark.asyncio
async def test_search_returns_visible_hits() -> None:
    async with _client() as client:
        created = await _upload(client, b"encryption encryption encryption backups", view_roles="admin,viewer")
        await _upload(client, b"encryption", view_roles="admin")
        viewer = await client.post(
            "/v1/search", json={"query": "encryption", "min_score": 0.3}, headers=VIEWER_HEADERS
        )
        invalid = await client.post("/v1/search", json={"query": "x", "top_k": 0}, headers=VIEWER_HEADERS)

    hits = viewer.json()["data"]
    assert [hit["document"]["id"] for hit in hits] == [created["document"]["id"]]
    assert 0.3 <= hits[0]["score"] <= 1.0
    assert invalid.status_code == 422


@pytest.mark.asyncio
async def test_health_reports_execution_mode() -> None:
    async with _client(make_container(index_mode="background")) as client:
        response = await client.get("/v1/health")

    assert response.json()["data"] == {"status": "ok", "index_execution_mode": "background"}
