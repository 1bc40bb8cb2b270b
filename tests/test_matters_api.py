"""Tests for the health, matters and legal-docs API endpoints."""

from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from counsel_engine.core.ingest import IngestionResult
from counsel_engine.core.schemas_matter import Deliverable
from counsel_engine.db.matters import get_matter_store
from counsel_engine.main import app


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def mock_launch():
    with patch("counsel_engine.api.matters.launch_pipeline") as mock:
        yield mock


def _payload(**overrides) -> dict:
    payload = {
        "doc_type": "safe",
        "risk_tolerance": "medium",
        "audience": "founder",
        "document_text": "This SAFE has a $10M post-money valuation cap.",
        "file_name": "safe.md",
    }
    payload.update(overrides)
    return payload


def test_health_check(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_create_matter_launches_pipeline(client, mock_launch):
    response = client.post("/v1/matters", json=_payload())

    assert response.status_code == 201
    matter_id = response.json()["id"]
    mock_launch.assert_called_once_with(matter_id)

    matter = client.get(f"/v1/matters/{matter_id}").json()
    assert matter["status"] == "processing"
    assert [s["status"] for s in matter["stages"]] == ["pending"] * 9
    assert matter["jurisdiction"] == "Delaware"


def test_create_matter_validation(client, mock_launch):
    assert client.post("/v1/matters", json=_payload(document_text="")).status_code == 422
    assert client.post("/v1/matters", json=_payload(doc_type="nda")).status_code == 422
    assert client.post("/v1/matters", json=_payload(document_text="   ")).status_code == 400
    mock_launch.assert_not_called()


def test_create_matter_rejects_oversized_document(client, mock_launch):
    response = client.post("/v1/matters", json=_payload(document_text="x" * 200_001))

    assert response.status_code == 413
    mock_launch.assert_not_called()


def test_get_missing_matter(client):
    assert client.get("/v1/matters/nope").status_code == 404


def test_list_matters(client, mock_launch):
    client.post("/v1/matters", json=_payload(file_name="one.md"))
    client.post("/v1/matters", json=_payload(file_name="two.md"))

    summaries = client.get("/v1/matters").json()

    assert {s["file_name"] for s in summaries} == {"one.md", "two.md"}
    assert all(s["issue_count"] == 0 for s in summaries)


def test_download_deliverable(client, make_matter):
    matter = make_matter(persist=False)
    memo = Deliverable(
        name="Issue Memorandum",
        description="memo",
        format="Markdown",
        size="0.1 KB",
        timestamp="2026-01-01T00:00:00+00:00",
        content="# Memo",
    )
    summary = Deliverable(
        name="Risk Summary",
        description="json",
        format="JSON",
        size="0.1 KB",
        timestamp="2026-01-01T00:00:00+00:00",
        content='{"total": 0}',
    )
    matter.deliverables = [memo, summary]
    get_matter_store().set(matter)

    response = client.get(f"/v1/matters/{matter.id}/deliverables/{memo.id}")
    assert response.status_code == 200
    assert response.text == "# Memo"
    assert response.headers["content-type"].startswith("text/markdown")
    assert 'filename="Issue_Memorandum.md"' in response.headers["content-disposition"]

    response = client.get(f"/v1/matters/{matter.id}/deliverables/{summary.id}")
    assert response.headers["content-type"].startswith("application/json")
    assert 'filename="Risk_Summary.json"' in response.headers["content-disposition"]

    assert client.get(f"/v1/matters/{matter.id}/deliverables/missing").status_code == 404


def test_ingest_legal_docs(client):
    results = [IngestionResult(document_id="d1", chunks_created=4, title="YC SAFE")]
    with patch(
        "counsel_engine.api.legal_docs.ingest_batch", AsyncMock(return_value=results)
    ) as mock_ingest:
        response = client.post(
            "/v1/legal-docs",
            json={
                "documents": [
                    {"title": "YC SAFE", "content": "text", "doc_type": "safe_template"},
                    {"title": "Broken", "content": "text", "doc_type": "precedent"},
                ]
            },
        )

    assert response.status_code == 200
    body = response.json()
    assert body["requested"] == 2
    assert body["ingested"] == 1
    assert body["total_chunks"] == 4
    assert [d.title for d in mock_ingest.await_args.args[0]] == ["YC SAFE", "Broken"]


def test_ingest_rejects_unknown_doc_type(client):
    response = client.post(
        "/v1/legal-docs",
        json={"documents": [{"title": "x", "content": "y", "doc_type": "blog_post"}]},
    )
    assert response.status_code == 422


def test_list_and_delete_legal_docs(client):
    with (
        patch(
            "counsel_engine.api.legal_docs.list_legal_documents",
            AsyncMock(return_value=[{"id": "d1", "title": "YC SAFE", "chunk_count": 3}]),
        ) as mock_list,
        patch(
            "counsel_engine.api.legal_docs.get_document_stats",
            AsyncMock(return_value={"safe_template": 1}),
        ),
        patch(
            "counsel_engine.api.legal_docs.delete_legal_document",
            AsyncMock(side_effect=[True, False]),
        ),
    ):
        listing = client.get("/v1/legal-docs", params={"doc_type": "safe_template", "limit": 5})
        stats = client.get("/v1/legal-docs", params={"stats": "true"})
        deleted = client.delete("/v1/legal-docs/d1")
        missing = client.delete("/v1/legal-docs/d1")

    assert listing.json() == {
        "documents": [{"id": "d1", "title": "YC SAFE", "chunk_count": 3}],
        "count": 1,
    }
    mock_list.assert_awaited_once_with("safe_template", 5, 0)
    assert stats.json() == {"stats": {"safe_template": 1}}
    assert deleted.json() == {"deleted": True, "id": "d1"}
    assert missing.status_code == 404
