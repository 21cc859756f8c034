"""Unit tests for the docatlas HTTP API.

Tests cover:
- Search and API-only search endpoints
- Document and API spec file retrieval
- Endpoint listing
- Error mapping to HTTP status codes
"""

import pytest
from fastapi.testclient import TestClient

from indexer.query_engine import QueryEngine
from server.rag_api import app, get_engine


@pytest.fixture
def client(engine):
    """Test client bound to an engine over the sample corpus."""
    app.dependency_overrides[get_engine] = lambda: engine
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def unindexed_client(config):
    app.dependency_overrides[get_engine] = lambda: QueryEngine(config)
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestSearch:

    def test_search_success(self, client):
        response = client.post("/search", json={"query": "VoiceSettingsResponseModel"})
        assert response.status_code == 200

        results = response.json()["results"]
        assert results[0]["name"] == "VoiceSettingsResponseModel"
        assert results[0]["sourceType"] == "schema"
        # unset optional fields are omitted
        assert "fullContent" not in results[0]

    def test_search_with_schema_definition(self, client):
        response = client.post("/search", json={"query": "VoiceSettingsResponseModel",
                                                "include_schema_definition": True})
        assert "stability" in response.json()["results"][0]["schemaDefinition"]

    def test_search_docs_only(self, client):
        response = client.post("/search", json={"query": "voice settings", "sources": ["docs"], "limit": 50})
        assert response.status_code == 200
        assert {r["sourceType"] for r in response.json()["results"]} == {"markdown"}

    def test_empty_query_is_bad_request(self, client):
        response = client.post("/search", json={"query": "  "})
        assert response.status_code == 400

    def test_invalid_limit_is_bad_request(self, client):
        assert client.post("/search", json={"query": "voice", "limit": 0}).status_code == 400

    def test_missing_query_is_validation_error(self, client):
        assert client.post("/search", json={}).status_code == 422

    def test_missing_artifacts_are_unavailable(self, unindexed_client):
        assert unindexed_client.post("/search", json={"query": "voice"}).status_code == 503

    def test_api_search(self, client):
        response = client.post("/search/api", json={"query": "history", "context_lines": 0})
        assert response.status_code == 200
        assert {r["path"] for r in response.json()["results"]} == {"legacy/swagger.yaml"}


class TestDocuments:

    def test_get_doc(self, client):
        response = client.get("/doc", params={"path": "a_models.mdx"})
        assert response.status_code == 200
        assert response.text.startswith("# Models")

    def test_get_missing_doc(self, client):
        assert client.get("/doc", params={"path": "missing.md"}).status_code == 404

    def test_get_doc_outside_root(self, client):
        assert client.get("/doc", params={"path": "../secret.md"}).status_code == 400

    def test_get_api_file_with_filter(self, client):
        response = client.get("/api-file", params={"filename": "openapi.json", "filter": "stability", "context": 2})
        assert response.status_code == 200
        assert "stability" in response.json()["snippet"]

    def test_get_json_api_file_without_filter(self, client):
        assert client.get("/api-file", params={"filename": "openapi.json"}).status_code == 400

    def test_list_endpoints(self, client):
        response = client.get("/endpoints", params={"category": "api/"})
        assert response.status_code == 200
        assert [e["operationId"] for e in response.json()["endpoints"]] == [
            "get_voice_settings", "get_default_voice_settings", "text_to_speech",
        ]
