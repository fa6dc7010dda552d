from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from app.main import create_app
from conftest import FakeEmbedder
from core.services.memory_service import MemoryService
from rate_limiter import RateLimitConfig, RateLimitRule
from security_middleware import RequestSizeLimitConfig

NO_RATE_LIMIT = RateLimitConfig(enabled=False, global_ip=RateLimitRule(limit=0, window_seconds=60))
IDENTITY = {
    "X-EC-Author-Name": "Alice",
    "X-EC-Author-Email": "alice@example.com",
    "X-EC-Repo": "acme/api",
}


def build_client(service, **kwargs) -> TestClient:
    kwargs.setdefault("rate_limit_config", NO_RATE_LIMIT)
    kwargs.setdefault("cors_origins", [])
    return TestClient(create_app(service=service, **kwargs))


@pytest.fixture
def client(inmemory_service):
    with build_client(inmemory_service) as test_client:
        yield test_client


def add(client, content="Use postgres", headers=None, **fields):
    payload = {"type": "decision", "area": "db", "content": content}
    payload.update(fields)
    return client.post("/v1/memories", json=payload, headers=headers or {})


def test_add_returns_201_with_attribution(client):
    response = add(client, rationale="Team knows it", headers=IDENTITY)

    assert response.status_code == 201
    memory = response.json()["memory"]
    assert memory["id"] > 0
    assert memory["type"] == "decision"
    assert memory["is_valid"] is True
    assert memory["author_name"] == "Alice"
    assert memory["author_email"] == "alice@example.com"
    assert memory["project_scope"] == "acme/api"
    assert response.headers["x-request-id"]


def test_add_drops_malformed_repo_header(client):
    response = add(client, headers={"X-EC-Author-Name": "Alice", "X-EC-Repo": "not-a-repo"})

    assert response.status_code == 201
    memory = response.json()["memory"]
    assert memory["author_name"] == "Alice"
    assert memory["project_scope"] == ""


def test_add_invalid_type_is_400(client):
    response = add(client, type="opinion")

    assert response.status_code == 400
    assert "type" in response.json()["error"]


def test_add_missing_fields_is_400(client):
    response = client.post("/v1/memories", json={"type": "decision"})

    assert response.status_code == 400
    assert response.json()["error"]


def test_add_malformed_json_is_400(client):
    response = client.post(
        "/v1/memories",
        content=b"{not json",
        headers={"Content-Type": "application/json"},
    )

    assert response.status_code == 400


def test_routes_served_at_root_and_v1(client):
    assert add(client).status_code == 201
    assert client.get("/memories").status_code == 200
    assert client.get("/v1/memories").status_code == 200


def test_search_with_scope_and_default_limit(client):
    add(client, "Use postgres", headers=IDENTITY)
    add(client, "Use sqlite", headers={"X-EC-Repo": "acme/cli"})

    response = client.post("/v1/memories/search", json={"query": "database", "repo": "acme/cli"})

    assert response.status_code == 200
    assert [memory["content"] for memory in response.json()["memories"]] == ["Use sqlite"]

    unscoped = client.post("/v1/memories/search", json={"query": "database", "limit": 0})
    assert len(unscoped.json()["memories"]) == 2


def test_search_validation(client):
    assert client.post("/v1/memories/search", json={"query": ""}).status_code == 400
    assert client.post("/v1/memories/search", json={"query": "q", "limit": 101}).status_code == 400
    assert client.post("/v1/memories/search", json={"query": "q", "project_scope": "bad"}).status_code == 400


def test_list_pagination(client):
    for index in range(3):
        add(client, f"m{index}")

    first = client.get("/v1/memories", params={"limit": 2}).json()
    assert [memory["content"] for memory in first["memories"]] == ["m2", "m1"]
    assert first["pagination"] == {"limit": 2, "offset": 0, "has_more": True}

    second = client.get("/v1/memories", params={"limit": 2, "offset": 2}).json()
    assert [memory["content"] for memory in second["memories"]] == ["m0"]
    assert second["pagination"]["has_more"] is False


def test_list_validation(client):
    assert client.get("/v1/memories", params={"limit": 0}).status_code == 400
    assert client.get("/v1/memories", params={"limit": 101}).status_code == 400
    assert client.get("/v1/memories", params={"offset": -1}).status_code == 400
    assert client.get("/v1/memories", params={"limit": "abc"}).status_code == 400


def test_list_filters_by_repo_param(client):
    add(client, "scoped", headers=IDENTITY)
    add(client, "unscoped")

    body = client.get("/v1/memories", params={"repo": "acme/api"}).json()

    assert [memory["content"] for memory in body["memories"]] == ["scoped"]


def test_invalidate_flow(client):
    old = add(client, "old").json()["memory"]["id"]
    new = add(client, "new").json()["memory"]["id"]

    response = client.put(f"/v1/memories/{old}/invalidate", json={"superseded_by": new})

    assert response.status_code == 200
    assert response.json()["message"] == f"Memory {old} has been invalidated. Superseded by memory {new}."
    listed = client.get("/v1/memories").json()["memories"]
    assert [memory["id"] for memory in listed] == [new]

    again = client.put(f"/v1/memories/{old}/invalidate")
    assert again.status_code == 200


def test_invalidate_without_body_and_zero_successor(client):
    memory_id = add(client).json()["memory"]["id"]

    response = client.put(f"/v1/memories/{memory_id}/invalidate", json={"superseded_by": 0})

    assert response.json()["message"] == f"Memory {memory_id} has been invalidated."


def test_invalidate_unknown_is_404(client):
    response = client.put("/v1/memories/999/invalidate")

    assert response.status_code == 404
    assert response.json() == {"error": "memory not found"}


def test_invalidate_non_numeric_id_is_400(client):
    assert client.put("/v1/memories/abc/invalidate").status_code == 400


def test_invalidate_negative_id_is_400(client, memory_store):
    response = client.put("/v1/memories/-3/invalidate")

    assert response.status_code == 400
    assert "id" in response.json()["error"]
    assert memory_store.invalidations == []


def test_invalidate_negative_successor_is_400(client, memory_store):
    memory_id = add(client).json()["memory"]["id"]

    response = client.put(f"/v1/memories/{memory_id}/invalidate", json={"superseded_by": -7})

    assert response.status_code == 400
    assert "superseded_by" in response.json()["error"]
    assert memory_store.invalidations == []
    listed = client.get("/v1/memories").json()["memories"]
    assert [memory["id"] for memory in listed] == [memory_id]


def test_embedding_outage_is_503(memory_store):
    service = MemoryService(memory_store, FakeEmbedder(fail=True))
    with build_client(service) as client:
        response = add(client)

    assert response.status_code == 503
    assert response.json() == {"error": "embedding provider unavailable"}


def test_health_ok(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_health_unhealthy_when_store_fails():
    service = MagicMock()
    service.health_check.side_effect = RuntimeError("connection refused")
    with build_client(service) as client:
        response = client.get("/health")

    assert response.status_code == 503
    assert response.json() == {"status": "unhealthy"}


def test_root_metadata(client):
    body = client.get("/").json()

    assert body["service"] == "engram"
    assert body["endpoints"]["memories"] == "/v1/memories"


def test_request_id_echoed(client):
    response = client.get("/health", headers={"X-Request-ID": "req-1"})

    assert response.headers["x-request-id"] == "req-1"


def test_body_too_large_is_413(inmemory_service):
    size_config = RequestSizeLimitConfig(enabled=True, max_body_bytes=64)
    with build_client(inmemory_service, request_size_config=size_config) as client:
        response = add(client, content="x" * 200)

    assert response.status_code == 413
    assert response.json() == {"error": "request_too_large"}


def test_rate_limit_returns_429(inmemory_service):
    limited = RateLimitConfig(enabled=True, global_ip=RateLimitRule(limit=2, window_seconds=60))
    with build_client(inmemory_service, rate_limit_config=limited) as client:
        assert client.get("/health").status_code == 200
        assert client.get("/health").status_code == 200
        response = client.get("/health")

    assert response.status_code == 429
    assert response.json() == {"error": "rate_limit_exceeded"}
    assert "retry-after" in response.headers


def test_cors_preflight(inmemory_service):
    with build_client(inmemory_service, cors_origins=["https://app.example.com"]) as client:
        response = client.options(
            "/v1/memories",
            headers={
                "Origin": "https://app.example.com",
                "Access-Control-Request-Method": "POST",
                "Access-Control-Request-Headers": "X-EC-Author-Name",
            },
        )

    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] == "https://app.example.com"
    assert "PUT" in response.headers["access-control-allow-methods"]
