"""Tests for health endpoints and the response headers every request gets."""

import pytest


@pytest.mark.unit
class TestHealth:

    async def test_liveness(self, client):
        resp = await client.get("/api/v1/health/")
        assert resp.status_code == 200
        assert resp.json()["app"] == "OA Workflow Service"

    async def test_unversioned_probe(self, client):
        """Load balancers probe /api/health without the version prefix."""
        resp = await client.get("/api/health/health")
        assert resp.status_code == 200
        assert resp.json()["database"] == "ok"

    async def test_request_id_generated_and_echoed(self, client):
        generated = await client.get("/api/v1/health/")
        assert generated.headers["x-request-id"]

        echoed = await client.get("/api/v1/health/", headers={"X-Request-ID": "req-42"})
        assert echoed.headers["x-request-id"] == "req-42"

    async def test_security_headers(self, client):
        resp = await client.get("/api/v1/health/")
        assert resp.headers["x-content-type-options"] == "nosniff"
        assert resp.headers["x-frame-options"] == "DENY"

    async def test_error_payload_carries_request_id(self, client, org, auth_headers):
        resp = await client.get(
            "/api/v1/workflow-instances/missing",
            headers={**auth_headers(org.u1), "X-Request-ID": "req-404"},
        )
        assert resp.status_code == 404
        assert resp.json()["request_id"] == "req-404"
