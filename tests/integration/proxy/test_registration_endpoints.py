"""
Integration tests for POST /proxy.
"""

import uuid

import pytest
from fastapi.testclient import TestClient

TOKEN = "test_access_token_123456789abc"


class TestRegistrationEndpoint:
    """Registration through the HTTP API."""

    def test_register_returns_uuid(self, test_client: TestClient, auth_headers, upstream_server) -> None:
        response = test_client.post(
            "/proxy",
            json={"url": f"{upstream_server}/ok", "ttl": 60},
            headers=auth_headers,
        )

        assert response.status_code == 200
        body = response.json()
        assert set(body) == {"id"}
        assert uuid.UUID(body["id"]).version == 4
        assert len(test_client.app.state.store) == 1

    @pytest.mark.parametrize("ttl", [60, 3600])
    def test_ttl_bounds_are_inclusive(self, test_client: TestClient, auth_headers, ttl: int) -> None:
        response = test_client.post(
            "/proxy",
            json={"url": "http://example.test/", "ttl": ttl},
            headers=auth_headers,
        )
        assert response.status_code == 200

    @pytest.mark.parametrize("ttl", [0, 10, 59, 3601])
    def test_ttl_out_of_bounds(self, test_client: TestClient, auth_headers, ttl: int) -> None:
        response = test_client.post(
            "/proxy",
            json={"url": "http://example.test/", "ttl": ttl},
            headers=auth_headers,
        )

        assert response.status_code == 400
        assert response.json() == {
            "status": 400,
            "message": "bad request: ttl should be between 60 and 3600",
        }
        assert len(test_client.app.state.store) == 0

    @pytest.mark.parametrize(
        "headers",
        [{}, {"Authorization": "Bearer wrong"}, {"Authorization": "Basic abc"}],
    )
    def test_bad_ttl_is_reported_regardless_of_credentials(self, test_client: TestClient, headers) -> None:
        response = test_client.post("/proxy", json={"url": "http://example.test/", "ttl": 10}, headers=headers)

        assert response.status_code == 400
        assert response.json()["message"] == "bad request: ttl should be between 60 and 3600"

    @pytest.mark.parametrize(
        "headers,message",
        [
            ({}, "missing Authorization header"),
            ({"Authorization": b"Bearer \xff\xfe"}, "bad Authorization header"),
            ({"Authorization": TOKEN}, "bad Bearer token format"),
            ({"Authorization": f"Basic {TOKEN}"}, "bad Bearer token format"),
            ({"Authorization": "Bearer wrong"}, "bad token"),
        ],
    )
    def test_unauthorized(self, test_client: TestClient, headers, message: str) -> None:
        response = test_client.post("/proxy", json={"url": "http://example.test/", "ttl": 60}, headers=headers)

        assert response.status_code == 401
        assert response.json() == {"status": 401, "message": message}
        assert len(test_client.app.state.store) == 0

    def test_malformed_json(self, test_client: TestClient, auth_headers) -> None:
        response = test_client.post(
            "/proxy",
            content=b"{not json",
            headers={**auth_headers, "Content-Type": "application/json"},
        )

        assert response.status_code == 400
        assert response.json()["message"].startswith("bad request: ")

    @pytest.mark.parametrize(
        "payload",
        [
            {"ttl": 60},
            {"url": "http://example.test/"},
            {"url": "", "ttl": 60},
            {"url": "http://example.test/", "ttl": -5},
            {"url": "http://example.test/", "ttl": "soon"},
        ],
    )
    def test_invalid_payload(self, test_client: TestClient, auth_headers, payload: dict) -> None:
        response = test_client.post("/proxy", json=payload, headers=auth_headers)

        assert response.status_code == 400
        assert response.json()["status"] == 400
        assert response.json()["message"].startswith("bad request: ")

    def test_oversized_body(self, test_client: TestClient, auth_headers) -> None:
        url = "http://example.test/" + "a" * 5000
        response = test_client.post("/proxy", json={"url": url, "ttl": 60}, headers=auth_headers)

        assert response.status_code == 400
        assert response.json() == {"status": 400, "message": "bad request: payload exceeds 4096 bytes"}
        assert len(test_client.app.state.store) == 0

    def test_oversized_chunked_body(self, test_client: TestClient, auth_headers) -> None:
        """Bodies without a Content-Length are counted while they stream in."""

        def chunks():
            yield b'{"url": "http://example.test/'
            for _ in range(5):
                yield b"a" * 1000
            yield b'", "ttl": 60}'

        response = test_client.post(
            "/proxy",
            content=chunks(),
            headers={**auth_headers, "Content-Type": "application/json"},
        )

        assert response.status_code == 400
        assert response.json() == {"status": 400, "message": "bad request: payload exceeds 4096 bytes"}
        assert len(test_client.app.state.store) == 0

    def test_wrong_method(self, test_client: TestClient) -> None:
        response = test_client.put("/proxy", json={})

        assert response.status_code == 405
        assert response.json() == {"status": 405, "message": "method not allowed"}
