"""Unit tests for RequestLoggingMiddleware."""

from unittest.mock import patch

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from peekstash.infrastructure.observability.middleware import RequestLoggingMiddleware


@pytest.fixture
def client() -> TestClient:
    app = FastAPI()
    app.add_middleware(RequestLoggingMiddleware)

    @app.get("/ping")
    async def ping() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/error")
    async def error() -> None:
        raise ValueError("broken")

    return TestClient(app, raise_server_exceptions=False)


class TestRequestLoggingMiddleware:
    def test_incoming_correlation_id_echoed(self, client: TestClient) -> None:
        response = client.get("/ping", headers={"X-Correlation-ID": "trace-42"})

        assert response.status_code == 200
        assert response.headers["X-Correlation-ID"] == "trace-42"

    def test_correlation_id_generated_when_missing(self, client: TestClient) -> None:
        first = client.get("/ping").headers["X-Correlation-ID"]
        second = client.get("/ping").headers["X-Correlation-ID"]

        assert len(first) == 36
        assert first != second

    def test_successful_request_logged(self, client: TestClient) -> None:
        with patch("peekstash.infrastructure.observability.middleware.logger") as mock_logger:
            client.get("/ping")

        mock_logger.info.assert_called_once()
        extra = mock_logger.info.call_args.kwargs["extra"]
        assert (extra["method"], extra["path"], extra["status_code"]) == ("GET", "/ping", 200)

    def test_failure_logged_with_error_type(self, client: TestClient) -> None:
        with patch("peekstash.infrastructure.observability.middleware.logger") as mock_logger:
            response = client.get("/error")

        assert response.status_code == 500
        mock_logger.exception.assert_called_once()
        assert mock_logger.exception.call_args.kwargs["extra"]["error_type"] == "ValueError"
