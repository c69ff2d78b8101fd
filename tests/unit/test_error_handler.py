"""Unit tests for the error handling middleware."""

from fastapi import FastAPI
from fastapi.testclient import TestClient
from starlette.middleware.base import BaseHTTPMiddleware

from src.api.middleware.error_handler import (
    RateLimitError,
    ServiceUnavailableError,
    ValidationError,
    error_handler_middleware,
)
from src.services.chat_errors import ChatNetworkError


def make_client() -> TestClient:
    app = FastAPI()
    app.add_middleware(BaseHTTPMiddleware, dispatch=error_handler_middleware)

    @app.get("/validation")
    async def validation() -> None:
        raise ValidationError("Recipe is not ready to order", details=[{"phase": "top"}])

    @app.get("/unavailable")
    async def unavailable() -> None:
        raise ServiceUnavailableError("Lab sessions are not available")

    @app.get("/limited")
    async def limited() -> None:
        raise RateLimitError(retry_after=12, limit=20)

    @app.get("/backend")
    async def backend() -> None:
        raise ChatNetworkError("NetworkError: refused")

    @app.get("/boom")
    async def boom() -> None:
        raise RuntimeError("secret internals")

    return TestClient(app, raise_server_exceptions=False)


class TestErrorHandlerMiddleware:
    """Tests for error_handler_middleware."""

    def test_validation_error(self) -> None:
        response = make_client().get("/validation", headers={"X-Request-ID": "req-1"})

        assert response.status_code == 422
        data = response.json()
        assert data["error"] == "validation_error"
        assert data["message"] == "Recipe is not ready to order"
        assert data["details"] == [{"phase": "top"}]
        assert data["request_id"] == "req-1"

    def test_service_unavailable(self) -> None:
        response = make_client().get("/unavailable")

        assert response.status_code == 503
        assert response.json()["error"] == "service_unavailable"
        assert "details" not in response.json()

    def test_rate_limit_headers(self) -> None:
        response = make_client().get("/limited")

        assert response.status_code == 429
        assert response.headers["Retry-After"] == "12"
        assert response.headers["X-RateLimit-Limit"] == "20"
        assert response.headers["X-RateLimit-Remaining"] == "0"

    def test_chat_backend_failure_is_bad_gateway(self) -> None:
        response = make_client().get("/backend")

        assert response.status_code == 502
        assert response.json()["error"] == "chat_backend_error"
        assert response.json()["message"] == "NetworkError: refused"

    def test_unexpected_error_hidden(self) -> None:
        """Test that unhandled exceptions do not leak their message."""
        response = make_client().get("/boom")

        assert response.status_code == 500
        assert response.json()["message"] == "An unexpected error occurred"
