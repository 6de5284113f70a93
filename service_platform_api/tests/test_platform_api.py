"""
Unit tests for the Platform API service.
"""

import uuid
from datetime import datetime
from unittest.mock import MagicMock, patch

import pytest
from fastapi import HTTPException, Query
from fastapi.testclient import TestClient

from service_platform_api.app.main import PlatformAPIService, create_app, main
from shared.base_service import GRACEFUL_SHUTDOWN_SECONDS, format_rfc3339
from shared.config import ConfigurationError


@pytest.fixture(autouse=True)
def quiet_env(monkeypatch, tmp_path):
    """Run with metrics and tracing off and no local .env file."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("METRICS_ENABLED", "false")
    monkeypatch.setenv("TRACING_ENABLED", "false")
    monkeypatch.delenv("PORT", raising=False)
    monkeypatch.delenv("PROVISIONING_HOST", raising=False)


class TestPlatformAPIService:
    """Test cases for PlatformAPIService."""

    @pytest.fixture
    def service(self):
        """Create PlatformAPIService instance."""
        return PlatformAPIService()

    @pytest.fixture
    def client(self, service):
        """Create test client."""
        return TestClient(service.app)

    def test_health_endpoint(self, client):
        """Test health endpoint."""
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["service"] == "platform-api"
        assert data["version"] == "1.0.0"
        assert data["timestamp"].endswith("Z")
        datetime.fromisoformat(data["timestamp"].replace("Z", "+00:00"))

    def test_health_ignores_provisioning_service(self, monkeypatch):
        """Test health does not depend on the provisioning service being reachable."""
        monkeypatch.setenv("PROVISIONING_HOST", "unreachable.invalid")
        monkeypatch.setenv("PROVISIONING_PORT", "1")

        client = TestClient(create_app())

        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_api_status_endpoint(self, client):
        """Test API status endpoint."""
        response = client.get("/api/v1/status")
        assert response.status_code == 200
        assert response.json() == {"version": "1.0.0", "service": "platform-api"}

    def test_api_status_is_idempotent(self, client):
        """Test repeated status calls return byte-identical bodies."""
        bodies = {client.get("/api/v1/status").content for _ in range(5)}
        assert len(bodies) == 1

    def test_trace_header_on_every_response(self, client):
        """Test responses carry the caller's trace ID."""
        response = client.get("/api/v1/status", headers={"X-Trace-ID": "abc123"})
        assert response.headers["X-Trace-ID"] == "abc123"

    def test_unknown_route_envelope(self, client):
        """Test unknown routes render the not-found envelope."""
        response = client.get("/api/v1/nope", headers={"X-Trace-ID": "abc123"})

        assert response.status_code == 404
        assert response.json() == {
            "error": "NOT_FOUND",
            "message": "Not Found",
            "statusCode": 404,
            "traceId": "abc123",
        }
        assert response.headers["X-Trace-ID"] == "abc123"

    def test_method_not_allowed_keeps_default_response(self, client):
        """Test statuses outside the taxonomy use the framework response."""
        response = client.post("/api/v1/status")
        assert response.status_code == 405
        assert response.json() == {"detail": "Method Not Allowed"}

    def test_request_validation_envelope(self, service, client):
        """Test request validation failures become VALIDATION_ERROR envelopes."""

        @service.app.get("/api/v1/environments")
        async def list_environments(limit: int = Query(...)):
            return {"limit": limit}

        response = client.get("/api/v1/environments", params={"limit": "many"})

        body = response.json()
        assert response.status_code == 400
        assert body["error"] == "VALIDATION_ERROR"
        assert body["statusCode"] == 400
        assert body["details"] == {"field": "query.limit"}
        assert body["message"].startswith("Invalid request: ")

    def test_handler_fault_does_not_stop_service(self, service, client):
        """Test a crashing route is contained and the service keeps serving."""

        @service.app.get("/api/v1/crash")
        async def crash():
            raise ZeroDivisionError("division by zero in quota calculation")

        response = client.get("/api/v1/crash")
        assert response.status_code == 500
        assert response.json()["error"] == "INTERNAL_ERROR"
        assert "quota" not in response.text

        assert client.get("/health").status_code == 200

    def test_http_exception_headers_preserved(self, service, client):
        """Test headers on a translated HTTPException reach the client."""

        @service.app.get("/api/v1/private")
        async def private():
            raise HTTPException(status_code=401, detail="missing token", headers={"WWW-Authenticate": "Bearer"})

        response = client.get("/api/v1/private", headers={"X-Trace-ID": "abc123"})

        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "Bearer"
        assert response.headers["X-Trace-ID"] == "abc123"
        assert response.json() == {
            "error": "UNAUTHORIZED",
            "message": "missing token",
            "statusCode": 401,
            "traceId": "abc123",
        }

    def test_lifespan_flushes_logging(self, service):
        """Test startup and shutdown hooks run and flush logging."""
        with patch("shared.base_service.shutdown_logging") as mock_shutdown:
            with TestClient(service.app) as client:
                assert client.get("/health").status_code == 200
        mock_shutdown.assert_called_once()

    def test_service_state_exposed(self, service):
        """Test the service instance is reachable from app state."""
        assert service.app.state.platform_service is service

    def test_metrics_enabled(self, monkeypatch):
        """Test a metrics collector is created when metrics are enabled."""
        monkeypatch.setenv("METRICS_ENABLED", "true")

        service = PlatformAPIService()
        TestClient(service.app).get("/health")

        assert service.metrics.registry.get_sample_value(
            "http_requests_total", {"method": "GET", "endpoint": "/health", "status_code": "200"}
        ) == 1.0

    def test_unmatched_paths_share_one_series(self, monkeypatch):
        """Test random unknown paths do not create new metric series."""
        monkeypatch.setenv("METRICS_ENABLED", "true")

        service = PlatformAPIService()
        client = TestClient(service.app)
        for _ in range(50):
            assert client.get(f"/scan/{uuid.uuid4()}").status_code == 404

        endpoints = {
            sample.labels["endpoint"]
            for metric in service.metrics.registry.collect()
            if metric.name == "http_requests"
            for sample in metric.samples
        }
        assert endpoints == {"unmatched"}
        assert service.metrics.registry.get_sample_value(
            "http_requests_total", {"method": "GET", "endpoint": "unmatched", "status_code": "404"}
        ) == 50.0

    def test_invalid_config_rejected(self, monkeypatch):
        """Test construction fails on an invalid port."""
        monkeypatch.setenv("PORT", "70000")

        with pytest.raises(ConfigurationError):
            PlatformAPIService()


class TestRun:
    """Test cases for process startup."""

    @patch("shared.base_service.uvicorn.run")
    def test_run_uses_server_settings(self, mock_run, monkeypatch):
        """Test uvicorn is started with the configured bind address and timeouts."""
        monkeypatch.setenv("PORT", "8088")
        monkeypatch.setenv("ADDR", "127.0.0.1")
        monkeypatch.setenv("IDLE_TIMEOUT", "90s")
        monkeypatch.setenv("LOG_LEVEL", "warn")

        service = PlatformAPIService()
        service.run()

        kwargs = mock_run.call_args.kwargs
        assert mock_run.call_args.args[0] is service.app
        assert kwargs["host"] == "127.0.0.1"
        assert kwargs["port"] == 8088
        assert kwargs["timeout_keep_alive"] == 90
        assert kwargs["timeout_graceful_shutdown"] == GRACEFUL_SHUTDOWN_SECONDS == 5
        assert kwargs["log_level"] == "warning"

    @patch("shared.base_service.uvicorn.run")
    def test_run_starts_metrics_server(self, mock_run, monkeypatch):
        """Test the metrics exporter starts before serving when enabled."""
        monkeypatch.setenv("METRICS_ENABLED", "true")
        monkeypatch.setenv("METRICS_PORT", "9393")

        service = PlatformAPIService()
        with patch.object(service.metrics, "start_metrics_server") as mock_start:
            service.run()

        mock_start.assert_called_once_with(9393)
        mock_run.assert_called_once()

    @patch("service_platform_api.app.main.PlatformAPIService")
    def test_main_exits_on_invalid_config(self, mock_service, monkeypatch):
        """Test main returns 1 without starting the server on bad config."""
        monkeypatch.setenv("PORT", "0")

        assert main() == 1
        mock_service.assert_not_called()

    @patch("service_platform_api.app.main.PlatformAPIService")
    def test_main_runs_service(self, mock_service):
        """Test main builds and runs the service."""
        instance = MagicMock()
        mock_service.return_value = instance

        assert main() == 0
        instance.run.assert_called_once()
        instance.logger.info.assert_called_once_with("Starting platform-api", version="1.0.0")


class TestFormatRfc3339:
    """Test cases for format_rfc3339."""

    def test_naive_datetime_treated_as_utc(self):
        """Test naive values are assumed to be UTC."""
        assert format_rfc3339(datetime(2024, 1, 2, 3, 4, 5)) == "2024-01-02T03:04:05Z"
