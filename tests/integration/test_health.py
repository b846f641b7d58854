"""Integration tests for health check endpoints."""

from unittest.mock import MagicMock, patch

from fastapi.testclient import TestClient


class TestHealthEndpoint:
    """Tests for /health endpoint."""

    def test_health_returns_healthy_status(self, client: TestClient) -> None:
        """Test that /health returns 200 with healthy status, timestamp and version."""
        response = client.get("/health")
        data = response.json()

        assert response.status_code == 200
        assert data["status"] == "healthy"
        assert data["timestamp"] is not None
        assert data["version"] == "0.1.0"


class TestReadinessEndpoint:
    """Tests for /health/ready endpoint."""

    def test_readiness_returns_200_when_healthy(self, client: TestClient) -> None:
        """Test that /health/ready returns 200 when the record store answers."""
        response = client.get("/health/ready")
        data = response.json()

        assert response.status_code == 200
        assert data["status"] == "healthy"

    def test_readiness_includes_database_check(self, client: TestClient, mock_supabase_client: MagicMock) -> None:
        """Test that the database check queries the profiles table and reports latency."""
        response = client.get("/health/ready")
        data = response.json()

        db_check = next(c for c in data["checks"] if c["name"] == "database")
        assert db_check["healthy"] is True
        assert db_check["latency_ms"] is not None
        mock_supabase_client.table.assert_called_with("profiles")

    def test_readiness_returns_503_when_database_unhealthy(self, mock_supabase_client: MagicMock) -> None:
        """Test that /health/ready returns 503 with the error when the database fails."""
        mock_supabase_client.table.return_value.select.return_value.limit.return_value.execute.side_effect = Exception(
            "Connection failed"
        )

        from src.main import app

        with TestClient(app) as test_client:
            response = test_client.get("/health/ready")

        assert response.status_code == 503
        data = response.json()
        assert data["status"] == "unhealthy"
        db_check = next(c for c in data["checks"] if c["name"] == "database")
        assert db_check["healthy"] is False
        assert db_check["error"] == "Connection failed"


class TestErrorResponseSchema:
    """Tests for error response schema compliance."""

    def test_unhandled_exception_returns_error_envelope(self) -> None:
        """Test that unexpected errors are returned as internal_error with a timestamp."""
        with patch(
            "src.api.routes.health.check_database_connection",
            side_effect=Exception("Test error"),
        ):
            from src.main import app

            with TestClient(app, raise_server_exceptions=False) as test_client:
                response = test_client.get("/health/ready")

        assert response.status_code == 500
        data = response.json()
        assert data["error"] == "internal_error"
        assert "timestamp" in data
