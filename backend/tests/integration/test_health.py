"""Integration test for the /health endpoint.

Total: 2 tests
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from httpx import ASGITransport, AsyncClient

from appraise.main import app


def _engine(*, fail: bool = False) -> MagicMock:
    # engine.connect() returns an async context manager
    mock_conn = AsyncMock()
    mock_conn.execute = AsyncMock(side_effect=OSError("connection refused") if fail else None)
    mock_conn.__aenter__ = AsyncMock(return_value=mock_conn)
    mock_conn.__aexit__ = AsyncMock(return_value=None)

    mock_engine = MagicMock()
    mock_engine.connect = MagicMock(return_value=mock_conn)
    return mock_engine


@pytest.mark.asyncio
async def test_health_check_reports_healthy_database():
    """GET /health returns 200 with the database service marked healthy."""
    with patch("appraise.main.engine", _engine()):
        async with AsyncClient(
            transport=ASGITransport(app=app), base_url="http://test"
        ) as client:
            response = await client.get("/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["services"]["database"]["status"] == "healthy"


@pytest.mark.asyncio
async def test_health_check_degrades_when_database_is_down():
    with patch("appraise.main.engine", _engine(fail=True)):
        async with AsyncClient(
            transport=ASGITransport(app=app), base_url="http://test"
        ) as client:
            response = await client.get("/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "degraded"
    assert "connection refused" in data["services"]["database"]["error"]
