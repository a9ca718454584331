"""Tests for health probes and the root endpoint."""
import pytest

from app.utils.prometheus_metrics import ready


@pytest.fixture
def app_ready():
    # ASGITransport은 lifespan을 실행하지 않으므로 직접 설정
    ready.set(1)
    yield
    ready.set(0)


class TestHealth:
    @pytest.mark.asyncio
    async def test_healthy(self, client, app_ready):
        response = await client.get("/health/")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    @pytest.mark.asyncio
    async def test_probes(self, client, app_ready):
        assert (await client.get("/health/liveness")).json() == {"status": "alive"}
        assert (await client.get("/health/readiness")).json() == {"status": "ready"}

    @pytest.mark.asyncio
    async def test_shutting_down(self, client):
        ready.set(0)
        assert (await client.get("/health/")).status_code == 503
        assert (await client.get("/health/readiness")).status_code == 503


@pytest.mark.asyncio
async def test_root(client):
    response = await client.get("/")
    assert response.status_code == 200
    body = response.json()
    assert body["name"] == "Pastely API"
    assert body["api"] == "/api/v1/pastes"


@pytest.mark.asyncio
async def test_metrics_exposed(client):
    response = await client.get("/metrics")
    assert response.status_code == 200
    assert "pastely_app_info" in response.text
