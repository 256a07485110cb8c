import pytest
import httpx
from ticketshare.main import app

@pytest.mark.asyncio
async def test_health():
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        r = await ac.get("/v1/health")
        assert r.status_code == 200
        assert r.json()["status"] == "ok"


@pytest.mark.asyncio
async def test_me_requires_session(client, host):
    r = await client.get("/v1/me")
    assert r.status_code == 401

    r = await client.get("/v1/me", headers={"Authorization": "Bearer ts_bogus_token"})
    assert r.status_code == 401

    r = await client.get("/v1/me", headers=host["headers"])
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["user_id"] == host["id"]
    assert body["verification_level"] == "host"
