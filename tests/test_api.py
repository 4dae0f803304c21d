"""
HTTP API tests: health, rooms, sheets, live roster, dice and tokens.
"""
import os
import tempfile

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport

from tablesync.main import registry, socket_app
from tablesync import config
from tablesync.managers.state_manager import init_db


@pytest_asyncio.fixture
async def client():
    # Fresh DB file per test
    tmp = tempfile.NamedTemporaryFile(suffix=".db", delete=False)
    tmp.close()
    config.settings.DB_PATH = tmp.name
    await init_db()
    async with httpx.AsyncClient(
        transport=ASGITransport(app=socket_app), base_url="http://test"
    ) as c:
        yield c
    os.unlink(tmp.name)


async def auth_headers(client, name="Alice"):
    res = await client.post("/api/auth/token", json={"display_name": name})
    assert res.status_code == 200, res.text
    return {"Authorization": f"Bearer {res.json()['token']}"}


# ─── Health ───────────────────────────────────────────────────────────────────

async def test_health(client):
    res = await client.get("/health")
    assert res.status_code == 200
    assert res.json()["status"] == "ok"


async def test_api_health_checks_database(client):
    res = await client.get("/api/health")
    assert res.status_code == 200
    body = res.json()
    assert body["status"] == "healthy"
    assert body["services"]["database"] == "connected"


# ─── Auth ─────────────────────────────────────────────────────────────────────

async def test_issue_token_and_whoami(client):
    res = await client.post("/api/auth/token", json={"display_name": "Alice", "user_id": "u-1"})
    assert res.status_code == 200
    token = res.json()["token"]

    me = await client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    assert me.json() == {"id": "u-1", "display_name": "Alice"}


async def test_whoami_requires_token(client):
    assert (await client.get("/api/auth/me")).status_code == 401
    bad = await client.get("/api/auth/me", headers={"Authorization": "Bearer nope"})
    assert bad.status_code == 401


async def test_blank_display_name_rejected(client):
    res = await client.post("/api/auth/token", json={"display_name": "   "})
    assert res.status_code == 400


# ─── Rooms ────────────────────────────────────────────────────────────────────

async def test_create_room_generates_code(client):
    res = await client.post("/api/rooms", json={"name": "Friday Game"})
    assert res.status_code == 201, res.text
    room = res.json()
    assert len(room["code"]) == 8
    assert room["code"] == room["code"].upper()
    assert room["name"] == "Friday Game"

    by_code = await client.get(f"/api/rooms/code/{room['code'].lower()}")
    assert by_code.status_code == 200
    assert by_code.json()["id"] == room["id"]

    by_id = await client.get(f"/api/rooms/{room['id']}")
    assert by_id.json()["code"] == room["code"]


async def test_custom_code_is_sanitized(client):
    res = await client.post("/api/rooms", json={"name": "X", "code": "ab-cd 12!34xyz"})
    assert res.status_code == 201
    assert res.json()["code"] == "ABCD1234"


async def test_duplicate_code_conflicts(client):
    assert (await client.post("/api/rooms", json={"code": "TABLE1"})).status_code == 201
    res = await client.post("/api/rooms", json={"code": "table1"})
    assert res.status_code == 409


async def test_unusable_custom_code_rejected(client):
    res = await client.post("/api/rooms", json={"code": "!!!"})
    assert res.status_code == 400


async def test_missing_room_404(client):
    assert (await client.get("/api/rooms/code/NOPE")).status_code == 404
    assert (await client.get("/api/rooms/does-not-exist")).status_code == 404


async def test_owner_only_room_delete(client):
    alice = await auth_headers(client, "Alice")
    bob = await auth_headers(client, "Bob")
    room = (await client.post("/api/rooms", json={"name": "Mine"}, headers=alice)).json()

    assert (await client.delete(f"/api/rooms/{room['id']}", headers=bob)).status_code == 403
    assert (await client.delete(f"/api/rooms/{room['id']}")).status_code == 403
    assert (await client.delete(f"/api/rooms/{room['id']}", headers=alice)).status_code == 200
    assert (await client.get(f"/api/rooms/{room['id']}")).status_code == 404


# ─── Live roster ──────────────────────────────────────────────────────────────

async def test_live_roster(client):
    registry.attach_gm("LIVEROOM", "api-gm")
    registry.attach_player("LIVEROOM", "api-p1", "Alice")

    res = await client.get("/api/rooms/code/LIVEROOM/roster")
    assert res.status_code == 200
    body = res.json()
    assert body["gmOnline"] is True
    assert [p["playerName"] for p in body["players"]] == ["Alice"]


async def test_live_roster_unknown_and_reserved(client):
    assert (await client.get("/api/rooms/code/NOT_LIVE/roster")).status_code == 404
    assert (await client.get("/api/rooms/code/__proto__/roster")).status_code == 400


# ─── Sheets ───────────────────────────────────────────────────────────────────

async def test_sheet_crud(client):
    sheet = {"name": "Theron", "class": "Ranger", "level": 4}
    res = await client.put("/api/sheets/sheet-1", json={"data": sheet})
    assert res.status_code == 200, res.text
    assert res.json()["data"] == sheet

    sheet["level"] = 5
    await client.put("/api/sheets/sheet-1", json={"data": sheet})
    assert (await client.get("/api/sheets/sheet-1")).json()["data"]["level"] == 5

    assert (await client.delete("/api/sheets/sheet-1")).status_code == 200
    assert (await client.get("/api/sheets/sheet-1")).status_code == 404
    assert (await client.delete("/api/sheets/sheet-1")).status_code == 404


async def test_owned_sheet_protected(client):
    alice = await auth_headers(client, "Alice")
    bob = await auth_headers(client, "Bob")
    await client.put("/api/sheets/s-2", json={"data": {"name": "Theron"}}, headers=alice)

    assert (await client.put("/api/sheets/s-2", json={"data": {}}, headers=bob)).status_code == 403
    assert (await client.delete("/api/sheets/s-2", headers=bob)).status_code == 403
    assert (await client.put("/api/sheets/s-2", json={"data": {"name": "T2"}}, headers=alice)).status_code == 200


# ─── Dice ─────────────────────────────────────────────────────────────────────

async def test_dice_endpoint(client):
    res = await client.post("/api/dice/roll", json={"notation": "2d6+3", "label": "Damage"})
    assert res.status_code == 200
    body = res.json()
    assert len(body["individualRolls"]) == 2
    assert body["finalResult"] == sum(body["individualRolls"]) + 3
    assert body["label"] == "Damage"


async def test_dice_endpoint_critical(client):
    res = await client.post("/api/dice/roll", json={"notation": "1d8+2", "critical": True})
    body = res.json()
    assert len(body["rolls"]) == 2
    assert body["critical"] is True


@pytest.mark.parametrize("payload", [{"notation": "bad"}, {"notation": "1d20", "mode": "sideways"}])
async def test_dice_endpoint_rejects(client, payload):
    res = await client.post("/api/dice/roll", json=payload)
    assert res.status_code == 400
