# tests/test_control_server.py

from __future__ import annotations

import pytest
import pytest_asyncio
from aiohttp.test_utils import TestClient, TestServer

from queue_pilot.control.server import MAX_BODY_BYTES, ControlServer


@pytest_asyncio.fixture()
async def client(state):
    http = TestClient(TestServer(ControlServer(state).build_app()))
    await http.start_server()
    yield http
    await http.close()


@pytest.mark.asyncio
async def test_action_round_trip(client) -> None:
    resp = await client.post("/", json={"action": "getEnabled"})
    assert resp.status == 200
    assert await resp.json() == {"success": True, "enabled": True}


@pytest.mark.asyncio
async def test_params_are_forwarded(client, state) -> None:
    resp = await client.post("/", json={"action": "setPrompts", "params": {"prompts": ["x", "y"]}})
    assert (await resp.json())["count"] == 2
    assert state.store.list_prompts() == ["x", "y"]


@pytest.mark.asyncio
async def test_unknown_action_is_a_200_error(client) -> None:
    resp = await client.post("/", json={"action": "nope"})
    assert resp.status == 200
    assert (await resp.json())["error"] == "Unknown action: nope"


@pytest.mark.asyncio
async def test_invalid_json(client) -> None:
    resp = await client.post("/", data=b"{broken", headers={"Content-Type": "application/json"})
    assert resp.status == 400
    assert (await resp.json())["error"] == "Invalid JSON"


@pytest.mark.asyncio
async def test_missing_action(client) -> None:
    resp = await client.post("/", json={"params": {}})
    assert resp.status == 400
    assert (await resp.json())["error"] == "Missing action"


@pytest.mark.asyncio
async def test_params_must_be_an_object(client) -> None:
    resp = await client.post("/", json={"action": "getEnabled", "params": [1, 2]})
    assert resp.status == 400


@pytest.mark.asyncio
async def test_oversized_body_is_rejected(client) -> None:
    resp = await client.post("/", data=b"x" * (MAX_BODY_BYTES + 1))
    assert resp.status == 413


@pytest.mark.asyncio
async def test_only_post_is_routed(client) -> None:
    resp = await client.get("/")
    assert resp.status == 405


@pytest.mark.asyncio
async def test_server_start_and_stop(state) -> None:
    server = ControlServer(state, host="127.0.0.1", port=0)
    await server.start()
    await server.start()
    await server.stop()
    await server.stop()
