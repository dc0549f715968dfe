"""Tests for the REST API endpoints."""

import json

import pytest
from fastapi import HTTPException
from unittest.mock import MagicMock

import core.api as api_mod
from core.api import (
    api_host, api_mission, api_missions, api_path, api_player_missions,
    api_players, api_stats, get_engine,
)
from core.engine import BASE_DIR, Engine


@pytest.fixture
def engine():
    eng = Engine(BASE_DIR / "config" / "neoncloud.yaml")
    eng.config["engine"]["time_scale"] = 0.0
    eng.load_content()
    api_mod._engine = eng
    yield eng
    api_mod._engine = None


async def _online(engine, name="neo"):
    session = MagicMock()
    session.player = await engine.create_player(name)
    engine.players[name.lower()] = session
    engine.sessions[1] = session
    return session


class TestAPIStats:
    @pytest.mark.asyncio
    async def test_stats_endpoint(self, engine):
        await _online(engine)
        result = json.loads((await api_stats()).body)
        assert result["game"] == "neoncloud"
        assert result["players_online"] == 1
        assert result["hosts_loaded"] == len(engine.world.hosts)
        assert result["missions_loaded"] == len(engine.missions)
        assert result["persistence"] == "memory"

    @pytest.mark.asyncio
    async def test_engine_not_ready(self):
        api_mod._engine = None
        with pytest.raises(HTTPException) as exc:
            get_engine()
        assert exc.value.status_code == 503


class TestAPIPlayers:
    @pytest.mark.asyncio
    async def test_players(self, engine):
        await _online(engine)
        result = json.loads((await api_players()).body)
        assert result["count"] == 1
        entry = result["players"][0]
        assert entry["name"] == "neo"
        assert entry["host"] == "localhost"
        assert entry["current_mission"] == "welcome-00"

    @pytest.mark.asyncio
    async def test_player_missions(self, engine):
        await _online(engine)
        result = json.loads((await api_player_missions("NEO")).body)
        statuses = {m["id"]: m["status"] for m in result["missions"]}
        assert statuses["welcome-00"] == "active"
        assert statuses["tutorial-01"] == "locked"
        assert result["missions"][0]["tasks_total"] == 2

    @pytest.mark.asyncio
    async def test_player_offline(self, engine):
        with pytest.raises(HTTPException) as exc:
            await api_player_missions("ghost")
        assert exc.value.status_code == 404


class TestAPIMissions:
    @pytest.mark.asyncio
    async def test_missions_in_order(self, engine):
        result = json.loads((await api_missions()).body)
        assert result["missions"][0]["id"] == "welcome-00"
        assert result["categories"][0] == "training"

    @pytest.mark.asyncio
    async def test_mission(self, engine):
        result = json.loads((await api_mission("tutorial-01")).body)
        assert result["prerequisites"] == ["welcome-00"]
        assert result["unlock_commands"] == ["ping", "traceroute", "nslookup"]
        with pytest.raises(HTTPException):
            await api_mission("nope")


class TestAPIWorld:
    @pytest.mark.asyncio
    async def test_host_by_ip(self, engine):
        result = json.loads((await api_host("192.168.1.100")).body)
        assert result["id"] == "server-01"
        assert result["neighbors"] == ["megacorp-gateway"]
        assert "credentials" not in result

    @pytest.mark.asyncio
    async def test_path(self, engine):
        result = json.loads((await api_path("localhost", "server-02")).body)
        assert result["hops"] == 4
        assert result["path"][-1] == "server-02"
        with pytest.raises(HTTPException) as exc:
            await api_path("localhost", "nowhere")
        assert exc.value.status_code == 404
