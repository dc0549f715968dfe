"""REST API — FastAPI read-only views of agents, missions and the world."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from fastapi import FastAPI, HTTPException
from fastapi.responses import JSONResponse

if TYPE_CHECKING:
    from core.engine import Engine
    from core.missions import Mission
    from core.world import Host

log = logging.getLogger(__name__)

app = FastAPI(title="NeonCloud Engine API", version="0.1.0")

# Engine reference, set by start_api()
_engine: Engine | None = None


def get_engine() -> Engine:
    if _engine is None:
        raise HTTPException(status_code=503, detail="Engine not ready")
    return _engine


def _mission_json(mission: Mission) -> dict[str, Any]:
    return {
        "id": mission.id,
        "title": mission.title,
        "category": mission.category,
        "difficulty": mission.difficulty,
        "reward": mission.reward,
        "prerequisites": list(mission.prerequisites),
        "unlock_commands": list(mission.unlock_commands),
        "tasks": [{"id": t.id, "description": t.description} for t in mission.tasks],
    }


def _host_json(host: Host) -> dict[str, Any]:
    return {
        "id": host.id,
        "name": host.name,
        "ip_address": host.ip_address,
        "domain_name": host.domain_name,
        "organization_id": host.organization_id,
        "role": host.role,
        "requires_vpn": host.requires_vpn,
        "ssh_enabled": host.ssh_enabled,
        "online": host.online,
        "connections": list(host.connections),
    }


# ── REST endpoints ────────────────────────────────────────────────

@app.get("/api/stats")
async def api_stats() -> JSONResponse:
    """Server statistics."""
    engine = get_engine()
    return JSONResponse({
        "game": engine.game_name,
        "uptime_seconds": int(engine.uptime),
        "players_online": len(engine.players),
        "connections": len(engine.sessions),
        "hosts_loaded": len(engine.world.hosts),
        "missions_loaded": len(engine.missions),
        "commands_registered": len(engine.commands),
        "persistence": "database" if engine.db is not None else "memory",
    })


@app.get("/api/players")
async def api_players() -> JSONResponse:
    """List online agents."""
    engine = get_engine()
    players = []
    for session in engine.players.values():
        p = session.player
        if p is None:
            continue
        players.append({
            "name": p.name,
            "host": p.active_host_id,
            "vpn_connected": p.vpn_connected,
            "balance": p.wallet.balance,
            "current_mission": p.missions.current_mission_id,
            "completed_missions": len(p.missions.completed_missions),
        })
    return JSONResponse({"players": players, "count": len(players)})


@app.get("/api/players/{name}/missions")
async def api_player_missions(name: str) -> JSONResponse:
    """One agent's mission progress."""
    engine = get_engine()
    session = engine.players.get(name.lower())
    if session is None or session.player is None:
        raise HTTPException(status_code=404, detail="Player not online")
    sm = session.player.missions
    missions = []
    for mission in engine.missions.ordered():
        done, total = sm.progress(mission.id)
        missions.append({
            "id": mission.id,
            "status": sm.status(mission.id),
            "tasks_done": done,
            "tasks_total": total,
        })
    return JSONResponse({
        "name": session.player.name,
        "current_mission": sm.current_mission_id,
        "completed": list(sm.completed_missions),
        "missions": missions,
    })


@app.get("/api/missions")
async def api_missions() -> JSONResponse:
    """All missions in play order."""
    engine = get_engine()
    return JSONResponse({
        "missions": [_mission_json(m) for m in engine.missions.ordered()],
        "categories": engine.missions.categories(),
    })


@app.get("/api/missions/{mission_id}")
async def api_mission(mission_id: str) -> JSONResponse:
    engine = get_engine()
    mission = engine.missions.get(mission_id)
    if mission is None:
        raise HTTPException(status_code=404, detail="Mission not found")
    return JSONResponse(_mission_json(mission))


@app.get("/api/world/hosts/{host_id}")
async def api_host(host_id: str) -> JSONResponse:
    """Host by id, IP address or domain name."""
    engine = get_engine()
    host = engine.world.resolve_host(host_id)
    if host is None:
        raise HTTPException(status_code=404, detail="Host not found")
    data = _host_json(host)
    data["neighbors"] = [h.id for h in engine.world.neighbors(host.id)]
    return JSONResponse(data)


@app.get("/api/world/path")
async def api_path(src: str, dst: str) -> JSONResponse:
    """Shortest hop path between two hosts."""
    engine = get_engine()
    a = engine.world.resolve_host(src)
    b = engine.world.resolve_host(dst)
    if a is None or b is None:
        raise HTTPException(status_code=404, detail="Host not found")
    path = engine.world.find_path(a.id, b.id)
    if path is None:
        raise HTTPException(status_code=404, detail="No route")
    return JSONResponse({"hops": len(path) - 1, "path": [h.id for h in path]})


# ── Server start/stop ──────────────────────────────────────────────

_server_task: asyncio.Task | None = None


async def start_api(engine: Engine, host: str = "0.0.0.0", port: int = 8080) -> None:
    """Start FastAPI server in background."""
    global _engine, _server_task
    _engine = engine

    import uvicorn

    config = uvicorn.Config(
        app, host=host, port=port,
        log_level="warning",
        access_log=False,
    )
    server = uvicorn.Server(config)
    _server_task = asyncio.create_task(server.serve())
    log.info("API server starting on %s:%d", host, port)


async def stop_api() -> None:
    """Stop FastAPI server."""
    global _engine, _server_task
    if _server_task:
        _server_task.cancel()
        try:
            await _server_task
        except asyncio.CancelledError:
            pass
        _server_task = None
    _engine = None
    log.info("API server stopped")
