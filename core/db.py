"""Database layer — asyncpg connection pool, agent accounts, snapshots."""

from __future__ import annotations

import json
import logging
import os
from typing import Any

import asyncpg

log = logging.getLogger(__name__)


class Database:
    """Async PostgreSQL database wrapper."""

    def __init__(self, config: dict[str, Any]) -> None:
        self._config = config
        self._pool: asyncpg.Pool | None = None

    @property
    def pool(self) -> asyncpg.Pool:
        assert self._pool is not None, "Database not connected"
        return self._pool

    async def connect(self) -> None:
        host = os.environ.get("DB_HOST", self._config["host"])
        dsn = (
            f"postgresql://{self._config['user']}:{self._config['password']}"
            f"@{host}:{self._config['port']}"
            f"/{self._config['database']}"
        )
        self._pool = await asyncpg.create_pool(
            dsn,
            min_size=self._config.get("min_connections", 1),
            max_size=self._config.get("max_connections", 5),
        )
        log.info("Database pool created: %s", self._config["database"])

    async def close(self) -> None:
        if self._pool:
            await self._pool.close()
            self._pool = None
            log.info("Database pool closed")

    async def ensure_schema(self) -> None:
        """Create the agents table if it doesn't exist."""
        async with self.pool.acquire() as conn:
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS agents (
                    id            SERIAL PRIMARY KEY,
                    name          TEXT UNIQUE NOT NULL,
                    password_hash TEXT NOT NULL DEFAULT '',
                    snapshot      JSONB NOT NULL DEFAULT '{}',
                    created_at    TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                    saved_at      TIMESTAMPTZ,
                    last_login    TIMESTAMPTZ
                )
            """)

    # ── Agent accounts ───────────────────────────────────────────

    async def fetch_agent(self, name: str) -> asyncpg.Record | None:
        async with self.pool.acquire() as conn:
            return await conn.fetchrow(
                "SELECT * FROM agents WHERE LOWER(name) = LOWER($1)", name
            )

    async def create_agent(self, *, name: str, password_hash: str) -> asyncpg.Record:
        async with self.pool.acquire() as conn:
            return await conn.fetchrow(
                "INSERT INTO agents (name, password_hash, last_login) "
                "VALUES ($1, $2, NOW()) "
                "ON CONFLICT (name) DO UPDATE SET password_hash = $2, last_login = NOW() "
                "RETURNING *",
                name, password_hash,
            )

    async def touch_login(self, name: str) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                "UPDATE agents SET last_login = NOW() WHERE LOWER(name) = LOWER($1)", name
            )

    # ── Snapshots ────────────────────────────────────────────────

    async def save_snapshot(self, name: str, data: dict[str, Any]) -> None:
        payload = json.dumps(data, ensure_ascii=False)
        async with self.pool.acquire() as conn:
            await conn.execute(
                "INSERT INTO agents (name, snapshot, saved_at) VALUES ($1, $2, NOW()) "
                "ON CONFLICT (name) DO UPDATE SET snapshot = $2, saved_at = NOW()",
                name, payload,
            )

    async def load_snapshot(self, name: str) -> dict[str, Any] | None:
        async with self.pool.acquire() as conn:
            raw = await conn.fetchval(
                "SELECT snapshot FROM agents WHERE LOWER(name) = LOWER($1)", name
            )
        if raw is None:
            return None
        if isinstance(raw, str):
            raw = json.loads(raw) if raw else {}
        return raw or None


class MemorySnapshotStore:
    """In-process snapshot store used when no database is configured."""

    def __init__(self) -> None:
        self._snapshots: dict[str, str] = {}

    async def save_snapshot(self, name: str, data: dict[str, Any]) -> None:
        self._snapshots[name.lower()] = json.dumps(data, ensure_ascii=False)

    async def load_snapshot(self, name: str) -> dict[str, Any] | None:
        raw = self._snapshots.get(name.lower())
        return json.loads(raw) if raw is not None else None

    def __contains__(self, name: str) -> bool:
        return name.lower() in self._snapshots
