"""Shared SQLite plumbing for the blob store and the snapshot store.

Designed for single-host usage. Every call opens its own connection, so the
blocking work can be pushed onto worker threads with ``asyncio.to_thread``.
"""

from __future__ import annotations

import asyncio
import logging
import os
import sqlite3
from pathlib import Path
from typing import Any, Callable, Optional, TypeVar

from .errors import StoreNotReadyError
from .migrations import ensure_schema


T = TypeVar("T")

logger = logging.getLogger("studio.sqlite")


def default_db_path() -> str:
    return os.getenv("STUDIO_DB_PATH", str(Path.cwd() / "studio_shot.db"))


class SQLiteStore:
    name = "store"

    def __init__(self, db_path: Optional[str] = None) -> None:
        self.db_path = db_path or default_db_path()
        self._ready = False
        self._open_lock: Optional[asyncio.Lock] = None

    @property
    def is_ready(self) -> bool:
        return self._ready

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=30, isolation_level=None)
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA synchronous=NORMAL;")
        return conn

    def _ensure_schema(self) -> None:
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            ensure_schema(conn)

    async def open(self) -> None:
        """Create the schema once. Safe to await repeatedly; failures propagate."""
        if self._ready:
            return
        if self._open_lock is None:
            self._open_lock = asyncio.Lock()
        async with self._open_lock:
            if self._ready:
                return
            await asyncio.to_thread(self._ensure_schema)
            self._ready = True
            logger.debug(f"Opened {self.name} at {self.db_path}")

    async def _run(self, fn: Callable[..., T], *args: Any) -> T:
        if not self._ready:
            raise StoreNotReadyError(self.name)
        return await asyncio.to_thread(fn, *args)

    async def __aenter__(self):
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        return None
