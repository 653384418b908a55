"""Snapshot persistence for the non-binary job fields.

The whole job collection is stored as a single JSON document under a fixed
key. Last write wins; binary content never goes here.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Callable, Dict, List, Optional

from .sqlite import SQLiteStore


SNAPSHOT_KEY = "studio-shot-images"
SNAPSHOT_VERSION = 1

logger = logging.getLogger("studio.metadata")


class MetadataStore(SQLiteStore):
    name = "metadata store"

    def __init__(self, db_path: Optional[str] = None, key: str = SNAPSHOT_KEY) -> None:
        super().__init__(db_path)
        self.key = key
        self._write_lock: Optional[asyncio.Lock] = None
        # Set when the stored document could not be read; it is then never overwritten
        self.unusable = False

    async def load(self) -> Optional[List[Dict[str, Any]]]:
        """Return the saved job records, or None when no usable snapshot exists.

        A document that exists but cannot be understood marks the store
        ``unusable``: later saves are refused so it is kept for inspection.
        """
        raw = await self._run(self._read, self.key)
        if raw is None:
            return None
        try:
            document = json.loads(raw)
        except ValueError as e:
            return self._reject(f"unreadable JSON ({e})")
        # Unversioned documents are a bare list of records
        if isinstance(document, list):
            return document
        if not isinstance(document, dict):
            return self._reject(f"unexpected {type(document).__name__}")
        version = document.get("version")
        if version != SNAPSHOT_VERSION:
            return self._reject(f"version {version!r} (supported: {SNAPSHOT_VERSION})")
        images = document.get("images")
        if not isinstance(images, list):
            return self._reject("images is not a list")
        return images

    async def save(self, records: List[Dict[str, Any]]) -> None:
        if self.unusable:
            logger.error(f"Not saving {len(records)} images: snapshot {self.key} is unusable and kept as is")
            return
        document = json.dumps({"version": SNAPSHOT_VERSION, "images": records})
        await self._run(self._write, self.key, document)

    async def save_latest(self, snapshot: Callable[[], List[Dict[str, Any]]]) -> None:
        """Write whatever ``snapshot()`` returns once earlier writes have landed.

        Writes are serialized and the records are taken after the lock is held,
        so the newest collection is always the last one written.
        """
        if self._write_lock is None:
            self._write_lock = asyncio.Lock()
        async with self._write_lock:
            await self.save(snapshot())

    async def clear(self) -> None:
        await self._run(self._remove, self.key)
        self.unusable = False

    def _reject(self, reason: str) -> None:
        self.unusable = True
        logger.error(f"Ignoring snapshot {self.key}: {reason}. It will not be overwritten this session.")
        return None

    def _read(self, key: str) -> Optional[str]:
        with self._connect() as conn:
            row = conn.execute("SELECT value FROM documents WHERE key=?", (key,)).fetchone()
        return row[0] if row else None

    def _write(self, key: str, value: str) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO documents(key, value) VALUES (?, ?)
                ON CONFLICT(key) DO UPDATE SET value=excluded.value, updated_at=CURRENT_TIMESTAMP
                """,
                (key, value),
            )

    def _remove(self, key: str) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM documents WHERE key=?", (key,))
