"""Durable key -> binary object store backed by SQLite."""

from __future__ import annotations

import logging
from typing import Optional

from .models import StoredBlob
from .sqlite import SQLiteStore


logger = logging.getLogger("studio.blobstore")


class SQLiteBlobStore(SQLiteStore):
    name = "blob store"

    async def put(self, key: str, blob: StoredBlob) -> None:
        await self._run(self._put, key, blob)

    async def get(self, key: str) -> Optional[StoredBlob]:
        """Return the stored object, or None when nothing is stored under key."""
        return await self._run(self._get, key)

    async def delete(self, key: str) -> None:
        await self._run(self._delete, key)

    async def keys(self) -> list[str]:
        return await self._run(self._keys)

    def _put(self, key: str, blob: StoredBlob) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO blobs(key, name, media_type, data)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                  name=excluded.name,
                  media_type=excluded.media_type,
                  data=excluded.data,
                  updated_at=CURRENT_TIMESTAMP
                """,
                (key, blob.name, blob.media_type, blob.data),
            )
        logger.debug(f"Stored {key} ({blob.size} bytes)")

    def _get(self, key: str) -> Optional[StoredBlob]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT data, media_type, name FROM blobs WHERE key=?",
                (key,),
            ).fetchone()
        if not row:
            return None
        return StoredBlob(data=bytes(row[0]), media_type=row[1], name=row[2])

    def _delete(self, key: str) -> None:
        with self._connect() as conn:
            cur = conn.execute("DELETE FROM blobs WHERE key=?", (key,))
        if cur.rowcount:
            logger.debug(f"Deleted {key}")

    def _keys(self) -> list[str]:
        with self._connect() as conn:
            rows = conn.execute("SELECT key FROM blobs ORDER BY key").fetchall()
        return [row[0] for row in rows]