"""Registry of transient display handles.

A handle makes a blob's bytes reachable under a short-lived URL (served by
``GET /api/display/{token}``). Every ``acquire`` must be paired with exactly
one ``release``.
"""

from __future__ import annotations

import logging
import uuid
from typing import Dict, Optional, Tuple

from .models import DisplayHandle, StoredBlob


logger = logging.getLogger("studio.handles")


class DisplayHandleRegistry:
    def __init__(self) -> None:
        self._entries: Dict[str, Tuple[bytes, str]] = {}

    def acquire(self, blob: StoredBlob) -> DisplayHandle:
        token = uuid.uuid4().hex
        self._entries[token] = (blob.data, blob.media_type)
        return DisplayHandle(token=token, media_type=blob.media_type)

    def release(self, handle: Optional[DisplayHandle]) -> None:
        if handle is None:
            return
        if self._entries.pop(handle.token, None) is None:
            logger.warning(f"Display handle {handle.token} released twice")

    def resolve(self, token: str) -> Optional[Tuple[bytes, str]]:
        return self._entries.get(token)

    def release_all(self) -> int:
        count = len(self._entries)
        self._entries.clear()
        if count:
            logger.info(f"Released {count} outstanding display handles")
        return count

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, handle: object) -> bool:
        return isinstance(handle, DisplayHandle) and handle.token in self._entries
