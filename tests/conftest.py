"""Pytest configuration and shared fixtures."""

import asyncio
import os
from typing import List, Optional

import pytest

from studio_shot.studio import StudioShot


@pytest.fixture(scope="session", autouse=True)
def _isolate_sqlite_db(tmp_path_factory):
    """Ensure tests use an isolated SQLite DB path and never a real studio file."""
    db_dir = tmp_path_factory.mktemp("studio_db")
    os.environ["STUDIO_DB_PATH"] = str(db_dir / "tests.sqlite")
    yield


class FakeTransform:
    """Scripted stand-in for the remote image service.

    ``script`` is consumed one entry per call (bytes to return or an exception
    to raise); once empty, ``default`` is returned. Setting ``gate`` to an
    asyncio.Event holds every call until the event is set.
    """

    def __init__(self, script: Optional[list] = None, default: bytes = b"studio-bytes"):
        self.script = list(script or [])
        self.default = default
        self.calls: List[tuple] = []
        self.gate: Optional[asyncio.Event] = None

    async def transform(self, image: bytes, mime_type: str) -> bytes:
        self.calls.append((image, mime_type))
        if self.gate is not None:
            await self.gate.wait()
        outcome = self.script.pop(0) if self.script else self.default
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@pytest.fixture
def fake_transform():
    return FakeTransform()


@pytest.fixture
def make_studio(tmp_path):
    """Build sessions sharing one store file, like successive page loads."""

    def _make(transform=None, credits: int = 5, db_name: str = "studio.db") -> StudioShot:
        return StudioShot(
            transform or FakeTransform(),
            db_path=str(tmp_path / db_name),
            initial_credits=credits,
        )

    return _make
