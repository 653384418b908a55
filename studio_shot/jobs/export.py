"""Zip export of finished studio shots."""

from __future__ import annotations

import io
import logging
import zipfile
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import PurePath
from typing import Iterable, List, Optional, Set, Tuple

from .blobstore import SQLiteBlobStore
from .errors import NothingToExportError
from .models import Job, JobStatus, safe_file_name


logger = logging.getLogger("studio.export")


@dataclass(frozen=True)
class ExportArchive:
    filename: str
    data: bytes
    entries: Tuple[str, ...]


def archive_name(now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    stamp = now.strftime("%Y-%m-%dT%H-%M-%S")
    return f"Studio_Shots_{stamp}.zip"


def unique_entry_name(name: str, taken: Set[str]) -> str:
    if name not in taken:
        return name
    path = PurePath(name)
    n = 2
    while True:
        candidate = f"{path.stem} ({n}){path.suffix}"
        if candidate not in taken:
            return candidate
        n += 1


async def build_archive(
    blobs: SQLiteBlobStore,
    jobs: Iterable[Job],
    now: Optional[datetime] = None,
) -> ExportArchive:
    """Pack the processed file of every selected, finished job into one zip."""
    chosen = [j for j in jobs if j.selected and j.status == JobStatus.DONE and j.processed_name]
    if not chosen:
        raise NothingToExportError()

    buffer = io.BytesIO()
    entries: List[str] = []
    taken: Set[str] = set()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for job in chosen:
            blob = await blobs.get(job.processed_key)
            if blob is None:
                logger.warning(f"Skipping {job.id} in export: studio shot is missing")
                continue
            name = unique_entry_name(safe_file_name(job.processed_name), taken)
            taken.add(name)
            zf.writestr(name, blob.data)
            entries.append(name)
    if not entries:
        raise NothingToExportError()

    filename = archive_name(now)
    logger.info(f"Exported {len(entries)} studio shots to {filename}")
    return ExportArchive(filename=filename, data=buffer.getvalue(), entries=tuple(entries))
