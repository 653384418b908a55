"""Startup reconstruction of the job collection from the durable stores."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

from .blobstore import SQLiteBlobStore
from .handles import DisplayHandleRegistry
from .metadata import MetadataStore
from .models import Job, JobStatus, processed_key


UNKNOWN_ERROR = "Image generation failed."

logger = logging.getLogger("studio.rehydrate")


async def rehydrate(
    blobs: SQLiteBlobStore,
    metadata: MetadataStore,
    handles: DisplayHandleRegistry,
) -> List[Job]:
    """Rebuild jobs from the saved snapshot and the blob store.

    Jobs whose original blob is gone are dropped. A ``done`` job without its
    processed blob, and any job saved mid-flight, comes back as ``pending``.
    Fresh display handles are acquired for every blob found.
    """
    await blobs.open()
    await metadata.open()

    records = await metadata.load()
    if not records:
        logger.info("No saved images to restore")
        return []

    restored = await asyncio.gather(*(_restore_one(blobs, handles, r) for r in records))
    jobs = [job for job in restored if job is not None]
    dropped = len(records) - len(jobs)
    if dropped:
        logger.warning(f"Restored {len(jobs)} images, dropped {dropped}")
    else:
        logger.info(f"Restored {len(jobs)} images")
    return jobs


async def _restore_one(
    blobs: SQLiteBlobStore,
    handles: DisplayHandleRegistry,
    record: Dict[str, Any],
) -> Optional[Job]:
    job_id = record.get("id") if isinstance(record, dict) else None
    if not job_id:
        logger.warning(f"Skipping malformed snapshot entry: {record!r}")
        return None
    try:
        status = JobStatus(record.get("status"))
    except ValueError:
        logger.warning(f"Skipping {job_id}: unknown status {record.get('status')!r}")
        return None

    try:
        return await _restore_blobs(blobs, handles, record, job_id, status)
    except Exception as e:
        logger.error(f"Data loss: could not read images for {job_id}, dropping it: {e}")
        return None


async def _restore_blobs(
    blobs: SQLiteBlobStore,
    handles: DisplayHandleRegistry,
    record: Dict[str, Any],
    job_id: str,
    status: JobStatus,
) -> Optional[Job]:
    original = await blobs.get(job_id)
    if original is None:
        logger.warning(f"Data loss: original image for {job_id} is missing, dropping it")
        return None

    processed = None
    if status == JobStatus.DONE:
        processed = await blobs.get(processed_key(job_id))
        if processed is None:
            logger.warning(f"Studio shot for {job_id} is missing, resetting to pending")
            status = JobStatus.PENDING
    elif status == JobStatus.PROCESSING:
        logger.info(f"{job_id} was interrupted mid-flight, resetting to pending")
        status = JobStatus.PENDING

    return Job(
        id=job_id,
        original_name=record.get("originalFileName") or original.name,
        media_type=record.get("mediaType") or original.media_type,
        original_size=original.size,
        status=status,
        error=(record.get("error") or UNKNOWN_ERROR) if status == JobStatus.ERROR else None,
        processed_name=(record.get("processedFileName") or processed.name) if processed else None,
        original_handle=handles.acquire(original),
        processed_handle=handles.acquire(processed) if processed else None,
    )
