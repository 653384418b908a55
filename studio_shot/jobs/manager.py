"""Job lifecycle manager: owns the session's job collection.

Single event loop, cooperative concurrency. The collection is an immutable
tuple that is only ever replaced as a whole (``_commit``); every replacement
schedules a snapshot write. A job in ``processing`` cannot be dispatched
again, which keeps at most one transformation in flight per id.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field, replace
from typing import Dict, Iterable, List, Optional, Protocol, Set, Tuple

from ..inference import TransformError
from ..trackers import CreditBalance, ProgressTracker
from .blobstore import SQLiteBlobStore
from .errors import (
    InsufficientCreditsError,
    JobNotFoundError,
    JobStateError,
    MissingOriginalError,
    NotReadyError,
    StudioError,
    UnsupportedMediaTypeError,
)
from .export import ExportArchive, build_archive
from .handles import DisplayHandleRegistry
from .metadata import MetadataStore
from .models import (
    ACCEPTED_MEDIA_TYPES,
    Job,
    JobStatus,
    StoredBlob,
    UploadedFile,
    normalize_media_type,
    processed_name_for,
    safe_file_name,
)
from .rehydrate import rehydrate


MISSING_ORIGINAL = "Original file is missing or empty. Please upload it again."

logger = logging.getLogger("studio.manager")


class Transformer(Protocol):
    async def transform(self, image: bytes, mime_type: str) -> bytes: ...


@dataclass(frozen=True)
class IntakeFailure:
    name: str
    error: str


@dataclass
class IntakeResult:
    jobs: List[Job] = field(default_factory=list)
    failures: List[IntakeFailure] = field(default_factory=list)


class JobManager:
    def __init__(
        self,
        blobs: SQLiteBlobStore,
        metadata: MetadataStore,
        transform: Transformer,
        handles: Optional[DisplayHandleRegistry] = None,
        credits: Optional[CreditBalance] = None,
        progress: Optional[ProgressTracker] = None,
    ) -> None:
        self.blobs = blobs
        self.metadata = metadata
        self.transform = transform
        self.handles = handles if handles is not None else DisplayHandleRegistry()
        self.credits = credits if credits is not None else CreditBalance()
        self.progress = progress if progress is not None else ProgressTracker()

        self._jobs: Tuple[Job, ...] = ()
        self._hydrated = False
        self._hydrate_lock = asyncio.Lock()
        self._deleting: Set[str] = set()
        self._tasks: Set[asyncio.Task] = set()
        self._persist_tasks: Set[asyncio.Task] = set()
        self._persist_scheduled = False

    # --- read side ---
    @property
    def ready(self) -> bool:
        return self._hydrated

    @property
    def jobs(self) -> Tuple[Job, ...]:
        return self._jobs

    def get(self, job_id: str) -> Optional[Job]:
        for job in self._jobs:
            if job.id == job_id:
                return job
        return None

    @property
    def processable_count(self) -> int:
        return sum(1 for j in self._jobs if j.status in (JobStatus.PENDING, JobStatus.ERROR))

    @property
    def is_processing(self) -> bool:
        return any(j.status == JobStatus.PROCESSING for j in self._jobs)

    def counts(self) -> Dict[str, int]:
        result = {status.value: 0 for status in JobStatus}
        for job in self._jobs:
            result[job.status.value] += 1
        return result

    # --- startup / shutdown ---
    async def hydrate(self) -> Tuple[Job, ...]:
        """Restore saved jobs. Runs once; later calls return the live collection."""
        async with self._hydrate_lock:
            if self._hydrated:
                return self._jobs
            jobs = await rehydrate(self.blobs, self.metadata, self.handles)
            self._hydrated = True
            self._commit(jobs)
            return self._jobs

    async def flush(self) -> None:
        """Wait until the latest collection has been written to the snapshot."""
        while self._persist_tasks:
            await asyncio.gather(*list(self._persist_tasks), return_exceptions=True)

    async def close(self) -> None:
        # No cancellation: in-flight transformations run to completion
        running = [t for t in self._tasks if not t.done()]
        if running:
            logger.info(f"Waiting for {len(running)} transformations to finish")
            await asyncio.gather(*running, return_exceptions=True)
        await self.flush()
        self.handles.release_all()

    # --- operations ---
    async def intake(self, files: Iterable[UploadedFile]) -> IntakeResult:
        """Store each upload and add it as a pending job. Failures are per file."""
        self._require_ready()
        uploads = list(files)
        outcomes = await asyncio.gather(
            *(self._store_upload(upload) for upload in uploads), return_exceptions=True
        )
        result = IntakeResult()
        for upload, outcome in zip(uploads, outcomes):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                logger.error(f"Could not store {upload.name}: {outcome}")
                result.failures.append(IntakeFailure(upload.name, str(outcome)))
            else:
                result.jobs.append(outcome)
        if result.jobs:
            self._commit(self._jobs + tuple(result.jobs))
            self.progress.add_uploaded(len(result.jobs))
            logger.info(f"Added {len(result.jobs)} images")
        return result

    async def process(self, job_id: str) -> Job:
        """Generate the studio shot for one job and return its final state."""
        return await self.dispatch(job_id)

    def dispatch(self, job_id: str) -> "asyncio.Task[Job]":
        """Check preconditions, mark the job processing and start the transformation.

        Raises before touching the job when the gate or the job's state refuses
        the request. An empty original is the exception: the job is moved to
        error and MissingOriginalError is raised.
        """
        self._require_ready()
        if not self.credits.can_afford(1):
            raise InsufficientCreditsError(required=1, available=self.credits.available)
        job = self.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        if job.status in (JobStatus.PROCESSING, JobStatus.DONE) or job_id in self._deleting:
            state = "being deleted" if job_id in self._deleting else job.status.value
            raise JobStateError(job_id, state, "process")
        if job.original_size <= 0:
            self._update(job_id, status=JobStatus.ERROR, error=MISSING_ORIGINAL)
            raise MissingOriginalError(job_id, MISSING_ORIGINAL)

        self.credits.reserve()
        self._update(job_id, status=JobStatus.PROCESSING, error=None)
        task = asyncio.get_running_loop().create_task(self._run_transform(job_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def process_all(self) -> List[Job]:
        tasks = self.dispatch_all()
        if not tasks:
            return []
        return list(await asyncio.gather(*tasks))

    def dispatch_all(self) -> List["asyncio.Task[Job]"]:
        """Start every pending or failed job, or none if credits fall short."""
        self._require_ready()
        eligible = [j for j in self._jobs if j.status in (JobStatus.PENDING, JobStatus.ERROR)]
        if not eligible:
            return []
        if not self.credits.can_afford(len(eligible)):
            raise InsufficientCreditsError(required=len(eligible), available=self.credits.available)

        tasks = []
        for job in eligible:
            try:
                tasks.append(self.dispatch(job.id))
            except StudioError as e:
                logger.warning(f"Not processing {job.original_name}: {e}")
        return tasks

    async def delete_selected(self) -> List[str]:
        """Remove every selected job together with both of its blobs.

        Jobs still processing are left alone (and stay selected).
        """
        self._require_ready()
        selected = [j for j in self._jobs if j.selected and j.id not in self._deleting]
        doomed = [j for j in selected if j.status != JobStatus.PROCESSING]
        if len(doomed) < len(selected):
            logger.info(f"Keeping {len(selected) - len(doomed)} selected images that are still processing")
        if not doomed:
            return []

        ids = [j.id for j in doomed]
        self._deleting.update(ids)
        try:
            outcomes = await asyncio.gather(
                *(self._delete_blobs(job) for job in doomed), return_exceptions=True
            )
        finally:
            self._deleting.difference_update(ids)

        removed: List[str] = []
        for job, outcome in zip(doomed, outcomes):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                logger.error(f"Could not delete {job.original_name}: {outcome}")
                continue
            current = self.get(job.id) or job
            self.handles.release(current.original_handle)
            self.handles.release(current.processed_handle)
            removed.append(job.id)

        if removed:
            gone = set(removed)
            self._commit([j for j in self._jobs if j.id not in gone])
            self.progress.add_deleted(len(removed))
            logger.info(f"Deleted {len(removed)} images")
        return removed

    def toggle_select(self, job_id: str) -> Job:
        self._require_ready()
        job = self.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return self._update(job_id, selected=not job.selected)

    def set_selected(self, job_id: str, selected: bool = True) -> Job:
        self._require_ready()
        if self.get(job_id) is None:
            raise JobNotFoundError(job_id)
        return self._update(job_id, selected=selected)

    def select_all(self, selected: bool) -> None:
        self._require_ready()
        self._commit([replace(j, selected=selected) for j in self._jobs])

    async def export_selected(self) -> ExportArchive:
        self._require_ready()
        return await build_archive(self.blobs, self._jobs)

    def top_up(self, amount: int) -> int:
        return self.credits.top_up(amount)

    # --- internals ---
    def _require_ready(self) -> None:
        if not self._hydrated:
            raise NotReadyError()

    async def _store_upload(self, upload: UploadedFile) -> Job:
        name = safe_file_name(upload.name)
        media_type = normalize_media_type(upload.media_type)
        if media_type not in ACCEPTED_MEDIA_TYPES:
            raise UnsupportedMediaTypeError(name, media_type)
        job_id = self._new_id()
        blob = StoredBlob(data=upload.data, media_type=media_type, name=name)
        # The job only exists once its original is durable
        await self.blobs.put(job_id, blob)
        return Job(
            id=job_id,
            original_name=name,
            media_type=media_type,
            original_size=blob.size,
            original_handle=self.handles.acquire(blob),
        )

    def _new_id(self) -> str:
        taken = {j.id for j in self._jobs}
        while True:
            job_id = uuid.uuid4().hex
            if job_id not in taken:
                return job_id

    async def _delete_blobs(self, job: Job) -> None:
        await asyncio.gather(self.blobs.delete(job.original_key), self.blobs.delete(job.processed_key))

    async def _run_transform(self, job_id: str) -> Job:
        job = self.get(job_id)
        try:
            original = await self.blobs.get(job.original_key)
            if original is None or not original.data:
                raise MissingOriginalError(job_id, MISSING_ORIGINAL)
            result = await self.transform.transform(original.data, job.media_type)
            processed = StoredBlob(
                data=result,
                media_type=job.media_type,
                name=processed_name_for(job.original_name),
            )
            await self.blobs.put(job.processed_key, processed)
        except Exception as e:
            self.credits.release()
            self.progress.increment_processed()
            self.progress.increment_errors()
            if isinstance(e, (StudioError, TransformError)):
                logger.error(f"Studio shot for {job.original_name} failed: {e}")
            else:
                logger.exception(f"Studio shot for {job.original_name} failed")
            return self._update(job_id, status=JobStatus.ERROR, error=str(e) or e.__class__.__name__)

        self.credits.commit()
        self.progress.increment_processed()
        self.progress.increment_successful(job_id)
        current = self.get(job_id)
        handle = self.handles.acquire(processed)
        self.handles.release(current.processed_handle)
        logger.info(f"Studio shot ready for {job.original_name} ({self.credits.balance} credits left)")
        return self._update(
            job_id,
            status=JobStatus.DONE,
            error=None,
            processed_name=processed.name,
            processed_handle=handle,
        )

    def _update(self, job_id: str, **changes) -> Job:
        updated = None
        jobs = []
        for job in self._jobs:
            if job.id == job_id:
                job = replace(job, **changes)
                updated = job
            jobs.append(job)
        if updated is None:
            raise JobNotFoundError(job_id)
        self._commit(jobs)
        return updated

    def _commit(self, jobs: Iterable[Job]) -> None:
        self._jobs = tuple(jobs)
        self._schedule_persist()

    def _schedule_persist(self) -> None:
        if not self._hydrated or self._persist_scheduled:
            return
        self._persist_scheduled = True
        task = asyncio.get_running_loop().create_task(self._persist())
        self._persist_tasks.add(task)
        task.add_done_callback(self._persist_tasks.discard)

    def _snapshot(self) -> List[dict]:
        # Commits after this point schedule another write
        self._persist_scheduled = False
        return [job.to_record() for job in self._jobs]

    async def _persist(self) -> None:
        try:
            await self.metadata.save_latest(self._snapshot)
        except Exception:
            self._persist_scheduled = False
            logger.exception("Could not save the image list")
