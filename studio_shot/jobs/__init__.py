"""Image jobs: lifecycle, durable stores and startup rehydration.

Designed for single-host usage: one SQLite file holds the blobs and the job
snapshot, one JobManager per session owns the in-memory collection.
"""

from .blobstore import SQLiteBlobStore
from .errors import (
    InsufficientCreditsError,
    JobNotFoundError,
    JobStateError,
    MissingOriginalError,
    NothingToExportError,
    NotReadyError,
    StoreNotReadyError,
    StudioError,
    UnsupportedMediaTypeError,
)
from .handles import DisplayHandleRegistry
from .manager import IntakeFailure, IntakeResult, JobManager
from .metadata import MetadataStore
from .models import DisplayHandle, Job, JobStatus, StoredBlob, UploadedFile

__all__ = [
    "DisplayHandle",
    "DisplayHandleRegistry",
    "InsufficientCreditsError",
    "IntakeFailure",
    "IntakeResult",
    "Job",
    "JobManager",
    "JobNotFoundError",
    "JobStateError",
    "JobStatus",
    "MetadataStore",
    "MissingOriginalError",
    "NothingToExportError",
    "NotReadyError",
    "SQLiteBlobStore",
    "StoreNotReadyError",
    "StoredBlob",
    "StudioError",
    "UnsupportedMediaTypeError",
    "UploadedFile",
]
