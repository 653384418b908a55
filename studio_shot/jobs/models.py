from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import PurePosixPath
from typing import Any, Dict, Optional


PROCESSED_SUFFIX = "_processed"
PROCESSED_PREFIX = "studio_"

ACCEPTED_MEDIA_TYPES = ("image/png", "image/jpeg", "image/webp")


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    DONE = "done"
    ERROR = "error"


@dataclass(frozen=True)
class StoredBlob:
    data: bytes
    media_type: str
    name: str

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class UploadedFile:
    name: str
    data: bytes
    media_type: str = "application/octet-stream"


@dataclass(frozen=True)
class DisplayHandle:
    token: str
    media_type: str

    @property
    def url(self) -> str:
        return f"/api/display/{self.token}"


@dataclass(frozen=True)
class Job:
    id: str
    original_name: str
    media_type: str
    original_size: int = 0
    status: JobStatus = JobStatus.PENDING
    error: Optional[str] = None
    processed_name: Optional[str] = None
    original_handle: Optional[DisplayHandle] = field(default=None, compare=False)
    processed_handle: Optional[DisplayHandle] = field(default=None, compare=False)
    selected: bool = False

    @property
    def original_key(self) -> str:
        return self.id

    @property
    def processed_key(self) -> str:
        return processed_key(self.id)

    def to_record(self) -> Dict[str, Any]:
        """Snapshot entry: non-binary, non-transient fields only."""
        record: Dict[str, Any] = {
            "id": self.id,
            "status": self.status.value,
            "originalFileName": self.original_name,
            "mediaType": self.media_type,
        }
        if self.error is not None:
            record["error"] = self.error
        if self.processed_name is not None:
            record["processedFileName"] = self.processed_name
        return record

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "status": self.status.value,
            "error": self.error,
            "original_name": self.original_name,
            "processed_name": self.processed_name,
            "media_type": self.media_type,
            "original_url": self.original_handle.url if self.original_handle else None,
            "processed_url": self.processed_handle.url if self.processed_handle else None,
            "selected": self.selected,
        }


def processed_key(job_id: str) -> str:
    return f"{job_id}{PROCESSED_SUFFIX}"


def processed_name_for(original_name: str) -> str:
    return f"{PROCESSED_PREFIX}{original_name}"


def normalize_media_type(media_type: Optional[str]) -> str:
    """Lowercase ``type/subtype`` without parameters (``image/PNG; q=1`` -> ``image/png``)."""
    return (media_type or "").split(";", 1)[0].strip().lower()


def safe_file_name(name: Optional[str], default: str = "upload") -> str:
    """Final path component of a client-supplied file name."""
    base = PurePosixPath((name or "").replace("\\", "/")).name
    return default if base in ("", ".", "..") else base
