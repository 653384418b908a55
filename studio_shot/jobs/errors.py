"""Errors raised by the job lifecycle and its stores."""

from typing import Optional


class StudioError(Exception):
    """Base class for rejected operations. Never fatal to the process."""


class NotReadyError(StudioError):
    def __init__(self, message: str = "Studio is still loading saved images"):
        super().__init__(message)


class StoreNotReadyError(StudioError):
    def __init__(self, store: str):
        super().__init__(f"{store} used before open()")


class JobNotFoundError(StudioError):
    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Unknown image: {job_id}")


class JobStateError(StudioError):
    """The job's current status does not allow the requested operation."""

    def __init__(self, job_id: str, status: str, action: str):
        self.job_id = job_id
        self.status = status
        super().__init__(f"Cannot {action} image {job_id} while it is {status}")


class MissingOriginalError(StudioError):
    """The original upload is gone or empty; the job was moved to error."""

    def __init__(self, job_id: str, message: str):
        self.job_id = job_id
        super().__init__(message)


class InsufficientCreditsError(StudioError):
    def __init__(self, required: int, available: int, message: Optional[str] = None):
        self.required = required
        self.available = available
        if message is None:
            if required == 1:
                message = "You have no credits left. Top up to continue."
            else:
                message = f"You need {required} credits but only have {available}."
        super().__init__(message)

    @property
    def shortfall(self) -> int:
        return max(self.required - self.available, 0)


class NothingToExportError(StudioError):
    def __init__(self):
        super().__init__("No selected image has a finished studio shot")


class UnsupportedMediaTypeError(StudioError):
    def __init__(self, name: str, media_type: str):
        self.media_type = media_type
        super().__init__(f"{name} is not a PNG, JPEG or WebP image ({media_type or 'unknown type'})")
