"""In-memory record of recent jobs.

:class:`JobLedger` keeps the most recent jobs, newest first, up to a fixed
capacity.  Pushing past the capacity silently evicts the oldest entry.  There
is no persistence: a restart starts from an empty ledger, and files left in
the output directory are picked up by the gallery as orphans.

Jobs are immutable pydantic models.  :meth:`JobLedger.update` never edits a
record in place; it builds a merged copy and swaps it into the same slot, so
a reader never observes a half-applied update.
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Iterator
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 12


def utc_now() -> str:
    """Current time as an ISO-8601 UTC instant."""
    return datetime.now(timezone.utc).isoformat()


class JobType(str, Enum):
    GENERATION = "generation"
    UPSCALE = "upscale"
    UPLOAD = "upload"


class JobStatus(str, Enum):
    """States a job moves through.

    Generation: ``scheduled -> running -> completed | failed``.
    Follow-ons from ``completed``: ``upscaled`` and
    ``uploading -> uploaded | upload-failed``.
    General portal trigger: ``pending -> upload-triggered | upload-failed``.
    """

    PENDING = "pending"
    SCHEDULED = "scheduled"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    UPSCALED = "upscaled"
    UPLOADING = "uploading"
    UPLOADED = "uploaded"
    UPLOAD_FAILED = "upload-failed"
    UPLOAD_TRIGGERED = "upload-triggered"


class Job(BaseModel):
    """A tracked unit of generation, upscale or upload work.

    Attributes:
        id: Short opaque identifier, fixed at creation.
        type: Kind of work.
        prompts: Prompts (or labels); the first one is the display label.
        timestamp: Creation or last significant event, ISO-8601 UTC.
        status: Current state.
        detail: Human readable progress note.
        filename: Planned output file name of a generation job.
        output: Asset path relative to the storage root, once it exists.
        download_url: URL of ``output``; set together with it.
        downloaded: The user fetched the asset.
        deleted: The asset was deleted.  Never goes back to ``False``.
        log: Captured process output.
    """

    model_config = ConfigDict(frozen=True, use_enum_values=True, validate_default=True)

    id: str
    type: JobType
    prompts: list[str] = Field(default_factory=list)
    timestamp: str = Field(default_factory=utc_now)
    status: JobStatus = JobStatus.SCHEDULED
    detail: str = ""
    filename: str | None = None
    output: str | None = None
    download_url: str | None = None
    downloaded: bool = False
    deleted: bool = False
    log: str | None = None
    downloaded_at: str | None = None
    deleted_at: str | None = None
    uploaded_at: str | None = None

    @property
    def label(self) -> str | None:
        return self.prompts[0] if self.prompts else None

    def has_output_named(self, file_name: str) -> bool:
        """Whether ``output`` ends with ``/<file_name>``."""
        return bool(self.output) and self.output.endswith(f"/{file_name}")


class JobLedger:
    """Bounded, most-recent-first collection of jobs.

    Args:
        capacity: Maximum number of jobs kept.  Once full, every push evicts
            the job that was pushed ``capacity`` pushes earlier.

    Raises:
        ValueError: ``capacity`` is less than 1.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError(f"Ledger capacity must be at least 1, got {capacity}")
        self.capacity = capacity
        self._jobs: deque[Job] = deque(maxlen=capacity)

    def push(self, job: Job) -> None:
        if len(self._jobs) == self.capacity:
            logger.debug(f"Ledger full, evicting job {self._jobs[-1].id}")
        self._jobs.appendleft(job)

    def find(self, job_id: str) -> Job | None:
        return next((job for job in self._jobs if job.id == job_id), None)

    def find_by_output_name(self, file_name: str) -> Job | None:
        """Return the newest job whose output is ``<dir>/<file_name>``."""
        return next((job for job in self._jobs if job.has_output_named(file_name)), None)

    def update(self, job_id: str, **fields) -> Job | None:
        """Merge ``fields`` into a job, replacing the whole record.

        Args:
            job_id: Identifier of the job to update.
            **fields: Job attributes to overwrite.

        Returns:
            The updated job, or ``None`` if no job has that identifier.
        """
        for index, job in enumerate(self._jobs):
            if job.id == job_id:
                merged = Job.model_validate({**job.model_dump(), **fields})
                self._jobs[index] = merged
                return merged
        return None

    def jobs(self) -> list[Job]:
        """Snapshot of the ledger, newest first."""
        return list(self._jobs)

    def __len__(self) -> int:
        return len(self._jobs)

    def __iter__(self) -> Iterator[Job]:
        return iter(list(self._jobs))
