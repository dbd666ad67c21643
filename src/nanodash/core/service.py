"""Dashboard operations: the single owner of job state.

:class:`DashboardService` is created once per application and injected into
the API layer through ``app.state``.  It owns the :class:`JobLedger` and the
:class:`ProcessSupervisor` and implements every operation the HTTP routes
expose.  All collaborators can be passed in explicitly, which is how the tests
swap in a temporary storage root or a fake automation driver.

Operations
----------
- list jobs / list gallery
- create generation jobs (one supervised process per prompt, at most four)
- upscale an asset (copy to a derived name) by job id or file name
- upload an asset through browser automation, by job id or file name
- open the contributor portal (general upload trigger)
- delete an asset by job id or file name
- mark a job's asset as downloaded

Failures are raised as :class:`~nanodash.core.errors.DashboardError`
subclasses.  Whenever an upstream step fails for a tracked job, the failure
is recorded on the job before the error is raised.

Deleted Jobs
------------
``deleted`` only ever goes from ``False`` to ``True``.  Once set, the job's
asset can no longer be upscaled, uploaded, downloaded or deleted again; such
requests are rejected instead of being silently accepted.
"""

from __future__ import annotations

import asyncio
import json
import logging
import random
import secrets
import shutil
from dataclasses import dataclass
from pathlib import Path

from nanodash.core.automation import AutomationError, ContributorAutomation
from nanodash.core.config import DashboardConfig
from nanodash.core.credentials import SecretStore
from nanodash.core.errors import (
    AlreadyDeletedError,
    InvalidRequestError,
    MissingCredentialError,
    NotFoundError,
    UpstreamError,
)
from nanodash.core.gallery import GalleryItem, list_gallery
from nanodash.core.ledger import Job, JobLedger, JobStatus, JobType, utc_now
from nanodash.core.paths import plan_derived_path, plan_generation_filename, safe_file_name
from nanodash.core.supervisor import ProcessSupervisor

logger = logging.getLogger(__name__)

SAMPLE_SIZE = 4


@dataclass
class UpscaleResult:
    output_url: str
    file: str
    job: Job | None


def new_job_id() -> str:
    return secrets.token_hex(4)


class DashboardService:
    """Job lifecycle and asset operations for the dashboard.

    Args:
        settings: Storage layout, back-end commands and limits.
        ledger: Job ledger; a fresh one sized by ``ledger_capacity`` by default.
        supervisor: Process supervisor bound to ``ledger``.
        secret_store: Credential lookup; reads ``secrets_file`` by default.
        automation: Upload automation driver.
    """

    def __init__(
        self,
        settings: DashboardConfig,
        *,
        ledger: JobLedger | None = None,
        supervisor: ProcessSupervisor | None = None,
        secret_store: SecretStore | None = None,
        automation: ContributorAutomation | None = None,
    ) -> None:
        self.settings = settings
        self.ledger = ledger if ledger is not None else JobLedger(settings.ledger_capacity)
        self.supervisor = supervisor or ProcessSupervisor(self.ledger, settings)
        self.secret_store = secret_store or SecretStore(settings.secrets_file)
        self.automation = automation or ContributorAutomation(settings)

    # -- Helpers ------------------------------------------------------------

    @property
    def outputs_dir(self) -> Path:
        return self.settings.outputs_dir

    def _relative_output(self, file_name: str) -> str:
        return f"{self.settings.outputs_dir_name}/{file_name}"

    def _absolute(self, relative: str) -> Path:
        return self.settings.storage_root / relative

    def _download_url(self, file_name: str) -> str:
        return f"{self.settings.download_prefix}/{file_name}"

    def _update_unless_deleted(self, job_id: str, **fields) -> Job | None:
        """Apply ``fields`` unless the job was deleted in the meantime."""
        current = self.ledger.find(job_id)
        if current is not None and current.deleted:
            logger.warning(f"Job {job_id} was deleted while in flight; leaving it unchanged")
            return current
        return self.ledger.update(job_id, **fields)

    def _require_file_name(self, file_name: str | None) -> str:
        safe_name = safe_file_name(file_name)
        if not safe_name:
            raise InvalidRequestError("File name is required.")
        return safe_name

    # -- Queries ------------------------------------------------------------

    def list_jobs(self) -> list[Job]:
        return self.ledger.jobs()

    async def list_gallery(self) -> list[GalleryItem]:
        return await list_gallery(self.ledger, self.outputs_dir, self.settings.download_prefix)

    def sample_prompts(self, count: int = SAMPLE_SIZE) -> list[str]:
        """Return up to ``count`` random prompt suggestions.

        Raises:
            UpstreamError: If the prompts file is missing or malformed.
        """
        try:
            with open(self.settings.prompts_file, encoding="utf-8") as handle:
                prompts = json.load(handle)
        except (OSError, ValueError) as e:
            raise UpstreamError("Unable to load prompt suggestions.", diagnostic=str(e)) from e
        if not isinstance(prompts, list):
            raise UpstreamError("Prompt suggestions must be a JSON list.")
        return random.sample(prompts, min(count, len(prompts)))

    # -- Generation ---------------------------------------------------------

    async def create_generation_jobs(self, prompts: list[str]) -> list[Job]:
        """Queue one generation job per prompt and start its process.

        Only the first ``max_prompts_per_request`` prompts are used.

        Args:
            prompts: Prompts selected by the user.

        Returns:
            The queued jobs, all ``scheduled``.

        Raises:
            InvalidRequestError: No usable prompt was given.
            MissingCredentialError: The generation credential is not configured.
        """
        selected = [p for p in prompts if p and p.strip()]
        if not selected:
            raise InvalidRequestError("Select at least one prompt before generation.")

        api_key = self.secret_store.resolve(self.settings.api_key_label, self.settings.api_key_env_var)
        if not api_key:
            raise MissingCredentialError(
                f"{self.settings.api_key_label} API key is missing. "
                f"Set {self.settings.api_key_env_var} or add a "
                f"{self.settings.api_key_label} entry to {self.settings.secrets_file}."
            )

        await asyncio.to_thread(self.outputs_dir.mkdir, parents=True, exist_ok=True)

        queued: list[Job] = []
        for prompt in selected[: self.settings.max_prompts_per_request]:
            job_id = new_job_id()
            filename = plan_generation_filename(job_id, prompt)
            job = Job(
                id=job_id,
                type=JobType.GENERATION,
                prompts=[prompt],
                status=JobStatus.SCHEDULED,
                detail="Queued for Nano Banana generation",
                filename=filename,
            )
            self.ledger.push(job)
            queued.append(job)
            output_file = (self.outputs_dir / filename).resolve()
            self.supervisor.launch(job_id, prompt, output_file, api_key)

        return queued

    # -- Upscale ------------------------------------------------------------

    async def upscale(self, job_id: str | None = None, file_name: str | None = None) -> UpscaleResult:
        """Create an upscaled copy of an asset next to it.

        The asset is looked up by job id first, then by file name among the
        ledger's outputs, and finally as an orphan file in the output
        directory.

        Raises:
            NotFoundError: Nothing matches, or the source file is missing.
            AlreadyDeletedError: The matching job's asset was deleted.
            UpstreamError: The copy could not be written.
        """
        safe_name = safe_file_name(file_name)
        job = self.ledger.find(job_id) if job_id else None
        if job is None and safe_name:
            job = self.ledger.find_by_output_name(safe_name)

        relative = (job.output if job else None) or (
            self._relative_output(safe_name) if safe_name else None
        )
        if not relative:
            raise NotFoundError("Job/file not found or missing output.")
        if job is not None and job.deleted:
            raise AlreadyDeletedError("Asset already deleted.")

        source = self._absolute(relative)
        if not await asyncio.to_thread(source.is_file):
            raise NotFoundError("Source asset missing.")

        try:
            destination = await asyncio.to_thread(plan_derived_path, relative, self.outputs_dir)
            await asyncio.to_thread(shutil.copyfile, source, destination)
        except OSError as e:
            logger.error(f"Upscale copy failed for {source}: {e}")
            raise UpstreamError("Unable to create upscaled file.", diagnostic=str(e)) from e

        if job is not None:
            job = self._update_unless_deleted(
                job.id,
                output=self._relative_output(destination.name),
                download_url=self._download_url(destination.name),
                status=JobStatus.UPSCALED,
                detail="Upscaled asset locally",
                timestamp=utc_now(),
            )

        return UpscaleResult(
            output_url=self._download_url(destination.name),
            file=destination.name,
            job=job,
        )

    # -- Upload -------------------------------------------------------------

    async def upload_job(self, job_id: str) -> Job:
        """Upload a job's asset to the contributor site.

        A job deleted while the automation runs keeps its deleted record;
        neither outcome is written to it.

        Raises:
            NotFoundError: Unknown job.
            InvalidRequestError: The job has no asset or it was deleted.
                The job is left untouched.
            UpstreamError: The automation failed; the job is ``upload-failed``.
        """
        job = self.ledger.find(job_id)
        if job is None:
            raise NotFoundError("Job not found.")
        if not job.output or job.deleted:
            raise InvalidRequestError("Job has no available asset to upload.")

        self.ledger.update(job.id, status=JobStatus.UPLOADING, detail="Automating Adobe Stock upload")
        try:
            await self.automation.upload(job, self._absolute(job.output).resolve())
        except AutomationError as e:
            logger.error(f"Upload automation failed for job {job.id}: {e}")
            self._update_unless_deleted(job.id, status=JobStatus.UPLOAD_FAILED, detail=str(e), log=e.stderr or None)
            raise UpstreamError("Upload automation failed.", diagnostic=e.diagnostic) from e

        return self._update_unless_deleted(
            job.id,
            status=JobStatus.UPLOADED,
            detail="Upload completed on Adobe Stock",
            uploaded_at=utc_now(),
        )

    async def upload_output_file(self, file_name: str) -> str:
        """Upload a file from the output directory that may have no job.

        A transient stand-in job supplies title and keywords; it is not
        added to the ledger.

        Returns:
            The uploaded file name.

        Raises:
            InvalidRequestError: No file name given.
            NotFoundError: The file does not exist.
            UpstreamError: The automation failed.
        """
        safe_name = self._require_file_name(file_name)
        relative = self._relative_output(safe_name)
        absolute = self._absolute(relative)
        if not await asyncio.to_thread(absolute.is_file):
            raise NotFoundError("Output file not found.")

        stand_in = Job(
            id=f"file-{safe_name}",
            type=JobType.UPLOAD,
            prompts=[safe_name.replace("-", " ").replace("_", " ")],
            status=JobStatus.UPLOADING,
            filename=safe_name,
            output=relative,
            download_url=self._download_url(safe_name),
        )
        try:
            await self.automation.upload(stand_in, absolute.resolve())
        except AutomationError as e:
            logger.error(f"Output upload automation failed for {safe_name}: {e}")
            raise UpstreamError("Upload automation failed.", diagnostic=e.diagnostic) from e
        return safe_name

    async def trigger_general_upload(self) -> Job:
        """Record a general upload job and open the contributor portal.

        Raises:
            UpstreamError: The browser could not be opened; the job is
                ``upload-failed``.
        """
        job = Job(
            id=new_job_id(),
            type=JobType.UPLOAD,
            prompts=["Adobe Stock contributor"],
            status=JobStatus.PENDING,
            detail="General upload trigger",
        )
        self.ledger.push(job)

        try:
            await self.automation.open_portal()
        except AutomationError as e:
            logger.error(f"Upload automation failed for job {job.id}: {e}")
            self.ledger.update(job.id, status=JobStatus.UPLOAD_FAILED, detail=e.diagnostic)
            raise UpstreamError("Headed browser upload failed.", diagnostic=e.diagnostic) from e

        return self.ledger.update(
            job.id,
            status=JobStatus.UPLOAD_TRIGGERED,
            detail="Headed browser opened for general upload",
        )

    # -- Delete / download --------------------------------------------------

    async def delete_job_asset(self, job_id: str) -> Job:
        """Delete a job's asset and mark the job deleted.

        Removing the file is best-effort: a failed unlink is logged and the
        job is still marked deleted.

        Raises:
            NotFoundError: Unknown job, or the job never produced an asset.
            AlreadyDeletedError: The job is already deleted.
        """
        job = self.ledger.find(job_id)
        if job is None or not job.output:
            raise NotFoundError("Job not found or has no output.")
        if job.deleted:
            raise AlreadyDeletedError("Asset already deleted.")

        path = self._absolute(job.output)
        try:
            await asyncio.to_thread(path.unlink)
        except OSError as e:
            logger.warning(f"Failed to delete asset {path}: {e}")

        return self.ledger.update(
            job.id,
            deleted=True,
            detail="Deleted by user",
            deleted_at=utc_now(),
        )

    async def delete_output_file(self, file_name: str) -> str:
        """Delete a file from the output directory by name.

        Works for orphan files too.  A matching job that is not deleted yet
        is marked deleted.

        Returns:
            The deleted file name.

        Raises:
            InvalidRequestError: No file name given.
            NotFoundError: The file does not exist.
            UpstreamError: The file exists but could not be removed.
        """
        safe_name = self._require_file_name(file_name)
        path = self.outputs_dir / safe_name
        if not await asyncio.to_thread(path.is_file):
            raise NotFoundError("File not found.")

        try:
            await asyncio.to_thread(path.unlink)
        except OSError as e:
            logger.error(f"Failed to delete output {path}: {e}")
            raise UpstreamError("Unable to remove file.", diagnostic=str(e)) from e

        job = self.ledger.find_by_output_name(safe_name)
        if job is not None and not job.deleted:
            self.ledger.update(
                job.id,
                deleted=True,
                detail="Deleted via gallery",
                deleted_at=utc_now(),
            )
        return safe_name

    def mark_downloaded(self, job_id: str) -> str:
        """Flag a job's asset as downloaded.

        Returns:
            The asset's download URL.

        Raises:
            NotFoundError: Unknown job, or the job has no asset.
            AlreadyDeletedError: The asset was deleted.
        """
        job = self.ledger.find(job_id)
        if job is None or not job.output:
            raise NotFoundError("Job not found or has no output.")
        if job.deleted:
            raise AlreadyDeletedError("Asset already deleted.")

        job = self.ledger.update(
            job.id,
            downloaded=True,
            detail="Downloaded by user",
            downloaded_at=utc_now(),
        )
        return job.download_url
