"""Tests for nanodash.core.service — dashboard operations.

Tests cover:
- Generation: validation, credential lookup, prompt cap, end-to-end run.
- Upscale by job id and by orphan file name; missing and deleted assets.
- Upload: success, automation failure, refusal for deleted/asset-less jobs.
- Delete by job id and by file name, including best-effort unlink.
- Mark downloaded.
"""

from __future__ import annotations

import asyncio
import json
import shutil
from pathlib import Path

import pytest

from conftest import FakeAutomation, write_png
from nanodash.core.config import DashboardConfig
from nanodash.core.errors import (
    AlreadyDeletedError,
    InvalidRequestError,
    MissingCredentialError,
    NotFoundError,
    UpstreamError,
)
from nanodash.core.ledger import Job, JobStatus, JobType
from nanodash.core.service import DashboardService


@pytest.fixture
def automation() -> FakeAutomation:
    return FakeAutomation()


@pytest.fixture
def service(test_config: DashboardConfig, automation: FakeAutomation) -> DashboardService:
    return DashboardService(test_config, automation=automation)


class DeletingAutomation(FakeAutomation):
    """Deletes the job's asset while its upload is in progress."""

    service: DashboardService

    async def upload(self, job: Job, file_path: Path) -> None:
        await self.service.delete_job_asset(job.id)
        await super().upload(job, file_path)


def run(coro):
    return asyncio.run(coro)


class TestGeneration:
    def test_queues_and_completes(self, service: DashboardService):
        async def scenario():
            jobs = await service.create_generation_jobs(["Sunset over Lisbon", "Snowy forest"])
            queued = [service.ledger.find(job.id).status for job in jobs]
            await service.supervisor.wait_idle()
            return jobs, queued

        jobs, queued = run(scenario())

        assert queued == [JobStatus.SCHEDULED, JobStatus.SCHEDULED]
        assert [job.id for job in service.list_jobs()] == [jobs[1].id, jobs[0].id]
        for job in jobs:
            assert len(job.id) == 8
            assert job.filename == f"{job.id}-{job.prompts[0].lower().replace(' ', '-')}.png"
            done = service.ledger.find(job.id)
            assert done.status == JobStatus.COMPLETED
            assert done.output == f"outputs/{job.filename}"

    def test_at_most_four_prompts(self, service: DashboardService):
        async def scenario():
            jobs = await service.create_generation_jobs([f"prompt {i}" for i in range(6)])
            await service.supervisor.wait_idle()
            return jobs

        jobs = run(scenario())
        assert [job.prompts[0] for job in jobs] == [f"prompt {i}" for i in range(4)]

    def test_empty_selection_rejected(self, service: DashboardService):
        with pytest.raises(InvalidRequestError):
            run(service.create_generation_jobs([]))
        with pytest.raises(InvalidRequestError):
            run(service.create_generation_jobs(["   "]))
        assert service.list_jobs() == []

    def test_missing_credential(self, service: DashboardService, test_config: DashboardConfig):
        test_config.secrets_file.unlink()

        with pytest.raises(MissingCredentialError) as excinfo:
            run(service.create_generation_jobs(["a prompt"]))

        assert "GEMINI_API_KEY" in excinfo.value.message
        assert service.list_jobs() == []


class TestUpscale:
    def test_by_job_id(self, service: DashboardService, completed_job: Job, outputs_dir: Path):
        service.ledger.push(completed_job)

        result = run(service.upscale(job_id="abcd1234"))

        assert result.file == "abcd1234-sunset-upscaled.png"
        assert result.output_url == "/outputs/abcd1234-sunset-upscaled.png"
        assert (outputs_dir / result.file).read_bytes() == (outputs_dir / "abcd1234-sunset.png").read_bytes()
        job = service.ledger.find("abcd1234")
        assert job.status == JobStatus.UPSCALED
        assert job.output == "outputs/abcd1234-sunset-upscaled.png"
        assert job.download_url == result.output_url
        assert result.job == job

    def test_twice_gets_counter(self, service: DashboardService, completed_job: Job):
        service.ledger.push(completed_job)
        run(service.upscale(job_id="abcd1234"))
        second = run(service.upscale(job_id="abcd1234"))
        assert second.file == "abcd1234-sunset-upscaled-1.png"

    def test_orphan_file(self, service: DashboardService, outputs_dir: Path):
        write_png(outputs_dir / "old.png", 10, 10)

        result = run(service.upscale(file_name="old.png"))

        assert result.job is None
        assert (outputs_dir / "old-upscaled.png").is_file()

    def test_file_name_finds_job(self, service: DashboardService, completed_job: Job):
        service.ledger.push(completed_job)
        result = run(service.upscale(file_name="abcd1234-sunset.png"))
        assert result.job.id == "abcd1234"

    def test_nothing_referenced(self, service: DashboardService):
        with pytest.raises(NotFoundError):
            run(service.upscale(job_id="unknown"))

    def test_source_missing(self, service: DashboardService, completed_job: Job, outputs_dir: Path):
        service.ledger.push(completed_job)
        (outputs_dir / "abcd1234-sunset.png").unlink()

        with pytest.raises(NotFoundError, match="Source asset missing"):
            run(service.upscale(job_id="abcd1234"))
        assert service.ledger.find("abcd1234").status == JobStatus.COMPLETED

    def test_deleted_job_rejected(self, service: DashboardService, completed_job: Job):
        service.ledger.push(completed_job.model_copy(update={"deleted": True}))
        with pytest.raises(AlreadyDeletedError):
            run(service.upscale(job_id="abcd1234"))

    def test_job_deleted_during_copy_is_left_deleted(
        self, service: DashboardService, completed_job: Job, monkeypatch: pytest.MonkeyPatch
    ):
        service.ledger.push(completed_job)
        copyfile = shutil.copyfile

        def copy_then_delete(source, destination):
            copyfile(source, destination)
            service.ledger.update("abcd1234", deleted=True, detail="Deleted by user")

        monkeypatch.setattr(shutil, "copyfile", copy_then_delete)

        result = run(service.upscale(job_id="abcd1234"))

        job = service.ledger.find("abcd1234")
        assert job.deleted is True
        assert job.status == JobStatus.COMPLETED
        assert job.output == "outputs/abcd1234-sunset.png"
        assert result.job == job


class TestUpload:
    def test_upload_job(self, service: DashboardService, completed_job: Job, automation: FakeAutomation):
        service.ledger.push(completed_job)

        job = run(service.upload_job("abcd1234"))

        assert job.status == JobStatus.UPLOADED
        assert job.uploaded_at is not None
        uploaded_job, path = automation.uploads[0]
        assert uploaded_job.status == JobStatus.COMPLETED
        assert path.name == "abcd1234-sunset.png"
        assert path.is_absolute()

    def test_upload_failure_is_recorded(self, test_config: DashboardConfig, completed_job: Job):
        service = DashboardService(test_config, automation=FakeAutomation("Save work button not found."))
        service.ledger.push(completed_job)

        with pytest.raises(UpstreamError) as excinfo:
            run(service.upload_job("abcd1234"))

        assert excinfo.value.diagnostic == "browser not reachable"
        job = service.ledger.find("abcd1234")
        assert job.status == JobStatus.UPLOAD_FAILED
        assert job.detail == "Save work button not found."

    def test_deleted_job_refused_without_state_change(
        self, service: DashboardService, completed_job: Job, automation: FakeAutomation
    ):
        service.ledger.push(completed_job.model_copy(update={"deleted": True}))

        with pytest.raises(InvalidRequestError):
            run(service.upload_job("abcd1234"))

        assert service.ledger.find("abcd1234").status == JobStatus.COMPLETED
        assert automation.uploads == []

    @pytest.mark.parametrize("fail_with", [None, "Save work button not found."])
    def test_job_deleted_during_upload_is_left_deleted(
        self, test_config: DashboardConfig, completed_job: Job, fail_with: str | None
    ):
        service = DashboardService(test_config, automation=DeletingAutomation(fail_with))
        service.automation.service = service
        service.ledger.push(completed_job)

        async def scenario():
            if fail_with:
                with pytest.raises(UpstreamError):
                    await service.upload_job("abcd1234")
            else:
                await service.upload_job("abcd1234")

        run(scenario())

        job = service.ledger.find("abcd1234")
        assert job.deleted is True
        assert job.detail == "Deleted by user"
        assert job.uploaded_at is None
        assert job.status not in (JobStatus.UPLOADED, JobStatus.UPLOAD_FAILED)

    def test_job_without_asset_refused(self, service: DashboardService):
        service.ledger.push(Job(id="q", type=JobType.GENERATION, status=JobStatus.RUNNING))
        with pytest.raises(InvalidRequestError):
            run(service.upload_job("q"))
        assert service.ledger.find("q").status == JobStatus.RUNNING

    def test_unknown_job(self, service: DashboardService):
        with pytest.raises(NotFoundError):
            run(service.upload_job("nope"))

    def test_upload_orphan_file(self, service: DashboardService, outputs_dir: Path, automation: FakeAutomation):
        write_png(outputs_dir / "old_cat-photo.png", 10, 10)

        assert run(service.upload_output_file("old_cat-photo.png")) == "old_cat-photo.png"

        stand_in, _ = automation.uploads[0]
        assert stand_in.prompts == ["old cat photo.png"]
        assert service.list_jobs() == []

    def test_upload_missing_file(self, service: DashboardService):
        with pytest.raises(NotFoundError):
            run(service.upload_output_file("ghost.png"))

    def test_general_upload_trigger(self, service: DashboardService, automation: FakeAutomation):
        job = run(service.trigger_general_upload())
        assert job.type == JobType.UPLOAD
        assert job.status == JobStatus.UPLOAD_TRIGGERED
        assert automation.portal_opened == 1

    def test_general_upload_failure(self, test_config: DashboardConfig):
        service = DashboardService(test_config, automation=FakeAutomation("exit 1"))
        with pytest.raises(UpstreamError):
            run(service.trigger_general_upload())
        (job,) = service.list_jobs()
        assert job.status == JobStatus.UPLOAD_FAILED
        assert job.detail == "browser not reachable"


class TestDelete:
    def test_delete_never_downloaded_asset(self, service: DashboardService, completed_job: Job, outputs_dir: Path):
        service.ledger.push(completed_job)

        job = run(service.delete_job_asset("abcd1234"))

        assert job.deleted is True
        assert job.downloaded is False
        assert job.deleted_at is not None
        assert not (outputs_dir / "abcd1234-sunset.png").exists()
        assert service.ledger.find("abcd1234") is not None

    def test_delete_twice_rejected(self, service: DashboardService, completed_job: Job):
        service.ledger.push(completed_job)
        run(service.delete_job_asset("abcd1234"))
        with pytest.raises(AlreadyDeletedError):
            run(service.delete_job_asset("abcd1234"))

    def test_delete_without_output_rejected(self, service: DashboardService):
        service.ledger.push(Job(id="q", type=JobType.GENERATION))
        with pytest.raises(NotFoundError):
            run(service.delete_job_asset("q"))

    def test_unlink_failure_still_marks_deleted(
        self, service: DashboardService, completed_job: Job, outputs_dir: Path
    ):
        (outputs_dir / "abcd1234-sunset.png").unlink()
        service.ledger.push(completed_job)

        job = run(service.delete_job_asset("abcd1234"))

        assert job.deleted is True

    def test_delete_output_file_marks_job(self, service: DashboardService, completed_job: Job, outputs_dir: Path):
        service.ledger.push(completed_job)

        assert run(service.delete_output_file("abcd1234-sunset.png")) == "abcd1234-sunset.png"

        job = service.ledger.find("abcd1234")
        assert job.deleted is True
        assert job.detail == "Deleted via gallery"
        assert not (outputs_dir / "abcd1234-sunset.png").exists()

    def test_delete_orphan_file(self, service: DashboardService, outputs_dir: Path):
        write_png(outputs_dir / "orphan.png", 1, 1)
        run(service.delete_output_file("orphan.png"))
        assert not (outputs_dir / "orphan.png").exists()

    def test_delete_output_file_cannot_escape(self, service: DashboardService, temp_dir: Path):
        (temp_dir / "keep.png").write_bytes(b"x")
        with pytest.raises(NotFoundError):
            run(service.delete_output_file("../keep.png"))
        assert (temp_dir / "keep.png").exists()

    def test_delete_output_requires_name(self, service: DashboardService):
        with pytest.raises(InvalidRequestError):
            run(service.delete_output_file(""))


class TestMarkDownloaded:
    def test_sets_flag_and_returns_url(self, service: DashboardService, completed_job: Job):
        service.ledger.push(completed_job)

        assert service.mark_downloaded("abcd1234") == "/outputs/abcd1234-sunset.png"

        job = service.ledger.find("abcd1234")
        assert job.downloaded is True
        assert job.detail == "Downloaded by user"
        assert job.downloaded_at is not None

    def test_deleted_rejected(self, service: DashboardService, completed_job: Job):
        service.ledger.push(completed_job.model_copy(update={"deleted": True}))
        with pytest.raises(AlreadyDeletedError):
            service.mark_downloaded("abcd1234")

    def test_no_output(self, service: DashboardService):
        service.ledger.push(Job(id="q", type=JobType.GENERATION))
        with pytest.raises(NotFoundError):
            service.mark_downloaded("q")


class TestSamplePrompts:
    def test_samples_four(self, service: DashboardService):
        prompts = service.sample_prompts()
        assert len(prompts) == 4
        assert len(set(prompts)) == 4

    def test_fewer_than_requested(self, test_config: DashboardConfig, temp_dir: Path):
        prompts_file = temp_dir / "prompts.json"
        prompts_file.write_text(json.dumps(["only one"]))
        service = DashboardService(test_config.model_copy(update={"prompts_file": prompts_file}))
        assert service.sample_prompts() == ["only one"]

    def test_missing_file(self, test_config: DashboardConfig, temp_dir: Path):
        service = DashboardService(test_config.model_copy(update={"prompts_file": temp_dir / "none.json"}))
        with pytest.raises(UpstreamError):
            service.sample_prompts()
