"""Supervision of external image-generation processes.

Each generation job gets its own OS process and its own asyncio task.  The
task owns the job's ledger entry for as long as the process lives and moves
it through::

    scheduled -> running -> completed
                         -> failed

Key Rules
---------
- A job only counts as ``completed`` when the process exited with code 0
  **and** the expected output file exists afterwards.  A process that crashes
  after a partial write, or exits 0 without writing anything, is ``failed``.
- A process that cannot be started at all (missing interpreter, permission
  error) fails its job immediately with the launch error as detail.
- Nothing is retried and nothing is cancelled.  Tasks for different jobs
  never wait on each other; completion order is arbitrary.

The supervisor only touches the ledger through :meth:`JobLedger.update`,
which applies each transition as one merged record replace.
"""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path

from nanodash.core.config import DashboardConfig
from nanodash.core.ledger import JobLedger, JobStatus, utc_now

logger = logging.getLogger(__name__)


class ProcessSupervisor:
    """Launches generation processes and reports their outcome to the ledger.

    Attributes:
        _ledger (JobLedger):
            Ledger whose entries are driven by the supervised processes.
        _settings (DashboardConfig):
            Interpreter, script, resolution and storage layout.
        _tasks (set[asyncio.Task]):
            In-flight supervision tasks.  Finished tasks remove themselves.
    """

    def __init__(self, ledger: JobLedger, settings: DashboardConfig) -> None:
        self._ledger = ledger
        self._settings = settings
        self._tasks: set[asyncio.Task] = set()

    @property
    def active_count(self) -> int:
        """Number of jobs whose process has not been reported yet."""
        return len(self._tasks)

    def launch(self, job_id: str, prompt: str, output_file: Path, api_key: str) -> asyncio.Task:
        """Start supervising a generation job.

        Must be called from a running event loop.  Returns immediately; the
        process is spawned by the returned task.

        Args:
            job_id: Ledger entry to drive.  It should be ``scheduled``.
            prompt: Generation prompt passed as ``--prompt``.
            output_file: Absolute path the process must write to.
            api_key: Credential injected into the child environment.

        Returns:
            The supervision task.  It never raises; all outcomes end up in
            the ledger.
        """
        task = asyncio.create_task(
            self._supervise(job_id, prompt, output_file, api_key),
            name=f"generation-{job_id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def wait_idle(self) -> None:
        """Wait until every launched process has been reported."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    def _command(self, prompt: str, output_file: Path) -> list[str]:
        return [
            self._settings.python_executable,
            str(self._settings.generator_script),
            "--prompt",
            prompt,
            "--filename",
            str(output_file),
            "--resolution",
            self._settings.generation_resolution,
        ]

    async def _supervise(self, job_id: str, prompt: str, output_file: Path, api_key: str) -> None:
        logger.info(
            f"Launching generation job {job_id} -> {self._settings.generator_script} "
            f"(prompt: {prompt[:80]})"
        )
        env = {**os.environ, self._settings.api_key_env_var: api_key}

        try:
            process = await asyncio.create_subprocess_exec(
                *self._command(prompt, output_file),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
            )
        except (OSError, ValueError) as e:
            logger.error(f"Generation spawn error for job {job_id}: {e}")
            self._ledger.update(
                job_id,
                status=JobStatus.FAILED,
                detail=f"Spawn failed: {e}",
                log=str(e),
                timestamp=utc_now(),
            )
            return

        self._ledger.update(job_id, status=JobStatus.RUNNING, detail="Generating image…")

        stdout, stderr = await process.communicate()
        code = process.returncode
        stdout_log = stdout.decode("utf-8", errors="replace")
        stderr_log = stderr.decode("utf-8", errors="replace")
        logger.info(
            f"Generation job {job_id} exited {code}.\nstdout:\n{stdout_log}\nstderr:\n{stderr_log}"
        )

        success = code == 0
        if success and not await asyncio.to_thread(output_file.is_file):
            logger.warning(f"Job {job_id} exited 0 but {output_file} is missing")
            success = False

        if success:
            relative = f"{self._settings.outputs_dir_name}/{output_file.name}"
            self._ledger.update(
                job_id,
                status=JobStatus.COMPLETED,
                detail=f"Saved {output_file.name}",
                log=stdout_log or stderr_log,
                output=relative,
                download_url=f"{self._settings.download_prefix}/{output_file.name}",
                timestamp=utc_now(),
            )
        else:
            self._ledger.update(
                job_id,
                status=JobStatus.FAILED,
                detail=f"Error (exit {code})",
                log=stdout_log or stderr_log,
                output=None,
                download_url=None,
                timestamp=utc_now(),
            )
