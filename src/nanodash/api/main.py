"""Nano Dash — FastAPI Application.

This module defines the application factory, all REST API routes, and the
``main()`` CLI function that launches the uvicorn server.

Architecture
------------
The routes are thin.  Every operation is delegated to the
:class:`~nanodash.core.service.DashboardService` stored on ``app.state``,
which owns the job ledger and the process supervisor for the lifetime of
the application.

- **Job state** lives in memory only; a restart starts with an empty ledger.
- **Generated images** are served from the output directory at
  ``/outputs/...`` by FastAPI's ``StaticFiles``.
- **Failures** are raised by the service as ``DashboardError`` subclasses and
  turned into JSON error responses by a single exception handler.

Endpoints
---------
========  ============================  ====================================
Method    Path                          Purpose
========  ============================  ====================================
GET       ``/api/prompts``              Random prompt suggestions
GET       ``/api/jobs``                 Recent jobs, newest first
POST      ``/api/generate``             Queue one generation job per prompt
POST      ``/api/upscale``              Upscaled copy of an asset
POST      ``/api/upload``               Open the contributor portal
POST      ``/api/job/{id}/upload``      Upload a job's asset
POST      ``/api/output/{file}/upload`` Upload an output file by name
POST      ``/api/job/{id}/download``    Mark a job's asset downloaded
GET       ``/api/outputs``              Gallery of images on disk
DELETE    ``/api/output/{file}``        Delete an output file by name
DELETE    ``/api/job/{id}``             Delete a job's asset
========  ============================  ====================================

Usage
-----
CLI (installed entry point)::

    nanodash

Direct invocation::

    python -m nanodash.api.main
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from nanodash import __version__
from nanodash.api.models import GenerateRequest, UpscaleRequest
from nanodash.core.config import DashboardConfig, config
from nanodash.core.errors import DashboardError
from nanodash.core.service import DashboardService

logger = logging.getLogger(__name__)


def create_app(
    settings: DashboardConfig | None = None,
    service: DashboardService | None = None,
) -> FastAPI:
    """Build the FastAPI application.

    Args:
        settings: Configuration to use.  Defaults to the global ``config``.
        service: Pre-built service (tests inject one with a fake automation
            driver).  Built from ``settings`` on startup when omitted.

    Returns:
        The configured application.
    """
    settings = settings or (service.settings if service else config)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Create the dashboard service on startup.

        Running generation processes are not cancelled on shutdown; the
        number still in flight is logged.
        """
        app.state.service = service or DashboardService(settings)
        logger.info(f"Dashboard service ready (outputs: {settings.outputs_dir}).")

        yield

        active = app.state.service.supervisor.active_count
        if active:
            logger.warning(f"Shutting down with {active} generation job(s) still running.")

    app = FastAPI(
        title="Nano Dash",
        description="Local dashboard for queued image-generation jobs.",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    settings.outputs_dir.mkdir(parents=True, exist_ok=True)
    app.mount(
        settings.download_prefix,
        StaticFiles(directory=str(settings.outputs_dir)),
        name="outputs",
    )

    @app.exception_handler(DashboardError)
    async def dashboard_error_handler(request: Request, exc: DashboardError) -> JSONResponse:
        content = {"detail": exc.message}
        if exc.diagnostic:
            content["diagnostic"] = exc.diagnostic
        return JSONResponse(status_code=exc.status_code, content=content)

    _register_routes(app)
    return app


def _service(request: Request) -> DashboardService:
    return request.app.state.service


def _register_routes(app: FastAPI) -> None:
    @app.get("/api/prompts")
    async def get_prompts(request: Request) -> dict:
        """Return four random prompt suggestions."""
        return {"prompts": _service(request).sample_prompts()}

    @app.get("/api/jobs")
    async def get_jobs(request: Request) -> dict:
        """Return the job ledger, newest first."""
        return {"jobs": [job.model_dump() for job in _service(request).list_jobs()]}

    @app.post("/api/generate")
    async def generate(req: GenerateRequest, request: Request) -> dict:
        """Queue one generation job per selected prompt.

        Returns immediately; poll ``GET /api/jobs`` for progress.

        Raises:
            InvalidRequestError: 400 when no prompt is selected.
            MissingCredentialError: 500 when the API key is not configured.
        """
        jobs = await _service(request).create_generation_jobs(req.prompts)
        return {
            "message": "Generation jobs submitted.",
            "jobs": [job.id for job in jobs],
        }

    @app.post("/api/upscale")
    async def upscale(req: UpscaleRequest, request: Request) -> dict:
        """Write an upscaled copy of an asset next to the original."""
        result = await _service(request).upscale(job_id=req.job_id, file_name=req.file_name)
        return {
            "message": "Upscale completed locally.",
            "output_url": result.output_url,
            "file": result.file,
            "job": result.job.model_dump() if result.job else None,
        }

    @app.post("/api/upload")
    async def trigger_upload(request: Request) -> dict:
        """Open the contributor portal in the headed browser."""
        job = await _service(request).trigger_general_upload()
        return {
            "message": "Headed browser launched to Adobe Stock Contributor.",
            "job": job.model_dump() if job else None,
        }

    @app.post("/api/job/{job_id}/upload")
    async def upload_job(job_id: str, request: Request) -> dict:
        """Upload a job's asset through browser automation."""
        job = await _service(request).upload_job(job_id)
        return {
            "message": "Upload automation completed.",
            "job": job.model_dump() if job else None,
        }

    @app.post("/api/output/{file_name}/upload")
    async def upload_output(file_name: str, request: Request) -> dict:
        """Upload a file from the output directory, tracked or not."""
        uploaded = await _service(request).upload_output_file(file_name)
        return {"message": "Upload automation completed for output file.", "file": uploaded}

    @app.post("/api/job/{job_id}/download")
    async def mark_downloaded(job_id: str, request: Request) -> dict:
        """Flag a job's asset as downloaded and return its URL."""
        return {"url": _service(request).mark_downloaded(job_id)}

    @app.get("/api/outputs")
    async def get_outputs(request: Request) -> dict:
        """Return every image in the output directory, joined with its job."""
        items = await _service(request).list_gallery()
        return {"outputs": [item.model_dump() for item in items]}

    @app.delete("/api/output/{file_name}")
    async def delete_output(file_name: str, request: Request) -> dict:
        """Delete an output file by name."""
        deleted = await _service(request).delete_output_file(file_name)
        return {"message": "Output deleted", "file": deleted}

    @app.delete("/api/job/{job_id}")
    async def delete_job(job_id: str, request: Request) -> dict:
        """Delete a job's asset; the job stays listed as deleted."""
        await _service(request).delete_job_asset(job_id)
        return {"message": "Asset deleted.", "id": job_id}


app = create_app()


# ---------------------------------------------------------------------------
# CLI entry point.
# ---------------------------------------------------------------------------


def main() -> None:
    """Launch the uvicorn ASGI server.

    Reads host and port from :data:`~nanodash.core.config.config` (which
    loads from ``NANODASH_SERVER_HOST`` and ``NANODASH_SERVER_PORT``
    environment variables).  Defaults to ``127.0.0.1:3001``.

    This function is registered as the ``nanodash`` console script in
    ``pyproject.toml``.
    """
    import uvicorn

    uvicorn.run(
        "nanodash.api.main:app",
        host=config.server_host,
        port=config.server_port,
        reload=False,
    )


if __name__ == "__main__":
    main()
