"""Pydantic request models for the Nano Dash API.

Models
------
GenerateRequest
    Payload for ``POST /api/generate``: the prompts to generate, one job
    per prompt.
UpscaleRequest
    Payload for ``POST /api/upscale``: identifies the asset by job id, by
    file name, or both.
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class GenerateRequest(BaseModel):
    """Request body for the ``POST /api/generate`` endpoint.

    Attributes:
        prompts: Prompts selected by the user.  Only the first four are
            used; an empty list is rejected by the service with a 400.
    """

    prompts: list[str] = Field(
        default_factory=list,
        description="Selected prompts; one generation job is queued per prompt.",
    )


class UpscaleRequest(BaseModel):
    """Request body for the ``POST /api/upscale`` endpoint.

    Attributes:
        job_id: Identifier of the job whose asset is upscaled.
        file_name: Name of a file in the output directory.  Used when no job
            matches ``job_id`` (e.g. files left over from an earlier run).
    """

    job_id: str | None = Field(
        default=None,
        description="Job identifier (preferred).",
    )
    file_name: str | None = Field(
        default=None,
        description="Output file name, for assets without a tracked job.",
    )
