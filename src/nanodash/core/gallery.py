"""Gallery view that joins the job ledger with the output directory.

The output directory is the authority on which images exist; the ledger only
adds context (label, status, flags) to the files it knows about.  Both sides
are allowed to drift apart:

- a file with no matching job (an earlier run, a manual copy) is listed with
  ``job_id = None`` and its file name as identifier, so it can still be
  upscaled, uploaded or deleted by name
- a job whose output file is gone is simply not listed

Neither side is ever rewritten from the other.

The join matches a file name against the tail of each job's ``output`` path,
which assumes outputs are stored as ``<dir>/<basename>`` in one flat
directory.
"""

from __future__ import annotations

import asyncio
from pathlib import Path

from pydantic import BaseModel

from nanodash.core.image_info import ADOBE_MIN_PIXELS, adobe_readiness, image_dimensions
from nanodash.core.ledger import JobLedger
from nanodash.core.paths import UPSCALED_MARKER

IMAGE_EXTENSIONS = frozenset([".png", ".jpg", ".jpeg", ".webp"])


class GalleryItem(BaseModel):
    """One image file on disk, enriched with its job when there is one."""

    id: str
    prompt: str
    detail: str
    status: str
    url: str
    file: str
    job_id: str | None = None
    deleted: bool = False
    downloaded: bool = False
    is_upscaled: bool = False
    width: int | None = None
    height: int | None = None
    pixels: int | None = None
    meets_adobe_min: bool = False
    adobe_min_pixels: int = ADOBE_MIN_PIXELS


def is_image_file(name: str) -> bool:
    return Path(name).suffix.lower() in IMAGE_EXTENSIONS


def _list_image_files(outputs_dir: Path) -> list[str]:
    if not outputs_dir.is_dir():
        return []
    return sorted(p.name for p in outputs_dir.iterdir() if p.is_file() and is_image_file(p.name))


async def list_gallery(ledger: JobLedger, outputs_dir: Path, url_prefix: str) -> list[GalleryItem]:
    """Build the gallery from the current directory listing.

    Args:
        ledger: Jobs used to enrich the files.
        outputs_dir: Flat directory holding every image.
        url_prefix: URL path the directory is served under, e.g. ``/outputs``.

    Returns:
        One item per image file, ordered by file name.
    """
    files = await asyncio.to_thread(_list_image_files, outputs_dir)
    items: list[GalleryItem] = []

    for file_name in files:
        job = ledger.find_by_output_name(file_name)
        dims = await asyncio.to_thread(image_dimensions, outputs_dir / file_name)
        readiness = adobe_readiness(dims.width, dims.height)

        items.append(
            GalleryItem(
                id=job.id if job else file_name,
                prompt=(job.label if job else None) or file_name,
                detail=(job.detail if job else None) or "Generated",
                status=job.status if job else "generated",
                url=f"{url_prefix}/{file_name}",
                file=file_name,
                job_id=job.id if job else None,
                deleted=job.deleted if job else False,
                downloaded=job.downloaded if job else False,
                is_upscaled=UPSCALED_MARKER in file_name.lower(),
                width=dims.width,
                height=dims.height,
                pixels=readiness.pixels,
                meets_adobe_min=readiness.meets_adobe_min,
            )
        )

    return items
