"""File naming inside the flat output directory.

Two kinds of names are planned here:

- **Primary outputs** of generation jobs: ``<job_id>-<slug>.png`` where the
  slug is derived from the prompt.
- **Derived assets** produced by the upscale operation: the source stem with
  ``-upscaled`` appended, plus ``-1``, ``-2``, ... until the name is free.

Collision checks probe the filesystem directly, one candidate at a time.
Two planners running at the same moment can therefore settle on the same
name; nothing serialises them.
"""

from __future__ import annotations

import re
from pathlib import Path, PurePosixPath

UPSCALED_MARKER = "upscaled"
SLUG_MAX_LENGTH = 32
SLUG_FALLBACK = "nano"

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def slugify_prompt(prompt: str) -> str:
    """Turn a prompt into a short file-name-safe slug.

    Args:
        prompt: Free-text generation prompt.

    Returns:
        Lowercase slug of at most 32 characters, or ``"nano"`` when nothing
        usable is left.
    """
    slug = _NON_ALNUM.sub("-", prompt.lower()).strip("-")
    return slug[:SLUG_MAX_LENGTH] or SLUG_FALLBACK


def plan_generation_filename(job_id: str, prompt: str, extension: str = ".png") -> str:
    """Return the output file name of a generation job."""
    return f"{job_id}-{slugify_prompt(prompt)}{extension}"


def plan_derived_path(relative_path: str, outputs_dir: Path) -> Path:
    """Pick a free path in ``outputs_dir`` for an asset derived from another.

    The base name is the source stem with ``-upscaled`` appended, unless the
    stem already contains ``upscaled``.  When ``<base><ext>`` is taken,
    ``<base>-1<ext>``, ``<base>-2<ext>``, ... are tried in turn.

    Args:
        relative_path: Storage-relative path of the source asset, e.g.
            ``outputs/photo.png``.
        outputs_dir: Directory the derived asset is written to.

    Returns:
        Path inside ``outputs_dir`` that did not exist when probed.
    """
    source = PurePosixPath(relative_path)
    stem, extension = source.stem, source.suffix
    base = stem if UPSCALED_MARKER in stem else f"{stem}-{UPSCALED_MARKER}"

    candidate = outputs_dir / f"{base}{extension}"
    counter = 1
    while candidate.exists():
        candidate = outputs_dir / f"{base}-{counter}{extension}"
        counter += 1
    return candidate


def safe_file_name(name: str | None) -> str | None:
    """Reduce a caller-supplied file reference to a bare file name.

    Directory components are discarded so that a reference can never point
    outside the output directory.

    Returns:
        The base name, or ``None`` when nothing is left.
    """
    if not name:
        return None
    base = PurePosixPath(name.replace("\\", "/")).name
    if base in ("", ".", ".."):
        return None
    return base
