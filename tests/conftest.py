"""Shared pytest fixtures for Nano Dash tests."""

import shutil
import struct
import sys
import tempfile
import textwrap
import zlib
from pathlib import Path
from typing import Generator

import pytest

from nanodash.core.automation import AutomationError
from nanodash.core.config import DashboardConfig
from nanodash.core.ledger import Job, JobLedger, JobStatus, JobType


def png_bytes(width: int, height: int) -> bytes:
    """Build a PNG signature, IHDR and IEND chunk for the given size.

    The image has no pixel data, which is all the header parser needs.
    """

    def chunk(kind: bytes, payload: bytes) -> bytes:
        crc = zlib.crc32(kind + payload) & 0xFFFFFFFF
        return struct.pack(">I", len(payload)) + kind + payload + struct.pack(">I", crc)

    ihdr = struct.pack(">IIBBBBB", width, height, 8, 2, 0, 0, 0)
    return b"\x89PNG\r\n\x1a\n" + chunk(b"IHDR", ihdr) + chunk(b"IEND", b"")


def write_png(path: Path, width: int, height: int) -> Path:
    path.write_bytes(png_bytes(width, height))
    return path


GENERATOR_SUCCESS = """
    import argparse, os, pathlib, struct, sys, zlib

    parser = argparse.ArgumentParser()
    parser.add_argument("--prompt", required=True)
    parser.add_argument("--filename", required=True)
    parser.add_argument("--resolution", required=True)
    args = parser.parse_args()

    if os.environ.get("GEMINI_API_KEY") != "test-key":
        print("missing key", file=sys.stderr)
        sys.exit(3)

    ihdr = struct.pack(">IIBBBBB", 2048, 2048, 8, 2, 0, 0, 0)
    crc = zlib.crc32(b"IHDR" + ihdr) & 0xFFFFFFFF
    data = b"\\x89PNG\\r\\n\\x1a\\n" + struct.pack(">I", 13) + b"IHDR" + ihdr + struct.pack(">I", crc)
    pathlib.Path(args.filename).write_bytes(data)
    print(f"saved {args.filename} at {args.resolution}")
"""

GENERATOR_NO_FILE = """
    print("pretended to work")
"""

GENERATOR_FAILS = """
    import sys
    print("quota exceeded", file=sys.stderr)
    sys.exit(2)
"""


def write_script(directory: Path, name: str, body: str) -> Path:
    script = directory / name
    script.write_text(textwrap.dedent(body))
    return script


class FakeAutomation:
    """Stands in for ContributorAutomation and records every call."""

    def __init__(self, fail_with: str | None = None):
        self.fail_with = fail_with
        self.uploads: list[tuple[Job, Path]] = []
        self.portal_opened = 0

    async def upload(self, job: Job, file_path: Path) -> None:
        self.uploads.append((job, file_path))
        if self.fail_with:
            raise AutomationError(self.fail_with, stderr="browser not reachable")

    async def open_portal(self) -> None:
        self.portal_opened += 1
        if self.fail_with:
            raise AutomationError(self.fail_with, stderr="browser not reachable")


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files.

    Yields:
        Path to temporary directory

    Cleanup:
        Directory is removed after test completes
    """
    temp_path = Path(tempfile.mkdtemp())
    try:
        yield temp_path
    finally:
        shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def generator_script(temp_dir: Path) -> Path:
    """A generation script that writes a 2048x2048 PNG header."""
    return write_script(temp_dir, "generate_ok.py", GENERATOR_SUCCESS)


@pytest.fixture
def test_config(temp_dir: Path, generator_script: Path, monkeypatch) -> DashboardConfig:
    """Create a test configuration rooted in a temporary directory.

    The generation credential is taken from a secrets file inside the
    temporary directory, never from the real environment.

    Returns:
        DashboardConfig instance for testing
    """
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    secrets_file = temp_dir / "api.txt"
    secrets_file.write_text("Gemini\ntest-key\n")

    return DashboardConfig(
        _env_file=None,
        storage_root=temp_dir,
        secrets_file=secrets_file,
        workspace_root=temp_dir,
        python_executable=sys.executable,
        generator_script=generator_script,
    )


@pytest.fixture
def outputs_dir(test_config: DashboardConfig) -> Path:
    return test_config.outputs_dir


@pytest.fixture
def ledger() -> JobLedger:
    return JobLedger(capacity=12)


@pytest.fixture
def completed_job(outputs_dir: Path) -> Job:
    """A completed generation job whose 2000x3000 PNG exists on disk."""
    write_png(outputs_dir / "abcd1234-sunset.png", 2000, 3000)
    return Job(
        id="abcd1234",
        type=JobType.GENERATION,
        prompts=["sunset over the sea"],
        status=JobStatus.COMPLETED,
        detail="Saved abcd1234-sunset.png",
        filename="abcd1234-sunset.png",
        output="outputs/abcd1234-sunset.png",
        download_url="/outputs/abcd1234-sunset.png",
    )
