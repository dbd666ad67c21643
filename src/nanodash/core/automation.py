"""Browser automation for stock contributor uploads.

The dashboard does not talk to the contributor site itself.  It drives a
browser-automation CLI (``mcporter call chrome-devtools.<tool> ...``) one
shell command at a time and reads the accessibility snapshots it prints to
find the buttons to click.

A snapshot line looks like::

    uid=3_14 button "Browse"

:func:`find_uid` extracts the uid of the first line that matches a label.

Upload Flow
-----------
1. Navigate to the uploads page and take a snapshot.
2. Find ``Browse``; if it is not there, click ``Upload`` first and look again.
3. Upload the file through ``Browse``.
4. Fill title and keywords with an in-page script.
5. Dismiss the optional ``No`` prompt and click ``Save work``.

Any failed command or missing required button raises :class:`AutomationError`.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import shlex
from dataclasses import dataclass
from pathlib import Path

from nanodash.core.config import DashboardConfig
from nanodash.core.ledger import Job

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "Nano Banana artwork"
TITLE_MAX_LENGTH = 190
MAX_KEYWORDS = 10

_UID = re.compile(r"uid=([\w_]+)")
_NON_KEYWORD = re.compile(r"[^a-z0-9 ]+")

BROWSE_BUTTON = re.compile(r'button "Browse"')
UPLOAD_BUTTON = re.compile(r'button "Upload"')
NO_BUTTON = re.compile(r'button "No"')
SAVE_BUTTON = re.compile(r'button "Save work"')

_METADATA_SCRIPT = (
    "() => {{ const titleText = {title}; const keywordsText = {keywords}; "
    "const titleField = document.querySelector('textarea[name=\"title\"]') "
    "|| document.querySelector('textarea[aria-label=\"Content title\"]'); "
    "if (titleField) {{ titleField.value = titleText; "
    "titleField.dispatchEvent(new Event('input', {{ bubbles: true }})); }} "
    "const keywordsField = document.querySelector('textarea[name=\"keywordsUITextArea\"]') "
    "|| document.querySelector('textarea[aria-label=\"Paste Keywords...\"]'); "
    "if (keywordsField) {{ keywordsField.value = keywordsText; "
    "keywordsField.dispatchEvent(new Event('input', {{ bubbles: true }})); }} "
    "return {{title: Boolean(titleField), keywords: Boolean(keywordsField)}}; }}"
)


class AutomationError(Exception):
    """An automation command failed or the page did not look as expected.

    Attributes:
        stdout: Output of the failing command, if any.
        stderr: Error output of the failing command, if any.
    """

    def __init__(self, message: str, stdout: str = "", stderr: str = "") -> None:
        super().__init__(message)
        self.stdout = stdout
        self.stderr = stderr

    @property
    def diagnostic(self) -> str:
        return self.stderr.strip() or str(self)


@dataclass
class CommandResult:
    stdout: str
    stderr: str


def find_uid(snapshot: str, pattern: re.Pattern) -> str | None:
    """Return the uid of the first snapshot line matching ``pattern``."""
    for line in snapshot.splitlines():
        uid_match = _UID.search(line)
        if uid_match and pattern.search(line):
            return uid_match.group(1)
    return None


def build_title(job: Job) -> str:
    """Upload title: the job's first prompt, capped at 190 characters."""
    base = (job.label or DEFAULT_TITLE).strip()
    return base[:TITLE_MAX_LENGTH]


def build_keywords(job: Job) -> str:
    """Up to ten distinct lowercase words of the first prompt, comma separated."""
    prompt = job.label or "Nano Banana"
    words = _NON_KEYWORD.sub(" ", prompt.lower()).split()
    unique = list(dict.fromkeys(words))
    return ", ".join(unique[:MAX_KEYWORDS])


class ContributorAutomation:
    """Runs the contributor upload flow through the automation CLI."""

    def __init__(self, settings: DashboardConfig) -> None:
        self._settings = settings

    async def run(self, tool: str, *args: str, timeout: float | None = None) -> CommandResult:
        """Run one automation tool and return its output.

        Args:
            tool: Tool name appended to the command prefix, e.g. ``take_snapshot``.
            *args: ``key=value`` arguments; each is shell-quoted.
            timeout: Seconds before the command is killed.  Defaults to
                ``automation_timeout``.

        Raises:
            AutomationError: The command could not start, timed out, or
                exited non-zero.
        """
        command = " ".join(
            [f"{self._settings.automation_command}{tool}", *(shlex.quote(a) for a in args)]
        )
        timeout = timeout if timeout is not None else self._settings.automation_timeout
        logger.debug(f"Automation: {command}")

        try:
            process = await asyncio.create_subprocess_shell(
                command,
                cwd=str(self._settings.workspace_root),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise AutomationError(f"Unable to run automation command: {e}") from e

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout)
        except asyncio.TimeoutError as e:
            process.kill()
            await process.wait()
            raise AutomationError(f"Automation command timed out after {timeout:g}s: {tool}") from e

        result = CommandResult(
            stdout.decode("utf-8", errors="replace"),
            stderr.decode("utf-8", errors="replace"),
        )
        if process.returncode != 0:
            raise AutomationError(
                f"Automation command {tool} exited {process.returncode}",
                stdout=result.stdout,
                stderr=result.stderr,
            )
        return result

    async def open_portal(self) -> CommandResult:
        """Open the contributor portal in the headed browser."""
        return await self.run(
            "navigate_page",
            f"url={self._settings.contributor_portal_url}",
            timeout=self._settings.portal_timeout,
        )

    async def upload(self, job: Job, file_path: Path) -> None:
        """Upload one asset and fill in its metadata.

        Args:
            job: Job (or transient stand-in) providing title and keywords.
            file_path: Absolute path of the asset to upload.

        Raises:
            AutomationError: On any failed step or missing required button.
        """
        await self.run("navigate_page", f"url={self._settings.contributor_uploads_url}")

        snap = await self.run("take_snapshot")
        browse_uid = find_uid(snap.stdout, BROWSE_BUTTON)
        if not browse_uid:
            upload_uid = find_uid(snap.stdout, UPLOAD_BUTTON)
            if not upload_uid:
                raise AutomationError("Upload button not found on contributor page.")
            await self.run("click", f"uid={upload_uid}")
            snap = await self.run("take_snapshot")
            browse_uid = find_uid(snap.stdout, BROWSE_BUTTON)

        if not browse_uid:
            raise AutomationError("Browse button not found after opening upload dialog.")

        await self.run("upload_file", f"uid={browse_uid}", f"filePath={file_path}")
        await self.run("take_snapshot")

        script = _METADATA_SCRIPT.format(
            title=json.dumps(build_title(job)),
            keywords=json.dumps(build_keywords(job)),
        )
        await self.run("evaluate_script", f"function={script}")

        post_meta = await self.run("take_snapshot")
        no_uid = find_uid(post_meta.stdout, NO_BUTTON)
        save_uid = find_uid(post_meta.stdout, SAVE_BUTTON)

        if no_uid:
            await self.run("click", f"uid={no_uid}")
        if not save_uid:
            raise AutomationError("Save work button not found after metadata fill.")

        await self.run("click", f"uid={save_uid}")
        logger.info(f"Contributor upload finished for {file_path.name}")
