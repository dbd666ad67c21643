"""Credential lookup for external back ends.

Credentials come from the environment first and from a flat secrets file
second.  The file holds alternating label and value lines::

    Gemini
    AIza...
    Replicate
    r8_...

Blank lines between pairs are ignored.  A label with no value line after it
is dropped.
"""

import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)


class SecretStore:
    """Read-only access to the label/value secrets file."""

    def __init__(self, path: Path):
        """Initialize the store.

        Args:
            path: Location of the secrets file.  It does not need to exist.
        """
        self.path = Path(path)

    def load(self) -> dict[str, str]:
        """Parse the secrets file.

        The file is re-read on every call so edits take effect without a
        restart.

        Returns:
            Mapping of label to value.  Empty when the file is missing or
            unreadable.
        """
        try:
            raw = self.path.read_text(encoding="utf-8")
        except OSError as e:
            logger.warning(f"Secret file not found or unreadable: {e}")
            return {}

        secrets: dict[str, str] = {}
        lines = raw.splitlines()
        index = 0
        while index < len(lines):
            label = lines[index].strip()
            index += 1
            if not label:
                continue
            value = lines[index].strip() if index < len(lines) else ""
            if not value:
                continue
            secrets[label] = value
            index += 1
        return secrets

    def resolve(self, label: str, env_var: str) -> str | None:
        """Look up a credential.

        Args:
            label: Label of the entry in the secrets file.
            env_var: Environment variable that overrides the file.

        Returns:
            The credential, or ``None`` if neither source has it.
        """
        from_env = os.environ.get(env_var, "").strip()
        if from_env:
            return from_env
        return self.load().get(label)
