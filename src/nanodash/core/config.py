"""Configuration management for the Nano Dash dashboard.

This module provides centralized configuration management using Pydantic Settings.
All configuration is loaded from environment variables with the NANODASH_ prefix,
allowing easy customization without code changes.

Environment Variable Loading
-----------------------------
Configuration values are loaded in the following priority order:
1. Environment variables (NANODASH_* prefix)
2. .env file in the project root
3. Default values defined in DashboardConfig

Example .env file:
    NANODASH_STORAGE_ROOT=/srv/nanodash
    NANODASH_GENERATOR_SCRIPT=/opt/skills/nano-banana-pro/scripts/generate_image.py
    NANODASH_SERVER_PORT=3001

Global Configuration Instance
------------------------------
A global `config` instance is created automatically at module import time.
The API factory accepts an explicit instance instead, which is how the test
suite isolates every test inside a temporary storage root.

Storage Layout
--------------
Job ``output`` paths are stored relative to ``storage_root`` and always have
the flat form ``<outputs_dir_name>/<basename>``.  Generated, derived
(upscaled) and manually dropped images all live side by side in
``outputs_dir``; there are no nested subdirectories.
"""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_PACKAGE_DIR = Path(__file__).resolve().parent.parent


class DashboardConfig(BaseSettings):
    """Main configuration for the Nano Dash dashboard.

    Attributes
    ----------
    Storage:
        storage_root : Path
            Root that job ``output`` paths are relative to
        outputs_dir_name : str
            Name of the single flat output directory under ``storage_root``
        prompts_file : Path
            JSON list of prompt suggestions served by ``/api/prompts``

    Generation back end:
        generator_script : Path
            Script launched once per prompt
        python_executable : str
            Interpreter used to launch the script
        generation_resolution : str
            Resolution hint passed as ``--resolution``
        api_key_env_var : str
            Environment variable the credential is injected into
        api_key_label : str
            Label of the credential in the secrets file

    Job tracking:
        ledger_capacity : int
            Number of recent jobs kept in memory
        max_prompts_per_request : int
            Upper bound on subprocesses started by one generation request

    Upload automation:
        workspace_root : Path
            Working directory for the automation CLI
        automation_command : str
            Command prefix; the tool name is appended directly
        automation_timeout : float
            Seconds before a single automation step is killed
        portal_timeout : float
            Seconds allowed for the "open portal" navigation

    Notes
    -----
    - ``outputs_dir`` is created automatically if it doesn't exist
    - To modify config, set environment variables and restart the application
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="NANODASH_",
        case_sensitive=False,
    )

    # Storage
    storage_root: Path = Field(
        default=Path("."),
        description="Root directory that job output paths are relative to",
    )
    outputs_dir_name: str = Field(
        default="outputs",
        description="Flat output directory under storage_root",
    )
    prompts_file: Path = Field(
        default=_PACKAGE_DIR / "data" / "prompts.json",
        description="JSON list of prompt suggestions",
    )

    # Generation back end
    generator_script: Path = Field(
        default=Path("skills") / "nano-banana-pro" / "scripts" / "generate_image.py",
        description="External generation script, launched once per prompt",
    )
    python_executable: str = Field(
        default="python3",
        description="Interpreter used to run the generation script",
    )
    generation_resolution: str = Field(
        default="2K",
        description="Resolution hint passed to the generation script",
    )
    api_key_env_var: str = Field(
        default="GEMINI_API_KEY",
        description="Environment variable holding the generation credential",
    )
    api_key_label: str = Field(
        default="Gemini",
        description="Label of the generation credential in the secrets file",
    )
    secrets_file: Path = Field(
        default=Path.home() / ".openclaw" / "api.txt",
        description="Flat label/value secrets file",
    )

    # Job tracking
    ledger_capacity: int = Field(default=12, ge=1)
    max_prompts_per_request: int = Field(default=4, ge=1)

    # Upload automation
    workspace_root: Path = Field(
        default=Path("."),
        description="Working directory for the browser-automation CLI",
    )
    automation_command: str = Field(
        default="mcporter call chrome-devtools.",
        description="Automation CLI prefix; the tool name is appended directly",
    )
    automation_timeout: float = Field(default=90.0, gt=0)
    portal_timeout: float = Field(default=20.0, gt=0)
    contributor_uploads_url: str = Field(
        default="https://contributor.stock.adobe.com/en/uploads",
    )
    contributor_portal_url: str = Field(
        default="https://stock.adobe.com/contributor",
    )

    # Server settings
    server_host: str = Field(default="127.0.0.1")
    server_port: int = Field(default=3001, ge=1024, le=65535)

    def __init__(self, **kwargs):
        """Initialize configuration and create the output directory.

        Args:
            **kwargs: Configuration overrides (typically from environment variables)
        """
        super().__init__(**kwargs)
        self.outputs_dir.mkdir(parents=True, exist_ok=True)

    @property
    def outputs_dir(self) -> Path:
        """Absolute-or-relative path of the flat output directory."""
        return self.storage_root / self.outputs_dir_name

    @property
    def download_prefix(self) -> str:
        """URL prefix the output directory is served under."""
        return f"/{self.outputs_dir_name}"


# Global configuration instance
config = DashboardConfig()
