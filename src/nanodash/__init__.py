"""Nano Dash - local dashboard for queued image-generation jobs."""

__version__ = "0.1.0"

from nanodash.core.config import DashboardConfig, config

__all__ = [
    "DashboardConfig",
    "config",
]
