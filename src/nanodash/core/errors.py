"""Typed failures raised by the dashboard core.

Every error carries the HTTP status the API layer should answer with, so the
route handlers never have to translate individual exception types.  The
message is user-facing and is returned verbatim.
"""

from __future__ import annotations


class DashboardError(Exception):
    """Base class for all user-visible dashboard failures.

    Attributes:
        message: Human readable description, returned to the caller as is.
        diagnostic: Optional captured output (stderr, tool output) that helps
            explain an upstream failure.
    """

    status_code = 500

    def __init__(self, message: str, diagnostic: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.diagnostic = diagnostic


class NotFoundError(DashboardError):
    """Referenced job or file is absent, or its asset is missing on disk."""

    status_code = 404


class AlreadyDeletedError(DashboardError):
    """Operation targets an asset whose job is already marked deleted."""

    status_code = 400


class InvalidRequestError(DashboardError):
    """Request is malformed or the job is in no state to serve it."""

    status_code = 400


class MissingCredentialError(DashboardError):
    """A credential required for the operation is not configured."""

    status_code = 500


class UpstreamError(DashboardError):
    """A subprocess, automation step or filesystem write failed."""

    status_code = 500
