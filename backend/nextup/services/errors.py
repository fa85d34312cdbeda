"""
errors.py

Error taxonomy shared by the services and mapped to HTTP responses in main.py.
"""
from typing import Optional


class NextUpError(Exception):
    """Base exception for NextUp service errors."""
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(NextUpError):
    """Malformed or missing request fields; raised before any write."""
    status_code = 400


class NotFoundError(NextUpError):
    """A show, episode or default list the operation depends on does not exist."""
    status_code = 404


class UpstreamError(NextUpError):
    """Trakt returned a non-success status or could not be reached.

    When ``local_state_committed`` is True the local database already reflects
    the request; retrying is safe because every persistence step is idempotent.
    """
    status_code = 502

    def __init__(self, message: str, status: Optional[int] = None, local_state_committed: bool = False):
        super().__init__(message)
        self.status = status
        self.local_state_committed = local_state_committed


class StoreError(NextUpError):
    """The relational store rejected or failed a read/write."""
    status_code = 500
