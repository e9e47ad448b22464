"""Error kinds surfaced to callers of the client, workflow and CLI."""

from __future__ import annotations

from typing import Iterable, List, Optional


class ExpenseTrackerError(Exception):
    """Base class for every error this package raises on purpose."""


class ValidationError(ExpenseTrackerError):
    """Local input problem; never crosses the network boundary."""

    def __init__(self, errors: Iterable[str] | str):
        if isinstance(errors, str):
            errors = [errors]
        self.errors: List[str] = list(errors)
        super().__init__(" ".join(self.errors))


class AuthenticationError(ExpenseTrackerError):
    """Session missing, expired or rejected (401/403). The session is already cleared."""

    def __init__(self, message: str = "Authentication required", status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class CollaboratorError(ExpenseTrackerError):
    """A backend or OCR call failed for a reason other than authentication."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class NotFoundError(CollaboratorError):
    """The addressed trip or expense no longer exists."""


class WorkflowBusyError(ExpenseTrackerError):
    """A second boundary call was started while one is still in flight."""


class SessionStorageError(ExpenseTrackerError):
    """The session file could not be written; the session only lives in memory."""
