# SPDX-License-Identifier: Apache-2.0
"""
Workbench error taxonomy.

The backend client and stores raise these. The chat session manager turns
every one of them into a system message, so nothing here escapes to callers
of ``send_message`` or ``load_session``.
"""

from __future__ import annotations


class WorkbenchError(Exception):
    """Base exception for workbench operations."""

    kind = "error"


class ValidationError(WorkbenchError):
    """Raised for input rejected locally (e.g. an empty message)."""

    kind = "validation"


class ServiceBusyError(WorkbenchError):
    """Raised when the backend reports it is overloaded.

    Kept distinct so the UI can say "try again shortly" instead of showing a
    generic failure.
    """

    kind = "service_busy"
    user_message = "The assistant is busy right now. Please try again shortly."

    def __init__(self, detail: str = "") -> None:
        self.detail = detail
        super().__init__(detail or self.user_message)


class RemoteError(WorkbenchError):
    """Raised when the backend answers with an explicit error string."""

    kind = "remote"


class TransportError(WorkbenchError):
    """Raised when the request never produced a usable response."""

    kind = "transport"

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class PersistenceError(WorkbenchError):
    """Raised when the session-id store cannot be read or written."""

    kind = "persistence"
