"""Error kinds raised by the report store, the sync coordinator and the backup codec."""

from __future__ import annotations

from typing import Any, Optional


class EODError(RuntimeError):
    """Failure scoped to the single user action that triggered it."""

    def __init__(self, message: str, *, detail: Optional[Any] = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail


class ValidationError(EODError):
    """Malformed backup document or task entry; nothing was written."""


class PersistenceError(EODError):
    """A remote read or write failed.

    ``outcome`` describes which phases of a multi-step write had already
    committed when the failure happened.
    """

    def __init__(self, message: str, *, outcome: Optional[Any] = None, detail: Optional[Any] = None) -> None:
        super().__init__(message, detail=detail)
        self.outcome = outcome


class SyncError(EODError):
    """The client upsert batch was rejected by the remote store."""


class ConnectivityError(EODError):
    """The connectivity probe failed."""


__all__ = ["EODError", "ValidationError", "PersistenceError", "SyncError", "ConnectivityError"]
