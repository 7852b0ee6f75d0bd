# bakersdozen/services/errors.py
"""
Exceptions raised by the data-access layer.

Reads never raise these (they degrade to the offline cache); writes do.
"""
from __future__ import annotations

from typing import Optional


class DataAccessError(RuntimeError):
    """Base class for data-access failures surfaced to callers."""


class OfflineError(DataAccessError):
    """A mutating call was attempted while the connection monitor reports Offline."""

    def __init__(self, action: str, table: str):
        self.action = action
        self.table = table
        super().__init__(f"Cannot {action} records while offline (table={table})")


class BackendError(DataAccessError):
    """The backend (or the transport to it) failed a mutating call."""

    def __init__(self, action: str, table: str, code: Optional[str] = None):
        self.action = action
        self.table = table
        self.code = code
        msg = f"Backend rejected {action} on {table}"
        if code:
            msg = f"{msg} (code={code})"
        super().__init__(msg)


class UnknownTableError(DataAccessError, ValueError):
    """The identifier is not a known table or view."""

    def __init__(self, name: str, kind: str = "table"):
        self.name = name
        self.kind = kind
        super().__init__(f"Unknown {kind}: {name!r}")
