"""
Error kinds raised by the sync + versioning engine.

Per-subscription failures (`NotFoundError`, `PersistenceError`,
`ConfigurationError`) are captured in a `SyncReport`; `ConcurrencyError`
always reaches the caller of `VersionSelector.set_current`.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .sync.coordinator import SyncReport


class PropsyncError(Exception):
    """Base class for every error raised by propsync."""


class ConfigurationError(PropsyncError):
    """A selection, formatter or record type is not usable as configured."""


class NotFoundError(PropsyncError):
    """A subject, reference or subscription no longer exists."""

    def __init__(self, message: str, *, kind: str | None = None, id: Any = None):
        super().__init__(message)
        self.kind = kind
        self.id = id


class ConcurrencyError(PropsyncError):
    """The atomic clear-then-set of a current marker hit a store conflict."""


class PersistenceError(PropsyncError):
    """The store rejected a write (constraint, validation, foreign tenant)."""


class SyncFailed(PropsyncError):
    """Raised on the queued path so the task runner can retry the whole event."""

    def __init__(self, report: "SyncReport"):
        failed = [r for r in report.results if r.error is not None]
        super().__init__(
            f"{len(failed)} of {len(report.results)} subscriptions failed "
            f"for {report.subject.kind}:{report.subject.id}"
        )
        self.report = report
