"""
Domain exceptions for sync state bookkeeping.

Everything here is raised to the immediate caller. Nothing in the core
retries on its own; the only place that recovers is the batch loop in
ResyncOrchestrator.resync_many().
"""


class SyncStateError(Exception):
    """Base class for all sync-state errors."""


class InvalidArgumentError(SyncStateError, ValueError):
    """Bad caller input, rejected before any mutation."""


class InvalidRangeError(InvalidArgumentError):
    """Period end before start, or a non-positive chunk count."""


class NotFoundError(SyncStateError, LookupError):
    """Referenced record does not exist."""


class TerminalStateError(SyncStateError):
    """Mutation attempted on a record already in a terminal state."""


class ConflictError(SyncStateError):
    """A project already has an active (pending/syncing) progress record."""


class AlreadySyncingError(ConflictError):
    """Resync requested while the project has a sync in flight."""

    def __init__(self, project_id: str):
        super().__init__(f"Project {project_id} is already syncing")
        self.project_id = project_id


class SyncError(SyncStateError):
    """Failure reported by the remote sync executor (message kept verbatim)."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message
