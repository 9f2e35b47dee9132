"""Exception hierarchy shared by the squadron packages."""
from __future__ import annotations

__all__ = [
    "EntityNotFoundError",
    "MissingLeaderError",
    "RecordVersionError",
    "SquadronError",
    "StoreWriteError",
]


class SquadronError(RuntimeError):
    """Base exception raised by squadron components."""


class StoreWriteError(SquadronError):
    """Raised when the document store rejects a batch of entity updates."""


class RecordVersionError(SquadronError):
    """Raised when a stored formation record is newer than this build understands."""


class MissingLeaderError(SquadronError):
    """Raised when a formation is requested without a leader to follow."""


class EntityNotFoundError(SquadronError, LookupError):
    """Raised when an operation targets an entity the document store does not hold."""
