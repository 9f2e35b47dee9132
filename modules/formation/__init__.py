"""Follow-the-leader formations: geometry, records and their persistence."""
from .geometry import (
    ORIENTATION_PRESETS,
    ElevationLock,
    FollowVector,
    Location,
    OrientationMode,
    OrientationSpec,
)
from .records import Delta, FollowerState, LeaderState, Locks, Relation

__all__ = [
    "ORIENTATION_PRESETS",
    "Delta",
    "ElevationLock",
    "FollowVector",
    "FollowerState",
    "LeaderState",
    "Location",
    "Locks",
    "OrientationMode",
    "OrientationSpec",
    "Relation",
]
