"""Structured formation records stored on entities.

Leader and follower data share one metadata namespace on an entity::

    {
        "version": 1,
        "followers": ["<followerId>", ...],          # LeaderState
        "leaders": {"<leaderId>": Relation, ...},    # FollowerState
        "paused": false,
        "lastUser": "<sessionId>",
    }

Records written by older builds carry no ``version`` and store the last user
under ``user``; :func:`migrate_record` upgrades them on read.
"""
from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

from core.errors import RecordVersionError
from modules.formation.geometry import ElevationLock, OrientationSpec
from utils.logger import get_migration_logger

__all__ = [
    "Delta",
    "FOLLOWER_KEYS",
    "FollowerState",
    "LEADER_KEYS",
    "LeaderState",
    "Locks",
    "RECORD_VERSION",
    "Relation",
    "migrate_record",
]

RECORD_VERSION = 1

LEADER_KEYS = ("followers",)
FOLLOWER_KEYS = ("leaders", "paused", "lastUser")

_MIGRATION_LOGGER = get_migration_logger()


class Locks(BaseModel):
    """Coupling policy between a follower and one leader."""

    elevation: ElevationLock = ElevationLock.TETHER
    follow: bool = False


class Delta(BaseModel):
    """Offset of a follower from its leader, captured at join time."""

    angle: float
    distance: float
    dz: float = 0.0
    orientation: OrientationSpec


class Relation(BaseModel):
    delta: Delta
    locks: Locks = Field(default_factory=Locks)
    snap: bool = False


class LeaderState(BaseModel):
    """Ordered set of the followers attached to a leader."""

    followers: List[str] = Field(default_factory=list)

    def add(self, follower_id: str) -> bool:
        if follower_id in self.followers:
            return False
        self.followers.append(follower_id)
        return True

    def remove(self, follower_id: str) -> bool:
        if follower_id not in self.followers:
            return False
        self.followers = [fid for fid in self.followers if fid != follower_id]
        return True


class FollowerState(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    leaders: Dict[str, Relation] = Field(default_factory=dict)
    paused: bool = False
    last_user: Optional[str] = Field(default=None, alias="lastUser")

    def relation_for(self, leader_id: str) -> Optional[Relation]:
        return self.leaders.get(leader_id)

    @property
    def always_follows(self) -> bool:
        """True when every tracked leader ignores independent movement."""

        return bool(self.leaders) and all(rel.locks.follow for rel in self.leaders.values())

    def to_flags(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


def migrate_record(raw: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Return ``raw`` upgraded to :data:`RECORD_VERSION`.

    Raises:
        RecordVersionError: the record was written by a newer build.
    """

    if not raw:
        return {}
    record = dict(raw)
    version = int(record.get("version", 0))
    if version > RECORD_VERSION:
        raise RecordVersionError(
            f"formation record version {version} is newer than supported {RECORD_VERSION}"
        )
    if version == 0:
        if "user" in record:
            record.setdefault("lastUser", record.pop("user"))
        leaders = record.get("leaders")
        if isinstance(leaders, dict):
            # Unversioned records could hold null relations after partial deletes.
            record["leaders"] = {lid: rel for lid, rel in leaders.items() if rel}
        record["version"] = RECORD_VERSION
        _MIGRATION_LOGGER.warning(f"Migrated formation record from v0 to v{RECORD_VERSION}")
    return record
