"""
Multiplayer data models and DTOs for network serialization
"""

from datetime import datetime, timezone
from enum import IntEnum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from modules.formation.geometry import OrientationSpec
from modules.formation.records import Locks


class PermissionLevel(IntEnum):
    """Per-entity permission levels a session can hold"""
    NONE = 0
    LIMITED = 1
    OBSERVER = 2
    OWNER = 3


class Session(BaseModel):
    """A connected client"""
    id: str
    name: str = ""
    is_gm: bool = False
    active: bool = True
    connected_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class WireModel(BaseModel):
    """Base for payloads exchanged between peers (camelCase on the wire)"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class LeaderInfo(WireModel):
    token_id: str
    scene_id: str
    # Plain mapping; rebuilt with FollowVector.from_wire by the receiver
    follow_vector: Dict[str, Any]


class LeaderMovePayload(WireModel):
    """Payload of a leader move event"""
    leader: LeaderInfo
    followers: List[str] = Field(default_factory=list)


class LinkPayload(WireModel):
    """Payload of the add-follower / add-leader join pair"""
    leader_id: str
    follower_id: str
    scene_id: str
    orientation: OrientationSpec
    locks: Locks = Field(default_factory=Locks)
    snap: bool = False
    initiator: Optional[str] = None


class UnlinkPayload(WireModel):
    """Payload of remove-follower / remove-leader events"""
    leader_id: str
    follower_id: str
    scene_id: str


class CollisionNotice(WireModel):
    """Tells the acting user that a follower hit a wall"""
    token_id: str
    token_name: str = ""
    user: Optional[str] = None
