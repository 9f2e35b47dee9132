"""Relative-motion geometry for followers.

Everything here is a pure function of its arguments.  Coordinates follow the
usual canvas convention: ``x`` grows to the right, ``y`` grows downwards and
angles are measured in radians from the +x axis, turning clockwise on screen.
Entity positions are top-left corners; follow vectors are expressed between
entity centers.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Mapping, NamedTuple, Optional, Tuple

from utils.logger import log_calls

__all__ = [
    "ElevationLock",
    "FollowVector",
    "Location",
    "ORIENTATION_PRESETS",
    "OrientationMode",
    "OrientationSpec",
    "PLANAR_EPSILON",
    "RelativeOffset",
    "compute_follower_delta",
    "compute_follower_position",
    "heading_from_rotation",
    "location_of",
    "polar_offset",
    "resolve_orientation",
    "rotate_about",
    "snap_to_grid",
]

PLANAR_EPSILON = 1e-10
"""Planar displacements shorter than this are treated as a pure rotation."""

Point = Tuple[float, float]


class ElevationLock(str, Enum):
    """How a follower's elevation reacts when its leader changes elevation."""

    STATIC = "static"
    OFFSET = "offset"
    TETHER = "tether"


class OrientationMode(str, Enum):
    VECTOR = "vector"
    REL = "rel"
    DETECT = "detect"


@dataclass(frozen=True)
class OrientationSpec:
    """Tagged orientation requested when a follower joins a leader.

    ``vector`` keeps a fixed bearing relative to the leader's heading, where
    ``(x, y)`` is the travel direction in which the formation keeps its
    current arrangement.  ``rel`` scales the leader's displacement
    componentwise by ``(x, y)``.  ``detect`` is resolved from the leader's
    facing at join time, see :func:`resolve_orientation`.
    """

    mode: OrientationMode = OrientationMode.VECTOR
    x: float = 0.0
    y: float = 0.0

    @property
    def heading(self) -> float:
        return math.atan2(self.y, self.x)

    @classmethod
    def from_wire(cls, data: Any) -> "OrientationSpec":
        if isinstance(data, cls):
            return data
        return cls(
            mode=OrientationMode(data.get("mode", OrientationMode.VECTOR)),
            x=float(data.get("x", 0.0)),
            y=float(data.get("y", 0.0)),
        )

    def to_wire(self) -> Dict[str, Any]:
        return {"mode": self.mode.value, "x": self.x, "y": self.y}


ORIENTATION_PRESETS: Dict[str, OrientationSpec] = {
    "LEFT": OrientationSpec(OrientationMode.VECTOR, -1.0, 0.0),
    "UP": OrientationSpec(OrientationMode.VECTOR, 0.0, -1.0),
    "DOWN": OrientationSpec(OrientationMode.VECTOR, 0.0, 1.0),
    "RIGHT": OrientationSpec(OrientationMode.VECTOR, 1.0, 0.0),
    "MIRROR": OrientationSpec(OrientationMode.REL, 1.0, 1.0),
    "SHADOW": OrientationSpec(OrientationMode.REL, -1.0, -1.0),
    "DETECT": OrientationSpec(OrientationMode.DETECT, 0.0, 0.0),
}


@dataclass(frozen=True)
class Location:
    """Center position, elevation and facing heading of an entity."""

    x: float
    y: float
    z: float = 0.0
    t: float = 0.0

    @classmethod
    def from_wire(cls, data: Any) -> "Location":
        if isinstance(data, cls):
            return data
        return cls(
            x=float(data["x"]),
            y=float(data["y"]),
            z=float(data.get("z") or 0.0),
            t=float(data.get("t") or 0.0),
        )

    def to_wire(self) -> Dict[str, float]:
        return {"x": self.x, "y": self.y, "z": self.z, "t": self.t}


@dataclass(frozen=True)
class FollowVector:
    """One leader displacement, from origin ``A`` to destination ``B``."""

    A: Location
    B: Location

    @property
    def dx(self) -> float:
        return self.B.x - self.A.x

    @property
    def dy(self) -> float:
        return self.B.y - self.A.y

    @property
    def dz(self) -> float:
        return self.B.z - self.A.z

    @property
    def dt(self) -> float:
        return self.B.t - self.A.t

    @property
    def angle(self) -> float:
        return math.atan2(self.dy, self.dx)

    @property
    def distance(self) -> float:
        return math.hypot(self.dx, self.dy)

    @classmethod
    def from_wire(cls, data: Any) -> "FollowVector":
        """Rebuild a vector from the plain mapping a peer put on the wire."""

        if isinstance(data, cls):
            return data
        return cls(A=Location.from_wire(data["A"]), B=Location.from_wire(data["B"]))

    def to_wire(self) -> Dict[str, Dict[str, float]]:
        return {"A": self.A.to_wire(), "B": self.B.to_wire()}


class RelativeOffset(NamedTuple):
    angle: float
    distance: float
    dz: float


def polar_offset(x: float, y: float, angle: float, distance: float) -> Point:
    return x + math.cos(angle) * distance, y + math.sin(angle) * distance


def rotate_about(point: Point, pivot: Point, angle: float) -> Point:
    """Rotate ``point`` by ``angle`` radians around ``pivot``."""

    px, py = point[0] - pivot[0], point[1] - pivot[1]
    cos_a, sin_a = math.cos(angle), math.sin(angle)
    return pivot[0] + px * cos_a - py * sin_a, pivot[1] + px * sin_a + py * cos_a


def heading_from_rotation(rotation: float) -> float:
    """Convert an entity rotation in degrees into its facing heading.

    Rotation ``0`` faces down the screen (+y) and grows clockwise.
    """

    return math.radians(rotation + 90.0)


def location_of(entity: Any, changes: Optional[Mapping[str, Any]] = None) -> Location:
    """Return the :class:`Location` of ``entity`` once ``changes`` apply."""

    changes = changes or {}
    x = changes.get("x")
    y = changes.get("y")
    elevation = changes.get("elevation")
    rotation = changes.get("rotation")
    return Location(
        x=(entity.x if x is None else x) + entity.width / 2,
        y=(entity.y if y is None else y) + entity.height / 2,
        z=entity.elevation if elevation is None else elevation,
        t=heading_from_rotation(entity.rotation if rotation is None else rotation),
    )


def resolve_orientation(spec: OrientationSpec, leader_rotation: float) -> OrientationSpec:
    """Replace a ``detect`` orientation with the leader's current facing."""

    if spec.mode is not OrientationMode.DETECT:
        return spec
    heading = heading_from_rotation(leader_rotation)
    return OrientationSpec(OrientationMode.VECTOR, math.cos(heading), math.sin(heading))


def compute_follower_delta(
    leader_center: Point,
    leader_elevation: float,
    orientation: OrientationSpec,
    follower_center: Point,
    follower_elevation: float,
) -> RelativeOffset:
    """Capture the follower's offset relative to the leader at join time."""

    ox = follower_center[0] - leader_center[0]
    oy = follower_center[1] - leader_center[1]
    return RelativeOffset(
        angle=math.atan2(oy, ox) - orientation.heading,
        distance=math.hypot(ox, oy),
        dz=follower_elevation - leader_elevation,
    )


@log_calls
def compute_follower_position(
    follow_vector: FollowVector,
    relation: Any,
    entity_size: Tuple[float, float],
    current_position: Point,
) -> Dict[str, float]:
    """Compute where a follower goes after its leader moved along ``follow_vector``.

    Args:
        follow_vector: The leader's displacement, center to center.
        relation: The stored relation (``delta``, ``locks``) for this leader.
        entity_size: Follower ``(width, height)``, used to convert between
            center and top-left corner.
        current_position: Follower top-left position as stored in the
            document store, i.e. ignoring any running animation.

    Returns:
        A mapping with any of ``x``, ``y`` and ``elevation``.  Missing keys
        mean the follower does not move on that axis.
    """

    delta = relation.delta
    orientation = delta.orientation
    width, height = entity_size
    destination = follow_vector.B
    position: Dict[str, float] = {}

    if orientation.mode is OrientationMode.REL:
        x = current_position[0] + orientation.x * follow_vector.dx
        y = current_position[1] + orientation.y * follow_vector.dy
        if follow_vector.dt:
            cx, cy = rotate_about(
                (x + width / 2, y + height / 2),
                (destination.x, destination.y),
                follow_vector.dt,
            )
            x, y = cx - width / 2, cy - height / 2
        position["x"], position["y"] = x, y
    else:
        if follow_vector.distance < PLANAR_EPSILON:
            heading = destination.t
        else:
            heading = follow_vector.angle
        anchor_x, anchor_y = polar_offset(
            destination.x, destination.y, heading + delta.angle, delta.distance
        )
        if follow_vector.dx or follow_vector.dy or follow_vector.dt:
            position["x"] = anchor_x - width / 2
            position["y"] = anchor_y - height / 2

    if follow_vector.dz:
        lock = ElevationLock(relation.locks.elevation)
        if lock is ElevationLock.OFFSET:
            position["elevation"] = destination.z + delta.dz
        elif lock is ElevationLock.TETHER:
            # Inverse coupling: the gap flips sign with the leader's direction.
            if follow_vector.dz < 0:
                position["elevation"] = destination.z - delta.dz
            else:
                position["elevation"] = destination.z + delta.dz

    return position


def snap_to_grid(point: Mapping[str, float], grid_size: float) -> Dict[str, float]:
    """Snap the ``x``/``y`` of ``point`` to the nearest grid corner."""

    snapped = dict(point)
    if grid_size <= 0:
        return snapped
    for axis in ("x", "y"):
        if axis in snapped:
            snapped[axis] = round(snapped[axis] / grid_size) * grid_size
    return snapped
