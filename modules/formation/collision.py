"""Wall-collision checks for planned follower moves."""
from __future__ import annotations

import inspect
import logging
from typing import Iterable, List, Optional, Protocol, Sequence, Tuple

import numpy as np

from config.settings import CollisionPolicy

__all__ = ["CollisionDetector", "CollisionQuery", "WallGeometry"]

logger = logging.getLogger(__name__)

Point = Tuple[float, float]
Segment = Tuple[Point, Point]


class CollisionQuery(Protocol):
    """World geometry collaborator: is anything blocking between two points?"""

    def test_collision(self, origin: Point, destination: Point) -> bool:
        ...


class CollisionDetector:
    """Classifies a planned move segment as blocked or clear.

    Checks only run when the policy is not ``off``, when the evaluating client
    is looking at the leader's scene (the world geometry of other scenes is
    not loaded) and when the follower actually moves.
    """

    def __init__(self, query: Optional[CollisionQuery], policy: CollisionPolicy = CollisionPolicy.OFF) -> None:
        self.query = query
        self.policy = CollisionPolicy(policy)

    @property
    def enabled(self) -> bool:
        return self.policy is not CollisionPolicy.OFF and self.query is not None

    def should_test(self, scene_id: str, viewed_scene_id: Optional[str], has_moved: bool) -> bool:
        return self.enabled and has_moved and viewed_scene_id == scene_id

    async def test_blocked(self, origin: Point, destination: Point) -> bool:
        if self.query is None:
            return False
        outcome = self.query.test_collision(origin, destination)
        if inspect.isawaitable(outcome):
            outcome = await outcome
        blocked = bool(outcome)
        if blocked:
            logger.debug(f"Move {origin} -> {destination} is blocked")
        return blocked


class WallGeometry:
    """Set of wall segments tested with vectorised segment intersection."""

    def __init__(self, walls: Iterable[Segment] = ()) -> None:
        self._walls: List[Segment] = []
        self._cache: Optional[np.ndarray] = None
        for wall in walls:
            self.add_wall(*wall)

    def add_wall(self, start: Point, end: Point) -> None:
        self._walls.append((tuple(map(float, start)), tuple(map(float, end))))
        self._cache = None

    def clear(self) -> None:
        self._walls.clear()
        self._cache = None

    @property
    def walls(self) -> Sequence[Segment]:
        return tuple(self._walls)

    def _as_array(self) -> np.ndarray:
        if self._cache is None:
            self._cache = np.asarray(self._walls, dtype=float).reshape(-1, 2, 2)
        return self._cache

    def test_collision(self, origin: Point, destination: Point) -> bool:
        """Return ``True`` when the segment touches any wall."""

        if not self._walls:
            return False
        walls = self._as_array()
        p = np.asarray(origin, dtype=float)
        r = np.asarray(destination, dtype=float) - p
        q = walls[:, 0, :]
        s = walls[:, 1, :] - q
        qp = q - p

        denom = r[0] * s[:, 1] - r[1] * s[:, 0]
        t_num = qp[:, 0] * s[:, 1] - qp[:, 1] * s[:, 0]
        u_num = qp[:, 0] * r[1] - qp[:, 1] * r[0]

        crossing = denom != 0
        safe = np.where(crossing, denom, 1.0)
        t = t_num / safe
        u = u_num / safe
        hits = crossing & (t >= 0) & (t <= 1) & (u >= 0) & (u <= 1)

        # Collinear walls block when their projections overlap the move.
        collinear = ~crossing & (u_num == 0)
        if collinear.any():
            rr = float(r @ r)
            if rr == 0:
                return bool(hits.any())
            t0 = (qp @ r) / rr
            t1 = t0 + (s @ r) / rr
            lo = np.minimum(t0, t1)
            hi = np.maximum(t0, t1)
            hits |= collinear & (hi >= 0) & (lo <= 1)
        return bool(hits.any())
