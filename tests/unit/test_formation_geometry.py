import math
import unittest

from modules.formation.geometry import (
    ORIENTATION_PRESETS,
    ElevationLock,
    FollowVector,
    Location,
    OrientationMode,
    OrientationSpec,
    compute_follower_delta,
    compute_follower_position,
    heading_from_rotation,
    location_of,
    resolve_orientation,
    rotate_about,
    snap_to_grid,
)
from modules.formation.records import Delta, Locks, Relation
from modules.formation.store import Entity


def relation(angle=0.0, distance=0.0, dz=0.0, orientation=ORIENTATION_PRESETS["RIGHT"],
             elevation=ElevationLock.TETHER):
    return Relation(
        delta=Delta(angle=angle, distance=distance, dz=dz, orientation=orientation),
        locks=Locks(elevation=elevation),
    )


class TestVectorMode(unittest.TestCase):

    def test_anchor_rotates_with_leader_heading(self):
        fv = FollowVector(Location(0, 0), Location(100, 0))
        pos = compute_follower_position(fv, relation(math.pi / 2, 100), (0, 0), (0, 0))
        self.assertAlmostEqual(pos["x"], 100.0)
        self.assertAlmostEqual(pos["y"], 100.0)

    def test_anchor_is_centered_on_follower_size(self):
        fv = FollowVector(Location(0, 0), Location(100, 0))
        pos = compute_follower_position(fv, relation(math.pi / 2, 100), (50, 30), (0, 0))
        self.assertAlmostEqual(pos["x"], 75.0)
        self.assertAlmostEqual(pos["y"], 85.0)

    def test_pure_rotation_uses_destination_facing(self):
        fv = FollowVector(Location(0, 0, t=0.0), Location(0, 0, t=math.pi / 2))
        pos = compute_follower_position(fv, relation(0.0, 100), (0, 0), (0, 0))
        self.assertAlmostEqual(pos["x"], 0.0)
        self.assertAlmostEqual(pos["y"], 100.0)

    def test_no_displacement_keeps_position(self):
        fv = FollowVector(Location(10, 10, 5, 1.0), Location(10, 10, 5, 1.0))
        self.assertEqual(compute_follower_position(fv, relation(0.0, 100), (0, 0), (3, 4)), {})

    def test_join_then_move_keeps_the_formation(self):
        leader_center, follower_center = (50.0, 50.0), (150.0, 50.0)
        orientation = ORIENTATION_PRESETS["RIGHT"]
        offset = compute_follower_delta(leader_center, 0, orientation, follower_center, 0)
        self.assertAlmostEqual(offset.angle, 0.0)
        self.assertAlmostEqual(offset.distance, 100.0)

        fv = FollowVector(Location(50, 50), Location(150, 50))
        rel = relation(offset.angle, offset.distance, orientation=orientation)
        pos = compute_follower_position(fv, rel, (100, 100), (100, 0))
        self.assertAlmostEqual(pos["x"], 200.0)
        self.assertAlmostEqual(pos["y"], 0.0)


class TestRelMode(unittest.TestCase):

    def test_mirror_copies_displacement_without_drift(self):
        fv = FollowVector(Location(0, 0), Location(50, -20))
        rel = relation(orientation=ORIENTATION_PRESETS["MIRROR"])
        position = (10.0, 10.0)
        for _ in range(5):
            pos = compute_follower_position(fv, rel, (100, 100), position)
            position = (pos["x"], pos["y"])
        self.assertEqual(position, (260.0, -90.0))

    def test_shadow_inverts_displacement(self):
        fv = FollowVector(Location(0, 0), Location(50, -20))
        rel = relation(orientation=ORIENTATION_PRESETS["SHADOW"])
        self.assertEqual(compute_follower_position(fv, rel, (100, 100), (0, 0)), {"x": -50.0, "y": 20.0})

    def test_rotation_pivots_about_leader_destination(self):
        fv = FollowVector(Location(0, 0, t=0.0), Location(0, 0, t=math.pi))
        rel = relation(orientation=ORIENTATION_PRESETS["MIRROR"])
        pos = compute_follower_position(fv, rel, (0, 0), (100, 0))
        self.assertAlmostEqual(pos["x"], -100.0)
        self.assertAlmostEqual(pos["y"], 0.0)


class TestElevation(unittest.TestCase):

    def test_static_ignores_leader_elevation(self):
        fv = FollowVector(Location(0, 0, 0), Location(0, 0, 10))
        pos = compute_follower_position(fv, relation(dz=5, elevation=ElevationLock.STATIC), (0, 0), (0, 0))
        self.assertNotIn("elevation", pos)

    def test_offset_keeps_the_gap(self):
        fv = FollowVector(Location(0, 0, 0), Location(0, 0, -10))
        pos = compute_follower_position(fv, relation(dz=5, elevation=ElevationLock.OFFSET), (0, 0), (0, 0))
        self.assertEqual(pos["elevation"], -5)

    def test_tether_flips_when_leader_descends(self):
        rel = relation(dz=5, elevation=ElevationLock.TETHER)
        up = compute_follower_position(FollowVector(Location(0, 0, 0), Location(0, 0, 10)), rel, (0, 0), (0, 0))
        down = compute_follower_position(FollowVector(Location(0, 0, 10), Location(0, 0, 0)), rel, (0, 0), (0, 0))
        self.assertEqual(up["elevation"], 15)
        self.assertEqual(down["elevation"], -5)


class TestHelpers(unittest.TestCase):

    def test_detect_resolves_to_leader_facing(self):
        spec = resolve_orientation(ORIENTATION_PRESETS["DETECT"], 0)
        self.assertIs(spec.mode, OrientationMode.VECTOR)
        self.assertAlmostEqual(spec.x, 0.0)
        self.assertAlmostEqual(spec.y, 1.0)

    def test_non_detect_orientation_is_unchanged(self):
        spec = ORIENTATION_PRESETS["LEFT"]
        self.assertIs(resolve_orientation(spec, 45), spec)

    def test_heading_from_rotation(self):
        self.assertAlmostEqual(heading_from_rotation(0), math.pi / 2)
        self.assertAlmostEqual(heading_from_rotation(90), math.pi)

    def test_location_of_applies_changes_at_center(self):
        entity = Entity(id="a", scene_id="s", x=0, y=0, elevation=2, width=40, height=20)
        loc = location_of(entity, {"x": 100, "elevation": 7})
        self.assertEqual((loc.x, loc.y, loc.z), (120, 10, 7))
        self.assertAlmostEqual(loc.t, math.pi / 2)

    def test_rotate_about(self):
        x, y = rotate_about((2, 1), (1, 1), math.pi / 2)
        self.assertAlmostEqual(x, 1.0)
        self.assertAlmostEqual(y, 2.0)

    def test_snap_to_grid(self):
        self.assertEqual(snap_to_grid({"x": 149, "y": 151, "elevation": 3}, 100),
                         {"x": 100, "y": 200, "elevation": 3})
        self.assertEqual(snap_to_grid({"x": 149}, 0), {"x": 149})

    def test_follow_vector_wire_round_trip(self):
        fv = FollowVector(Location(1, 2, 3, 4), Location(5, 6, 7, 8))
        self.assertEqual(FollowVector.from_wire(fv.to_wire()), fv)
        self.assertEqual(OrientationSpec.from_wire({"mode": "rel", "x": 1, "y": -1}),
                         OrientationSpec(OrientationMode.REL, 1.0, -1.0))


if __name__ == "__main__":
    unittest.main()
