import pytest

from config.settings import CollisionPolicy
from modules.formation.collision import CollisionDetector, WallGeometry


@pytest.fixture
def walls():
    return WallGeometry([((100, -50), (100, 50))])


def test_crossing_segment_is_blocked(walls):
    assert walls.test_collision((0, 0), (200, 0))
    assert walls.test_collision((0, 0), (100, 0))


def test_parallel_or_short_segment_is_clear(walls):
    assert not walls.test_collision((0, 0), (90, 0))
    assert not walls.test_collision((0, 60), (200, 60))
    assert not WallGeometry().test_collision((0, 0), (500, 0))


def test_collinear_overlap_is_blocked():
    walls = WallGeometry([((0, 0), (100, 0))])
    assert walls.test_collision((50, 0), (150, 0))
    assert not walls.test_collision((150, 0), (250, 0))


def test_added_walls_invalidate_the_cache(walls):
    assert not walls.test_collision((0, 100), (200, 100))
    walls.add_wall((150, 0), (150, 200))
    assert walls.test_collision((0, 100), (200, 100))
    walls.clear()
    assert walls.walls == ()


def test_detector_only_tests_viewed_scene_moves(walls):
    detector = CollisionDetector(walls, CollisionPolicy.PAUSE)
    assert detector.should_test("s1", "s1", True)
    assert not detector.should_test("s1", "s2", True)
    assert not detector.should_test("s1", "s1", False)
    assert not CollisionDetector(walls, "off").should_test("s1", "s1", True)
    assert not CollisionDetector(None, "teleport").enabled


@pytest.mark.asyncio
async def test_detector_awaits_async_queries():
    class AsyncWalls:
        async def test_collision(self, origin, destination):
            return destination[0] > 100

    detector = CollisionDetector(AsyncWalls(), CollisionPolicy.TELEPORT)
    assert await detector.test_blocked((0, 0), (200, 0))
    assert not await detector.test_blocked((0, 0), (50, 0))
