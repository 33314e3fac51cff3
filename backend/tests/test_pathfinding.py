from __future__ import annotations

import math

import pytest

from wayfinder.geometry import EARTH_RADIUS_M, calculate_distance, polyline_length_m
from wayfinder.models import LatLng, PathSegment, Place
from wayfinder.pathfinding import (
    AlternativePath,
    find_alternative_paths,
    find_nearest_reachable_point,
    find_shortest_path,
    select_alternatives,
    select_segments,
    solve_leg,
)
from wayfinder.settings import settings

M_PER_DEG = math.pi * EARTH_RADIUS_M / 180.0


def _ll(x_m: float, y_m: float) -> LatLng:
    return LatLng(lat=y_m / M_PER_DEG, lng=x_m / M_PER_DEG)


def _seg(segment_id: str, *points: tuple[float, float], **flags: bool) -> PathSegment:
    return PathSegment(id=segment_id, nodes=[_ll(x, y) for x, y in points], **flags)


def _place(place_id: str, x_m: float, y_m: float, *, access: tuple[float, float] | None = None) -> Place:
    point = _ll(x_m, y_m)
    fields = {}
    if access is not None:
        node = _ll(*access)
        fields = {"node_lat": node.lat, "node_lng": node.lng}
    return Place(id=place_id, name=place_id.title(), lat=point.lat, lng=point.lng, **fields)


def _cross() -> list[PathSegment]:
    return [_seg("ew", (-100, 0), (100, 0)), _seg("ns", (0, -100), (0, 100))]


def test_crossing_paths_route_through_the_junction() -> None:
    solution = solve_leg(_place("west", -100, 0), _place("north", 0, 100), _cross())

    assert solution is not None
    assert solution.connected
    assert solution.distance_m == pytest.approx(200.0, rel=1e-6)
    assert len(solution.coordinates) == 3
    middle = solution.coordinates[1]
    assert middle.lat == pytest.approx(0.0, abs=1e-9)
    assert middle.lng == pytest.approx(0.0, abs=1e-9)


def test_disconnected_components_fall_back_to_a_straight_line() -> None:
    segments = [_seg("left", (0, 0), (100, 0)), _seg("right", (300, 0), (400, 0))]
    start = _place("start", 0, 0)
    end = _place("end", 400, 0)

    solution = solve_leg(start, end, segments)

    assert solution is not None
    assert not solution.connected
    assert solution.coordinates == (start.anchor, end.anchor)
    assert solution.distance_m == pytest.approx(calculate_distance(start.anchor, end.anchor))


def test_no_edges_means_no_route() -> None:
    assert solve_leg(_place("a", 0, 0), _place("b", 10, 0), []) is None
    assert find_shortest_path(_place("a", 0, 0), _place("b", 10, 0), [_seg("dot", (5, 5))]) is None


def test_projections_on_one_edge_are_chained_in_order() -> None:
    segments = [_seg("only", (0, 0), (100, 0))]
    solution = solve_leg(_place("start", 20, 10), _place("end", 70, -5), segments)

    assert solution is not None
    assert solution.connected
    assert solution.start_projection_m == pytest.approx(10.0, rel=1e-6)
    assert solution.end_projection_m == pytest.approx(5.0, rel=1e-6)
    assert solution.distance_m == pytest.approx(65.0, rel=1e-6)
    assert len(solution.coordinates) == 4
    assert polyline_length_m(solution.coordinates) == pytest.approx(solution.distance_m, rel=1e-9)


def test_access_point_is_used_as_the_anchor() -> None:
    segments = [_seg("only", (0, 0), (100, 0))]
    building = _place("library", 100, 60, access=(100, 0))

    route = find_shortest_path(_place("gate", 0, 0), building, segments)

    assert route is not None
    assert route[-1] == building.anchor
    assert polyline_length_m(route) == pytest.approx(100.0, rel=1e-6)


def test_same_start_and_end_is_a_zero_length_route() -> None:
    place = _place("hall", 50, 10)
    solution = solve_leg(place, place, [_seg("only", (0, 0), (100, 0))])
    assert solution is not None
    assert solution.connected
    assert solution.distance_m == 0.0


def test_route_lengths_satisfy_the_triangle_inequality() -> None:
    segments = [
        _seg("a", (0, 0), (100, 0), (100, 100)),
        _seg("b", (100, 100), (0, 100), (0, 0)),
        _seg("c", (0, 0), (60, 60)),
    ]
    a = _place("a", 0, 0)
    b = _place("b", 100, 20)
    c = _place("c", 30, 100)

    ab = solve_leg(a, b, segments)
    bc = solve_leg(b, c, segments)
    ac = solve_leg(a, c, segments)
    assert ab is not None and bc is not None and ac is not None
    assert ac.distance_m <= ab.distance_m + bc.distance_m + 1e-6


def test_result_does_not_depend_on_segment_order() -> None:
    segments = _cross() + [_seg("ring", (100, 0), (100, 100), (0, 100))]
    start = _place("west", -100, 0)
    end = _place("corner", 100, 100)

    forward = solve_leg(start, end, segments)
    backward = solve_leg(start, end, list(reversed(segments)))

    assert forward is not None and backward is not None
    assert forward.distance_m == pytest.approx(backward.distance_m)
    assert len(forward.coordinates) == len(backward.coordinates)


def test_select_segments_per_mode() -> None:
    plain = _seg("plain", (0, 0), (1, 0))
    ramp = _seg("ramp", (0, 0), (1, 0), is_pwd_friendly=True)
    lift = _seg("lift", (0, 0), (1, 0), strictly_pwd_only=True)
    segments = [plain, ramp, lift]

    assert [s.id for s in select_segments(segments, "walking")] == ["plain", "ramp"]
    assert [s.id for s in select_segments(segments, "accessible")] == ["ramp", "lift"]
    assert [s.id for s in select_segments(segments, "driving")] == ["plain", "ramp", "lift"]


def _three_ways() -> list[PathSegment]:
    return [
        _seg("direct", (0, 0), (100, 0)),
        _seg("bend", (0, 0), (50, 20), (100, 0)),
        _seg("detour", (0, 0), (50, -40), (100, 0)),
    ]


def test_alternatives_pick_one_route_per_length_band() -> None:
    paths = find_alternative_paths(_place("s", 0, 0), _place("e", 100, 0), _three_ways(), k=3)

    assert [round(p.distance_m, 1) for p in paths] == [100.0, 107.7, 128.1]
    assert all(p.coordinates[0] == _place("s", 0, 0).anchor for p in paths)


def test_alternatives_respect_k() -> None:
    paths = find_alternative_paths(_place("s", 0, 0), _place("e", 100, 0), _three_ways(), k=1)
    assert len(paths) == 1
    assert paths[0].distance_m == pytest.approx(100.0, rel=1e-6)


def test_select_alternatives_fills_remaining_slots_in_cost_order() -> None:
    def path(distance: float) -> AlternativePath:
        return AlternativePath(coordinates=(_ll(distance, 0),), distance_m=distance)

    chosen = select_alternatives([path(100), path(101), path(102), path(130)], 3)
    assert [p.distance_m for p in chosen] == [100, 101, 130]
    assert select_alternatives([], 3) == []


def test_nearest_reachable_point_stops_at_the_end_of_a_dead_end() -> None:
    segments = [_seg("only", (0, 0), (100, 0))]
    solution = find_nearest_reachable_point(_place("s", 0, 0), _place("far", 200, 50), segments)

    assert solution is not None
    assert solution.distance_m == pytest.approx(100.0, rel=1e-6)
    assert solution.end_projection_m == pytest.approx(math.hypot(100, 50), rel=1e-6)
    assert solution.coordinates[-1].lng == pytest.approx(100 / M_PER_DEG)


def test_nearest_reachable_point_can_stop_part_way_along_an_edge() -> None:
    segments = [_seg("ramp", (0, 0), (200, 0))]
    solution = find_nearest_reachable_point(_place("s", 0, 0), _place("door", 100, 5), segments)

    assert solution is not None
    assert solution.end_projection_m == pytest.approx(5.0, rel=1e-6)
    assert solution.distance_m == pytest.approx(100.0, rel=1e-6)
    assert solution.coordinates[-1].lng == pytest.approx(100 / M_PER_DEG)
    assert solution.coordinates[-1].lat == pytest.approx(0.0, abs=1e-12)


def test_nearest_reachable_point_does_not_walk_past_the_door() -> None:
    segments = [_seg("ramp", (-50, 0), (200, 0))]
    solution = find_nearest_reachable_point(_place("s", 0, 0), _place("door", 100, 5), segments)

    assert solution is not None
    assert solution.end_projection_m == pytest.approx(5.0, rel=1e-6)
    assert solution.distance_m == pytest.approx(100.0, rel=1e-6)
    assert max(point.lng for point in solution.coordinates) == pytest.approx(100 / M_PER_DEG)


def test_nearest_reachable_point_without_network() -> None:
    assert find_nearest_reachable_point(_place("s", 0, 0), _place("far", 200, 50), []) is None


def test_unshared_crossing_gets_a_single_junction() -> None:
    segments = [_seg("ew", (-10, 0), (10, 0)), _seg("ns", (0, -10), (0, 10))]

    solution = solve_leg(_place("west", -10, 0), _place("north", 0, 10), segments)

    assert solution is not None
    assert solution.connected
    assert solution.distance_m == pytest.approx(20.0, rel=1e-6)
    assert solution.coordinates[1].lng == pytest.approx(0.0, abs=1e-12)


def test_alternatives_drop_paths_beyond_the_detour_cap(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "alternative_max_detour_ratio", 1.2)

    paths = find_alternative_paths(_place("s", 0, 0), _place("e", 100, 0), _three_ways(), k=3)

    assert [round(p.distance_m, 1) for p in paths] == [100.0, 107.7]
