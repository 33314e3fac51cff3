from __future__ import annotations

import math

import pytest

from wayfinder.campus_data import CampusSnapshot
from wayfinder.geometry import EARTH_RADIUS_M
from wayfinder.models import LatLng, NavigationRequest, NavigationRoute, PathSegment, Place
from wayfinder.route_policy import (
    PHASE_COLORS,
    AwaitingParkingSelection,
    RoutePlanner,
    RouteReady,
    find_nearest_parking,
    is_parking_for_vehicle,
    is_vehicle_capable_start,
    merge_polylines,
    phase_color,
)
from wayfinder.routing_errors import RoutingError

M_PER_DEG = math.pi * EARTH_RADIUS_M / 180.0


def _ll(x_m: float, y_m: float) -> LatLng:
    return LatLng(lat=y_m / M_PER_DEG, lng=x_m / M_PER_DEG)


def _seg(segment_id: str, *points: tuple[float, float], **flags: bool) -> PathSegment:
    return PathSegment(id=segment_id, nodes=[_ll(x, y) for x, y in points], **flags)


def _place(
    place_id: str,
    name: str,
    x_m: float,
    y_m: float,
    place_type: str = "Building",
    access: tuple[float, float] | None = None,
) -> Place:
    point = _ll(x_m, y_m)
    extra = {}
    if access is not None:
        node = _ll(*access)
        extra = {"node_lat": node.lat, "node_lng": node.lng}
    return Place(id=place_id, name=name, lat=point.lat, lng=point.lng, type=place_type, **extra)


PLACES = (
    _place("main-gate", "Main Gate", 0, -20, "Gate"),
    _place("east-gate", "East Gate", 300, 150, "Gate"),
    _place("car-north", "Car Park North", 300, 140, "Car Parking"),
    _place("car-south", "Car Park South", 250, -20, "Car Parking"),
    _place("moto-bay", "Moto Bay", 20, -20, "Motorcycle Parking"),
    _place("library", "Library", 100, 160, access=(100, 150)),
    _place("science", "Science Hall", 150, 40),
    _place("cafe", "Ramp Cafe", 150, 2),
    _place("observatory", "Observatory", 100, 900),
    _place("hut", "Island Hut", 550, 505),
)


def _campus(*, accessible: bool = True, island: bool = False) -> CampusSnapshot:
    walkpaths = [
        _seg("w-main", (0, 0), (200, 0), is_pwd_friendly=accessible),
        _seg("w-north", (100, 0), (100, 150)),
        _seg("w-east", (200, 0), (300, 0), (300, 140)),
        _seg("w-obs", (100, 150), (100, 900)),
    ]
    if island:
        walkpaths.append(_seg("w-island", (500, 500), (600, 500), is_pwd_friendly=accessible))
    return CampusSnapshot(
        places=PLACES,
        walkpaths=tuple(walkpaths),
        drivepaths=(_seg("d-ring", (0, -20), (300, -20), (300, 150)),),
    )


def _planner(**kwargs: bool) -> RoutePlanner:
    return RoutePlanner(_campus(**kwargs))


def _p(place_id: str) -> Place:
    return next(place for place in PLACES if place.id == place_id)


def _ready(outcome) -> NavigationRoute:
    assert isinstance(outcome, RouteReady)
    return outcome.route


def _assert_continuous(route: NavigationRoute) -> None:
    for index, phase in enumerate(route.phases):
        assert phase.phase_index == index
        assert phase.color == PHASE_COLORS[index % len(PHASE_COLORS)]
    for previous, current in zip(route.phases, route.phases[1:]):
        assert previous.end_id == current.start_id
        assert previous.polyline[-1] == current.polyline[0]
    assert route.polyline[0] == route.phases[0].polyline[0]
    assert route.polyline[-1] == route.phases[-1].polyline[-1]
    assert route.distance_m == pytest.approx(sum(p.distance_m for p in route.phases))


def test_walking_is_a_single_phase() -> None:
    route = _ready(_planner().plan(_p("main-gate"), _p("library"), "walking"))

    assert len(route.phases) == 1
    phase = route.phases[0]
    assert phase.mode == "walking"
    assert phase.color == "#3B82F6"
    assert phase.steps[0].instruction == "Start at Main Gate"
    assert phase.steps[-1].instruction == "Arrive at Library"
    assert route.notices == []
    assert route.polyline[-1] == _p("library").anchor
    _assert_continuous(route)


def test_walking_waypoints_make_one_phase_per_leg() -> None:
    route = _ready(
        _planner().plan(_p("main-gate"), _p("library"), "walking", waypoints=[_p("science"), _p("cafe")])
    )

    assert [(p.start_id, p.end_id) for p in route.phases] == [
        ("main-gate", "science"),
        ("science", "cafe"),
        ("cafe", "library"),
    ]
    assert [w.id for w in route.waypoints] == ["science", "cafe"]
    assert len(route.steps) == sum(len(p.steps) for p in route.phases)
    _assert_continuous(route)


def test_disconnected_walking_leg_degrades_to_a_straight_line() -> None:
    route = _ready(_planner(island=True).plan(_p("main-gate"), _p("hut"), "walking"))

    phase = route.phases[0]
    assert not phase.connected
    assert phase.polyline == [_p("main-gate").anchor, _p("hut").anchor]
    assert [n.code for n in route.notices] == ["straight_line_fallback"]


def test_accessible_route_on_the_accessible_network() -> None:
    route = _ready(_planner().plan(_p("main-gate"), _p("cafe"), "accessible"))

    assert route.phases[0].mode == "accessible"
    assert route.phases[0].substitute_end is None
    assert route.notices == []


def test_accessible_destination_off_network_gets_the_nearest_accessible_point() -> None:
    route = _ready(_planner().plan(_p("main-gate"), _p("science"), "accessible"))

    phase = route.phases[0]
    assert [n.code for n in route.notices] == ["accessible_substitute_destination"]
    assert phase.end_id == "science"
    assert phase.end_name == "Nearest accessible point to Science Hall"
    assert phase.substitute_end is not None
    assert phase.substitute_end.lng == pytest.approx(150 / M_PER_DEG)
    assert phase.substitute_end.lat == pytest.approx(0.0, abs=1e-9)


@pytest.mark.parametrize("ramp_from_x", [0, -50])
def test_accessible_door_beside_a_ramp_ends_level_with_the_door(ramp_from_x: float) -> None:
    gate = _place("gate", "Gate", 0, 0, "Gate")
    door = _place("door", "Side Door", 100, 5)
    snapshot = CampusSnapshot(
        places=(gate, door),
        walkpaths=(_seg("ramp", (ramp_from_x, 0), (200, 0), is_pwd_friendly=True),),
        drivepaths=(),
    )

    route = _ready(RoutePlanner(snapshot).plan(gate, door, "accessible"))

    phase = route.phases[0]
    assert [n.code for n in route.notices] == ["accessible_substitute_destination"]
    assert route.notices[0].details["remaining_m"] == pytest.approx(5.0)
    assert phase.substitute_end is not None
    assert phase.substitute_end.lng == pytest.approx(100 / M_PER_DEG)
    assert phase.substitute_end.lat == pytest.approx(0.0, abs=1e-9)
    assert phase.distance_m == pytest.approx(100.0, rel=1e-6)


def test_accessible_without_any_accessible_path_is_unreachable() -> None:
    with pytest.raises(RoutingError) as exc:
        _planner(accessible=False).plan(_p("main-gate"), _p("library"), "accessible")
    assert exc.value.reason_code == "accessible_unreachable"


def test_accessible_waypoint_leg_must_connect() -> None:
    with pytest.raises(RoutingError) as exc:
        _planner(island=True).plan(_p("main-gate"), _p("hut"), "accessible", waypoints=[_p("cafe")])
    assert exc.value.reason_code == "leg_failed"
    assert exc.value.details == {
        "leg_index": 1,
        "mode": "accessible",
        "from_id": "cafe",
        "to_id": "hut",
        "cause": "accessible_unreachable",
    }


def test_driving_requires_a_vehicle_type() -> None:
    with pytest.raises(RoutingError) as exc:
        _planner().plan(_p("main-gate"), _p("library"), "driving")
    assert exc.value.reason_code == "vehicle_type_required"


def test_driving_from_a_gate_parks_near_the_destination() -> None:
    route = _ready(_planner().plan(_p("main-gate"), _p("library"), "driving", vehicle_type="car"))

    assert [(p.mode, p.start_id, p.end_id) for p in route.phases] == [
        ("driving", "main-gate", "car-north"),
        ("walking", "car-north", "library"),
    ]
    assert route.parking is not None and route.parking.id == "car-north"
    assert route.phases[0].steps[-1].instruction == "Arrive at Car Park North"
    assert [p.color for p in route.phases] == ["#3B82F6", "#10B981"]
    assert route.notices == []
    _assert_continuous(route)


def test_driving_to_matching_parking_is_one_leg() -> None:
    route = _ready(_planner().plan(_p("library"), _p("car-south"), "driving", vehicle_type="car"))
    assert [(p.mode, p.start_id, p.end_id) for p in route.phases] == [("driving", "library", "car-south")]


def test_driving_to_a_gate_drives_straight_there() -> None:
    route = _ready(_planner().plan(_p("car-south"), _p("east-gate"), "driving", vehicle_type="car"))
    assert [(p.mode, p.start_id, p.end_id) for p in route.phases] == [("driving", "car-south", "east-gate")]


def test_far_parking_adds_a_notice() -> None:
    route = _ready(_planner().plan(_p("main-gate"), _p("observatory"), "driving", vehicle_type="car"))

    assert [n.code for n in route.notices] == ["parking_far"]
    assert route.notices[0].details["parking_id"] == "car-north"
    assert route.notices[0].details["distance_m"] > 500


def test_no_matching_parking_for_vehicle() -> None:
    with pytest.raises(RoutingError) as exc:
        _planner().plan(_p("main-gate"), _p("library"), "driving", vehicle_type="bike")
    assert exc.value.reason_code == "no_matching_parking"


def test_building_start_asks_where_the_vehicle_is_parked() -> None:
    outcome = _planner().plan(_p("science"), _p("library"), "driving", vehicle_type="car")

    assert isinstance(outcome, AwaitingParkingSelection)
    assert outcome.status == "awaiting_parking_selection"
    assert outcome.parking_type == "Car Parking"
    assert [c.id for c in outcome.candidates] == ["car-north", "car-south"]

    route = _ready(outcome.resume(_p("car-south")))
    assert [(p.mode, p.start_id, p.end_id) for p in route.phases] == [
        ("walking", "science", "car-south"),
        ("driving", "car-south", "car-north"),
        ("walking", "car-north", "library"),
    ]
    _assert_continuous(route)


def test_resume_when_the_vehicle_is_already_at_the_nearest_parking() -> None:
    outcome = _planner().plan(_p("science"), _p("library"), "driving", vehicle_type="car")
    assert isinstance(outcome, AwaitingParkingSelection)

    route = _ready(outcome.resume(_p("car-north")))
    assert [(p.mode, p.start_id, p.end_id) for p in route.phases] == [("walking", "science", "library")]
    assert route.parking is not None and route.parking.id == "car-north"


def test_resume_rejects_parking_of_another_vehicle_type() -> None:
    outcome = _planner().plan(_p("science"), _p("library"), "driving", vehicle_type="car")
    assert isinstance(outcome, AwaitingParkingSelection)
    with pytest.raises(RoutingError) as exc:
        outcome.resume(_p("moto-bay"))
    assert exc.value.reason_code == "invalid_parking_selection"


def test_driving_waypoints_follow_the_vehicle() -> None:
    route = _ready(
        _planner().plan(
            _p("main-gate"),
            _p("library"),
            "driving",
            vehicle_type="car",
            waypoints=[_p("east-gate")],
        )
    )

    assert [(p.mode, p.start_id, p.end_id) for p in route.phases] == [
        ("driving", "main-gate", "east-gate"),
        ("driving", "east-gate", "car-north"),
        ("walking", "car-north", "library"),
    ]
    _assert_continuous(route)


def test_failed_leg_aborts_the_whole_route() -> None:
    snapshot = CampusSnapshot(places=PLACES, walkpaths=(), drivepaths=_campus().drivepaths)
    with pytest.raises(RoutingError) as exc:
        RoutePlanner(snapshot).plan(_p("main-gate"), _p("library"), "driving", vehicle_type="car")
    assert exc.value.reason_code == "leg_failed"
    assert exc.value.details is not None
    assert exc.value.details["leg_index"] == 1
    assert exc.value.details["cause"] == "no_projection"


def test_plan_request_resolves_kiosk_and_selected_parking() -> None:
    planner = _planner()

    route = _ready(planner.plan_request(NavigationRequest(start_id="kiosk", end_id="library")))
    assert route.start.id == "kiosk"
    assert route.start.type == "Kiosk"

    resumed = _ready(
        planner.plan_request(
            NavigationRequest(
                start_id="science",
                end_id="library",
                mode="driving",
                vehicle_type="car",
                selected_parking_id="car-south",
            )
        )
    )
    assert len(resumed.phases) == 3

    with pytest.raises(RoutingError) as exc:
        planner.plan_request(NavigationRequest(start_id="nowhere", end_id="library"))
    assert exc.value.reason_code == "place_not_found"


def test_place_predicates() -> None:
    assert is_vehicle_capable_start(_p("main-gate"))
    assert is_vehicle_capable_start(_p("moto-bay"))
    assert not is_vehicle_capable_start(_p("library"))
    assert is_parking_for_vehicle(_p("moto-bay"), "motorcycle")
    assert not is_parking_for_vehicle(_p("moto-bay"), "car")
    assert find_nearest_parking(_p("main-gate"), PLACES, "motorcycle") == _p("moto-bay")
    assert find_nearest_parking(_p("library"), PLACES, "bike") is None


def test_phase_colours_cycle() -> None:
    assert phase_color(0) == "#3B82F6"
    assert phase_color(8) == "#3B82F6"
    assert phase_color(9) == "#10B981"


def test_merge_polylines_drops_repeated_join_points() -> None:
    a, b, c = _ll(0, 0), _ll(10, 0), _ll(20, 0)
    assert merge_polylines([[a, b], [b, c]]) == [a, b, c]
    assert merge_polylines([[a, b], [], [c]]) == [a, b, c]
