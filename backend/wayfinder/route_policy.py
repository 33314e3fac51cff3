"""Multi-phase route composition.

The planner turns (start, destination, mode, vehicle, stops) into an ordered
list of legs, solves every leg on the network its mode allows and assembles
the phases into one :class:`NavigationRoute`. A route is all-or-nothing: if
any leg fails the whole request fails with the leg named.

Driving follows the vehicle: it is parked at the start (when the start can
hold one), moves only along driving legs and is left at the parking nearest
to each stop the driver has to walk into.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Literal

from .campus_data import KIOSK_PLACE_ID, CampusSnapshot, kiosk_place
from .directions import estimate_eta, generate_steps
from .geometry import calculate_distance
from .logging_utils import log_event
from .models import (
    GATE_TYPE,
    KIOSK_TYPE,
    PARKING_TYPE_BY_VEHICLE,
    PARKING_TYPES,
    LatLng,
    NavigationRequest,
    NavigationRoute,
    PathSegment,
    Place,
    RouteNotice,
    RoutePhase,
    RouteStep,
    TravelMode,
    VehicleType,
)
from .pathfinding import LegSolution, find_nearest_reachable_point, select_segments, solve_leg
from .routing_errors import RoutingError
from .settings import settings

PHASE_COLORS: tuple[str, ...] = (
    "#3B82F6",
    "#10B981",
    "#F59E0B",
    "#8B5CF6",
    "#EF4444",
    "#06B6D4",
    "#F97316",
    "#EC4899",
)


def phase_color(index: int) -> str:
    return PHASE_COLORS[index % len(PHASE_COLORS)]


def is_gate(place: Place) -> bool:
    return place.type == GATE_TYPE


def is_parking(place: Place) -> bool:
    return place.type in PARKING_TYPES


def parking_type_for_vehicle(vehicle_type: VehicleType) -> str:
    return PARKING_TYPE_BY_VEHICLE[vehicle_type]


def is_parking_for_vehicle(place: Place, vehicle_type: VehicleType) -> bool:
    return place.type == parking_type_for_vehicle(vehicle_type)


def is_vehicle_capable_start(place: Place) -> bool:
    """Places a vehicle can already be at: gates, any parking, the kiosk."""
    return is_gate(place) or is_parking(place) or place.type == KIOSK_TYPE or place.id == KIOSK_PLACE_ID


def parking_candidates(places: Sequence[Place], vehicle_type: VehicleType) -> list[Place]:
    return sorted(
        (place for place in places if is_parking_for_vehicle(place, vehicle_type)),
        key=lambda place: (place.name, place.id),
    )


def find_nearest_parking(target: Place, places: Sequence[Place], vehicle_type: VehicleType) -> Place | None:
    """Nearest matching parking by great-circle distance between primary coordinates."""
    best: Place | None = None
    best_key: tuple[float, str] | None = None
    for place in places:
        if not is_parking_for_vehicle(place, vehicle_type):
            continue
        key = (calculate_distance(target.position, place.position), place.id)
        if best_key is None or key < best_key:
            best, best_key = place, key
    return best


@dataclass(frozen=True)
class LegPlan:
    mode: TravelMode
    origin: Place
    destination: Place


@dataclass(frozen=True)
class RouteReady:
    route: NavigationRoute
    status: Literal["ready"] = "ready"


@dataclass(frozen=True)
class AwaitingParkingSelection:
    """The driver starts inside a building: they must say where the vehicle is parked.

    ``resume`` continues the same request once a parking Place is chosen.
    """

    parking_type: str
    candidates: tuple[Place, ...]
    resume: Callable[[Place], "PlanOutcome"] = field(repr=False, compare=False)
    status: Literal["awaiting_parking_selection"] = "awaiting_parking_selection"


PlanOutcome = RouteReady | AwaitingParkingSelection


def merge_polylines(polylines: Sequence[Sequence[LatLng]]) -> list[LatLng]:
    """Concatenate phase polylines, dropping the repeated point at each join."""
    merged: list[LatLng] = []
    for polyline in polylines:
        if not polyline:
            continue
        if merged and merged[-1] == polyline[0]:
            merged.extend(polyline[1:])
        else:
            merged.extend(polyline)
    return merged


class RoutePlanner:
    def __init__(self, snapshot: CampusSnapshot) -> None:
        self.snapshot = snapshot
        self.places: tuple[Place, ...] = snapshot.with_kiosk()

    def segments_for(self, mode: TravelMode) -> list[PathSegment]:
        if mode == "driving":
            return list(self.snapshot.drivepaths)
        return select_segments(self.snapshot.walkpaths, mode)

    # ------------------------------------------------------------------
    # entry points
    # ------------------------------------------------------------------

    def plan_request(self, request: NavigationRequest) -> PlanOutcome:
        """Resolve ids (kiosk included) and plan; a selected parking resumes directly."""
        start = self.resolve_start(request.start_id, request.start_lat, request.start_lng)
        end = self.snapshot.require_place(request.end_id)
        waypoints = [self.snapshot.require_place(place_id) for place_id in request.waypoint_ids]
        if request.selected_parking_id:
            if request.mode != "driving" or request.vehicle_type is None:
                raise RoutingError(
                    reason_code="invalid_parking_selection",
                    message="A parking selection only applies to driving with a vehicle type",
                    details={"selected_parking_id": request.selected_parking_id},
                )
            parking = self.snapshot.require_place(request.selected_parking_id)
            return self.resume_with_parking(start, end, request.vehicle_type, parking, waypoints)
        return self.plan(start, end, request.mode, vehicle_type=request.vehicle_type, waypoints=waypoints)

    def resolve_start(self, start_id: str, lat: float | None = None, lng: float | None = None) -> Place:
        if start_id == KIOSK_PLACE_ID:
            place = self.snapshot.place(KIOSK_PLACE_ID)
            if place is None:
                return kiosk_place(lat, lng)
            if lat is not None and lng is not None:
                return place.model_copy(update={"lat": lat, "lng": lng, "node_lat": None, "node_lng": None})
            return place
        return self.snapshot.require_place(start_id)

    def plan(
        self,
        start: Place,
        end: Place,
        mode: TravelMode,
        *,
        vehicle_type: VehicleType | None = None,
        waypoints: Sequence[Place] = (),
    ) -> PlanOutcome:
        waypoints = list(waypoints)
        if mode != "driving":
            if waypoints:
                legs = [LegPlan(mode, a, b) for a, b in zip([start, *waypoints], [*waypoints, end])]
                return RouteReady(self._compose(start, end, mode, legs, waypoints=waypoints))
            if mode == "accessible":
                return RouteReady(self._accessible_direct(start, end))
            return RouteReady(self._compose(start, end, mode, [LegPlan(mode, start, end)]))

        if vehicle_type is None:
            raise RoutingError(
                reason_code="vehicle_type_required",
                message="Driving directions need a vehicle type",
                details={"allowed": sorted(PARKING_TYPE_BY_VEHICLE)},
            )

        if not waypoints and is_parking_for_vehicle(end, vehicle_type):
            return RouteReady(
                self._compose(start, end, mode, [LegPlan("driving", start, end)], vehicle_type=vehicle_type)
            )

        if is_vehicle_capable_start(start):
            return RouteReady(self._drive(start, end, vehicle_type, waypoints, vehicle_at=start))

        parking_type = parking_type_for_vehicle(vehicle_type)
        candidates = tuple(parking_candidates(self.places, vehicle_type))
        if not candidates:
            raise RoutingError(
                reason_code="no_matching_parking",
                message=f"No {parking_type} exists on campus",
                details={"vehicle_type": vehicle_type, "parking_type": parking_type},
            )
        log_event(
            "navigation_awaiting_parking",
            start_id=start.id,
            end_id=end.id,
            vehicle_type=vehicle_type,
            candidate_count=len(candidates),
        )

        def resume(parking: Place) -> PlanOutcome:
            return self.resume_with_parking(start, end, vehicle_type, parking, waypoints)

        return AwaitingParkingSelection(parking_type=parking_type, candidates=candidates, resume=resume)

    def resume_with_parking(
        self,
        start: Place,
        end: Place,
        vehicle_type: VehicleType,
        parking: Place,
        waypoints: Sequence[Place] = (),
    ) -> RouteReady:
        if not is_parking_for_vehicle(parking, vehicle_type):
            raise RoutingError(
                reason_code="invalid_parking_selection",
                message=f"{parking.name} is not a {parking_type_for_vehicle(vehicle_type)}",
                details={"parking_id": parking.id, "parking_type": parking.type, "vehicle_type": vehicle_type},
            )
        return RouteReady(self._drive(start, end, vehicle_type, list(waypoints), vehicle_at=parking))

    # ------------------------------------------------------------------
    # leg planning
    # ------------------------------------------------------------------

    def _drive(
        self,
        start: Place,
        end: Place,
        vehicle_type: VehicleType,
        waypoints: list[Place],
        *,
        vehicle_at: Place,
    ) -> NavigationRoute:
        legs: list[LegPlan] = []
        notices: list[RouteNotice] = []
        parked_at: Place | None = None
        position = start

        for stop in [*waypoints, end]:
            if is_gate(stop) or is_parking_for_vehicle(stop, vehicle_type):
                if stop.id != vehicle_at.id:
                    if position.id != vehicle_at.id:
                        legs.append(LegPlan("walking", position, vehicle_at))
                    legs.append(LegPlan("driving", vehicle_at, stop))
                elif position.id != stop.id:
                    legs.append(LegPlan("walking", position, stop))
                vehicle_at = position = stop
                continue

            parking = find_nearest_parking(stop, self.places, vehicle_type)
            if parking is None:
                raise RoutingError(
                    reason_code="no_matching_parking",
                    message=f"No {parking_type_for_vehicle(vehicle_type)} found near {stop.name}",
                    details={"vehicle_type": vehicle_type, "place_id": stop.id},
                )
            gap_m = calculate_distance(stop.position, parking.position)
            if gap_m > settings.parking_far_warning_m:
                notices.append(
                    RouteNotice(
                        code="parking_far",
                        message=(
                            f"Nearest {vehicle_type} parking is {round(gap_m)}m from {stop.name}. "
                            "This may require a longer walk."
                        ),
                        details={"parking_id": parking.id, "place_id": stop.id, "distance_m": round(gap_m, 1)},
                    )
                )
            parked_at = parking
            if parking.id != vehicle_at.id:
                if position.id != vehicle_at.id:
                    legs.append(LegPlan("walking", position, vehicle_at))
                legs.append(LegPlan("driving", vehicle_at, parking))
                vehicle_at = position = parking
            if position.id != stop.id:
                legs.append(LegPlan("walking", position, stop))
            position = stop

        if not legs:
            legs.append(LegPlan("walking", start, end))
        if parked_at is None and is_parking(vehicle_at) and vehicle_at.id != start.id:
            parked_at = vehicle_at
        return self._compose(
            start,
            end,
            "driving",
            legs,
            vehicle_type=vehicle_type,
            parking=parked_at,
            waypoints=waypoints,
            notices=notices,
        )

    def _accessible_direct(self, start: Place, end: Place) -> NavigationRoute:
        segments = self.segments_for("accessible")
        solution = solve_leg(start, end, segments)
        threshold = settings.accessible_connection_threshold_m
        if solution is not None and solution.connected and solution.end_projection_m <= threshold:
            return self._compose(start, end, "accessible", [LegPlan("accessible", start, end)], solved=[solution])

        nearest = find_nearest_reachable_point(start, end, segments)
        direct_gap = calculate_distance(start.anchor, end.anchor)
        if nearest is None or nearest.end_projection_m >= direct_gap:
            raise RoutingError(
                reason_code="accessible_unreachable",
                message=f"{end.name} cannot be reached on the accessible network",
                details={"start_id": start.id, "end_id": end.id, "accessible_segment_count": len(segments)},
            )
        notice = RouteNotice(
            code="accessible_substitute_destination",
            message=(
                f"{end.name} is not connected to the accessible network. "
                f"The route ends at the nearest accessible point, {round(nearest.end_projection_m)}m away."
            ),
            details={"end_id": end.id, "remaining_m": round(nearest.end_projection_m, 1)},
        )
        log_event(
            "accessible_substitute_destination",
            start_id=start.id,
            end_id=end.id,
            remaining_m=round(nearest.end_projection_m, 1),
        )
        return self._compose(
            start,
            end,
            "accessible",
            [LegPlan("accessible", start, end)],
            solved=[nearest],
            notices=[notice],
            substitute=True,
        )

    # ------------------------------------------------------------------
    # assembly
    # ------------------------------------------------------------------

    def _solve(self, index: int, leg: LegPlan) -> LegSolution:
        solution = solve_leg(leg.origin, leg.destination, self.segments_for(leg.mode))
        cause = None
        if solution is None:
            cause = "no_projection"
        elif leg.mode == "accessible" and not solution.connected:
            cause = "accessible_unreachable"
        if cause is not None or solution is None:
            raise RoutingError(
                reason_code="leg_failed",
                message=f"Unable to calculate {leg.mode} route from {leg.origin.name} to {leg.destination.name}",
                details={
                    "leg_index": index,
                    "mode": leg.mode,
                    "from_id": leg.origin.id,
                    "to_id": leg.destination.id,
                    "cause": cause,
                },
            )
        return solution

    def _phase(self, index: int, leg: LegPlan, solution: LegSolution, *, substitute: bool) -> RoutePhase:
        end_name = f"Nearest accessible point to {leg.destination.name}" if substitute else leg.destination.name
        steps, _length = generate_steps(solution.coordinates, leg.mode, leg.origin.name, end_name)
        return RoutePhase(
            mode=leg.mode,
            polyline=list(solution.coordinates),
            steps=steps,
            distance_m=solution.distance_m,
            start_name=leg.origin.name,
            end_name=end_name,
            color=phase_color(index),
            phase_index=index,
            start_id=leg.origin.id,
            end_id=leg.destination.id,
            eta_minutes=estimate_eta(solution.distance_m, leg.mode),
            connected=solution.connected,
            substitute_end=solution.coordinates[-1] if substitute else None,
        )

    def _compose(
        self,
        start: Place,
        end: Place,
        mode: TravelMode,
        legs: list[LegPlan],
        *,
        vehicle_type: VehicleType | None = None,
        parking: Place | None = None,
        waypoints: Sequence[Place] = (),
        notices: Sequence[RouteNotice] = (),
        solved: Sequence[LegSolution] | None = None,
        substitute: bool = False,
    ) -> NavigationRoute:
        solutions = list(solved) if solved is not None else [self._solve(i, leg) for i, leg in enumerate(legs)]
        all_notices = list(notices)
        phases: list[RoutePhase] = []
        for index, (leg, solution) in enumerate(zip(legs, solutions)):
            if not solution.connected:
                all_notices.append(
                    RouteNotice(
                        code="straight_line_fallback",
                        message=(
                            f"No connected {leg.mode} path from {leg.origin.name} to "
                            f"{leg.destination.name}; showing a straight line."
                        ),
                        details={"leg_index": index, "from_id": leg.origin.id, "to_id": leg.destination.id},
                    )
                )
            phases.append(self._phase(index, leg, solution, substitute=substitute and index == len(legs) - 1))

        steps: list[RouteStep] = [step for phase in phases for step in phase.steps]
        route = NavigationRoute(
            start=start,
            end=end,
            mode=mode,
            vehicle_type=vehicle_type,
            parking=parking,
            waypoints=list(waypoints),
            polyline=merge_polylines([phase.polyline for phase in phases]),
            steps=steps,
            distance_m=sum(phase.distance_m for phase in phases),
            phases=phases,
            notices=all_notices,
        )
        log_event(
            "navigation_route_planned",
            start_id=start.id,
            end_id=end.id,
            mode=mode,
            vehicle_type=vehicle_type,
            phase_count=len(phases),
            distance_m=round(route.distance_m, 1),
            notice_codes=[notice.code for notice in all_notices],
        )
        return route
