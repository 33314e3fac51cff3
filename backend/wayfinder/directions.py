from __future__ import annotations

import math
from collections.abc import Sequence

from .geometry import bearing_delta_deg, calculate_bearing, calculate_distance
from .models import LatLng, RouteStep, TravelMode
from .settings import settings

# (upper bound of |angle| in degrees, label, icon stem); the last band catches the rest.
TURN_BANDS: tuple[tuple[float, str, str], ...] = (
    (20.0, "Continue straight", "straight"),
    (45.0, "Slight", "slight"),
    (135.0, "Turn", ""),
    (165.0, "Sharp", "sharp"),
)


def surface_name(travel_mode: TravelMode) -> str:
    return "road" if travel_mode == "driving" else "pathway"


def turn_instruction(angle_diff: float, travel_mode: TravelMode) -> tuple[str, str]:
    """Instruction text and icon for a signed heading change (positive = right)."""
    road = surface_name(travel_mode)
    magnitude = abs(angle_diff)
    side = "right" if angle_diff > 0 else "left"
    for upper, label, stem in TURN_BANDS:
        if magnitude >= upper:
            continue
        if stem == "straight":
            return f"{label} on the {road}", "straight"
        icon = f"{stem}-{side}" if stem else side
        return f"{label} {side} on the {road}", icon
    return f"Make a U-turn on the {road}", "u-turn"


def _drop_repeats(polyline: Sequence[LatLng]) -> list[LatLng]:
    points: list[LatLng] = []
    for point in polyline:
        if points and calculate_distance(points[-1], point) <= 0.0:
            continue
        points.append(point)
    return points


def generate_steps(
    polyline: Sequence[LatLng],
    travel_mode: TravelMode,
    start_name: str,
    end_name: str,
    *,
    turn_threshold_deg: float | None = None,
) -> tuple[list[RouteStep], float]:
    """Turn-by-turn steps for one phase, plus the total polyline length.

    A joint emits an instruction when the heading changes by at least the
    threshold; the instruction carries the distance walked (or driven) since
    the previous instruction.
    """
    threshold = settings.turn_threshold_deg if turn_threshold_deg is None else float(turn_threshold_deg)
    road = surface_name(travel_mode)
    points = _drop_repeats(polyline)

    steps = [RouteStep(instruction=f"Start at {start_name}", distance_m=0.0, icon="start")]
    bearings = [calculate_bearing(points[i], points[i + 1]) for i in range(len(points) - 1)]
    total = 0.0
    accumulated = 0.0
    for i in range(len(points) - 1):
        leg = calculate_distance(points[i], points[i + 1])
        total += leg
        accumulated += leg
        if i + 1 >= len(bearings):
            continue
        angle = bearing_delta_deg(bearings[i], bearings[i + 1])
        if abs(angle) >= threshold:
            instruction, icon = turn_instruction(angle, travel_mode)
            steps.append(RouteStep(instruction=instruction, distance_m=accumulated, icon=icon))
            accumulated = 0.0

    if accumulated > 0.0:
        steps.append(
            RouteStep(
                instruction=f"Continue to destination on the {road}",
                distance_m=accumulated,
                icon="straight",
            )
        )
    steps.append(RouteStep(instruction=f"Arrive at {end_name}", distance_m=0.0, icon="end"))
    return steps, total


def speed_mps(travel_mode: TravelMode) -> float:
    return settings.driving_speed_mps if travel_mode == "driving" else settings.walking_speed_mps


def estimate_eta(distance_m: float, travel_mode: TravelMode) -> int:
    """Whole minutes, rounded up; 0 for an empty phase."""
    if distance_m <= 0.0:
        return 0
    return math.ceil(distance_m / speed_mps(travel_mode) / 60.0)
