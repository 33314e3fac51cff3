from __future__ import annotations

from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, computed_field, model_validator

from .geometry import format_distance

TravelMode = Literal["walking", "driving", "accessible"]
VehicleType = Literal["car", "motorcycle", "bike"]
PathNetwork = Literal["walking", "driving"]

GATE_TYPE = "Gate"
KIOSK_TYPE = "Kiosk"
PARKING_TYPE_BY_VEHICLE: dict[str, str] = {
    "car": "Car Parking",
    "motorcycle": "Motorcycle Parking",
    "bike": "Bike Parking",
}
PARKING_TYPES: frozenset[str] = frozenset(PARKING_TYPE_BY_VEHICLE.values())


class LatLng(BaseModel):
    model_config = ConfigDict(frozen=True)

    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180, validation_alias=AliasChoices("lng", "lon"))


class PathSegment(BaseModel):
    """One authored path: an ordered polyline tagged with the network it belongs to."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    nodes: list[LatLng] = Field(default_factory=list)
    network: PathNetwork = "walking"
    is_pwd_friendly: bool = Field(
        default=False,
        validation_alias=AliasChoices("is_pwd_friendly", "isPwdFriendly"),
    )
    strictly_pwd_only: bool = Field(
        default=False,
        validation_alias=AliasChoices("strictly_pwd_only", "strictlyPwdOnly"),
    )

    @property
    def accessible(self) -> bool:
        return self.is_pwd_friendly or self.strictly_pwd_only


class Place(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    name: str
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    node_lat: float | None = Field(default=None, validation_alias=AliasChoices("node_lat", "nodeLat"))
    node_lng: float | None = Field(default=None, validation_alias=AliasChoices("node_lng", "nodeLng"))
    type: str = ""

    @property
    def anchor(self) -> LatLng:
        """Pathfinding anchor: the dedicated access point when present, else the primary coordinate."""
        if self.node_lat is not None and self.node_lng is not None:
            return LatLng(lat=self.node_lat, lng=self.node_lng)
        return LatLng(lat=self.lat, lng=self.lng)

    @property
    def position(self) -> LatLng:
        return LatLng(lat=self.lat, lng=self.lng)


class RouteStep(BaseModel):
    model_config = ConfigDict(frozen=True)

    instruction: str
    distance_m: float = Field(default=0.0, ge=0)
    icon: str = "straight"

    @computed_field  # type: ignore[prop-decorator]
    @property
    def distance(self) -> str:
        return format_distance(self.distance_m)


class RouteNotice(BaseModel):
    """Non-blocking condition the UI should surface (the route is still usable)."""

    model_config = ConfigDict(frozen=True)

    code: Literal["parking_far", "accessible_substitute_destination", "straight_line_fallback"]
    message: str
    details: dict[str, Any] = Field(default_factory=dict)


class RoutePhase(BaseModel):
    model_config = ConfigDict(frozen=True)

    mode: TravelMode
    polyline: list[LatLng]
    steps: list[RouteStep]
    distance_m: float = Field(..., ge=0)
    start_name: str
    end_name: str
    color: str
    phase_index: int = Field(..., ge=0)
    start_id: str
    end_id: str
    eta_minutes: int = Field(default=0, ge=0)
    connected: bool = True
    substitute_end: LatLng | None = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def distance(self) -> str:
        return format_distance(self.distance_m)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def eta(self) -> str:
        if self.distance_m <= 0:
            return "0 min"
        return f"{self.eta_minutes} min" if self.eta_minutes > 0 else "< 1 min"


class NavigationRoute(BaseModel):
    model_config = ConfigDict(frozen=True)

    start: Place
    end: Place
    mode: TravelMode
    vehicle_type: VehicleType | None = None
    parking: Place | None = None
    waypoints: list[Place] = Field(default_factory=list)
    polyline: list[LatLng]
    steps: list[RouteStep]
    distance_m: float = Field(..., ge=0)
    phases: list[RoutePhase]
    notices: list[RouteNotice] = Field(default_factory=list)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total_distance(self) -> str:
        return format_distance(self.distance_m)

    @model_validator(mode="after")
    def _phases_are_contiguous(self) -> "NavigationRoute":
        for previous, current in zip(self.phases, self.phases[1:]):
            if previous.end_id != current.start_id:
                raise ValueError(
                    f"phase {current.phase_index} starts at {current.start_id!r} "
                    f"but phase {previous.phase_index} ends at {previous.end_id!r}"
                )
        return self


# ---------------------------------------------------------------------------
# API requests / responses
# ---------------------------------------------------------------------------


class LegRequest(BaseModel):
    start_id: str
    start_lat: float | None = Field(default=None, ge=-90, le=90)
    start_lng: float | None = Field(default=None, ge=-180, le=180)
    end_id: str
    mode: TravelMode = "walking"


class LegResponse(BaseModel):
    route: list[LatLng]
    distance_m: float
    connected: bool


class NavigationRequest(BaseModel):
    start_id: str
    start_lat: float | None = Field(default=None, ge=-90, le=90)
    start_lng: float | None = Field(default=None, ge=-180, le=180)
    end_id: str
    mode: TravelMode = "walking"
    vehicle_type: VehicleType | None = None
    waypoint_ids: list[str] = Field(default_factory=list, max_length=16)
    selected_parking_id: str | None = None


class NavigationResponse(BaseModel):
    status: Literal["ready", "awaiting_parking_selection"]
    route: NavigationRoute | None = None
    parking_type: str | None = None
    candidates: list[Place] = Field(default_factory=list)


class AlternativesRequest(LegRequest):
    k: int | None = Field(default=None, ge=1, le=10)


class AlternativeRoute(BaseModel):
    rank: int
    polyline: list[LatLng]
    distance_m: float

    @computed_field  # type: ignore[prop-decorator]
    @property
    def distance(self) -> str:
        return format_distance(self.distance_m)


class AlternativesResponse(BaseModel):
    routes: list[AlternativeRoute]


class PlaceListResponse(BaseModel):
    places: list[Place]
