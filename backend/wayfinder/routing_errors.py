from __future__ import annotations

from dataclasses import dataclass
from typing import Any

FROZEN_REASON_CODES: frozenset[str] = frozenset(
    {
        "no_projection",
        "no_matching_parking",
        "accessible_unreachable",
        "leg_failed",
        "vehicle_type_required",
        "invalid_parking_selection",
        "place_not_found",
        "campus_data_unavailable",
        "routing_failed",
    }
)

# HTTP status per reason code; anything unmapped is a 422.
REASON_HTTP_STATUS: dict[str, int] = {
    "no_projection": 404,
    "place_not_found": 404,
    "vehicle_type_required": 400,
    "invalid_parking_selection": 400,
    "campus_data_unavailable": 503,
}


@dataclass
class RoutingError(ValueError):
    reason_code: str
    message: str
    details: dict[str, Any] | None = None

    def __str__(self) -> str:
        return self.message

    def as_detail(self) -> dict[str, Any]:
        return {
            "reason_code": normalize_reason_code(self.reason_code),
            "message": self.message,
            "details": self.details or {},
        }


def normalize_reason_code(reason_code: str, *, default: str = "routing_failed") -> str:
    code = str(reason_code or "").strip()
    if code in FROZEN_REASON_CODES:
        return code
    return default


def http_status_for(reason_code: str) -> int:
    return REASON_HTTP_STATUS.get(normalize_reason_code(reason_code), 422)
