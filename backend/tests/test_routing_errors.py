from __future__ import annotations

from wayfinder.routing_errors import FROZEN_REASON_CODES, RoutingError, http_status_for, normalize_reason_code


def test_routing_error_string_and_details() -> None:
    err = RoutingError(
        reason_code="place_not_found",
        message="Unknown place 'annex'",
        details={"place_id": "annex"},
    )
    assert str(err) == "Unknown place 'annex'"
    assert isinstance(err, ValueError)
    assert err.as_detail() == {
        "reason_code": "place_not_found",
        "message": "Unknown place 'annex'",
        "details": {"place_id": "annex"},
    }


def test_unknown_reason_codes_are_normalised() -> None:
    assert "accessible_unreachable" in FROZEN_REASON_CODES
    assert "leg_failed" in FROZEN_REASON_CODES
    assert normalize_reason_code("no_matching_parking") == "no_matching_parking"
    assert normalize_reason_code("something_new") == "routing_failed"
    assert normalize_reason_code("", default="leg_failed") == "leg_failed"
    assert RoutingError(reason_code="bogus", message="x").as_detail()["reason_code"] == "routing_failed"


def test_http_status_mapping() -> None:
    assert http_status_for("no_projection") == 404
    assert http_status_for("place_not_found") == 404
    assert http_status_for("vehicle_type_required") == 400
    assert http_status_for("campus_data_unavailable") == 503
    assert http_status_for("accessible_unreachable") == 422
    assert http_status_for("bogus") == 422
