from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Sequence

import httpx

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from wayfinder.campus_data import load_snapshot_file  # noqa: E402
from wayfinder.models import NavigationRequest  # noqa: E402
from wayfinder.route_policy import AwaitingParkingSelection, RoutePlanner  # noqa: E402
from wayfinder.routing_errors import RoutingError  # noqa: E402


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Plan a campus route headlessly, in-process from a JSON export or against a running backend."
    )
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--campus-json", default=None)
    source.add_argument("--backend-url", default=None)
    parser.add_argument("--start", default="kiosk")
    parser.add_argument("--end", required=True)
    parser.add_argument("--mode", choices=("walking", "driving", "accessible"), default="walking")
    parser.add_argument("--vehicle-type", choices=("car", "motorcycle", "bike"), default=None)
    parser.add_argument("--waypoint", action="append", default=[], dest="waypoints")
    parser.add_argument("--parking-id", default=None)
    parser.add_argument("--output", default=None)
    return parser


def request_from_args(args: argparse.Namespace) -> NavigationRequest:
    return NavigationRequest(
        start_id=args.start,
        end_id=args.end,
        mode=args.mode,
        vehicle_type=args.vehicle_type,
        waypoint_ids=list(args.waypoints),
        selected_parking_id=args.parking_id,
    )


def plan_locally(campus_json: str, req: NavigationRequest) -> dict[str, Any]:
    try:
        planner = RoutePlanner(load_snapshot_file(campus_json))
        outcome = planner.plan_request(req)
    except RoutingError as e:
        return {"status": "error", "error": e.as_detail()}
    if isinstance(outcome, AwaitingParkingSelection):
        return {
            "status": outcome.status,
            "parking_type": outcome.parking_type,
            "candidates": [place.model_dump(mode="json") for place in outcome.candidates],
        }
    return {"status": outcome.status, "route": outcome.route.model_dump(mode="json")}


def plan_remotely(backend_url: str, req: NavigationRequest, *, client: httpx.Client | None = None) -> dict[str, Any]:
    own_client = client is None
    if client is None:
        client = httpx.Client(timeout=30.0)
    try:
        resp = client.post(f"{backend_url.rstrip('/')}/navigation", json=req.model_dump(mode="json"))
        if resp.status_code >= 400:
            try:
                detail = resp.json().get("detail", {})
            except ValueError:
                detail = {"message": resp.text}
            return {"status": "error", "http_status": resp.status_code, "error": detail}
        return resp.json()
    finally:
        if own_client:
            client.close()


def summarise(result: dict[str, Any]) -> dict[str, Any]:
    route = result.get("route") or {}
    return {
        "status": result.get("status"),
        "total_distance": route.get("total_distance"),
        "phases": [
            {
                "mode": phase["mode"],
                "from": phase["start_name"],
                "to": phase["end_name"],
                "distance": phase["distance"],
                "eta": phase["eta"],
            }
            for phase in route.get("phases", [])
        ],
        "notices": [notice["code"] for notice in route.get("notices", [])],
    }


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(list(argv) if argv is not None else None)
    req = request_from_args(args)
    if args.campus_json:
        result = plan_locally(args.campus_json, req)
    else:
        result = plan_remotely(args.backend_url, req)

    if args.output:
        out = Path(args.output)
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(json.dumps(result, indent=2), encoding="utf-8")

    print(json.dumps(summarise(result) if result.get("status") == "ready" else result, indent=2))
    return 1 if result.get("status") == "error" else 0


if __name__ == "__main__":
    raise SystemExit(main())
