from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final, Protocol

import httpx
from pydantic import ValidationError

from .logging_utils import log_event, log_warning
from .models import KIOSK_TYPE, PathNetwork, PathSegment, Place
from .routing_errors import RoutingError
from .settings import settings

_RETRYABLE_STATUS: Final[set[int]] = {408, 425, 429, 500, 502, 503, 504}

KIOSK_PLACE_ID = "kiosk"


def kiosk_place(lat: float | None = None, lng: float | None = None) -> Place:
    """The fixed kiosk origin; a caller may override its coordinate."""
    return Place(
        id=KIOSK_PLACE_ID,
        name=settings.kiosk_name,
        lat=settings.kiosk_lat if lat is None else lat,
        lng=settings.kiosk_lng if lng is None else lng,
        type=KIOSK_TYPE,
    )


@dataclass(frozen=True)
class CampusSnapshot:
    places: tuple[Place, ...]
    walkpaths: tuple[PathSegment, ...]
    drivepaths: tuple[PathSegment, ...]

    def place(self, place_id: str) -> Place | None:
        for place in self.places:
            if place.id == place_id:
                return place
        return None

    def require_place(self, place_id: str) -> Place:
        place = self.place(place_id)
        if place is None:
            raise RoutingError(
                reason_code="place_not_found",
                message=f"Unknown place {place_id!r}",
                details={"place_id": place_id},
            )
        return place

    def with_kiosk(self) -> tuple[Place, ...]:
        if self.place(KIOSK_PLACE_ID) is not None:
            return self.places
        return (*self.places, kiosk_place())


def _segments(rows: Any, network: PathNetwork) -> tuple[PathSegment, ...]:
    if not isinstance(rows, list):
        raise ValueError(f"{network} paths must be a list")
    if any(not isinstance(row, dict) for row in rows):
        raise ValueError(f"{network} paths must be JSON objects")
    return tuple(PathSegment.model_validate({**row, "network": network}) for row in rows)


def parse_snapshot(payload: dict[str, Any]) -> CampusSnapshot:
    """Build a snapshot from the exported JSON shape.

    Places may be listed under ``places`` or ``buildings``; path lists under
    ``walkpaths`` and ``drivepaths``. Raises ``ValueError`` on malformed input.
    """
    raw_places = payload.get("places", payload.get("buildings", []))
    if not isinstance(raw_places, list):
        raise ValueError("places must be a list")
    places = tuple(Place.model_validate(row) for row in raw_places)
    return CampusSnapshot(
        places=places,
        walkpaths=_segments(payload.get("walkpaths", []), "walking"),
        drivepaths=_segments(payload.get("drivepaths", []), "driving"),
    )


def load_snapshot_file(path: str | Path) -> CampusSnapshot:
    file_path = Path(path)
    try:
        payload = json.loads(file_path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise RoutingError(
            reason_code="campus_data_unavailable",
            message=f"Campus data file could not be read: {file_path}",
            details={"path": str(file_path), "error": type(exc).__name__},
        ) from exc
    except json.JSONDecodeError as exc:
        raise RoutingError(
            reason_code="campus_data_unavailable",
            message=f"Campus data file is not valid JSON: {file_path}",
            details={"path": str(file_path), "line": exc.lineno},
        ) from exc
    if not isinstance(payload, dict):
        raise RoutingError(
            reason_code="campus_data_unavailable",
            message="Campus data file must contain a JSON object",
            details={"path": str(file_path)},
        )
    try:
        return parse_snapshot(payload)
    except (ValidationError, ValueError) as exc:
        raise RoutingError(
            reason_code="campus_data_unavailable",
            message=f"Campus data file is malformed: {exc}",
            details={"path": str(file_path)},
        ) from exc


class CampusDataSource(Protocol):
    async def load(self) -> CampusSnapshot: ...

    async def aclose(self) -> None: ...


class JsonCampusDataSource:
    """Reads the campus export from disk on every load, so edits are picked up without a restart."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    async def load(self) -> CampusSnapshot:
        return load_snapshot_file(self.path)

    async def aclose(self) -> None:
        return None


class CampusDataRetryableError(RuntimeError):
    pass


class HttpCampusDataSource:
    """Fetches places and paths from the admin store's HTTP API."""

    def __init__(
        self,
        *,
        base_url: str,
        timeout_s: float | None = None,
        max_retries: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.max_retries = max(1, int(max_retries if max_retries is not None else settings.campus_data_max_retries))
        timeout = float(timeout_s if timeout_s is not None else settings.campus_data_timeout_s)
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout, connect=min(timeout, 5.0)),
            trust_env=False,
            headers={"accept": "application/json"},
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _get_json(self, path: str) -> Any:
        url = f"{self.base_url}{path}"
        last_err: Exception | None = None
        for attempt in range(self.max_retries):
            try:
                resp = await self._client.get(url)
                if resp.status_code in _RETRYABLE_STATUS:
                    raise CampusDataRetryableError(f"HTTP {resp.status_code} from {path}")
                resp.raise_for_status()
                return resp.json()
            except CampusDataRetryableError as e:
                last_err = e
            except (httpx.TimeoutException, httpx.NetworkError, httpx.TransportError) as e:
                last_err = e
            except httpx.HTTPStatusError as e:
                raise RoutingError(
                    reason_code="campus_data_unavailable",
                    message=f"Campus data request failed: HTTP {e.response.status_code} from {path}",
                    details={"url": url, "status_code": e.response.status_code},
                ) from e
            except ValueError as e:
                raise RoutingError(
                    reason_code="campus_data_unavailable",
                    message=f"Campus data response from {path} is not JSON",
                    details={"url": url},
                ) from e

            log_warning("campus_data_retry", url=url, attempt=attempt + 1, error=type(last_err).__name__)
            if attempt < self.max_retries - 1:
                await asyncio.sleep(min(0.25 * (2**attempt), 2.0))

        # httpx exceptions can stringify to "" (e.g. some timeouts), so include the type.
        detail = "unknown error" if last_err is None else f"{type(last_err).__name__}: {str(last_err).strip()}"
        raise RoutingError(
            reason_code="campus_data_unavailable",
            message=f"Campus data request failed after {self.max_retries} attempts: {detail}",
            details={"url": url},
        )

    async def load(self) -> CampusSnapshot:
        places, walkpaths, drivepaths = await asyncio.gather(
            self._get_json("/api/buildings"),
            self._get_json("/api/walkpaths"),
            self._get_json("/api/drivepaths"),
        )
        try:
            snapshot = parse_snapshot({"places": places, "walkpaths": walkpaths, "drivepaths": drivepaths})
        except (ValidationError, ValueError) as exc:
            raise RoutingError(
                reason_code="campus_data_unavailable",
                message=f"Campus data from {self.base_url} is malformed: {exc}",
                details={"url": self.base_url},
            ) from exc
        log_event(
            "campus_data_loaded",
            source="http",
            place_count=len(snapshot.places),
            walkpath_count=len(snapshot.walkpaths),
            drivepath_count=len(snapshot.drivepaths),
        )
        return snapshot


def build_data_source() -> CampusDataSource | None:
    if settings.campus_data_url:
        return HttpCampusDataSource(base_url=settings.campus_data_url)
    if settings.campus_data_path:
        return JsonCampusDataSource(settings.campus_data_path)
    return None
