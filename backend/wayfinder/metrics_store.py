from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import UTC, datetime
from threading import Lock


@dataclass
class EndpointStats:
    request_count: int = 0
    error_count: int = 0
    total_duration_ms: float = 0.0
    max_duration_ms: float = 0.0
    status_codes: Counter[int] = field(default_factory=Counter)


class MetricsStore:
    """Per-endpoint request counters plus routing outcome tallies.

    One instance lives on ``app.state``; tests build their own.
    """

    def __init__(self) -> None:
        self._lock = Lock()
        self._created_at = datetime.now(UTC).isoformat()
        self._endpoints: dict[str, EndpointStats] = {}
        self._reason_codes: Counter[str] = Counter()
        self._notice_codes: Counter[str] = Counter()
        self._plan_statuses: Counter[str] = Counter()

    def record(self, endpoint: str, *, duration_ms: float, status_code: int = 200) -> None:
        name = endpoint.strip() or "unknown"
        d_ms = max(float(duration_ms), 0.0)

        with self._lock:
            stats = self._endpoints.setdefault(name, EndpointStats())
            stats.request_count += 1
            if status_code >= 400:
                stats.error_count += 1
            stats.status_codes[int(status_code)] += 1
            stats.total_duration_ms += d_ms
            stats.max_duration_ms = max(stats.max_duration_ms, d_ms)

    def record_failure(self, reason_code: str) -> None:
        with self._lock:
            self._reason_codes[reason_code] += 1

    def record_plan(self, status: str, notice_codes: list[str] | tuple[str, ...] = ()) -> None:
        with self._lock:
            self._plan_statuses[status] += 1
            self._notice_codes.update(notice_codes)

    def snapshot(self) -> dict[str, object]:
        with self._lock:
            endpoints: dict[str, dict[str, object]] = {}
            total_requests = 0
            total_errors = 0

            for name in sorted(self._endpoints):
                stats = self._endpoints[name]
                total_requests += stats.request_count
                total_errors += stats.error_count
                avg_duration_ms = stats.total_duration_ms / stats.request_count if stats.request_count else 0.0
                endpoints[name] = {
                    "request_count": stats.request_count,
                    "error_count": stats.error_count,
                    "avg_duration_ms": round(avg_duration_ms, 3),
                    "max_duration_ms": round(stats.max_duration_ms, 3),
                    "status_codes": {str(code): count for code, count in sorted(stats.status_codes.items())},
                }

            return {
                "created_at": self._created_at,
                "total_requests": total_requests,
                "total_errors": total_errors,
                "endpoints": endpoints,
                "plans": dict(sorted(self._plan_statuses.items())),
                "notices": dict(sorted(self._notice_codes.items())),
                "failures": dict(sorted(self._reason_codes.items())),
            }

    def reset(self) -> None:
        with self._lock:
            self._created_at = datetime.now(UTC).isoformat()
            self._endpoints.clear()
            self._reason_codes.clear()
            self._notice_codes.clear()
            self._plan_statuses.clear()
