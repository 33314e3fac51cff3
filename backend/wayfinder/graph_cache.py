from __future__ import annotations

import hashlib
import json
import time
from collections import OrderedDict
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from threading import Lock

from .campus_graph import CampusGraph
from .models import PathSegment
from .settings import settings


@dataclass
class _GraphCacheEntry:
    inserted_at: float
    graph: CampusGraph


def segment_signature(segments: Iterable[PathSegment], snap_threshold_m: float) -> str:
    """Content hash of a segment collection. Independent of segment order."""
    rows = sorted(
        json.dumps(
            [segment.id, segment.network, [[p.lat, p.lng] for p in segment.nodes]],
            separators=(",", ":"),
        )
        for segment in segments
    )
    digest = hashlib.sha256()
    digest.update(f"{float(snap_threshold_m):.6f}".encode("utf-8"))
    for row in rows:
        digest.update(b"\n")
        digest.update(row.encode("utf-8"))
    return digest.hexdigest()


class GraphCacheStore:
    # Graphs are frozen and never mutated by readers, so entries are shared rather than copied.
    def __init__(self, *, ttl_s: int, max_entries: int) -> None:
        self._ttl_s = max(1, int(ttl_s))
        self._max_entries = max(1, int(max_entries))
        self._lock = Lock()
        self._items: OrderedDict[str, _GraphCacheEntry] = OrderedDict()

        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def _is_expired(self, entry: _GraphCacheEntry) -> bool:
        return (time.time() - entry.inserted_at) > self._ttl_s

    def get(self, key: str) -> CampusGraph | None:
        with self._lock:
            entry = self._items.get(key)
            if entry is None:
                self._misses += 1
                return None

            if self._is_expired(entry):
                self._items.pop(key, None)
                self._misses += 1
                return None

            self._items.move_to_end(key)
            self._hits += 1
            return entry.graph

    def set(self, key: str, graph: CampusGraph) -> None:
        with self._lock:
            if key in self._items:
                self._items.move_to_end(key)
            self._items[key] = _GraphCacheEntry(inserted_at=time.time(), graph=graph)

            while len(self._items) > self._max_entries:
                self._items.popitem(last=False)
                self._evictions += 1

    def get_or_build(
        self,
        segments: list[PathSegment],
        snap_threshold_m: float,
        builder: Callable[..., CampusGraph],
    ) -> CampusGraph:
        key = segment_signature(segments, snap_threshold_m)
        cached = self.get(key)
        if cached is not None:
            return cached
        graph = builder(segments, snap_threshold_m=snap_threshold_m)
        self.set(key, graph)
        return graph

    def clear(self) -> int:
        with self._lock:
            cleared = len(self._items)
            self._items.clear()
            return cleared

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return {
                "size": len(self._items),
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
                "ttl_s": self._ttl_s,
                "max_entries": self._max_entries,
            }


GRAPH_CACHE = GraphCacheStore(
    ttl_s=settings.graph_cache_ttl_s,
    max_entries=settings.graph_cache_max_entries,
)


def clear_graph_cache() -> int:
    return GRAPH_CACHE.clear()


def graph_cache_stats() -> dict[str, int]:
    return GRAPH_CACHE.snapshot()
