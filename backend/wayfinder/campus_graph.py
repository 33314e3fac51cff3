"""Builds the routable graph from authored path segments.

Authored segments rarely share exact vertices where they meet, so the build
runs in three passes:

1. noding: segments of different ids that cross get a shared vertex at the
   crossing, and a segment endpoint that lands on the interior of another
   segment is spliced into it;
2. vertex collection: every coordinate becomes a node keyed by its rounded
   position, consecutive coordinates become bidirectional edges;
3. merging: nodes from disjoint segments that sit within the snap threshold
   are fused into one node at their centroid.

The result only depends on the segment set and the threshold, not on the
order segments are supplied in.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import NamedTuple

from .geometry import (
    calculate_distance,
    haversine_m,
    interpolate,
    project_point_onto_segment,
    segment_intersection,
)
from .logging_utils import log_debug, log_warning
from .models import PathSegment
from .settings import settings

KEY_PRECISION = 7
# Crossing parameters this close to 0 or 1 are treated as the existing vertex.
_PARAM_EPS = 1e-9
_METRES_PER_DEGREE = math.pi * 6_371_000.0 / 180.0


class _Pt(NamedTuple):
    lat: float
    lng: float


def node_key(lat: float, lng: float) -> str:
    return f"{lat:.{KEY_PRECISION}f},{lng:.{KEY_PRECISION}f}"


@dataclass(frozen=True)
class GraphNode:
    id: str
    lat: float
    lng: float
    segment_ids: frozenset[str] = frozenset()

    @property
    def segment_id(self) -> str | None:
        """The owning segment when exactly one segment passes through this node."""
        if len(self.segment_ids) == 1:
            return next(iter(self.segment_ids))
        return None


@dataclass(frozen=True)
class GraphEdge:
    source: str
    target: str
    distance_m: float


@dataclass(frozen=True)
class MergeStats:
    clusters: int = 0
    merged_nodes: int = 0
    skipped_untagged_pairs: int = 0


@dataclass(frozen=True)
class CampusGraph:
    nodes: dict[str, GraphNode]
    edges: tuple[GraphEdge, ...]
    # pre-merge node key -> surviving node id
    node_mapping: dict[str, str] = field(default_factory=dict)
    merge_stats: MergeStats = MergeStats()

    def resolve(self, key: str) -> str:
        return self.node_mapping.get(key, key)

    def adjacency(self) -> dict[str, tuple[tuple[str, float], ...]]:
        out: dict[str, list[tuple[str, float]]] = {node_id: [] for node_id in self.nodes}
        for edge in self.edges:
            out[edge.source].append((edge.target, edge.distance_m))
        return {node_id: tuple(neighbours) for node_id, neighbours in out.items()}

    def undirected_edges(self) -> list[GraphEdge]:
        """Each physical edge once, oriented from the lower to the higher node id."""
        return [edge for edge in self.edges if edge.source < edge.target]

    @property
    def is_empty(self) -> bool:
        return not self.edges


class _Window(NamedTuple):
    poly: int
    index: int
    segment_id: str
    a: _Pt
    b: _Pt
    is_first: bool
    is_last: bool
    min_lat: float
    max_lat: float
    min_lng: float
    max_lng: float


def _polylines(segments: Iterable[PathSegment]) -> list[tuple[str, list[_Pt]]]:
    return [(segment.id, [_Pt(point.lat, point.lng) for point in segment.nodes]) for segment in segments]


def _windows(polylines: Sequence[tuple[str, list[_Pt]]]) -> list[_Window]:
    out: list[_Window] = []
    for poly, (segment_id, points) in enumerate(polylines):
        last = len(points) - 2
        for index in range(len(points) - 1):
            a = points[index]
            b = points[index + 1]
            out.append(
                _Window(
                    poly=poly,
                    index=index,
                    segment_id=segment_id,
                    a=a,
                    b=b,
                    is_first=index == 0,
                    is_last=index == last,
                    min_lat=min(a.lat, b.lat),
                    max_lat=max(a.lat, b.lat),
                    min_lng=min(a.lng, b.lng),
                    max_lng=max(a.lng, b.lng),
                )
            )
    return out


def _candidate_pairs(windows: list[_Window], pad_deg: float) -> Iterable[tuple[_Window, _Window]]:
    """Sweep-and-prune on longitude: yields window pairs from different segments
    whose padded bounding boxes overlap."""
    ordered = sorted(windows, key=lambda w: (w.min_lng, w.poly, w.index))
    for i, current in enumerate(ordered):
        reach = current.max_lng + pad_deg
        for other in ordered[i + 1 :]:
            if other.min_lng > reach:
                break
            if other.segment_id == current.segment_id:
                continue
            if other.min_lat > current.max_lat + pad_deg or other.max_lat < current.min_lat - pad_deg:
                continue
            yield current, other


def _is_interior(param: float) -> bool:
    return _PARAM_EPS < param < 1.0 - _PARAM_EPS


def _splice_crossing(
    first: _Window,
    second: _Window,
    insertions: dict[tuple[int, int], list[tuple[float, _Pt]]],
) -> None:
    hit = segment_intersection(first.a, first.b, second.a, second.b)
    if hit is None:
        return
    t, u = hit
    t_inside = _is_interior(t)
    u_inside = _is_interior(u)
    if not t_inside and not u_inside:
        return
    # Reuse an existing vertex when the crossing sits on one, so both sides share its key.
    if not t_inside:
        point = first.a if t < 0.5 else first.b
    elif not u_inside:
        point = second.a if u < 0.5 else second.b
    elif (first.a, first.b) <= (second.a, second.b):
        point = _Pt(*interpolate(first.a, first.b, t))
    else:
        point = _Pt(*interpolate(second.a, second.b, u))
    if t_inside:
        insertions.setdefault((first.poly, first.index), []).append((t, point))
    if u_inside:
        insertions.setdefault((second.poly, second.index), []).append((u, point))


def _splice_touch(
    endpoint: _Pt,
    target: _Window,
    threshold_m: float,
    insertions: dict[tuple[int, int], list[tuple[float, _Pt]]],
) -> None:
    # Endpoints close to a vertex are left to the merge pass.
    if calculate_distance(endpoint, target.a) <= threshold_m or calculate_distance(endpoint, target.b) <= threshold_m:
        return
    projection = project_point_onto_segment(endpoint, target.a, target.b)
    if projection.distance_m > threshold_m or not _is_interior(projection.t):
        return
    insertions.setdefault((target.poly, target.index), []).append((projection.t, endpoint))


def _touch_endpoints(window: _Window, points: list[_Pt]) -> list[_Pt]:
    out: list[_Pt] = []
    if window.is_first:
        out.append(points[0])
    if window.is_last:
        out.append(points[-1])
    return out


def _node_polylines(
    polylines: list[tuple[str, list[_Pt]]],
    threshold_m: float,
) -> list[tuple[str, list[_Pt]]]:
    windows = _windows(polylines)
    if not windows:
        return polylines
    max_abs_lat = max(max(abs(w.min_lat), abs(w.max_lat)) for w in windows)
    cos_lat = max(math.cos(math.radians(min(max_abs_lat, 89.0))), 1e-6)
    pad_deg = threshold_m / (_METRES_PER_DEGREE * cos_lat)

    insertions: dict[tuple[int, int], list[tuple[float, _Pt]]] = {}
    for first, second in _candidate_pairs(windows, pad_deg):
        if segment_intersection(first.a, first.b, second.a, second.b) is not None:
            # Windows that meet are joined at the crossing only.
            _splice_crossing(first, second, insertions)
            continue
        for endpoint in _touch_endpoints(first, polylines[first.poly][1]):
            _splice_touch(endpoint, second, threshold_m, insertions)
        for endpoint in _touch_endpoints(second, polylines[second.poly][1]):
            _splice_touch(endpoint, first, threshold_m, insertions)

    if not insertions:
        return polylines

    noded: list[tuple[str, list[_Pt]]] = []
    for poly, (segment_id, points) in enumerate(polylines):
        out: list[_Pt] = []
        for index, point in enumerate(points):
            out.append(point)
            extra = insertions.get((poly, index))
            if extra:
                out.extend(pt for _, pt in sorted(extra, key=lambda item: (item[0], item[1])))
        noded.append((segment_id, out))
    return noded


def _collect(polylines: list[tuple[str, list[_Pt]]]) -> tuple[dict[str, GraphNode], list[GraphEdge]]:
    coords: dict[str, _Pt] = {}
    tags: dict[str, set[str]] = {}
    pairs: set[tuple[str, str]] = set()

    for segment_id, points in polylines:
        keys: list[str] = []
        for point in points:
            key = node_key(point.lat, point.lng)
            # Keys collapse sub-centimetre differences; keep the smallest coordinate seen.
            coords[key] = min(coords[key], point) if key in coords else point
            tags.setdefault(key, set())
            if segment_id:
                tags[key].add(segment_id)
            keys.append(key)
        for u, v in zip(keys, keys[1:]):
            if u != v:
                pairs.add((u, v) if u < v else (v, u))

    nodes = {
        key: GraphNode(id=key, lat=point.lat, lng=point.lng, segment_ids=frozenset(tags[key]))
        for key, point in coords.items()
    }
    return nodes, _edges_from_pairs(pairs, nodes)


def _edges_from_pairs(pairs: Iterable[tuple[str, str]], nodes: dict[str, GraphNode]) -> list[GraphEdge]:
    edges: list[GraphEdge] = []
    for u, v in sorted(pairs):
        distance = calculate_distance(nodes[u], nodes[v])
        edges.append(GraphEdge(source=u, target=v, distance_m=distance))
        edges.append(GraphEdge(source=v, target=u, distance_m=distance))
    return edges


def _find(parent: dict[str, str], key: str) -> str:
    root = key
    while parent[root] != root:
        root = parent[root]
    while parent[key] != root:
        parent[key], key = root, parent[key]
    return root


def _union(parent: dict[str, str], a: str, b: str) -> None:
    root_a = _find(parent, a)
    root_b = _find(parent, b)
    if root_a == root_b:
        return
    # The lexicographically smallest key is always the cluster representative.
    if root_a < root_b:
        parent[root_b] = root_a
    else:
        parent[root_a] = root_b


def _neighbour_candidates(nodes: dict[str, GraphNode], threshold_m: float) -> Iterable[tuple[str, str]]:
    """Key pairs (lower key first) that may lie within ``threshold_m``, via a lat/lng grid."""
    max_abs_lat = max(abs(node.lat) for node in nodes.values())
    cos_lat = max(math.cos(math.radians(min(max_abs_lat, 89.0))), 1e-6)
    cell_lat = threshold_m / _METRES_PER_DEGREE
    cell_lng = threshold_m / (_METRES_PER_DEGREE * cos_lat)

    grid: dict[tuple[int, int], list[str]] = {}
    for key in sorted(nodes):
        node = nodes[key]
        cell = (math.floor(node.lat / cell_lat), math.floor(node.lng / cell_lng))
        grid.setdefault(cell, []).append(key)

    for key in sorted(nodes):
        node = nodes[key]
        row = math.floor(node.lat / cell_lat)
        col = math.floor(node.lng / cell_lng)
        for d_row in (-1, 0, 1):
            for d_col in (-1, 0, 1):
                for other in grid.get((row + d_row, col + d_col), ()):
                    if other > key:
                        yield key, other


def merge_nearby_nodes(
    nodes: dict[str, GraphNode],
    edges: Sequence[GraphEdge],
    threshold_m: float,
) -> tuple[dict[str, GraphNode], list[GraphEdge], dict[str, str], MergeStats]:
    """Fuse nodes of disjoint segments that lie within ``threshold_m`` of each other.

    Nodes on a common segment never merge, so a segment's own short sub-edges
    survive. Nodes without segment ids are skipped with a warning. Merging is
    transitive: the clusters are the connected components of the "mergeable
    pair" relation, each collapsed to its centroid under the smallest member key.
    """
    mapping = {key: key for key in nodes}
    if threshold_m <= 0.0 or len(nodes) < 2:
        return dict(nodes), list(edges), mapping, MergeStats()

    parent = {key: key for key in nodes}
    skipped: list[tuple[str, str]] = []
    for key, other in _neighbour_candidates(nodes, threshold_m):
        a = nodes[key]
        b = nodes[other]
        if not a.segment_ids or not b.segment_ids:
            if haversine_m(a.lat, a.lng, b.lat, b.lng) <= threshold_m:
                skipped.append((key, other))
            continue
        if a.segment_ids & b.segment_ids:
            continue
        if haversine_m(a.lat, a.lng, b.lat, b.lng) <= threshold_m:
            _union(parent, key, other)

    if skipped:
        log_warning(
            "graph_merge_skipped_untagged",
            pair_count=len(skipped),
            sample=[list(pair) for pair in skipped[:5]],
        )

    clusters: dict[str, list[str]] = {}
    for key in sorted(nodes):
        clusters.setdefault(_find(parent, key), []).append(key)

    merged: dict[str, GraphNode] = {}
    merged_nodes = 0
    cluster_count = 0
    for representative, members in clusters.items():
        for member in members:
            mapping[member] = representative
        if len(members) == 1:
            merged[representative] = nodes[representative]
            continue
        cluster_count += 1
        merged_nodes += len(members)
        union_ids = frozenset().union(*(nodes[m].segment_ids for m in members))
        merged[representative] = GraphNode(
            id=representative,
            lat=sum(nodes[m].lat for m in members) / len(members),
            lng=sum(nodes[m].lng for m in members) / len(members),
            segment_ids=union_ids if len(union_ids) == 1 else frozenset(),
        )

    pairs: set[tuple[str, str]] = set()
    for edge in edges:
        u = mapping[edge.source]
        v = mapping[edge.target]
        if u == v:
            continue
        pairs.add((u, v) if u < v else (v, u))

    stats = MergeStats(
        clusters=cluster_count,
        merged_nodes=merged_nodes,
        skipped_untagged_pairs=len(skipped),
    )
    return merged, _edges_from_pairs(pairs, merged), mapping, stats


def build_graph(segments: Iterable[PathSegment], *, snap_threshold_m: float | None = None) -> CampusGraph:
    threshold_m = settings.merge_threshold_m if snap_threshold_m is None else float(snap_threshold_m)
    polylines = _polylines(segments)
    noded = _node_polylines(polylines, threshold_m)
    raw_nodes, raw_edges = _collect(noded)
    nodes, edges, mapping, stats = merge_nearby_nodes(raw_nodes, raw_edges, threshold_m)
    log_debug(
        "graph_built",
        segment_count=len(polylines),
        raw_node_count=len(raw_nodes),
        node_count=len(nodes),
        edge_count=len(edges),
        merged_clusters=stats.clusters,
        snap_threshold_m=threshold_m,
    )
    return CampusGraph(nodes=nodes, edges=tuple(edges), node_mapping=mapping, merge_stats=stats)
