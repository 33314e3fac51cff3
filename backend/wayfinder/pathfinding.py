"""Point-to-graph binding and the single-leg solver.

A leg runs between two Places. Each Place is anchored (its access point when
one is authored), the anchor is projected onto the closest graph edge, the
projection is spliced into that edge and the anchor is wired to it. Dijkstra
then runs from the start anchor to the end anchor on the augmented graph.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from .campus_graph import CampusGraph, build_graph, node_key
from .geometry import calculate_distance, haversine_m, polyline_length_m, project_point_onto_segment
from .graph_cache import GRAPH_CACHE
from .k_shortest import Adjacency, dijkstra_all_distances, reconstruct_path, yen_k_shortest_paths_with_stats
from .logging_utils import log_debug, log_warning
from .models import LatLng, PathSegment, Place, TravelMode
from .settings import settings

START_ANCHOR_ID = "anchor:start"
END_ANCHOR_ID = "anchor:end"

# Projections closer than this to an edge endpoint reuse the endpoint.
_COINCIDENT_M = 0.01


@dataclass(frozen=True)
class EdgeProjection:
    source: str
    target: str
    lat: float
    lng: float
    distance_m: float
    t: float


@dataclass(frozen=True)
class BoundGraph:
    adjacency: Adjacency
    coords: dict[str, tuple[float, float]]
    projections: dict[str, EdgeProjection]


@dataclass(frozen=True)
class LegSolution:
    coordinates: tuple[LatLng, ...]
    distance_m: float
    connected: bool
    start_projection_m: float = 0.0
    # Gap between the end anchor and the graph (or, for a nearest-reachable
    # search, between the destination and the point reached).
    end_projection_m: float = 0.0

    @property
    def polyline(self) -> list[LatLng]:
        return list(self.coordinates)


def select_segments(segments: Iterable[PathSegment], mode: TravelMode) -> list[PathSegment]:
    """Network filter per travel mode.

    Walking uses every segment except the strictly accessible-only ones;
    accessible uses the accessible-flagged ones; driving uses all it is given.
    """
    if mode == "accessible":
        return [segment for segment in segments if segment.accessible]
    if mode == "walking":
        return [segment for segment in segments if not segment.strictly_pwd_only]
    return list(segments)


def load_graph(segments: Sequence[PathSegment], snap_threshold_m: float | None = None) -> CampusGraph:
    threshold_m = settings.merge_threshold_m if snap_threshold_m is None else float(snap_threshold_m)
    if not settings.graph_cache_enabled:
        return build_graph(segments, snap_threshold_m=threshold_m)
    return GRAPH_CACHE.get_or_build(list(segments), threshold_m, build_graph)


def closest_edge_projection(point: LatLng, graph: CampusGraph) -> EdgeProjection | None:
    best: EdgeProjection | None = None
    for edge in graph.undirected_edges():
        a = graph.nodes[edge.source]
        b = graph.nodes[edge.target]
        projection = project_point_onto_segment(point, a, b)
        if best is None or projection.distance_m < best.distance_m:
            best = EdgeProjection(
                source=edge.source,
                target=edge.target,
                lat=projection.lat,
                lng=projection.lng,
                distance_m=projection.distance_m,
                t=projection.t,
            )
    return best


def _splice_node_id(projection: EdgeProjection, coords: dict[str, tuple[float, float]]) -> str:
    for endpoint in (projection.source, projection.target):
        lat, lng = coords[endpoint]
        if haversine_m(projection.lat, projection.lng, lat, lng) <= _COINCIDENT_M:
            return endpoint
    return f"proj:{node_key(projection.lat, projection.lng)}"


def _add_edge(adjacency: dict[str, list[tuple[str, float]]], u: str, v: str, distance_m: float) -> None:
    adjacency.setdefault(u, []).append((v, distance_m))
    adjacency.setdefault(v, []).append((u, distance_m))


def bind_anchors(graph: CampusGraph, anchors: dict[str, LatLng]) -> BoundGraph | None:
    """Augment a copy of the graph with one node per anchor. ``None`` when the graph has no edges."""
    if graph.is_empty:
        return None

    adjacency: dict[str, list[tuple[str, float]]] = {
        node_id: list(neighbours) for node_id, neighbours in graph.adjacency().items()
    }
    coords = {node_id: (node.lat, node.lng) for node_id, node in graph.nodes.items()}
    projections: dict[str, EdgeProjection] = {}
    by_edge: dict[tuple[str, str], list[tuple[str, EdgeProjection]]] = {}
    for anchor_id, point in anchors.items():
        projection = closest_edge_projection(point, graph)
        if projection is None:
            return None
        projections[anchor_id] = projection
        by_edge.setdefault((projection.source, projection.target), []).append((anchor_id, projection))

    attached: dict[str, str] = {}
    for (u, v), items in by_edge.items():
        chain = [u]
        for anchor_id, projection in sorted(items, key=lambda item: (item[1].t, item[0])):
            node_id = _splice_node_id(projection, coords)
            attached[anchor_id] = node_id
            if node_id in (u, v):
                continue
            coords.setdefault(node_id, (projection.lat, projection.lng))
            if node_id != chain[-1]:
                chain.append(node_id)
        chain.append(v)
        if len(chain) == 2:
            continue
        adjacency[u] = [(n, w) for n, w in adjacency[u] if n != v]
        adjacency[v] = [(n, w) for n, w in adjacency[v] if n != u]
        for x, y in zip(chain, chain[1:]):
            distance = haversine_m(*coords[x], *coords[y])
            if distance > 0.0:
                _add_edge(adjacency, x, y, distance)

    for anchor_id, point in anchors.items():
        coords[anchor_id] = (point.lat, point.lng)
        _add_edge(adjacency, anchor_id, attached[anchor_id], projections[anchor_id].distance_m)

    return BoundGraph(
        adjacency={node_id: tuple(neighbours) for node_id, neighbours in adjacency.items()},
        coords=coords,
        projections=projections,
    )


def _as_polyline(points: Iterable[tuple[float, float]]) -> tuple[LatLng, ...]:
    out: list[LatLng] = []
    previous: tuple[float, float] | None = None
    for point in points:
        if point == previous:
            continue
        out.append(LatLng(lat=point[0], lng=point[1]))
        previous = point
    if len(out) == 1:
        out.append(out[0])
    return tuple(out)


def _coordinates(bound: BoundGraph, nodes: Sequence[str]) -> tuple[LatLng, ...]:
    return _as_polyline(bound.coords[node_id] for node_id in nodes)


def solve_leg(
    start: Place,
    end: Place,
    segments: Sequence[PathSegment],
    *,
    snap_threshold_m: float | None = None,
) -> LegSolution | None:
    """Shortest path between two Places over ``segments``.

    ``None`` when either anchor cannot be projected (no edges at all). When the
    anchors project onto disconnected components the leg degrades to the
    straight line between them with ``connected=False``.
    """
    graph = load_graph(segments, snap_threshold_m)
    start_anchor = start.anchor
    end_anchor = end.anchor
    bound = bind_anchors(graph, {START_ANCHOR_ID: start_anchor, END_ANCHOR_ID: end_anchor})
    if bound is None:
        log_warning("leg_no_projection", start_id=start.id, end_id=end.id, segment_count=len(segments))
        return None

    start_gap = bound.projections[START_ANCHOR_ID].distance_m
    end_gap = bound.projections[END_ANCHOR_ID].distance_m
    if (start_anchor.lat, start_anchor.lng) == (end_anchor.lat, end_anchor.lng):
        return LegSolution(
            coordinates=(start_anchor, end_anchor),
            distance_m=0.0,
            connected=True,
            start_projection_m=start_gap,
            end_projection_m=end_gap,
        )
    settled, previous = dijkstra_all_distances(
        adjacency=bound.adjacency,
        start=START_ANCHOR_ID,
        goal=END_ANCHOR_ID,
    )
    if END_ANCHOR_ID not in settled:
        log_warning(
            "leg_disconnected",
            start_id=start.id,
            end_id=end.id,
            node_count=len(graph.nodes),
        )
        return LegSolution(
            coordinates=(start_anchor, end_anchor),
            distance_m=calculate_distance(start_anchor, end_anchor),
            connected=False,
            start_projection_m=start_gap,
            end_projection_m=end_gap,
        )

    nodes = reconstruct_path(previous, START_ANCHOR_ID, END_ANCHOR_ID)
    return LegSolution(
        coordinates=_coordinates(bound, nodes),
        distance_m=settled[END_ANCHOR_ID],
        connected=True,
        start_projection_m=start_gap,
        end_projection_m=end_gap,
    )


def find_shortest_path(start: Place, end: Place, segments: Sequence[PathSegment]) -> list[LatLng] | None:
    solution = solve_leg(start, end, segments)
    if solution is None:
        return None
    return solution.polyline


@dataclass(frozen=True)
class AlternativePath:
    coordinates: tuple[LatLng, ...]
    distance_m: float


def select_alternatives(paths: Sequence[AlternativePath], k: int) -> list[AlternativePath]:
    """Pick a spread of options from cost-ordered paths.

    The shortest first, then the shortest that is 5-10 m longer, then the
    shortest that is more than 10 m longer; remaining slots are filled in cost
    order.
    """
    if not paths or k <= 0:
        return []
    best = paths[0]
    chosen = [best]
    for low, high in ((5.0, 10.0), (10.0, None)):
        for path in paths[1:]:
            diff = path.distance_m - best.distance_m
            in_band = diff > low if high is None else low <= diff <= high
            if in_band and path not in chosen:
                chosen.append(path)
                break
    for path in paths[1:]:
        if len(chosen) >= k:
            break
        if path not in chosen:
            chosen.append(path)
    return sorted(chosen[:k], key=lambda p: p.distance_m)


def find_alternative_paths(
    start: Place,
    end: Place,
    segments: Sequence[PathSegment],
    k: int | None = None,
) -> list[AlternativePath]:
    wanted = settings.alternative_routes_k if k is None else int(k)
    graph = load_graph(segments)
    bound = bind_anchors(graph, {START_ANCHOR_ID: start.anchor, END_ANCHOR_ID: end.anchor})
    if bound is None or wanted <= 0:
        return []

    results, search_stats = yen_k_shortest_paths_with_stats(
        adjacency=bound.adjacency,
        start=START_ANCHOR_ID,
        goal=END_ANCHOR_ID,
        k=max(wanted * 4, wanted + 6),
        max_detour_ratio=max(1.0, float(settings.alternative_max_detour_ratio)),
    )
    log_debug("alternatives_search", start_id=start.id, end_id=end.id, **search_stats)
    paths: list[AlternativePath] = []
    seen: set[tuple[LatLng, ...]] = set()
    for result in results:
        coordinates = _coordinates(bound, result.nodes)
        if coordinates in seen:
            continue
        seen.add(coordinates)
        paths.append(AlternativePath(coordinates=coordinates, distance_m=result.cost))
    return select_alternatives(paths, wanted)


def find_nearest_reachable_point(
    start: Place,
    destination: Place,
    segments: Sequence[PathSegment],
) -> LegSolution | None:
    """Path from ``start`` to the reachable point closest to ``destination``.

    Used when the destination is off the usable network. The destination anchor
    is projected onto every edge reachable from the start, so the path may stop
    part-way along an edge that passes the door. ``end_projection_m`` holds the
    remaining gap to the destination anchor. ``None`` when the start cannot be
    bound.
    """
    graph = load_graph(segments)
    target = destination.anchor
    bound = bind_anchors(graph, {START_ANCHOR_ID: start.anchor})
    if bound is None:
        return None

    settled, previous = dijkstra_all_distances(adjacency=bound.adjacency, start=START_ANCHOR_ID)
    best_key: tuple[float, float, str] | None = None
    best_point: tuple[float, float] | None = None
    for node_id, cost in settled.items():
        if node_id == START_ANCHOR_ID:
            continue
        a = LatLng(lat=bound.coords[node_id][0], lng=bound.coords[node_id][1])
        for neighbour, _weight in bound.adjacency.get(node_id, ()):
            if neighbour == START_ANCHOR_ID:
                continue
            b = LatLng(lat=bound.coords[neighbour][0], lng=bound.coords[neighbour][1])
            projection = project_point_onto_segment(target, a, b)
            if projection.t >= 1.0:
                # The far endpoint is scored from its own side.
                continue
            along_m = haversine_m(a.lat, a.lng, projection.lat, projection.lng)
            key = (projection.distance_m, cost + along_m, node_id)
            if best_key is None or key < best_key:
                best_key, best_point = key, (projection.lat, projection.lng)
    if best_key is None or best_point is None:
        return None

    nodes = reconstruct_path(previous, START_ANCHOR_ID, best_key[2])
    coordinates = _as_polyline([*(bound.coords[node_id] for node_id in nodes), best_point])
    return LegSolution(
        coordinates=coordinates,
        distance_m=polyline_length_m(coordinates),
        connected=True,
        start_projection_m=bound.projections[START_ANCHOR_ID].distance_m,
        end_projection_m=best_key[0],
    )
