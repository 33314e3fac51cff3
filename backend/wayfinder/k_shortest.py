from __future__ import annotations

import heapq
from dataclasses import dataclass
from math import inf

Adjacency = dict[str, tuple[tuple[str, float], ...]]


@dataclass(frozen=True)
class PathResult:
    nodes: tuple[str, ...]
    cost: float


class PathNotFoundError(ValueError):
    pass


def dijkstra_all_distances(
    *,
    adjacency: Adjacency,
    start: str,
    goal: str | None = None,
    banned_nodes: set[str] | None = None,
    banned_edges: set[tuple[str, str]] | None = None,
) -> tuple[dict[str, float], dict[str, str]]:
    """Settled distances and predecessors from ``start``.

    The frontier pops in ``(cost, node id)`` order, so among equal-cost
    frontiers the lowest id is settled first and results are reproducible.
    Stops early once ``goal`` is settled.
    """
    banned_nodes = banned_nodes or set()
    banned_edges = banned_edges or set()
    if start in banned_nodes:
        return {}, {}
    best: dict[str, float] = {start: 0.0}
    previous: dict[str, str] = {}
    settled: dict[str, float] = {}
    heap: list[tuple[float, str]] = [(0.0, start)]
    while heap:
        cost, node = heapq.heappop(heap)
        if node in settled:
            continue
        settled[node] = cost
        if node == goal:
            break
        for nxt, edge_cost in adjacency.get(node, ()):
            if nxt in settled or nxt in banned_nodes or (node, nxt) in banned_edges:
                continue
            new_cost = cost + float(edge_cost)
            if new_cost < best.get(nxt, inf):
                best[nxt] = new_cost
                previous[nxt] = node
                heapq.heappush(heap, (new_cost, nxt))
    return settled, {node: prev for node, prev in previous.items() if node in settled}


def reconstruct_path(previous: dict[str, str], start: str, goal: str) -> tuple[str, ...]:
    nodes = [goal]
    while nodes[-1] != start:
        nodes.append(previous[nodes[-1]])
    nodes.reverse()
    return tuple(nodes)


def dijkstra_shortest_path(
    *,
    adjacency: Adjacency,
    start: str,
    goal: str,
    banned_nodes: set[str] | None = None,
    banned_edges: set[tuple[str, str]] | None = None,
) -> PathResult:
    banned_nodes = banned_nodes or set()
    if start in banned_nodes or goal in banned_nodes:
        raise PathNotFoundError("start/goal blocked")
    settled, previous = dijkstra_all_distances(
        adjacency=adjacency,
        start=start,
        goal=goal,
        banned_nodes=banned_nodes,
        banned_edges=banned_edges,
    )
    if goal not in settled:
        raise PathNotFoundError("no path")
    return PathResult(nodes=reconstruct_path(previous, start, goal), cost=settled[goal])


def _path_cost(adjacency: Adjacency, nodes: tuple[str, ...]) -> float:
    total = 0.0
    for src, dst in zip(nodes, nodes[1:]):
        total += min((cost for nxt, cost in adjacency.get(src, ()) if nxt == dst), default=0.0)
    return total


def yen_k_shortest_paths_with_stats(
    *,
    adjacency: Adjacency,
    start: str,
    goal: str,
    k: int,
    max_detour_ratio: float | None = None,
) -> tuple[tuple[PathResult, ...], dict[str, int | str]]:
    """Up to ``k`` loopless paths in ascending cost order (Yen's algorithm)."""
    if k <= 0:
        return (), {
            "generated_candidates": 0,
            "pruned_constraints": 0,
            "termination_reason": "invalid_k",
            "no_path_reason": "invalid_k",
        }
    try:
        first = dijkstra_shortest_path(adjacency=adjacency, start=start, goal=goal)
    except PathNotFoundError as exc:
        return (), {
            "generated_candidates": 0,
            "pruned_constraints": 0,
            "termination_reason": "no_initial_path",
            "no_path_reason": normalize_no_path_reason(str(exc)),
        }

    shortest: list[PathResult] = [first]
    candidates: list[tuple[float, tuple[str, ...]]] = []
    seen: set[tuple[str, ...]] = {first.nodes}
    detour_cap = (
        max(1.0, float(max_detour_ratio)) * first.cost
        if max_detour_ratio is not None and max_detour_ratio > 0
        else inf
    )
    generated = 0
    pruned = 0
    termination_reason = "k_paths_collected"

    for _ in range(1, k):
        previous_nodes = shortest[-1].nodes
        for spur_idx in range(len(previous_nodes) - 1):
            root_path = previous_nodes[: spur_idx + 1]
            spur_node = root_path[-1]

            banned_edges: set[tuple[str, str]] = set()
            for path in shortest:
                if len(path.nodes) > spur_idx + 1 and path.nodes[: spur_idx + 1] == root_path:
                    banned_edges.add((path.nodes[spur_idx], path.nodes[spur_idx + 1]))

            try:
                spur = dijkstra_shortest_path(
                    adjacency=adjacency,
                    start=spur_node,
                    goal=goal,
                    banned_nodes=set(root_path[:-1]),
                    banned_edges=banned_edges,
                )
            except PathNotFoundError:
                continue

            total_nodes = (*root_path[:-1], *spur.nodes)
            if total_nodes in seen:
                continue
            seen.add(total_nodes)
            total_cost = _path_cost(adjacency, root_path) + spur.cost
            if total_cost > detour_cap:
                pruned += 1
                continue
            heapq.heappush(candidates, (total_cost, total_nodes))
            generated += 1

        if not candidates:
            termination_reason = "candidate_pool_exhausted"
            break
        best_cost, best_nodes = heapq.heappop(candidates)
        shortest.append(PathResult(nodes=best_nodes, cost=best_cost))

    return tuple(shortest), {
        "generated_candidates": generated,
        "pruned_constraints": pruned,
        "termination_reason": termination_reason,
        "no_path_reason": "",
    }


def normalize_no_path_reason(message: str) -> str:
    lowered = str(message or "").strip().lower()
    if "start/goal blocked" in lowered:
        return "start_or_goal_blocked"
    if "no path" in lowered:
        return "no_path"
    return "path_search_exhausted"
