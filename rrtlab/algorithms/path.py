"""Root-to-goal path queries over a tree store.

The tree approaches the goal in ``step_size`` increments and rarely lands on it
exactly, so every node within ``GOAL_TOLERANCE * step_size`` of the goal counts
as having reached it. Paths are recomputed from scratch on every call.
"""
from __future__ import annotations

from typing import List

from .geometry import Point, distance
from .tree import TreeStore

GOAL_TOLERANCE = 1.5


def extract_path(tree: TreeStore, goal: Point, step_size: float) -> List[int]:
    """Ids from the root to the cheapest node near ``goal``; ``[]`` if none is near."""
    radius = GOAL_TOLERANCE * step_size
    candidates = [n for n in tree if distance(n.as_tuple(), goal) <= radius]
    if not candidates:
        return []
    best = min(candidates, key=lambda n: n.cost)
    return tree.backtrace(best.id)[::-1]


def path_cost(tree: TreeStore, path: List[int]) -> float:
    if not path:
        return 0.0
    return tree[path[-1]].cost


def path_points(tree: TreeStore, path: List[int]) -> List[Point]:
    return [tree[idx].as_tuple() for idx in path]
