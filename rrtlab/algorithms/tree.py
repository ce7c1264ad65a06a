"""Append-only tree store shared by RRT and RRT*.

Nodes reference each other by integer id (their index in the store) rather
than by object, so re-parenting is a matter of swapping ids. Nodes are never
removed.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Tuple

from .geometry import Point, distance


@dataclass
class Node:
    id: int
    x: float
    y: float
    parent: Optional[int]  # index in tree list
    cost: float = 0.0
    children: List[int] = field(default_factory=list)

    def as_tuple(self) -> Point:
        return self.x, self.y


class TreeStore:
    def __init__(self, root: Point):
        self._nodes: List[Node] = [Node(0, float(root[0]), float(root[1]), parent=None, cost=0.0)]

    def __len__(self) -> int:
        return len(self._nodes)

    def __getitem__(self, idx: int) -> Node:
        return self._nodes[idx]

    def __iter__(self) -> Iterator[Node]:
        return iter(self._nodes)

    @property
    def nodes(self) -> List[Node]:
        return self._nodes

    @property
    def root(self) -> Node:
        return self._nodes[0]

    # ------------------------------------------------------------------
    # Queries (linear scans)
    # ------------------------------------------------------------------
    def nearest(self, point: Point) -> Node:
        """Closest node to ``point``; the first one scanned wins a tie."""
        best = self._nodes[0]
        best_dist = float("inf")
        for n in self._nodes:
            d = distance(n.as_tuple(), point)
            if d < best_dist:
                best, best_dist = n, d
        return best

    def within(self, point: Point, radius: float) -> List[int]:
        """Ids of nodes within ``radius`` of ``point`` (inclusive), in scan order."""
        return [n.id for n in self._nodes if distance(n.as_tuple(), point) <= radius]

    def backtrace(self, node_id: int) -> List[int]:
        """Ids from ``node_id`` up to and including the root."""
        ids = []
        idx: Optional[int] = node_id
        while idx is not None:
            ids.append(idx)
            idx = self._nodes[idx].parent
        return ids

    def edges(self) -> Iterator[Tuple[int, int]]:
        for n in self._nodes:
            if n.parent is not None:
                yield n.parent, n.id

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------
    def add(self, point: Point, parent_id: int) -> Node:
        parent = self._nodes[parent_id]
        node = Node(
            id=len(self._nodes),
            x=float(point[0]),
            y=float(point[1]),
            parent=parent_id,
            cost=parent.cost + distance(parent.as_tuple(), point),
        )
        self._nodes.append(node)
        parent.children.append(node.id)
        return node

    def reparent(self, node_id: int, new_parent_id: int, cost: float) -> None:
        """Attach ``node_id`` under ``new_parent_id`` and refresh its subtree costs."""
        node = self._nodes[node_id]
        if node.parent is not None:
            self._nodes[node.parent].children.remove(node_id)
        node.parent = new_parent_id
        node.cost = cost
        self._nodes[new_parent_id].children.append(node_id)
        self.propagate_cost(node_id)

    def propagate_cost(self, node_id: int) -> None:
        # iterative DFS, subtree depth is unbounded
        stack = [node_id]
        while stack:
            parent = self._nodes[stack.pop()]
            for child_id in parent.children:
                child = self._nodes[child_id]
                child.cost = parent.cost + distance(parent.as_tuple(), child.as_tuple())
                stack.append(child_id)

    # ------------------------------------------------------------------
    def check_invariants(self, tol: float = 1e-6) -> List[str]:
        """Return a description of every structural violation (empty if sound)."""
        problems = []
        size = len(self._nodes)
        for idx, n in enumerate(self._nodes):
            if n.id != idx:
                problems.append(f"node at index {idx} has id {n.id}")
            for child_id in n.children:
                if self._nodes[child_id].parent != idx:
                    problems.append(f"child {child_id} of {idx} points to {self._nodes[child_id].parent}")
            if n.parent is None:
                if idx != 0:
                    problems.append(f"node {idx} has no parent")
                elif n.cost != 0.0:
                    problems.append(f"root cost is {n.cost}")
                continue
            parent = self._nodes[n.parent]
            expected = parent.cost + distance(parent.as_tuple(), n.as_tuple())
            if abs(n.cost - expected) > tol:
                problems.append(f"node {idx} cost {n.cost} != {expected}")
            if idx not in parent.children:
                problems.append(f"node {idx} missing from children of {n.parent}")
            steps = 0
            cur: Optional[int] = idx
            while cur is not None and steps <= size:
                cur = self._nodes[cur].parent
                steps += 1
            if cur is not None:
                problems.append(f"node {idx} does not reach the root")
        return problems
