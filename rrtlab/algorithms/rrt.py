"""Step-granular RRT / RRT* for a 2-D rectangular world with axis-aligned obstacles.

One *iteration* tries to grow the tree by a single node. It is split into
micro-steps so that a visualiser can stop after any of them:

    SAMPLE -> NEAREST -> STEER -> COLLISION_CHECK
           -> [NEIGHBORS -> CHOOSE_PARENT]   (RRT* only)
           -> ADD_NODE
           -> [REWIRE]                       (RRT* only)

``Planner.advance_micro`` runs exactly one of them and returns ``False`` once the
iteration is over (node added, candidate discarded, or tree full).
``Planner.advance_iteration`` drains a whole iteration.

Once the tree holds ``max_iterations`` nodes every advance is a no-op. An RRT*
iteration whose ADD_NODE fills the tree therefore never runs its REWIRE step,
and ``micro_state`` keeps reporting ``REWIRE`` from then on.

The work-in-progress of the current iteration lives in a single *scratch*
value. There is one scratch class per pending micro-step, holding only what
that step needs, so the current state tag is simply the type of the scratch.
Scratch never holds anything the tree needs, so throwing it away and starting a
fresh iteration is always safe.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, ClassVar, Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from .geometry import (
    Bounds,
    Obstacle,
    Point,
    distance,
    sample_point,
    segment_is_collision_free,
    segment_is_collision_free_exact,
    steer,
)
from .path import extract_path, path_cost, path_points
from .tree import Node, TreeStore

logger = logging.getLogger(__name__)


def as_bool(value) -> bool:
    """Read a flag that may arrive as a JSON bool, a number or a string such as 'false'."""
    if isinstance(value, str):
        key = value.strip().lower()
        if key in ("1", "true", "yes", "on"):
            return True
        if key in ("", "0", "false", "no", "off"):
            return False
        raise ValueError(f"not a boolean: {value!r}")
    return bool(value)


# SAMPLE, NEAREST, STEER, COLLISION_CHECK, NEIGHBORS, CHOOSE_PARENT, ADD_NODE, REWIRE
MAX_MICRO_STEPS = 8


class Variant(str, Enum):
    RRT = "RRT"
    RRT_STAR = "RRT*"

    @classmethod
    def parse(cls, value) -> "Variant":
        if isinstance(value, Variant):
            return value
        key = str(value).strip().lower().replace("_", "").replace("-", "")
        if key == "rrt":
            return cls.RRT
        if key in ("rrt*", "rrtstar"):
            return cls.RRT_STAR
        raise ValueError(f"unknown algorithm {value!r}, expected 'RRT' or 'RRT*'")


class MicroState(str, Enum):
    SAMPLE = "SAMPLE"
    NEAREST = "NEAREST"
    STEER = "STEER"
    COLLISION_CHECK = "COLLISION_CHECK"
    NEIGHBORS = "NEIGHBORS"
    CHOOSE_PARENT = "CHOOSE_PARENT"
    ADD_NODE = "ADD_NODE"
    REWIRE = "REWIRE"


@dataclass
class PlannerConfig:
    step_size: float = 30.0
    max_iterations: int = 2000  # hard cap on node count
    goal_bias: float = 0.05
    search_radius: float = 60.0  # RRT* only
    exact_collision: bool = False

    def __post_init__(self):
        if not self.step_size > 0:
            raise ValueError(f"step_size must be > 0, got {self.step_size}")
        try:
            as_int = int(self.max_iterations)
        except (TypeError, ValueError, OverflowError):
            as_int = None
        if isinstance(self.max_iterations, bool) or as_int is None or as_int != self.max_iterations:
            raise ValueError(f"max_iterations must be an integer, got {self.max_iterations}")
        self.max_iterations = as_int
        if self.max_iterations <= 0:
            raise ValueError(f"max_iterations must be > 0, got {self.max_iterations}")
        if not 0.0 <= self.goal_bias <= 1.0:
            raise ValueError(f"goal_bias must be in [0, 1], got {self.goal_bias}")
        if not self.search_radius > 0:
            raise ValueError(f"search_radius must be > 0, got {self.search_radius}")

    @classmethod
    def from_dict(cls, data: dict) -> "PlannerConfig":
        defaults = cls()
        return cls(
            step_size=float(data.get("step_size", defaults.step_size)),
            max_iterations=data.get("max_iterations", defaults.max_iterations),
            goal_bias=float(data.get("goal_bias", defaults.goal_bias)),
            search_radius=float(data.get("search_radius", defaults.search_radius)),
            exact_collision=as_bool(data.get("exact_collision", defaults.exact_collision)),
        )


# ---------------------------------------------------------------------------
# Scratch: one class per pending micro-step
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class SampleStep:
    state: ClassVar[MicroState] = MicroState.SAMPLE


@dataclass(frozen=True)
class NearestStep:
    sample: Point
    state: ClassVar[MicroState] = MicroState.NEAREST


@dataclass(frozen=True)
class SteerStep:
    sample: Point
    nearest: int
    state: ClassVar[MicroState] = MicroState.STEER


@dataclass(frozen=True)
class CollisionCheckStep:
    sample: Point
    nearest: int
    candidate: Point
    state: ClassVar[MicroState] = MicroState.COLLISION_CHECK


@dataclass(frozen=True)
class NeighborsStep:
    sample: Point
    nearest: int
    candidate: Point
    state: ClassVar[MicroState] = MicroState.NEIGHBORS


@dataclass(frozen=True)
class ChooseParentStep:
    sample: Point
    nearest: int
    candidate: Point
    neighbors: Tuple[int, ...]
    state: ClassVar[MicroState] = MicroState.CHOOSE_PARENT


@dataclass(frozen=True)
class AddNodeStep:
    sample: Point
    nearest: int
    candidate: Point
    neighbors: Tuple[int, ...]
    parent: int
    state: ClassVar[MicroState] = MicroState.ADD_NODE


@dataclass(frozen=True)
class RewireStep:
    sample: Point
    nearest: int
    candidate: Point
    neighbors: Tuple[int, ...]
    parent: int
    new_id: int
    state: ClassVar[MicroState] = MicroState.REWIRE


# ---------------------------------------------------------------------------
# Variant-specific transitions, picked once per planner
# ---------------------------------------------------------------------------
class _RRTTransitions:
    def after_collision_free(self, s: CollisionCheckStep):
        return AddNodeStep(s.sample, s.nearest, s.candidate, neighbors=(), parent=s.nearest)

    def after_add(self, s: AddNodeStep, node: Node):
        return None  # iteration concluded


class _RRTStarTransitions:
    def after_collision_free(self, s: CollisionCheckStep):
        return NeighborsStep(s.sample, s.nearest, s.candidate)

    def after_add(self, s: AddNodeStep, node: Node):
        return RewireStep(s.sample, s.nearest, s.candidate, s.neighbors, s.parent, node.id)


@dataclass
class Planner:
    start: Point
    goal: Point
    bounds: Bounds
    obstacles: Sequence[Obstacle] = ()
    config: PlannerConfig = field(default_factory=PlannerConfig)
    variant: Variant = Variant.RRT
    seed: Optional[int] = None

    # internal state
    tree: TreeStore = field(init=False)
    iterations: int = field(init=False, default=0)
    added: int = field(init=False, default=0)
    discarded: int = field(init=False, default=0)

    def __post_init__(self):
        (xmin, ymin), (xmax, ymax) = self.bounds
        if not (xmax > xmin and ymax > ymin):
            raise ValueError(f"bounds must have positive extent, got {self.bounds}")
        self.start = (float(self.start[0]), float(self.start[1]))
        self.goal = (float(self.goal[0]), float(self.goal[1]))
        self.obstacles = tuple(self.obstacles)
        self.variant = Variant.parse(self.variant)

        self.tree = TreeStore(self.start)
        self._rng = np.random.default_rng(self.seed)
        self._scratch = SampleStep()
        self._transitions = _RRTStarTransitions() if self.variant is Variant.RRT_STAR else _RRTTransitions()
        self._collision_free: Callable[[Point, Point, Sequence[Obstacle]], bool] = (
            segment_is_collision_free_exact if self.config.exact_collision else segment_is_collision_free
        )
        self._handlers: Dict[type, Callable[..., bool]] = {
            SampleStep: self._sample,
            NearestStep: self._nearest,
            SteerStep: self._steer,
            CollisionCheckStep: self._collision_check,
            NeighborsStep: self._neighbors,
            ChooseParentStep: self._choose_parent,
            AddNodeStep: self._add_node,
            RewireStep: self._rewire,
        }

    # ------------------------------------------------------------------
    # Stepping
    # ------------------------------------------------------------------
    @property
    def saturated(self) -> bool:
        return len(self.tree) >= self.config.max_iterations

    def advance_micro(self) -> bool:
        """Run one micro-step. Returns ``True`` while the iteration is still in progress.

        A full tree turns this into a no-op returning ``False`` without touching
        the scratch, so the reported state stays wherever the last step left it
        (``REWIRE`` when the final RRT* node filled the tree).
        """
        if self.saturated:
            return False
        scratch = self._scratch
        handler = self._handlers.get(type(scratch))
        if handler is None or not self._scratch_consistent(scratch):
            logger.debug("inconsistent scratch %r, restarting iteration", scratch)
            self._scratch = SampleStep()
            return True
        return handler(scratch)

    def advance_iteration(self) -> bool:
        """Run micro-steps until the current iteration concludes."""
        for _ in range(MAX_MICRO_STEPS):
            if not self.advance_micro():
                break
        return True

    def run_iter(self, snapshot_interval: int = 20) -> Iterable[dict]:
        """Generator yielding snapshots during planning.

        Performs at most ``max_iterations`` iterations and stops early once the
        tree is full. A snapshot is yielded every ``snapshot_interval``
        iterations, on the iteration that first reaches the goal, and once more
        at the end unless the last snapshot already shows the final state.
        """
        goal_found = self.goal_reached
        last_yielded = None
        for k in range(1, self.config.max_iterations + 1):
            self.advance_iteration()
            if self.saturated:
                break
            first_hit = not goal_found and self.goal_reached
            goal_found = goal_found or first_hit
            if k % snapshot_interval == 0 or first_hit:
                last_yielded = self.iterations
                yield self.snapshot()
        if last_yielded != self.iterations:
            yield self.snapshot()

    # ------------------------------------------------------------------
    # Micro-steps
    # ------------------------------------------------------------------
    def _sample(self, s: SampleStep) -> bool:
        if self._rng.random() < self.config.goal_bias:
            sample = self.goal
        else:
            sample = sample_point(self.bounds, self._rng)
        self._scratch = NearestStep(sample)
        return True

    def _nearest(self, s: NearestStep) -> bool:
        nearest = self.tree.nearest(s.sample)
        self._scratch = SteerStep(s.sample, nearest.id)
        return True

    def _steer(self, s: SteerStep) -> bool:
        candidate = steer(self.tree[s.nearest].as_tuple(), s.sample, self.config.step_size)
        self._scratch = CollisionCheckStep(s.sample, s.nearest, candidate)
        return True

    def _collision_check(self, s: CollisionCheckStep) -> bool:
        if not self._collision_free(self.tree[s.nearest].as_tuple(), s.candidate, self.obstacles):
            logger.debug("candidate %s blocked from node %d", s.candidate, s.nearest)
            self.discarded += 1
            return self._conclude()
        self._scratch = self._transitions.after_collision_free(s)
        return True

    def _neighbors(self, s: NeighborsStep) -> bool:
        neighbors = tuple(self.tree.within(s.candidate, self.config.search_radius))
        self._scratch = ChooseParentStep(s.sample, s.nearest, s.candidate, neighbors)
        return True

    def _choose_parent(self, s: ChooseParentStep) -> bool:
        nearest = self.tree[s.nearest]
        best = nearest.id
        best_cost = nearest.cost + distance(nearest.as_tuple(), s.candidate)
        for idx in s.neighbors:
            neighbor = self.tree[idx]
            cost = neighbor.cost + distance(neighbor.as_tuple(), s.candidate)
            # strict: on equal cost the earlier candidate is kept
            if cost < best_cost and self._collision_free(neighbor.as_tuple(), s.candidate, self.obstacles):
                best, best_cost = idx, cost
        self._scratch = AddNodeStep(s.sample, s.nearest, s.candidate, s.neighbors, best)
        return True

    def _add_node(self, s: AddNodeStep) -> bool:
        node = self.tree.add(s.candidate, s.parent)
        self.added += 1
        if self.saturated:
            logger.info("tree reached %d nodes, planner saturated", len(self.tree))
        nxt = self._transitions.after_add(s, node)
        if nxt is None:
            return self._conclude()
        self._scratch = nxt
        return True

    def _rewire(self, s: RewireStep) -> bool:
        new_node = self.tree[s.new_id]
        for idx in s.neighbors:
            if idx == new_node.parent:
                continue
            neighbor = self.tree[idx]
            new_cost = new_node.cost + distance(new_node.as_tuple(), neighbor.as_tuple())
            if new_cost < neighbor.cost and self._collision_free(
                new_node.as_tuple(), neighbor.as_tuple(), self.obstacles
            ):
                self.tree.reparent(idx, new_node.id, new_cost)
        return self._conclude()

    def _conclude(self) -> bool:
        self.iterations += 1
        self._scratch = SampleStep()
        return False

    def _scratch_consistent(self, s) -> bool:
        size = len(self.tree)
        ids = [getattr(s, name) for name in ("nearest", "parent", "new_id") if hasattr(s, name)]
        ids.extend(getattr(s, "neighbors", ()))
        return all(isinstance(i, int) and 0 <= i < size for i in ids)

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------
    @property
    def micro_state(self) -> MicroState:
        return self._scratch.state

    @property
    def nodes(self) -> List[Node]:
        return self.tree.nodes

    @property
    def sample(self) -> Optional[Point]:
        return getattr(self._scratch, "sample", None)

    @property
    def nearest(self) -> Optional[Node]:
        idx = getattr(self._scratch, "nearest", None)
        return None if idx is None else self.tree[idx]

    @property
    def candidate(self) -> Optional[Point]:
        return getattr(self._scratch, "candidate", None)

    @property
    def neighbors(self) -> Tuple[int, ...]:
        return getattr(self._scratch, "neighbors", ())

    @property
    def chosen_parent(self) -> Optional[int]:
        return getattr(self._scratch, "parent", None)

    def current_path(self) -> List[int]:
        return extract_path(self.tree, self.goal, self.config.step_size)

    @property
    def goal_reached(self) -> bool:
        return bool(self.current_path())

    def snapshot(self) -> dict:
        path = self.current_path()
        return {
            "iteration": self.iterations,
            "algorithm": self.variant.value,
            "state": self.micro_state.value,
            "nodes": [(n.x, n.y, n.parent) for n in self.tree],
            "scratch": {
                "sample": self.sample,
                "nearest": getattr(self._scratch, "nearest", None),
                "candidate": self.candidate,
                "neighbors": list(self.neighbors),
                "parent": self.chosen_parent,
            },
            "path": path,
            "path_points": path_points(self.tree, path),
            "path_cost": path_cost(self.tree, path),
            "goal_reached": bool(path),
            "saturated": self.saturated,
        }


def construct(
    bounds: Bounds,
    start: Point,
    goal: Point,
    obstacles: Sequence[Obstacle],
    config: PlannerConfig,
    variant: Variant = Variant.RRT,
    seed: Optional[int] = None,
) -> Planner:
    """Seed a fresh planner with a single root node at ``start``."""
    return Planner(start=start, goal=goal, bounds=bounds, obstacles=obstacles, config=config, variant=variant, seed=seed)
