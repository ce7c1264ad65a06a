"""Planar geometry helpers for the RRT / RRT* engine.

Points are plain ``(x, y)`` tuples, obstacles are axis-aligned rectangles with a
bottom-left origin. Segment collision is tested by sampling the segment every
``COLLISION_RESOLUTION`` units, which is fast but can tunnel through obstacles
thinner than the resolution. ``segment_intersects_obstacle_exact`` uses shapely
when an exact answer is needed.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, Tuple

import numpy as np
from shapely.geometry import LineString, Polygon

Point = Tuple[float, float]
Bounds = Tuple[Tuple[float, float], Tuple[float, float]]  # ((xmin, ymin), (xmax, ymax))

COLLISION_RESOLUTION = 5.0


@dataclass(frozen=True)
class Obstacle:
    x: float
    y: float
    w: float
    h: float

    @classmethod
    def from_dict(cls, rect: dict) -> "Obstacle":
        """Build from ``{"x": , "y": , "w": , "h": }`` as sent by the frontend."""
        return cls(float(rect["x"]), float(rect["y"]), float(rect["w"]), float(rect["h"]))

    def contains(self, p: Point) -> bool:
        # boundary counts as inside
        return self.x <= p[0] <= self.x + self.w and self.y <= p[1] <= self.y + self.h

    def to_polygon(self) -> Polygon:
        x, y, w, h = self.x, self.y, self.w, self.h
        return Polygon([(x, y), (x + w, y), (x + w, y + h), (x, y + h)])

    def as_dict(self) -> dict:
        return {"x": self.x, "y": self.y, "w": self.w, "h": self.h}


# ---------------------------------------------------------------------------
# Distance / steering
# ---------------------------------------------------------------------------
def distance(a: Point, b: Point) -> float:
    return float(np.hypot(a[0] - b[0], a[1] - b[1]))


def steer(from_p: Point, to_p: Point, step_size: float) -> Point:
    """Move from ``from_p`` towards ``to_p`` by at most ``step_size``."""
    if distance(from_p, to_p) <= step_size:
        return to_p
    theta = np.arctan2(to_p[1] - from_p[1], to_p[0] - from_p[0])
    return (
        float(from_p[0] + step_size * np.cos(theta)),
        float(from_p[1] + step_size * np.sin(theta)),
    )


def sample_point(bounds: Bounds, rng: np.random.Generator) -> Point:
    """Uniform random point inside ``bounds``."""
    (xmin, ymin), (xmax, ymax) = bounds
    return float(rng.uniform(xmin, xmax)), float(rng.uniform(ymin, ymax))


# ---------------------------------------------------------------------------
# Collision
# ---------------------------------------------------------------------------
def segment_intersects_obstacle(p1: Point, p2: Point, obstacle: Obstacle) -> bool:
    """Approximate segment / rectangle test.

    The segment's bounding box is checked against the rectangle first. If they
    overlap, points are sampled along the segment every ``COLLISION_RESOLUTION``
    units (both endpoints included) and the segment is reported as colliding if
    any of them lies inside the rectangle. Obstacles thinner than the
    resolution, or corners clipped between two samples, can be missed.
    """
    if (
        max(p1[0], p2[0]) < obstacle.x
        or min(p1[0], p2[0]) > obstacle.x + obstacle.w
        or max(p1[1], p2[1]) < obstacle.y
        or min(p1[1], p2[1]) > obstacle.y + obstacle.h
    ):
        return False

    steps = math.ceil(distance(p1, p2) / COLLISION_RESOLUTION)
    if steps == 0:
        return obstacle.contains(p1)
    for i in range(steps + 1):
        t = i / steps
        x = p1[0] + t * (p2[0] - p1[0])
        y = p1[1] + t * (p2[1] - p1[1])
        if obstacle.contains((x, y)):
            return True
    return False


def segment_is_collision_free(p1: Point, p2: Point, obstacles: Iterable[Obstacle]) -> bool:
    return not any(segment_intersects_obstacle(p1, p2, ob) for ob in obstacles)


def segment_intersects_obstacle_exact(p1: Point, p2: Point, obstacle: Obstacle) -> bool:
    # intersects (includes boundary) not just crosses
    if p1 == p2:
        return obstacle.contains(p1)
    return obstacle.to_polygon().intersects(LineString([p1, p2]))


def segment_is_collision_free_exact(p1: Point, p2: Point, obstacles: Iterable[Obstacle]) -> bool:
    return not any(segment_intersects_obstacle_exact(p1, p2, ob) for ob in obstacles)
