"""
CPU instantiation of the polygon field evaluator.

The same rules are compiled into ``shaders.POLYGON_FIELD_GLSL``; both must
agree on every inside/outside decision:

* edges run from vertex i to vertex (i + 1) mod n;
* edges with |dx| + |dy| < EDGE_EPS are skipped for distance and crossings;
* an edge crosses the horizontal ray through p when exactly one endpoint
  satisfies ``y <= p.y`` (half-open, so a vertex on the ray counts once);
* a crossing toggles ``inside`` when p lies left of the edge's x-intercept.
"""
from __future__ import annotations
import math

import numpy as np

from .codec import as_polygon

EDGE_EPS = 1e-6


def _edges(polygon):
    pts = as_polygon(polygon).tolist()
    n = len(pts)
    for i in range(n):
        ax, ay = pts[i]
        bx, by = pts[(i + 1) % n]
        if abs(bx - ax) + abs(by - ay) < EDGE_EPS:
            continue
        yield ax, ay, bx, by


def _crosses(px, py, ax, ay, bx, by) -> bool:
    if (ay <= py) == (by <= py):
        return False
    x_int = ax + (py - ay) / (by - ay) * (bx - ax)
    return px < x_int


def _segment_distance(px, py, ax, ay, bx, by) -> float:
    dx, dy = bx - ax, by - ay
    t = ((px - ax) * dx + (py - ay) * dy) / (dx * dx + dy * dy)
    t = min(1.0, max(0.0, t))
    return math.hypot(px - (ax + t * dx), py - (ay + t * dy))


def polygon_field(point, polygon) -> tuple[float, bool]:
    """
    Distance from ``point`` to the nearest polygon edge and whether the point
    is inside (even-odd rule). Polygons with fewer than 3 vertices give
    ``(inf, False)``.
    """
    if len(polygon) < 3:
        return math.inf, False
    px, py = float(point[0]), float(point[1])
    distance = math.inf
    inside = False
    for ax, ay, bx, by in _edges(polygon):
        distance = min(distance, _segment_distance(px, py, ax, ay, bx, by))
        if _crosses(px, py, ax, ay, bx, by):
            inside = not inside
    return distance, inside


def contains_point(point, polygon) -> bool:
    if len(polygon) < 3:
        return False
    px, py = float(point[0]), float(point[1])
    inside = False
    for edge in _edges(polygon):
        if _crosses(px, py, *edge):
            inside = not inside
    return inside


def signed_distance(point, polygon) -> float:
    distance, inside = polygon_field(point, polygon)
    return -distance if inside else distance


def polygon_field_grid(polygon, width: int, height: int):
    """
    Evaluate the field at every pixel centre ``(c + 0.5, r + 0.5)``.

    Returns:
        (distance (height, width) float64, inside (height, width) bool)
    """
    ys, xs = np.mgrid[0:height, 0:width].astype(np.float64)
    px = xs + 0.5
    py = ys + 0.5
    distance = np.full((height, width), np.inf)
    inside = np.zeros((height, width), dtype=bool)
    if len(polygon) < 3:
        return distance, inside

    for ax, ay, bx, by in _edges(polygon):
        dx, dy = bx - ax, by - ay
        t = np.clip(((px - ax) * dx + (py - ay) * dy) / (dx * dx + dy * dy), 0.0, 1.0)
        np.minimum(distance, np.hypot(px - (ax + t * dx), py - (ay + t * dy)), out=distance)

        # horizontal edges never straddle the ray
        if dy != 0.0:
            straddles = (ay <= py) != (by <= py)
            x_int = ax + (py - ay) / dy * dx
            inside ^= straddles & (px < x_int)
    return distance, inside
