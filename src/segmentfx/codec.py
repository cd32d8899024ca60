from __future__ import annotations
import json
import math
from dataclasses import dataclass
from numbers import Real

import numpy as np

from .logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True, eq=False)
class PackedPolygon:
    """
    Everything a GPU effect binds to draw against one polygon.

    raster is an (height, width, 4) uint8 RGBA image whose texel i, addressed
    as (i % width, i // width), holds vertex i as R = x * 255, G = y * 255.
    aabb is (minX, minY, maxX, maxY) of the normalized points. canvas_size is
    the (width, height) pixel frame the points were normalized against; an
    evaluator must use the same one.
    """

    raster: np.ndarray
    width: int
    height: int
    vertex_count: int
    aabb: tuple[float, float, float, float]
    points: np.ndarray  # (vertex_count, 2) normalized float coordinates
    canvas_size: tuple[int, int]


def as_polygon(points) -> np.ndarray:
    """Coerce a sequence of (x, y) pairs into a float64 (N, 2) array."""
    arr = np.asarray(points, dtype=np.float64)
    if arr.size == 0:
        return arr.reshape(0, 2)
    if arr.ndim != 2 or arr.shape[1] != 2:
        raise ValueError(f"Polygon must have shape (N, 2), got {arr.shape}")
    return arr


def _flat_to_polygon(values) -> np.ndarray:
    if len(values) % 2:
        logger.debug(
            f"Dropping trailing unpaired coordinate from {len(values)}-value polygon"
        )
        values = values[:-1]
    return np.asarray(values, dtype=np.float64).reshape(-1, 2)


def _is_flat_coordinates(value) -> bool:
    return isinstance(value, list) and all(
        isinstance(v, Real) and not isinstance(v, bool) for v in value
    )


def parse_polygon(data) -> np.ndarray:
    """
    Resolve persisted polygon input into a canonical (N, 2) array.

    Accepts a flat coordinate list ``[x0, y0, x1, y1, ...]`` or a named
    coordinate map ``{"name": [x0, y0, ...], ...}``, in which case the first
    all-numeric list is used. An odd trailing coordinate is dropped rather
    than rejecting the polygon.
    """
    if _is_flat_coordinates(data):
        return _flat_to_polygon(data)
    if isinstance(data, dict):
        for value in data.values():
            if _is_flat_coordinates(value):
                return _flat_to_polygon(value)
    raise ValueError("Polygon input does not contain a numeric coordinate list")


def normalize_polygon(polygon, canvas_w: int, canvas_h: int):
    """
    Map pixel coordinates into the unit square of a canvas.

    Each coordinate is clamped to [0, 1] independently, so points outside the
    canvas collapse onto its border.

    Returns:
        (normalized (N, 2) float64 array, (minX, minY, maxX, maxY))
    """
    if canvas_w <= 0 or canvas_h <= 0:
        raise ValueError(f"Canvas size must be positive, got {canvas_w}x{canvas_h}")
    pts = as_polygon(polygon)
    if len(pts) == 0:
        raise ValueError("Cannot normalize a polygon with no vertices")

    out = np.empty_like(pts)
    out[:, 0] = np.clip(pts[:, 0] / canvas_w, 0.0, 1.0)
    out[:, 1] = np.clip(pts[:, 1] / canvas_h, 0.0, 1.0)
    mins = out.min(axis=0)
    maxs = out.max(axis=0)
    aabb = (float(mins[0]), float(mins[1]), float(maxs[0]), float(maxs[1]))
    return out, aabb


def texture_shape(count: int) -> tuple[int, int]:
    """Smallest near-square (w, h) raster holding ``count`` texels."""
    if count < 1:
        raise ValueError(f"Vertex count must be >= 1, got {count}")
    w = math.isqrt(count)
    if w * w < count:
        w += 1
    h = -(-count // w)
    return w, h


def quantize(values: np.ndarray) -> np.ndarray:
    # half-up rounding, same as the GPU side's expectations
    return np.clip(np.floor(np.asarray(values) * 255.0 + 0.5), 0, 255).astype(np.uint8)


def pack_points(normalized) -> tuple[np.ndarray, int, int]:
    pts = as_polygon(normalized)
    n = len(pts)
    w, h = texture_shape(n)
    raster = np.zeros((h, w, 4), dtype=np.uint8)
    texels = raster.reshape(-1, 4)
    texels[:n, 0] = quantize(pts[:, 0])
    texels[:n, 1] = quantize(pts[:, 1])
    texels[:n, 3] = 255
    return raster, w, h


def unpack_points(raster: np.ndarray, width: int, count: int) -> np.ndarray:
    """Read ``count`` normalized vertices back out of a point raster."""
    texels = np.asarray(raster, dtype=np.uint8).reshape(-1, 4)
    if texels.shape[0] < count or texels.shape[0] % width:
        raise ValueError(
            f"Raster of {texels.shape[0]} texels cannot hold {count} points at width {width}"
        )
    return texels[:count, :2].astype(np.float64) / 255.0


def encode_polygon(polygon, canvas_w: int, canvas_h: int) -> PackedPolygon:
    normalized, aabb = normalize_polygon(polygon, canvas_w, canvas_h)
    raster, w, h = pack_points(normalized)
    raster.setflags(write=False)
    normalized.setflags(write=False)
    return PackedPolygon(
        raster=raster,
        width=w,
        height=h,
        vertex_count=len(normalized),
        aabb=aabb,
        points=normalized,
        canvas_size=(int(canvas_w), int(canvas_h)),
    )


def decode_polygon(packed: PackedPolygon, canvas_w: int, canvas_h: int) -> np.ndarray:
    """Pixel-space polygon as the GPU evaluator sees it (8-bit quantized)."""
    pts = unpack_points(packed.raster, packed.width, packed.vertex_count)
    return pts * np.array([canvas_w, canvas_h], dtype=np.float64)


def load_contour_map(path) -> dict[str, np.ndarray]:
    """
    Load a ``{id: flat coordinate list}`` JSON file.

    A bare flat list is accepted as a single segment named ``"0"``. Entries
    that cannot be parsed are skipped with a warning.
    """
    with open(path, "r") as f:
        data = json.load(f)
    if _is_flat_coordinates(data):
        data = {"0": data}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a JSON object of polygons")

    contours = {}
    for key, value in data.items():
        try:
            contours[str(key)] = parse_polygon(value)
        except ValueError as e:
            logger.warning(f"Skipping segment '{key}' in {path}: {e}")
    return contours


def save_contour_map(path, contours) -> None:
    payload = {
        str(key): [round(float(v), 3) for v in as_polygon(poly).ravel()]
        for key, poly in contours.items()
    }
    with open(path, "w") as f:
        json.dump(payload, f)
    logger.info(f"Saved {len(payload)} contours to {path}")
