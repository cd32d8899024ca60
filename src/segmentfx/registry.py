from __future__ import annotations
from collections.abc import Mapping
from dataclasses import dataclass

import numpy as np

from .codec import PackedPolygon, as_polygon, encode_polygon, parse_polygon
from .field import contains_point
from .logging import get_logger

logger = get_logger(__name__)


def polygon_area(polygon) -> float:
    """Absolute shoelace area in pixels squared."""
    pts = as_polygon(polygon)
    if len(pts) < 3:
        return 0.0
    x, y = pts[:, 0], pts[:, 1]
    return 0.5 * abs(float(np.dot(x, np.roll(y, -1)) - np.dot(np.roll(x, -1), y)))


@dataclass(frozen=True, eq=False)
class Segment:
    id: str
    polygon_px: np.ndarray
    packed: PackedPolygon
    area_px: float

    @classmethod
    def create(cls, segment_id: str, polygon, canvas_w: int, canvas_h: int) -> "Segment":
        pts = as_polygon(polygon).copy()
        pts.setflags(write=False)
        return cls(
            id=segment_id,
            polygon_px=pts,
            packed=encode_polygon(pts, canvas_w, canvas_h),
            area_px=polygon_area(pts),
        )

    @property
    def polygon_normalized(self) -> np.ndarray:
        return self.packed.points

    @property
    def aabb(self) -> tuple[float, float, float, float]:
        return self.packed.aabb

    @property
    def texel_width(self) -> int:
        return self.packed.width

    @property
    def texel_height(self) -> int:
        return self.packed.height

    @property
    def vertex_count(self) -> int:
        return self.packed.vertex_count

    @property
    def raster(self) -> np.ndarray:
        return self.packed.raster

    @property
    def canvas_size(self) -> tuple[int, int]:
        return self.packed.canvas_size


class SegmentRegistry(Mapping):
    """
    Read-only ``id -> Segment`` map for one loaded image.

    A new image gets a new registry; existing instances are never mutated.
    Every segment must be normalized against the registry's canvas, which
    is taken from the segments when not given.
    """

    def __init__(self, segments=(), canvas_size: tuple[int, int] | None = None):
        segments = list(segments)
        sizes = {s.canvas_size for s in segments}
        if canvas_size is not None:
            sizes.add((int(canvas_size[0]), int(canvas_size[1])))
        if len(sizes) > 1:
            raise ValueError(f"Segments and registry disagree on the canvas size: {sorted(sizes)}")
        if not sizes:
            raise ValueError("An empty registry needs an explicit canvas_size")
        self.canvas_size = sizes.pop()
        self._segments = {s.id: s for s in segments}
        self._by_area = sorted(self._segments.values(), key=lambda s: s.area_px)

    @classmethod
    def from_polygons(cls, polygons, canvas_w: int, canvas_h: int) -> "SegmentRegistry":
        segments = []
        for segment_id, polygon in polygons.items():
            if len(polygon) < 3:
                logger.debug(f"Skipping segment {segment_id}: fewer than 3 vertices")
                continue
            segments.append(Segment.create(segment_id, polygon, canvas_w, canvas_h))
        return cls(segments, canvas_size=(canvas_w, canvas_h))

    @classmethod
    def from_contour_map(cls, data, canvas_w: int, canvas_h: int) -> "SegmentRegistry":
        """Build from persisted ``{id: coordinates}`` data, skipping unparsable entries."""
        polygons = {}
        for segment_id, value in data.items():
            if isinstance(value, np.ndarray):
                polygons[str(segment_id)] = value
                continue
            try:
                polygons[str(segment_id)] = parse_polygon(value)
            except ValueError as e:
                logger.warning(f"Skipping segment {segment_id}: {e}")
        return cls.from_polygons(polygons, canvas_w, canvas_h)

    def __getitem__(self, segment_id: str) -> Segment:
        return self._segments[segment_id]

    def __iter__(self):
        return iter(self._segments)

    def __len__(self) -> int:
        return len(self._segments)

    def ordered_by_area(self) -> list[Segment]:
        return list(self._by_area)

    def find_containing_segment(self, point) -> str | None:
        """
        Id of the smallest segment containing a pixel-space point.

        Candidates are visited by ascending area so nested outlines resolve to
        the innermost one; the normalized AABB rejects cheaply before the
        exact even-odd test.
        """
        canvas_w, canvas_h = self.canvas_size
        x, y = float(point[0]), float(point[1])
        u, v = x / canvas_w, y / canvas_h
        for segment in self._by_area:
            min_x, min_y, max_x, max_y = segment.aabb
            if not (min_x <= u <= max_x and min_y <= v <= max_y):
                continue
            if contains_point((x, y), segment.polygon_px):
                return segment.id
        return None

    def to_contour_map(self) -> dict[str, np.ndarray]:
        return {segment_id: s.polygon_px for segment_id, s in self._segments.items()}


def find_containing_segment(point, registry: SegmentRegistry) -> str | None:
    return registry.find_containing_segment(point)
