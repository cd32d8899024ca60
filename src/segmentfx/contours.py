from __future__ import annotations
import cv2
import numpy as np

from .logging import get_logger

logger = get_logger(__name__)


def _disk(radius: int) -> np.ndarray:
    size = 2 * int(radius) + 1
    return cv2.getStructuringElement(cv2.MORPH_ELLIPSE, (size, size))


def _drop_repeats(points: np.ndarray) -> np.ndarray:
    # consecutive coincident vertices, including last -> first
    keep = np.any(points != np.roll(points, 1, axis=0), axis=1)
    if len(points) and not keep.any():
        return points[:1]
    return points[keep]


def _largest_first(contour):
    # ties go to the region whose bounding box starts first in raster order
    x, y, _, _ = cv2.boundingRect(contour)
    return -cv2.contourArea(contour), y, x


def simplify_contour(contour: np.ndarray, tolerance: float, max_vertices: int):
    """
    Douglas-Peucker simplification that keeps at most ``max_vertices`` points.

    The tolerance is doubled until the vertex budget is met.
    """
    if max_vertices < 3:
        raise ValueError(f"max_vertices must be >= 3, got {max_vertices}")
    eps = max(1e-3, float(tolerance))
    approx = cv2.approxPolyDP(contour, eps, True)
    while len(approx) > max_vertices:
        eps *= 2.0
        approx = cv2.approxPolyDP(contour, eps, True)
        logger.debug(f"Raised simplify tolerance to {eps:.3f}px ({len(approx)} vertices)")
    return approx.reshape(-1, 2)


def extract_polygon(
    mask: np.ndarray,
    offset_px: int = 8,
    close_px: int = 0,
    tolerance: float = 1.5,
    max_vertices: int = 1024,
) -> np.ndarray | None:
    """
    Outline of the largest foreground region of a binary mask.

    The mask is optionally grown by a disk of radius ``offset_px`` and closed
    with a disk of radius ``close_px`` before tracing. Only the outer boundary
    is traced; holes are ignored. Among equally large regions the one whose
    bounding box starts first in raster order (top, then left) wins.

    Returns:
        (N, 2) float64 pixel coordinates with N >= 3, or None.
    """
    binary = (np.asarray(mask) > 0).astype(np.uint8) * 255
    if not binary.any():
        return None

    if offset_px > 0:
        binary = cv2.dilate(binary, _disk(offset_px))
    if close_px > 0:
        binary = cv2.morphologyEx(binary, cv2.MORPH_CLOSE, _disk(close_px))

    contours, _ = cv2.findContours(binary, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE)
    if not contours:
        return None

    largest = min(contours, key=_largest_first)
    points = _drop_repeats(simplify_contour(largest, tolerance, max_vertices))
    if len(points) < 3:
        return None
    return points.astype(np.float64)
