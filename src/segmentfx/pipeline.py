from __future__ import annotations
import time
from dataclasses import dataclass

import cv2
import numpy as np

from .config import AppConfig
from .contours import extract_polygon
from .dedup import MaskDeduplicator
from .identity import mask_id
from .logging import get_logger
from .profiler import get_profiler
from .registry import Segment, SegmentRegistry
from .segmentation import MaskModel, PointPromptModel, decode_points, propose

logger = get_logger(__name__)


@dataclass
class SegmentationStats:
    prompts: int = 0
    failed: int = 0
    rejected_small: int = 0
    rejected_duplicate: int = 0
    degenerate: int = 0
    kept: int = 0
    elapsed: float = 0.0

    def summary(self) -> str:
        return (
            f"kept {self.kept}/{self.prompts} prompts in {self.elapsed:.2f}s "
            f"(failed {self.failed}, small {self.rejected_small}, "
            f"duplicate {self.rejected_duplicate}, degenerate {self.degenerate})"
        )


@dataclass
class SegmentationResult:
    registry: SegmentRegistry
    stats: SegmentationStats


@dataclass
class PointSegmentation:
    mask: np.ndarray
    score: float
    segment: Segment | None  # None when the mask has no usable outline


def fit_to_canvas(image: np.ndarray, cfg: AppConfig) -> np.ndarray:
    size = (cfg.canvas_width, cfg.canvas_height)
    if (image.shape[1], image.shape[0]) == size:
        return image
    logger.info(f"Resizing image from {image.shape[1]}x{image.shape[0]} to {size[0]}x{size[1]}")
    return cv2.resize(image, size, interpolation=cv2.INTER_AREA)


def segment_image(model: MaskModel, image: np.ndarray, cfg: AppConfig) -> SegmentationResult:
    """
    Turn one image into a registry of content-addressed outline segments.

    Proposals are filtered in grid order: area and IoU checks against the
    masks kept so far, then contour extraction, then the content id. Only
    masks that produce a polygon are kept for later overlap checks.
    """
    cfg.validate()
    profiler = get_profiler()
    start = time.perf_counter()
    image = fit_to_canvas(image, cfg)

    stats = SegmentationStats()
    dedup = MaskDeduplicator(cfg.iou_threshold, cfg.min_area_px)
    polygons: dict[str, np.ndarray] = {}

    for proposal in propose(model, image, cfg.grid_step, cfg.mask_threshold):
        stats.prompts += 1
        if proposal.failed:
            stats.failed += 1
            continue

        with profiler.record("dedup"):
            reason = dedup.check(proposal.mask)
        if reason is not None:
            continue

        with profiler.record("contour"):
            polygon = _outline(proposal.mask, cfg)
        if polygon is None:
            stats.degenerate += 1
            logger.debug(f"No usable outline for prompt {proposal.point}")
            continue

        segment_id = mask_id(proposal.mask)
        if segment_id in polygons:
            dedup.rejected_duplicate += 1
            continue
        dedup.keep(proposal.mask)
        polygons[segment_id] = polygon

    with profiler.record("encode"):
        registry = SegmentRegistry.from_polygons(
            polygons, cfg.canvas_width, cfg.canvas_height
        )

    stats.rejected_small = dedup.rejected_small
    stats.rejected_duplicate = dedup.rejected_duplicate
    stats.kept = len(registry)
    stats.elapsed = time.perf_counter() - start
    logger.info(f"Segmentation {stats.summary()}")
    return SegmentationResult(registry=registry, stats=stats)


def _outline(mask: np.ndarray, cfg: AppConfig):
    return extract_polygon(
        mask,
        offset_px=cfg.offset_px,
        close_px=cfg.close_px,
        tolerance=cfg.simplify_tolerance,
        max_vertices=cfg.max_vertices,
    )


def segment_points(
    model: PointPromptModel,
    points,
    labels,
    cfg: AppConfig,
    threshold: float = 0.5,
) -> PointSegmentation:
    """
    Interactive single-object segmentation against the embedded image.

    The mask is outlined and identified the same way as grid proposals, so a
    click that reproduces a grid mask yields the same segment id.
    """
    mask, score = decode_points(
        model, points, labels, (cfg.canvas_height, cfg.canvas_width), threshold
    )
    polygon = _outline(mask, cfg) if mask.any() else None
    segment = None
    if polygon is not None:
        segment = Segment.create(mask_id(mask), polygon, cfg.canvas_width, cfg.canvas_height)
    logger.debug(
        f"Decoded {len(labels)} points: area {int(mask.sum())}px, "
        f"segment {segment.id if segment else None}"
    )
    return PointSegmentation(mask=mask, score=score, segment=segment)
