from __future__ import annotations
import numpy as np

from .logging import get_logger

logger = get_logger(__name__)


def mask_area(mask: np.ndarray) -> int:
    return int(np.count_nonzero(mask))


def mask_iou(a: np.ndarray, b: np.ndarray) -> float:
    """Intersection-over-union of two boolean grids; 0 when both are empty."""
    if a.shape != b.shape:
        raise ValueError(f"Mask shapes differ: {a.shape} vs {b.shape}")
    a = a.astype(bool, copy=False)
    b = b.astype(bool, copy=False)
    union = np.count_nonzero(a | b)
    if union == 0:
        return 0.0
    return np.count_nonzero(a & b) / union


def rejection_reason(mask, kept, iou_threshold: float, min_area_px: int) -> str | None:
    """
    "small" when ``mask`` is empty or below ``min_area_px``, "duplicate" when a
    previously kept mask overlaps it by ``iou_threshold`` or more, else None.
    """
    area = mask_area(mask)
    if area == 0 or area < min_area_px:
        logger.debug(f"Rejected mask with area {area}px (min {min_area_px})")
        return "small"
    for other in kept:
        iou = mask_iou(mask, other)
        if iou >= iou_threshold:
            logger.debug(f"Rejected mask overlapping a kept one (IoU {iou:.3f})")
            return "duplicate"
    return None


def accept_mask(mask, kept, iou_threshold: float, min_area_px: int) -> bool:
    """True when ``mask`` passes both the area and the overlap check."""
    return rejection_reason(mask, kept, iou_threshold, min_area_px) is None


class MaskDeduplicator:
    """
    Sequential first-accepted-wins filter over one image's proposals.

    Only masks passed to ``keep`` take part in later overlap checks.
    """

    def __init__(self, iou_threshold: float, min_area_px: int = 0):
        self.iou_threshold = iou_threshold
        self.min_area_px = min_area_px
        self.kept: list[np.ndarray] = []
        self.rejected_small = 0
        self.rejected_duplicate = 0

    def check(self, mask: np.ndarray) -> str | None:
        """Return the rejection reason ("small" / "duplicate"), or None to accept."""
        reason = rejection_reason(mask, self.kept, self.iou_threshold, self.min_area_px)
        if reason == "small":
            self.rejected_small += 1
        elif reason == "duplicate":
            self.rejected_duplicate += 1
        return reason

    def keep(self, mask: np.ndarray):
        self.kept.append(mask.astype(bool, copy=False))
