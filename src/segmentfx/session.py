from __future__ import annotations
import threading
from concurrent.futures import Future, ThreadPoolExecutor

import numpy as np

from .config import AppConfig
from .logging import get_logger
from .pipeline import PointSegmentation, SegmentationResult, segment_image, segment_points
from .registry import SegmentRegistry

logger = get_logger(__name__)


class SegmentationSession:
    """
    Owns the registry of the currently loaded image.

    Segmentation runs on a single worker so the model only ever sees one
    image at a time. A finished run replaces the registry only if no newer
    image was submitted meanwhile; readers holding the old registry keep a
    consistent view because registries are never mutated.
    """

    def __init__(self, model, cfg: AppConfig):
        self.model = model
        self.cfg = cfg
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="segment")
        self._lock = threading.Lock()
        self._generation = 0
        self._embedded = False
        self._registry = self._empty_registry()

    def _empty_registry(self) -> SegmentRegistry:
        return SegmentRegistry(canvas_size=(self.cfg.canvas_width, self.cfg.canvas_height))

    @property
    def registry(self) -> SegmentRegistry:
        return self._registry

    def replace_registry(self, registry: SegmentRegistry):
        with self._lock:
            self._generation += 1
            self._registry = registry

    def load_image(self, image: np.ndarray) -> Future:
        with self._lock:
            self._generation += 1
            generation = self._generation

        return self._executor.submit(self._run, image, generation)

    def _run(self, image: np.ndarray, generation: int) -> SegmentationResult:
        # swap before the future resolves so result() implies the registry is live
        result = segment_image(self.model, image, self.cfg)
        with self._lock:
            self._embedded = True
            if generation != self._generation:
                logger.info("Discarding segmentation of a superseded image")
            else:
                self._registry = result.registry
        return result

    def segment_at(self, points, labels) -> Future:
        """
        Decode one object from labelled points (1 foreground, 0 background)
        against the last embedded image. Runs after any pending load.
        """
        return self._executor.submit(self._decode, list(points), list(labels))

    def _decode(self, points, labels) -> PointSegmentation:
        if not self._embedded:
            raise RuntimeError("No image has been embedded; call load_image first")
        return segment_points(self.model, points, labels, self.cfg)

    def reset(self) -> Future:
        """Drop the cached embedding and the registry; in-flight loads go stale."""
        with self._lock:
            self._generation += 1
            self._registry = self._empty_registry()
        return self._executor.submit(self._reset)

    def _reset(self):
        self.model.reset()
        with self._lock:
            self._embedded = False

    def hit_test(self, point) -> str | None:
        return self._registry.find_containing_segment(point)

    def close(self):
        self._executor.shutdown(wait=True)
