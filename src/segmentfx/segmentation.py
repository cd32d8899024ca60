from __future__ import annotations
import math
from dataclasses import dataclass
from typing import Iterator, Protocol

import numpy as np
import torch
from ultralytics import SAM

from .logging import get_logger
from .profiler import get_profiler

logger = get_logger(__name__)


def grid_prompts(width: int, height: int, step: int) -> list[tuple[int, int]]:
    """Row-major lattice of prompt points, offset half a step from the border."""
    if step <= 0:
        raise ValueError(f"Grid step must be positive, got {step}")
    offset = step // 2
    return [
        (x, y) for y in range(offset, height, step) for x in range(offset, width, step)
    ]


def threshold_mask(probabilities: np.ndarray, threshold: float) -> np.ndarray:
    return (np.asarray(probabilities) >= threshold).astype(np.uint8)


@dataclass
class Proposal:
    point: tuple[int, int]
    mask: np.ndarray | None  # (H, W) uint8 0/1, None when the prompt failed
    score: float
    error: Exception | None = None

    @property
    def failed(self) -> bool:
        return self.mask is None


class MaskModel(Protocol):
    def set_image(self, image: np.ndarray) -> None:
        """Compute the image embedding reused by every later predict call."""

    def predict(self, point: tuple[int, int]) -> tuple[np.ndarray, np.ndarray]:
        """Return (masks (K, H, W) probabilities, scores (K,)) for one point prompt."""


class PointPromptModel(MaskModel, Protocol):
    def predict_points(
        self, points, labels, threshold: float = 0.5
    ) -> tuple[np.ndarray, np.ndarray]:
        """Candidates for one object from positive (1) and negative (0) points."""

    def reset(self) -> None:
        """Drop the cached image embedding."""


def _logit(p: float) -> float:
    if p >= 1.0:
        return math.inf
    return math.log(p / (1.0 - p))


class UltralyticsSAMModel:
    """Point-prompted SAM through ultralytics; the embedding is kept between prompts."""

    def __init__(
        self,
        model_path: str,
        device: str | None = None,
        imgsz: int = 1024,
        mask_threshold: float = 0.7,
    ):
        self.profiler = get_profiler()
        self.device = device or ("cuda" if torch.cuda.is_available() else "cpu")
        self.mask_threshold = mask_threshold
        self._frame = (0, 0)

        try:
            sam = SAM(model_path)
        except Exception as e:
            raise RuntimeError(f"Failed to load SAM weights from '{model_path}': {e}") from e

        overrides = {
            "model": model_path,
            "imgsz": imgsz,
            "task": "segment",
            "mode": "predict",
            "save": False,
            "device": self.device,
            # keep every candidate; the best one is picked by score downstream
            "conf": 0.0,
        }
        predictor_cls = sam._smart_load("predictor")
        self.predictor = predictor_cls(overrides=overrides, _callbacks=sam.callbacks)
        self.predictor.setup_model(model=sam.model, verbose=False)
        logger.info(f"Loaded SAM weights '{model_path}' on {self.device}")

    def set_image(self, image: np.ndarray) -> None:
        if image.ndim != 3 or image.shape[2] != 3:
            raise ValueError(f"Expected an RGB image (H, W, 3), got {image.shape}")
        self.predictor.reset_image()
        # ultralytics reads numpy images as BGR
        self.predictor.set_image(np.ascontiguousarray(image[:, :, ::-1]))
        self._frame = image.shape[:2]

    def reset(self) -> None:
        self.predictor.reset_image()
        self._frame = (0, 0)

    def _run(self, threshold: float, **prompts) -> tuple[np.ndarray, np.ndarray]:
        # postprocess binarizes the mask logits at model.mask_threshold
        self.predictor.model.mask_threshold = _logit(threshold)
        results = self.predictor(multimask_output=True, **prompts)
        if not results or results[0].masks is None:
            empty = np.zeros((0, *self._frame), dtype=np.float32)
            return empty, np.zeros(0, dtype=np.float32)
        result = results[0]
        masks = result.masks.data.cpu().numpy().astype(np.float32)
        scores = result.boxes.conf.cpu().numpy().astype(np.float32)
        return masks, scores

    def predict(self, point: tuple[int, int]) -> tuple[np.ndarray, np.ndarray]:
        return self._run(
            self.mask_threshold,
            points=[[float(point[0]), float(point[1])]],
            labels=[1],
        )

    def predict_points(self, points, labels, threshold: float = 0.5):
        # the extra nesting level makes ultralytics read all points as one object
        return self._run(
            threshold,
            points=[[[float(x), float(y)] for x, y in points]],
            labels=[[int(v) for v in labels]],
        )


def _best_mask(masks, scores, frame: tuple[int, int]) -> tuple[np.ndarray, float]:
    masks = np.asarray(masks)
    scores = np.asarray(scores, dtype=np.float64).reshape(-1)
    if masks.ndim == 2:
        masks = masks[None]
    if masks.ndim == 3 and len(masks) == 0 and len(scores) == 0:
        # nothing segmented at this prompt
        return np.zeros(frame, dtype=np.float32), 0.0
    if masks.ndim != 3 or len(masks) == 0:
        raise ValueError(f"Model returned no usable masks (shape {masks.shape})")
    if len(scores) != len(masks):
        raise ValueError(f"Got {len(masks)} masks but {len(scores)} scores")
    if masks.shape[1:] != frame:
        raise ValueError(f"Mask frame {masks.shape[1:]} does not match image {frame}")
    best = int(np.argmax(scores))
    return masks[best], float(scores[best])


def propose(
    model: MaskModel,
    image: np.ndarray,
    grid_step: int,
    threshold: float = 0.7,
) -> Iterator[Proposal]:
    """
    Lazily prompt ``model`` at every grid point of ``image``.

    The image is embedded once up front. Each point yields the highest-scoring
    candidate mask thresholded to 0/1. A prompt with no candidates at all
    yields an empty mask; a prompt whose model call raises or returns
    malformed output yields a failed Proposal instead and the iteration
    carries on.
    """
    profiler = get_profiler()
    height, width = image.shape[:2]
    points = grid_prompts(width, height, grid_step)
    logger.info(f"Prompting {len(points)} grid points over {width}x{height} (step {grid_step})")

    with profiler.record("set_image"):
        model.set_image(image)

    for point in points:
        try:
            with profiler.record("predict"):
                masks, scores = model.predict(point)
            probabilities, score = _best_mask(masks, scores, (height, width))
        except Exception as e:
            logger.warning(f"Mask proposal failed at {point}: {e}")
            yield Proposal(point=point, mask=None, score=0.0, error=e)
            continue
        yield Proposal(point=point, mask=threshold_mask(probabilities, threshold), score=score)


def decode_points(
    model: PointPromptModel,
    points,
    labels,
    frame: tuple[int, int],
    threshold: float = 0.5,
) -> tuple[np.ndarray, float]:
    """
    One object from labelled points against the image already embedded in
    ``model``: 1 marks foreground, 0 background. Returns the best 0/1 mask
    and its score.
    """
    points = [tuple(p) for p in points]
    labels = [int(v) for v in labels]
    if not points:
        raise ValueError("At least one prompt point is required")
    if len(points) != len(labels):
        raise ValueError(f"Got {len(points)} points but {len(labels)} labels")
    if any(v not in (0, 1) for v in labels):
        raise ValueError(f"Labels must be 0 or 1, got {labels}")

    with get_profiler().record("predict"):
        masks, scores = model.predict_points(points, labels, threshold=threshold)
    probabilities, score = _best_mask(masks, scores, frame)
    return threshold_mask(probabilities, threshold), score
