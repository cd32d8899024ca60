import threading

import numpy as np
import pytest, moderngl
from segmentfx.config import AppConfig


@pytest.fixture(scope="module")
def ctx():
    try:
        return moderngl.create_standalone_context()
    except Exception as e:
        pytest.skip(f"Could not create headless GL context: {e}")


@pytest.fixture
def small_cfg():
    # tiny canvas, one prompt every 16px, no outline offset
    return AppConfig(
        canvas_width=96,
        canvas_height=64,
        grid_step=16,
        offset_px=0,
        simplify_tolerance=1.0,
        iou_threshold=0.9,
        min_area_px=0,
    )


class FakeMaskModel:
    """
    Stands in for SAM: a prompt inside one of ``regions`` returns that region
    (high score) next to an empty decoy candidate (low score); any other
    prompt returns only empty candidates. Labelled point prompts answer like a
    grid prompt at their first foreground point.
    """

    def __init__(self, regions, fail_at=(), gate: threading.Event | None = None):
        self.regions = [np.asarray(r, dtype=np.uint8) for r in regions]
        self.fail_at = set(fail_at)
        self.gate = gate
        self.set_image_calls = 0
        self.predict_calls = 0
        self.point_calls = []
        self.reset_calls = 0
        self.shape = None

    def set_image(self, image):
        if self.gate is not None:
            self.gate.wait(timeout=5)
        self.set_image_calls += 1
        self.shape = image.shape[:2]

    def predict(self, point):
        self.predict_calls += 1
        if tuple(point) in self.fail_at:
            raise RuntimeError("inference blew up")
        x, y = point
        decoy = np.zeros(self.shape, dtype=np.float32)
        for region in self.regions:
            if region[y, x]:
                return np.stack([decoy, region * 0.95]), np.array([0.1, 0.9])
        return np.stack([decoy, decoy]), np.array([0.3, 0.2])

    def predict_points(self, points, labels, threshold=0.5):
        self.point_calls.append((list(points), list(labels), threshold))
        positives = [p for p, label in zip(points, labels) if label == 1]
        return self.predict(positives[0])

    def reset(self):
        self.reset_calls += 1
        self.shape = None


@pytest.fixture
def make_model():
    return FakeMaskModel
