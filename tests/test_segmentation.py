from unittest.mock import MagicMock, patch

import math

import numpy as np
import pytest

from segmentfx.segmentation import (
    Proposal,
    UltralyticsSAMModel,
    decode_points,
    grid_prompts,
    propose,
    threshold_mask,
)
from segmentfx.utils import rect_mask


def test_grid_prompts_layout():
    pts = grid_prompts(100, 50, 20)
    assert pts[:3] == [(10, 10), (30, 10), (50, 10)]
    assert len(pts) == 10
    assert pts[-1] == (90, 30)
    # half-step offset covers the far borders
    assert max(x for x, _ in pts) + 10 >= 100
    assert max(y for _, y in pts) + 10 >= 40


@pytest.mark.parametrize("step", [0, -4])
def test_grid_prompts_rejects_bad_step(step):
    with pytest.raises(ValueError):
        grid_prompts(10, 10, step)


def test_threshold_mask():
    probs = np.array([[0.1, 0.7], [0.69, 1.0]])
    np.testing.assert_array_equal(threshold_mask(probs, 0.7), [[0, 1], [0, 1]])
    assert threshold_mask(probs, 0.7).dtype == np.uint8


class ScriptedModel:
    def __init__(self, outputs):
        self.outputs = outputs
        self.set_image_calls = 0

    def set_image(self, image):
        self.set_image_calls += 1

    def predict(self, point):
        out = self.outputs(point)
        if isinstance(out, Exception):
            raise out
        return out


def test_propose_picks_highest_scoring_candidate():
    image = np.zeros((8, 8, 3), dtype=np.uint8)
    candidates = np.stack(
        [np.full((8, 8), 0.9), rect_mask(8, 8, 0, 0, 4, 4) * 0.8, np.full((8, 8), 0.95)]
    )
    model = ScriptedModel(lambda p: (candidates, np.array([0.2, 0.9, 0.5])))
    proposals = list(propose(model, image, grid_step=8, threshold=0.7))

    assert len(proposals) == 1
    prop = proposals[0]
    assert prop.point == (4, 4)
    assert prop.score == pytest.approx(0.9)
    np.testing.assert_array_equal(prop.mask, rect_mask(8, 8, 0, 0, 4, 4))
    assert not prop.failed


def test_propose_embeds_image_once_and_is_lazy():
    image = np.zeros((32, 32, 3), dtype=np.uint8)
    model = ScriptedModel(lambda p: (np.zeros((1, 32, 32)), np.array([1.0])))
    gen = propose(model, image, grid_step=8)
    assert model.set_image_calls == 0
    first = next(gen)
    assert first.point == (4, 4)
    rest = list(gen)
    assert len(rest) == 15
    assert model.set_image_calls == 1


@pytest.mark.parametrize(
    "bad_output",
    [
        RuntimeError("boom"),
        (np.zeros((2, 8, 8)), np.array([0.5])),
        (np.zeros((1, 4, 4)), np.array([0.5])),
        (np.zeros((8,)), np.array([0.5])),
    ],
)
def test_failed_prompts_are_skipped_not_raised(bad_output):
    image = np.zeros((8, 16, 3), dtype=np.uint8)

    def outputs(point):
        if point == (4, 4):
            return bad_output
        return np.ones((1, 8, 16)), np.array([0.9])

    proposals = list(propose(ScriptedModel(outputs), image, grid_step=8))
    assert [p.point for p in proposals] == [(4, 4), (12, 4)]
    assert proposals[0].failed and proposals[0].error is not None
    assert not proposals[1].failed


def test_proposal_failed_flag():
    assert Proposal(point=(0, 0), mask=None, score=0.0).failed


@pytest.fixture
def mock_sam():
    with patch("segmentfx.segmentation.SAM") as sam_cls:
        sam = sam_cls.return_value
        predictor_cls = sam._smart_load.return_value
        yield sam_cls, predictor_cls, predictor_cls.return_value


def test_ultralytics_model_init(mock_sam):
    sam_cls, predictor_cls, predictor = mock_sam
    model = UltralyticsSAMModel("mobile_sam.pt", device="cpu", imgsz=512)

    sam_cls.assert_called_once_with("mobile_sam.pt")
    sam_cls.return_value._smart_load.assert_called_once_with("predictor")
    overrides = predictor_cls.call_args.kwargs["overrides"]
    assert overrides["device"] == "cpu"
    assert overrides["imgsz"] == 512
    predictor.setup_model.assert_called_once()
    assert model.device == "cpu"


def test_ultralytics_model_load_failure(mock_sam):
    sam_cls, _, _ = mock_sam
    sam_cls.side_effect = FileNotFoundError("missing.pt")
    with pytest.raises(RuntimeError, match="missing.pt"):
        UltralyticsSAMModel("missing.pt", device="cpu")


def test_ultralytics_model_set_image_converts_to_bgr(mock_sam):
    _, _, predictor = mock_sam
    model = UltralyticsSAMModel("mobile_sam.pt", device="cpu")
    image = np.zeros((4, 5, 3), dtype=np.uint8)
    image[..., 0] = 255  # red

    model.set_image(image)
    predictor.reset_image.assert_called_once()
    sent = predictor.set_image.call_args.args[0]
    assert sent.shape == (4, 5, 3)
    assert np.all(sent[..., 2] == 255) and np.all(sent[..., 0] == 0)

    with pytest.raises(ValueError):
        model.set_image(np.zeros((4, 5), dtype=np.uint8))


def test_ultralytics_model_predict(mock_sam):
    _, _, predictor = mock_sam
    result = MagicMock()
    result.masks.data.cpu().numpy.return_value = np.ones((3, 4, 5), dtype=bool)
    result.boxes.conf.cpu().numpy.return_value = np.array([0.3, 0.8, 0.1])
    predictor.return_value = [result]

    model = UltralyticsSAMModel("mobile_sam.pt", device="cpu")
    masks, scores = model.predict((2, 1))

    predictor.assert_called_once_with(
        points=[[2.0, 1.0]], labels=[1], multimask_output=True
    )
    assert masks.shape == (3, 4, 5) and masks.dtype == np.float32
    np.testing.assert_allclose(scores, [0.3, 0.8, 0.1])


def test_prompt_without_candidates_yields_empty_mask():
    image = np.zeros((8, 16, 3), dtype=np.uint8)
    model = ScriptedModel(lambda p: (np.zeros((0, 8, 16)), np.zeros(0)))
    proposals = list(propose(model, image, grid_step=8))
    assert len(proposals) == 2
    for prop in proposals:
        assert not prop.failed
        assert prop.mask.shape == (8, 16) and not prop.mask.any()


def test_ultralytics_model_keeps_low_confidence_candidates(mock_sam):
    _, predictor_cls, _ = mock_sam
    UltralyticsSAMModel("mobile_sam.pt", device="cpu")
    assert predictor_cls.call_args.kwargs["overrides"]["conf"] == 0.0


def test_ultralytics_model_applies_mask_threshold(mock_sam):
    _, _, predictor = mock_sam
    predictor.return_value = []
    model = UltralyticsSAMModel("mobile_sam.pt", device="cpu", mask_threshold=0.7)

    model.predict((1, 1))
    assert predictor.model.mask_threshold == pytest.approx(math.log(0.7 / 0.3))

    model.predict_points([(1, 1)], [1], threshold=0.5)
    assert predictor.model.mask_threshold == pytest.approx(0.0)

    model.mask_threshold = 1.0
    model.predict((1, 1))
    assert predictor.model.mask_threshold == math.inf


def test_ultralytics_model_without_candidates_gives_empty_proposals(mock_sam):
    _, _, predictor = mock_sam
    # what the predictor returns when nothing was segmented
    result = MagicMock()
    result.masks = None
    predictor.return_value = [result]
    model = UltralyticsSAMModel("mobile_sam.pt", device="cpu")

    proposals = list(propose(model, np.zeros((8, 16, 3), dtype=np.uint8), grid_step=8))
    assert len(proposals) == 2
    assert not any(p.failed for p in proposals)
    assert not any(p.mask.any() for p in proposals)


def test_ultralytics_model_predict_points_is_one_object(mock_sam):
    _, _, predictor = mock_sam
    result = MagicMock()
    result.masks.data.cpu().numpy.return_value = np.ones((3, 4, 5), dtype=bool)
    result.boxes.conf.cpu().numpy.return_value = np.array([0.3, 0.8, 0.1])
    predictor.return_value = [result]

    model = UltralyticsSAMModel("mobile_sam.pt", device="cpu")
    model.predict_points([(2, 1), (4, 3)], [1, 0])
    predictor.assert_called_once_with(
        points=[[[2.0, 1.0], [4.0, 3.0]]], labels=[[1, 0]], multimask_output=True
    )

    model.reset()
    assert predictor.reset_image.call_count == 1


class ClickModel:
    def __init__(self, masks, scores):
        self.masks, self.scores = masks, scores
        self.calls = []

    def predict_points(self, points, labels, threshold=0.5):
        self.calls.append((points, labels, threshold))
        return self.masks, self.scores


def test_decode_points_picks_best_and_thresholds_at_half():
    region = rect_mask(8, 8, 0, 0, 4, 4)
    model = ClickModel(np.stack([np.zeros((8, 8)), region * 0.55]), np.array([0.2, 0.6]))
    mask, score = decode_points(model, [(1, 1), (6, 6)], [1, 0], (8, 8))

    np.testing.assert_array_equal(mask, region)
    assert score == pytest.approx(0.6)
    assert model.calls == [([(1, 1), (6, 6)], [1, 0], 0.5)]


@pytest.mark.parametrize(
    "points, labels",
    [([], []), ([(1, 1)], [1, 0]), ([(1, 1)], [2])],
)
def test_decode_points_rejects_bad_prompts(points, labels):
    model = ClickModel(np.zeros((1, 8, 8)), np.array([1.0]))
    with pytest.raises(ValueError):
        decode_points(model, points, labels, (8, 8))
    assert model.calls == []
