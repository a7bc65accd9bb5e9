"""
Unit tests for patch partitioning and the aggregation strategies.
"""

import json
import math
import random

import numpy as np
import pytest

from blurry_filter.calibration import CalibrationStats
from blurry_filter.composite import CompositeScore, NormalizedScores
from blurry_filter.exceptions import ConfigError, KernelError
from blurry_filter.focus_measures import RawScores
from blurry_filter.image import GrayscaleImage
from blurry_filter.patch_analysis import (
    SUBJECT_FOCUS_PARAMS, Patch, PatchAnalyzer, Strategy, aggregate, format_blur_map,
    histogram, peak_focus, position_weights, subject_focus
)
from blurry_filter.utils import percentile


def make_patch(index: int, composite: float, tenengrad: float = 0.0, grid_size: int = 8) -> Patch:
    raw = RawScores(laplacian=0.0, gradient=0.0, tenengrad=tenengrad, variance=0.0)
    score = CompositeScore(raw=raw, normalized=NormalizedScores(0, 0, 0, 0), composite=composite)
    x, y = index % grid_size, index // grid_size
    return Patch(x=x, y=y, left=x * 8, top=y * 8, width=8, height=8, score=score)


class TestPercentile:
    """Linear-interpolation percentile."""

    def test_empty(self):
        for p in (0, 5, 50, 95, 100):
            assert percentile([], p) == 0.0

    def test_endpoints(self):
        values = [3.0, 9.0, 1.0, 7.0]
        assert percentile(values, 0) == 1.0
        assert percentile(values, 100) == 9.0

    def test_interpolation(self):
        assert percentile([1, 2, 3, 4], 50) == pytest.approx(2.5)
        assert percentile([10, 20], 25) == pytest.approx(12.5)

    def test_accepts_arrays(self):
        assert percentile(np.array([4.0, 1.0, 3.0, 2.0]), 50) == pytest.approx(2.5)
        assert percentile(np.array([]), 90) == 0.0

    def test_matches_numpy_linear(self):
        values = list(np.random.default_rng(7).uniform(0, 1000, size=37))
        for p in (5, 25, 50, 75, 90, 95):
            assert percentile(values, p) == pytest.approx(np.percentile(values, p))


class TestStrategy:
    """Strategy names and parameters."""

    def test_from_name(self):
        assert Strategy.from_name('subject-focus') is Strategy.SUBJECT_FOCUS
        assert Strategy.from_name('peak-focus') is Strategy.PEAK_FOCUS

    def test_unknown_name(self):
        with pytest.raises(ConfigError):
            Strategy.from_name('sharpest')

    def test_min_focus_is_not_selectable(self):
        with pytest.raises(ConfigError):
            Strategy.from_name('min-focus')

    def test_subject_focus_parameters(self):
        assert Strategy.SUBJECT_FOCUS_AGGRESSIVE.subject_focus_params == (0.08, 1.5)
        assert Strategy.SUBJECT_FOCUS.subject_focus_params == (0.12, 1.0)
        assert Strategy.SUBJECT_FOCUS_CONSERVATIVE.subject_focus_params == (0.18, 0.7)
        assert Strategy.SUBJECT_FOCUS_RELAXED.subject_focus_params == (0.28, 0.5)
        assert Strategy.SUBJECT_FOCUS_STRICT.subject_focus_params == (0.38, 0.4)
        assert Strategy.SUBJECT_FOCUS_VERY_STRICT.subject_focus_params == (0.40, 0.35)
        assert Strategy.MAX_FOCUS.subject_focus_params is None

    def test_default_thresholds(self):
        assert Strategy.MAX_FOCUS.default_threshold(calibrated=False) == 30.0
        assert Strategy.MAX_FOCUS.default_threshold(calibrated=True) == 25.0
        assert Strategy.PEAK_FOCUS.default_threshold(calibrated=False) == 75.0
        assert Strategy.PEAK_FOCUS.default_threshold(calibrated=True) == 70.0


class TestPositionWeights:
    """Gaussian position weights."""

    def test_single_patch_grid(self):
        assert position_weights(1, 0.5).tolist() == [1.0]

    def test_corner_distance_is_normalized(self):
        weights = position_weights(8, 1.0)
        # Corner patch: dx = dy = 1
        assert weights[0] == pytest.approx(math.exp(-2 / 2))

    def test_symmetric_and_peaked_at_center(self):
        weights = position_weights(8, 0.5)
        assert weights[0] == pytest.approx(weights[63])
        assert weights[7] == pytest.approx(weights[56])
        assert max(weights) == pytest.approx(weights[3 * 8 + 3])


class TestPartition:
    """Grid partitioning."""

    def test_default_grid_has_64_patches(self, sharp_noise_image):
        analyzer = PatchAnalyzer()
        cells = analyzer.partition(GrayscaleImage.from_array(sharp_noise_image))
        assert len(cells) == 64
        assert [(c[0], c[1]) for c in cells[:3]] == [(0, 0), (1, 0), (2, 0)]

    def test_patches_are_views(self, sharp_noise_image):
        image = GrayscaleImage.from_array(sharp_noise_image)
        for _, _, left, top, width, height, view in PatchAnalyzer().partition(image):
            assert np.shares_memory(view.pixels, image.pixels)
            assert view.shape == (height, width)

    def test_remainder_pixels_dropped(self):
        image = GrayscaleImage.from_array(np.zeros((67, 70), dtype=np.uint8))
        cells = PatchAnalyzer(8).partition(image)
        last = cells[-1]
        assert last[2:6] == (56, 56, 8, 8)

    def test_image_smaller_than_grid(self):
        image = GrayscaleImage.from_array(np.zeros((4, 40), dtype=np.uint8))
        with pytest.raises(KernelError):
            PatchAnalyzer(8).partition(image)

    def test_numpy_integer_grid_size(self, sharp_noise_image):
        analyzer = PatchAnalyzer(np.int64(4))
        assert analyzer.grid_size == 4
        assert len(analyzer.partition(GrayscaleImage.from_array(sharp_noise_image))) == 16

    @pytest.mark.parametrize("grid_size", [0, -2, 2.5, "8", True])
    def test_invalid_grid_size(self, grid_size):
        with pytest.raises(ConfigError):
            PatchAnalyzer(grid_size)


class TestAggregation:
    """Strategy outputs on synthetic patch scores."""

    def test_center_subject(self, center_subject_image):
        result = PatchAnalyzer().analyze(GrayscaleImage.from_array(center_subject_image))
        composites = [p.composite for p in result.patches]

        assert result.patch_count == 64
        sharp = [i for i, c in enumerate(composites) if c > 50]
        assert sharp == [27, 28, 35, 36]

        assert result.max_focus == pytest.approx(max(composites))
        assert result.max_focus == pytest.approx(100.0)
        assert result.avg_focus == pytest.approx(sum(composites) / 64)
        assert result.avg_focus == pytest.approx(6.25)
        assert result.score_for(Strategy.MEDIAN) == pytest.approx(0.0)
        assert result.score_for(Strategy.TOP_25_PERCENTILE) == pytest.approx(0.0)
        assert result.min_focus == pytest.approx(0.0)
        assert result.center_weighted > result.avg_focus

        assert result.sharp_patch_count == 4
        assert result.sharp_patch_ratio == pytest.approx(4 / 64)
        assert result.histogram['very-sharp'] == 4
        assert result.histogram['very-blurry'] == 60

        assert len(result.blur_map) == 8
        assert result.blur_map[3][3] == pytest.approx(100.0)
        assert result.blur_map[0][0] == pytest.approx(0.0)

    def test_results_serialize_to_json(self, center_subject_image):
        result = PatchAnalyzer().analyze(GrayscaleImage.from_array(center_subject_image))
        data = json.loads(json.dumps(result.to_dict()))
        assert data['max-focus'] == pytest.approx(100.0)
        assert data['sharp_patch_count'] == 4
        assert data['blur_map'][3][4] == pytest.approx(100.0)

    def test_subject_focus_beats_average_for_small_subject(self, center_subject_image):
        result = PatchAnalyzer().analyze(GrayscaleImage.from_array(center_subject_image))
        for strategy in SUBJECT_FOCUS_PARAMS:
            assert result.score_for(strategy) > result.avg_focus

    def test_every_strategy_reported(self, sharp_noise_image):
        result = PatchAnalyzer().analyze(GrayscaleImage.from_array(sharp_noise_image))
        assert set(result.strategy_scores) == set(Strategy)

    def test_flat_image_all_strategies_zero(self, flat_image):
        result = PatchAnalyzer().analyze(GrayscaleImage.from_array(flat_image))
        for strategy in Strategy:
            assert result.score_for(strategy) == pytest.approx(0.0)

    def test_wrong_patch_count(self):
        with pytest.raises(KernelError):
            aggregate([make_patch(i, 0.0) for i in range(10)], 8)

    def test_single_patch_grid(self, checkerboard_image):
        result = PatchAnalyzer(1).analyze(GrayscaleImage.from_array(checkerboard_image))
        assert result.patch_count == 1
        assert result.center_weighted == pytest.approx(result.max_focus)

    def test_histogram_buckets(self):
        counts = histogram([0, 9.9, 10, 24.9, 25, 39.9, 40, 59.9, 60, 100])
        assert counts == {'very-blurry': 2, 'blurry': 2, 'borderline': 2,
                          'sharp': 2, 'very-sharp': 2}


class TestSubjectFocus:
    """Parametrized subject-focus aggregation."""

    def test_aggressive_keeps_six_patches(self):
        composites = [float(i) for i in range(64)]
        params = Strategy.SUBJECT_FOCUS_AGGRESSIVE.subject_focus_params
        weights = position_weights(8, 1.5)
        kept = [63, 62, 61, 60, 59, 58]
        expected = sum(composites[i] * weights[i] for i in kept) / sum(weights[i] for i in kept)

        assert subject_focus(composites, 8, params) == pytest.approx(expected)

        # Patches below the top six never matter
        lowered = list(composites)
        lowered[57] = 0.0
        lowered[0] = -50.0
        assert subject_focus(lowered, 8, params) == pytest.approx(expected)

    def test_minimum_of_three_patches(self):
        composites = [float(i) for i in range(16)]
        # ceil(16 * 0.08) = 2, raised to 3
        params = Strategy.SUBJECT_FOCUS_AGGRESSIVE.subject_focus_params
        weights = position_weights(4, 1.5)
        kept = [15, 14, 13]
        expected = sum(composites[i] * weights[i] for i in kept) / sum(weights[i] for i in kept)
        assert subject_focus(composites, 4, params) == pytest.approx(expected)

    def test_uniform_scores(self):
        for params in SUBJECT_FOCUS_PARAMS.values():
            assert subject_focus([42.0] * 64, 8, params) == pytest.approx(42.0)


class TestPeakFocus:
    """Peak focus from the raw Tenengrad of the top-3 patches."""

    def make_patches(self, rest_composites):
        patches = [make_patch(i, 90.0 - i, tenengrad=1e6) for i in range(3)]
        patches += [
            make_patch(i + 3, composite, tenengrad=float(i + 1) * 1e3)
            for i, composite in enumerate(rest_composites)
        ]
        return patches

    def test_fallback_log_range(self):
        patches = self.make_patches([10.0] * 61)
        # log10(1e6) = 6 on the [3, 9] range
        assert peak_focus(patches) == pytest.approx(50.0)

    def test_rank_order_of_remaining_patches_is_irrelevant(self):
        rest = [float(i % 50) for i in range(61)]
        baseline = peak_focus(self.make_patches(rest))

        shuffled = list(rest)
        random.Random(3).shuffle(shuffled)
        assert peak_focus(self.make_patches(shuffled)) == pytest.approx(baseline)

    def test_uses_calibration(self, calibration_json):
        calibration_json['patchMode'] = True
        stats = CalibrationStats.from_dict(calibration_json)
        patches = self.make_patches([10.0] * 61)
        # log10(1e6) on [log10(1e3), log10(1e7)] = 3/4
        assert peak_focus(patches, stats) == pytest.approx(75.0)


class TestBlurMap:
    """ASCII blur map rendering."""

    def test_ramp(self):
        rendered = format_blur_map([[0, 24.9, 25, 50], [75, 99, 100, 150]])
        assert rendered.split('\n') == ['  ░▒', '▓▓██']

    def test_negative_values(self):
        assert format_blur_map([[-5.0]]) == ' '
