"""
Patch-based sharpness analysis.

Wildlife and aviation shots often have a small sharp subject in front of a
large, deliberately blurred background. Scoring the whole frame penalizes
them, so the image is split into an N x N grid, every patch gets its own
composite score and the per-patch scores are collapsed with a selectable
aggregation strategy.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from numbers import Integral
from typing import Dict, List, NamedTuple, Optional, Sequence

import numpy as np

from .calibration import CalibrationStats
from .composite import (
    DEFAULT_CALIBRATED_THRESHOLD, DEFAULT_THRESHOLD, CompositeScore, CompositeScorer,
    normalize_log_range, normalize_tenengrad_percentile
)
from .exceptions import ConfigError, KernelError
from .focus_measures import compute_raw_scores
from .image import GrayscaleImage
from .utils import percentile

DEFAULT_GRID_SIZE = 8

# Fixed diagnostic cut, independent of the decision threshold
SHARP_PATCH_THRESHOLD = 30.0

CENTER_WEIGHT_SIGMA = 0.5

PEAK_FOCUS_PATCHES = 3
SUBJECT_FOCUS_MIN_PATCHES = 3

# log10(1e3) .. log10(1e9): empirical Tenengrad range used without calibration
PEAK_FOCUS_FALLBACK_LOG_RANGE = (3.0, 9.0)

PEAK_FOCUS_THRESHOLD = 75.0
PEAK_FOCUS_CALIBRATED_THRESHOLD = 70.0

HISTOGRAM_BUCKETS = (
    ('very-blurry', float('-inf'), 10.0),
    ('blurry', 10.0, 25.0),
    ('borderline', 25.0, 40.0),
    ('sharp', 40.0, 60.0),
    ('very-sharp', 60.0, float('inf')),
)

BLUR_MAP_CHARS = ' ░▒▓█'


class SubjectFocusParams(NamedTuple):
    """Fraction of top patches kept and Gaussian sigma of the position weight."""
    top_percent: float
    sigma: float


class Strategy(Enum):
    """Selectable rules for collapsing per-patch scores into one score."""
    MAX_FOCUS = 'max-focus'
    AVERAGE = 'average'
    MEDIAN = 'median'
    TOP_25_PERCENTILE = 'top-25-percentile'
    CENTER_WEIGHTED = 'center-weighted'
    SUBJECT_FOCUS_AGGRESSIVE = 'subject-focus-aggressive'
    SUBJECT_FOCUS = 'subject-focus'
    SUBJECT_FOCUS_CONSERVATIVE = 'subject-focus-conservative'
    SUBJECT_FOCUS_RELAXED = 'subject-focus-relaxed'
    SUBJECT_FOCUS_STRICT = 'subject-focus-strict'
    SUBJECT_FOCUS_VERY_STRICT = 'subject-focus-very-strict'
    PEAK_FOCUS = 'peak-focus'

    @classmethod
    def from_name(cls, name: str) -> 'Strategy':
        try:
            return cls(name)
        except ValueError:
            valid = ', '.join(s.value for s in cls)
            raise ConfigError(f"Unknown strategy '{name}'. Must be one of: {valid}") from None

    @property
    def subject_focus_params(self) -> Optional[SubjectFocusParams]:
        """(top_percent, sigma) for the subject-focus family, else None."""
        return SUBJECT_FOCUS_PARAMS.get(self)

    def default_threshold(self, calibrated: bool) -> float:
        # Peak-focus only looks at 3 patches and needs a stricter cut
        if self is Strategy.PEAK_FOCUS:
            return PEAK_FOCUS_CALIBRATED_THRESHOLD if calibrated else PEAK_FOCUS_THRESHOLD
        return DEFAULT_CALIBRATED_THRESHOLD if calibrated else DEFAULT_THRESHOLD


SUBJECT_FOCUS_PARAMS = {
    Strategy.SUBJECT_FOCUS_AGGRESSIVE: SubjectFocusParams(0.08, 1.5),
    Strategy.SUBJECT_FOCUS: SubjectFocusParams(0.12, 1.0),
    Strategy.SUBJECT_FOCUS_CONSERVATIVE: SubjectFocusParams(0.18, 0.7),
    Strategy.SUBJECT_FOCUS_RELAXED: SubjectFocusParams(0.28, 0.5),
    Strategy.SUBJECT_FOCUS_STRICT: SubjectFocusParams(0.38, 0.4),
    Strategy.SUBJECT_FOCUS_VERY_STRICT: SubjectFocusParams(0.40, 0.35),
}


@dataclass(frozen=True)
class Patch:
    """One grid cell and its composite score."""
    x: int
    y: int
    left: int
    top: int
    width: int
    height: int
    score: CompositeScore

    @property
    def composite(self) -> float:
        return self.score.composite


@dataclass
class AggregationResult:
    """All strategy outputs and diagnostics for one image."""
    grid_size: int
    strategy_scores: Dict[Strategy, float]
    min_focus: float
    top10_percentile: float
    sharp_patch_count: int
    sharp_patch_ratio: float
    histogram: Dict[str, int]
    blur_map: List[List[float]]
    patches: List[Patch] = field(default_factory=list)

    @property
    def patch_count(self) -> int:
        return len(self.patches)

    def score_for(self, strategy: Strategy) -> float:
        return self.strategy_scores[strategy]

    @property
    def max_focus(self) -> float:
        return self.strategy_scores[Strategy.MAX_FOCUS]

    @property
    def avg_focus(self) -> float:
        return self.strategy_scores[Strategy.AVERAGE]

    @property
    def center_weighted(self) -> float:
        return self.strategy_scores[Strategy.CENTER_WEIGHTED]

    @property
    def peak_focus(self) -> float:
        return self.strategy_scores[Strategy.PEAK_FOCUS]

    def to_dict(self) -> Dict[str, object]:
        data: Dict[str, object] = {s.value: score for s, score in self.strategy_scores.items()}
        data.update({
            'min-focus': self.min_focus,
            'top-10-percentile': self.top10_percentile,
            'patch_count': self.patch_count,
            'sharp_patch_count': self.sharp_patch_count,
            'sharp_patch_ratio': self.sharp_patch_ratio,
            'histogram': dict(self.histogram),
            'blur_map': [list(row) for row in self.blur_map],
            'grid_size': self.grid_size,
        })
        return data


def position_weights(grid_size: int, sigma: float) -> np.ndarray:
    """
    Gaussian position weight for every patch, row-major.

    Distance is measured from the grid center and normalized so the farthest
    patch along each axis is at distance 1.
    """
    center = (grid_size - 1) / 2.0
    ys, xs = np.indices((grid_size, grid_size), dtype=np.float64)
    # A 1x1 grid has a single patch at the center
    scale = center if center else 1.0
    distance_sq = ((xs - center) / scale) ** 2 + ((ys - center) / scale) ** 2
    return np.exp(-distance_sq / (2 * sigma * sigma)).ravel()


def center_weighted(composites: Sequence[float], grid_size: int,
                    sigma: float = CENTER_WEIGHT_SIGMA) -> float:
    """Gaussian-weighted mean over all patches."""
    return float(np.average(composites, weights=position_weights(grid_size, sigma)))


def subject_focus(composites: Sequence[float], grid_size: int,
                  params: SubjectFocusParams) -> float:
    """
    Position-weighted mean of the sharpest patches.

    Patches are ranked by composite score, the top max(3, ceil(n * top_percent))
    are kept and averaged with their Gaussian position weights (renormalized
    over the kept patches only).
    """
    values = np.asarray(composites, dtype=np.float64)
    weights = position_weights(grid_size, params.sigma)
    top_n = max(SUBJECT_FOCUS_MIN_PATCHES, int(np.ceil(values.size * params.top_percent)))
    # Stable sort keeps row-major order among equal scores
    kept = np.argsort(-values, kind='stable')[:top_n]
    return float(np.average(values[kept], weights=weights[kept]))


def peak_focus(patches: Sequence[Patch], calibration: Optional[CalibrationStats] = None) -> float:
    """
    Peak sharpness from the raw Tenengrad of the top-3 patches.

    Uses raw scores rather than composites so that images whose best patches
    all saturate the 0-100 composite scale can still be told apart.
    """
    composites = np.array([p.composite for p in patches], dtype=np.float64)
    top = np.argsort(-composites, kind='stable')[:PEAK_FOCUS_PATCHES]
    avg_tenengrad = float(np.mean([patches[i].score.raw.tenengrad for i in top]))

    if calibration is not None:
        return normalize_tenengrad_percentile(avg_tenengrad, calibration.tenengrad)

    low_log, high_log = PEAK_FOCUS_FALLBACK_LOG_RANGE
    return normalize_log_range(avg_tenengrad, low_log, high_log)


def histogram(composites: Sequence[float]) -> Dict[str, int]:
    """Count patches per composite-score bucket."""
    values = np.asarray(composites, dtype=np.float64)
    return {
        name: int(np.count_nonzero((values >= low) & (values < high)))
        for name, low, high in HISTOGRAM_BUCKETS
    }


def aggregate(patches: Sequence[Patch], grid_size: int,
              calibration: Optional[CalibrationStats] = None) -> AggregationResult:
    """
    Apply every aggregation strategy to a full grid of scored patches.

    Args:
        patches: grid_size^2 patches in row-major order
        grid_size: Grid dimension
        calibration: Calibration used by peak-focus, if any

    Returns:
        AggregationResult
    """
    if len(patches) != grid_size * grid_size:
        raise KernelError(
            f"Expected {grid_size * grid_size} patches for a {grid_size}x{grid_size} grid, "
            f"got {len(patches)}"
        )

    composites = np.array([p.composite for p in patches], dtype=np.float64)

    scores = {
        Strategy.MAX_FOCUS: float(composites.max()),
        Strategy.AVERAGE: float(composites.mean()),
        Strategy.MEDIAN: percentile(composites, 50),
        Strategy.TOP_25_PERCENTILE: percentile(composites, 75),
        Strategy.CENTER_WEIGHTED: center_weighted(composites, grid_size),
        Strategy.PEAK_FOCUS: peak_focus(patches, calibration),
    }
    for strategy, params in SUBJECT_FOCUS_PARAMS.items():
        scores[strategy] = subject_focus(composites, grid_size, params)

    sharp_count = int(np.count_nonzero(composites > SHARP_PATCH_THRESHOLD))

    return AggregationResult(
        grid_size=grid_size,
        strategy_scores={s: scores[s] for s in Strategy},
        min_focus=float(composites.min()),
        top10_percentile=percentile(composites, 90),
        sharp_patch_count=sharp_count,
        sharp_patch_ratio=sharp_count / composites.size,
        histogram=histogram(composites),
        blur_map=composites.reshape(grid_size, grid_size).tolist(),
        patches=list(patches)
    )


def format_blur_map(blur_map: Sequence[Sequence[float]]) -> str:
    """Render a blur map as block characters, one row per line."""
    levels = np.clip(np.floor_divide(np.asarray(blur_map, dtype=np.float64), 25),
                     0, len(BLUR_MAP_CHARS) - 1).astype(int)
    return '\n'.join(''.join(BLUR_MAP_CHARS[i] for i in row) for row in levels)


class PatchAnalyzer:
    """Scores an image patch by patch on an N x N grid."""

    def __init__(self, grid_size: int = DEFAULT_GRID_SIZE,
                 calibration: Optional[CalibrationStats] = None,
                 logger: Optional[logging.Logger] = None):
        """
        Initialize patch analyzer.

        Args:
            grid_size: Patches per side (grid_size^2 patches in total)
            calibration: Optional patch-mode calibration dataset
            logger: Optional logger instance

        Raises:
            ConfigError: If grid_size is not a positive integer
        """
        if isinstance(grid_size, bool) or not isinstance(grid_size, Integral) or grid_size < 1:
            raise ConfigError(f"Patch grid size must be a positive integer, got {grid_size!r}")

        self.grid_size = int(grid_size)
        self.calibration = calibration
        self.logger = logger or logging.getLogger('BlurryFilter.Patches')
        self.scorer = CompositeScorer(calibration, self.logger)

    def partition(self, image: GrayscaleImage) -> List[tuple]:
        """
        Split an image into grid cells.

        Patch size is floor(width / n) x floor(height / n); trailing remainder
        pixels on the right and bottom are dropped.

        Returns:
            List of (x, y, left, top, width, height, view) in row-major order

        Raises:
            KernelError: If the image is smaller than the grid
        """
        patch_width = image.width // self.grid_size
        patch_height = image.height // self.grid_size

        if patch_width < 1 or patch_height < 1:
            raise KernelError(
                f"Image {image.width}x{image.height} is too small for a "
                f"{self.grid_size}x{self.grid_size} patch grid"
            )

        cells = []
        for y in range(self.grid_size):
            for x in range(self.grid_size):
                left = x * patch_width
                top = y * patch_height
                view = image.region(left, top, patch_width, patch_height)
                cells.append((x, y, left, top, patch_width, patch_height, view))
        return cells

    def score_patches(self, image: GrayscaleImage) -> List[Patch]:
        """Composite-score every patch of an image."""
        return [
            Patch(x, y, left, top, width, height,
                  self.scorer.score_raw(compute_raw_scores(view)))
            for x, y, left, top, width, height, view in self.partition(image)
        ]

    def analyze(self, image: GrayscaleImage) -> AggregationResult:
        """
        Score all patches and aggregate them.

        Args:
            image: Decoded grayscale image

        Returns:
            AggregationResult with every strategy output

        Raises:
            KernelError: If the image cannot be partitioned or scored
        """
        patches = self.score_patches(image)
        result = aggregate(patches, self.grid_size, self.calibration)

        self.logger.debug(
            f"Patch analysis - {result.patch_count} patches, "
            f"max: {result.max_focus:.2f}, avg: {result.avg_focus:.2f}, "
            f"sharp patches: {result.sharp_patch_count}"
        )

        return result

    def default_threshold(self, strategy: Strategy) -> float:
        return strategy.default_threshold(self.calibration is not None)

    def is_blurry(self, result: AggregationResult, threshold: Optional[float] = None,
                  strategy: Strategy = Strategy.MAX_FOCUS) -> bool:
        if threshold is None:
            threshold = self.default_threshold(strategy)
        return result.score_for(strategy) < threshold
