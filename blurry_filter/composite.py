"""
Composite sharpness scoring.

Runs the four focus measures, maps each raw score onto a 0-100 scale and
combines them with fixed weights. Two normalization modes exist:

- hand-tuned: fixed linear maps (logarithmic for Tenengrad)
- calibrated: percentile mapping p5 -> 0, p95 -> 100 from a CalibrationStats
  dataset (Tenengrad mapped in log space because of its huge range)
"""

import logging
from dataclasses import dataclass, asdict
from typing import Dict, Optional

from .calibration import AlgorithmStats, CalibrationStats
from .focus_measures import FocusMeasure, PixelBuffer, RawScores, compute_raw_scores
from .utils import clip, log10_or_zero

# Laplacian and Tenengrad are the most reliable measures and get more weight
WEIGHTS = {
    FocusMeasure.LAPLACIAN: 0.30,
    FocusMeasure.GRADIENT: 0.20,
    FocusMeasure.TENENGRAD: 0.40,
    FocusMeasure.VARIANCE: 0.10,
}

DEFAULT_THRESHOLD = 30.0
DEFAULT_CALIBRATED_THRESHOLD = 25.0

# Hand-tuned scale divisors
LAPLACIAN_SCALE = 0.5
GRADIENT_SCALE = 0.3
VARIANCE_SCALE = 10.0
TENENGRAD_LOG_FLOOR = 2.0
TENENGRAD_LOG_SPAN = 6.0


@dataclass(frozen=True)
class NormalizedScores:
    """Per-kernel scores on a 0-100 scale."""
    laplacian: float
    gradient: float
    tenengrad: float
    variance: float

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)


@dataclass(frozen=True)
class CompositeScore:
    """Raw, normalized and combined scores for one image or patch."""
    raw: RawScores
    normalized: NormalizedScores
    composite: float

    def to_dict(self) -> Dict[str, object]:
        data: Dict[str, object] = {'composite': self.composite}
        data.update(self.raw.to_dict())
        data['normalized'] = self.normalized.to_dict()
        return data


def combine(normalized: NormalizedScores) -> float:
    """
    Weighted sum of the normalized scores.

    Not re-clipped: each channel is already within [0, 100] and the weights
    sum to 1.
    """
    return (
        WEIGHTS[FocusMeasure.LAPLACIAN] * normalized.laplacian +
        WEIGHTS[FocusMeasure.GRADIENT] * normalized.gradient +
        WEIGHTS[FocusMeasure.TENENGRAD] * normalized.tenengrad +
        WEIGHTS[FocusMeasure.VARIANCE] * normalized.variance
    )


def _unit_range(value: float, low: float, high: float) -> float:
    """Map [low, high] linearly onto [0, 1], clipped."""
    span = high - low
    if span <= 0:
        # Degenerate calibration (all samples equal): step at the low end
        return 1.0 if value > low else 0.0
    return clip((value - low) / span, 0.0, 1.0)


def normalize_log_range(value: float, low_log: float, high_log: float) -> float:
    """Map log10(value) from [low_log, high_log] onto 0-100, clipped."""
    return 100.0 * _unit_range(log10_or_zero(value), low_log, high_log)


def normalize_tenengrad_percentile(value: float, stats: AlgorithmStats) -> float:
    """Percentile mapping of a raw Tenengrad value in log space."""
    return normalize_log_range(value, log10_or_zero(stats.p5), log10_or_zero(stats.p95))


def normalize_hand_tuned(raw: RawScores) -> NormalizedScores:
    """Normalize raw scores with the fixed hand-tuned maps."""
    tenengrad_log = log10_or_zero(raw.tenengrad)
    return NormalizedScores(
        laplacian=clip(raw.laplacian / LAPLACIAN_SCALE, 0.0, 100.0),
        gradient=clip(raw.gradient / GRADIENT_SCALE, 0.0, 100.0),
        tenengrad=clip(
            ((tenengrad_log - TENENGRAD_LOG_FLOOR) / TENENGRAD_LOG_SPAN) * 100.0, 0.0, 100.0
        ),
        variance=clip(raw.variance / VARIANCE_SCALE, 0.0, 100.0)
    )


def normalize_percentile(raw: RawScores, stats: CalibrationStats) -> NormalizedScores:
    """Normalize raw scores against a calibration dataset."""
    def linear(measure: FocusMeasure) -> float:
        s = stats.for_measure(measure)
        return 100.0 * _unit_range(getattr(raw, measure.value), s.p5, s.p95)

    return NormalizedScores(
        laplacian=linear(FocusMeasure.LAPLACIAN),
        gradient=linear(FocusMeasure.GRADIENT),
        tenengrad=normalize_tenengrad_percentile(raw.tenengrad, stats.tenengrad),
        variance=linear(FocusMeasure.VARIANCE)
    )


class CompositeScorer:
    """Combines the four focus measures into one 0-100 sharpness score."""

    def __init__(self, calibration: Optional[CalibrationStats] = None,
                 logger: Optional[logging.Logger] = None):
        """
        Initialize composite scorer.

        Args:
            calibration: Optional calibration dataset; hand-tuned maps are used without it
            logger: Optional logger instance
        """
        self.calibration = calibration
        self.logger = logger or logging.getLogger('BlurryFilter.Composite')

    @property
    def use_calibration(self) -> bool:
        return self.calibration is not None

    @property
    def default_threshold(self) -> float:
        return DEFAULT_CALIBRATED_THRESHOLD if self.use_calibration else DEFAULT_THRESHOLD

    def normalize(self, raw: RawScores) -> NormalizedScores:
        if self.calibration is not None:
            return normalize_percentile(raw, self.calibration)
        return normalize_hand_tuned(raw)

    def score_raw(self, raw: RawScores) -> CompositeScore:
        """Normalize and combine already computed raw scores."""
        normalized = self.normalize(raw)
        return CompositeScore(raw=raw, normalized=normalized, composite=combine(normalized))

    def score(self, gray: PixelBuffer) -> CompositeScore:
        """
        Score a grayscale buffer.

        Args:
            gray: Grayscale image or patch

        Returns:
            CompositeScore

        Raises:
            KernelError: If the buffer cannot be processed
        """
        result = self.score_raw(compute_raw_scores(gray))

        self.logger.debug(
            f"Composite scores - Laplacian: {result.normalized.laplacian:.2f}, "
            f"Gradient: {result.normalized.gradient:.2f}, "
            f"Tenengrad: {result.normalized.tenengrad:.2f}, "
            f"Variance: {result.normalized.variance:.2f}, Final: {result.composite:.2f}"
        )

        return result

    def is_blurry(self, score: CompositeScore, threshold: Optional[float] = None) -> bool:
        if threshold is None:
            threshold = self.default_threshold
        return score.composite < threshold
