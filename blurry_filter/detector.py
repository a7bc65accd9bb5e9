"""
Blur detector: per-image scoring and blurry/sharp classification.

Wraps the focus measures, the composite scorer and the patch analyzer behind
one configurable object. Image-level failures are returned as error records
so that one corrupt file never stops a batch.
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

import numpy as np

from .calibration import CalibrationStats, compute_stats
from .composite import CompositeScore, CompositeScorer
from .exceptions import ConfigError, KernelError, PreviewError
from .focus_measures import FocusMeasure, RawScores, compute_raw_scores
from .image import GrayscaleImage
from .patch_analysis import DEFAULT_GRID_SIZE, AggregationResult, PatchAnalyzer, Strategy
from .preview import load_grayscale

SINGLE_KERNEL_THRESHOLD = 10.0

ImageInput = Union[GrayscaleImage, np.ndarray]


class Algorithm(Enum):
    """Scoring algorithms selectable by the caller."""
    COMPOSITE = 'composite'
    PATCH_BASED = 'patch-based'
    LAPLACIAN = 'laplacian'
    GRADIENT = 'gradient'
    TENENGRAD = 'tenengrad'
    VARIANCE = 'variance'

    @classmethod
    def from_name(cls, name: str) -> 'Algorithm':
        try:
            return cls(name)
        except ValueError:
            valid = ', '.join(a.value for a in cls)
            raise ConfigError(f"Unknown algorithm '{name}'. Must be one of: {valid}") from None

    @property
    def focus_measure(self) -> Optional[FocusMeasure]:
        """The kernel of a single-kernel algorithm, else None."""
        try:
            return FocusMeasure(self.value)
        except ValueError:
            return None


def _round(value: float, digits: int = 2) -> float:
    return round(float(value), digits)


@dataclass
class ImageResult:
    """Outcome of scoring one image."""
    file: Optional[str]
    algorithm: str
    blur_score: Optional[float] = None
    is_blurry: Optional[bool] = None
    threshold: Optional[float] = None
    strategy: Optional[str] = None
    processing_time: float = 0.0  # milliseconds
    composite: Optional[CompositeScore] = None
    patches: Optional[AggregationResult] = None
    raw_score: Optional[float] = None
    error: Optional[str] = None

    @property
    def file_name(self) -> Optional[str]:
        return Path(self.file).name if self.file else None

    @property
    def status(self) -> str:
        if self.error is not None:
            return 'error'
        return 'blurry' if self.is_blurry else 'sharp'

    def calibration_samples(self, patch_mode: bool) -> Optional[List[RawScores]]:
        """Raw-score samples this result contributes to a calibration corpus."""
        if self.error is not None:
            return None
        if patch_mode:
            if self.patches is None:
                return None
            return [p.score.raw for p in self.patches.patches]
        if self.composite is None:
            return None
        return [self.composite.raw]

    def scores_dict(self) -> Optional[Dict[str, Any]]:
        """Algorithm-specific score detail, rounded for reporting."""
        if self.composite is not None:
            raw = self.composite.raw
            normalized = self.composite.normalized
            return {
                'composite': _round(self.composite.composite),
                'laplacian': _round(raw.laplacian),
                'gradient': _round(raw.gradient),
                'tenengrad': _round(raw.tenengrad),
                'variance': _round(raw.variance),
                'normalized': {k: _round(v) for k, v in normalized.to_dict().items()},
            }

        if self.patches is not None:
            p = self.patches
            scores: Dict[str, Any] = {
                s.value: _round(value) for s, value in p.strategy_scores.items()
            }
            scores.update({
                'min-focus': _round(p.min_focus),
                'top-10-percentile': _round(p.top10_percentile),
                'patch_count': p.patch_count,
                'sharp_patch_count': p.sharp_patch_count,
                'sharp_patch_ratio': round(p.sharp_patch_ratio * 100, 1),
                'histogram': dict(p.histogram),
                'blur_map': [[_round(v) for v in row] for row in p.blur_map],
                'patch_scores': [
                    dict(patch.score.raw.to_dict(), composite=patch.composite,
                         x=patch.x, y=patch.y)
                    for patch in p.patches
                ],
                'grid_size': p.grid_size,
            })
            return scores

        return None

    def to_dict(self) -> Dict[str, Any]:
        """JSON-compatible representation."""
        data: Dict[str, Any] = {
            'file': self.file,
            'file_name': self.file_name,
            'algorithm': self.algorithm,
            'processing_time': _round(self.processing_time, 1),
        }
        if self.error is not None:
            data['error'] = self.error
            return data

        data.update({
            'blur_score': self.blur_score,
            'is_blurry': self.is_blurry,
            'threshold': self.threshold,
        })
        if self.strategy is not None:
            data['strategy'] = self.strategy

        scores = self.scores_dict()
        if scores is not None:
            data['scores'] = scores
        return data


def is_blurry(strategy_score: float, threshold: float) -> bool:
    """Decision rule shared by every algorithm: blurry below the threshold."""
    return strategy_score < threshold


class BlurDetector:
    """Scores grayscale images and classifies them as blurry or sharp."""

    def __init__(self, algorithm: Union[str, Algorithm] = Algorithm.COMPOSITE,
                 strategy: Union[str, Strategy] = Strategy.MAX_FOCUS,
                 threshold: Optional[float] = None,
                 calibration: Optional[CalibrationStats] = None,
                 patch_size: int = DEFAULT_GRID_SIZE,
                 logger: Optional[logging.Logger] = None):
        """
        Initialize blur detector.

        Args:
            algorithm: Algorithm name or enum member
            strategy: Patch aggregation strategy (patch-based only)
            threshold: Decision threshold; algorithm default when None
            calibration: Optional calibration dataset
            patch_size: Patch grid size (patch-based only)
            logger: Optional logger instance

        Raises:
            ConfigError: On unknown names, invalid grid size or a calibration
                dataset recorded in the wrong mode for the algorithm
        """
        self.logger = logger or logging.getLogger('BlurryFilter.Detector')

        self.algorithm = algorithm if isinstance(algorithm, Algorithm) else Algorithm.from_name(algorithm)
        self.strategy = strategy if isinstance(strategy, Strategy) else Strategy.from_name(strategy)

        if calibration is not None:
            if self.algorithm.focus_measure is not None:
                self.logger.warning(
                    f"Calibration is not used by the '{self.algorithm.value}' algorithm; ignoring it"
                )
                calibration = None
            elif self.algorithm is Algorithm.COMPOSITE and calibration.patch_mode:
                raise ConfigError(
                    "Patch-mode calibration cannot be used with the composite algorithm. "
                    "Calibrate without patch mode or use the patch-based algorithm."
                )
            elif self.algorithm is Algorithm.PATCH_BASED and not calibration.patch_mode:
                raise ConfigError(
                    "Full-image calibration cannot be used with the patch-based algorithm. "
                    "Calibrate in patch mode or use the composite algorithm."
                )

        self.calibration = calibration
        self.composite_scorer: Optional[CompositeScorer] = None
        self.patch_analyzer: Optional[PatchAnalyzer] = None

        if self.algorithm is Algorithm.COMPOSITE:
            self.composite_scorer = CompositeScorer(calibration, self.logger)
        elif self.algorithm is Algorithm.PATCH_BASED:
            self.patch_analyzer = PatchAnalyzer(patch_size, calibration, self.logger)

        self.threshold = float(threshold) if threshold is not None else self._default_threshold()

        self.logger.debug(
            f"Detector initialized - Algorithm: {self.algorithm.value}, "
            f"Threshold: {self.threshold}, Calibrated: {self.calibration is not None}"
        )
        if self.algorithm is Algorithm.PATCH_BASED:
            self.logger.debug(
                f"Patch grid: {self.patch_analyzer.grid_size}x{self.patch_analyzer.grid_size}, "
                f"Strategy: {self.strategy.value}"
            )

    def _default_threshold(self) -> float:
        if self.composite_scorer is not None:
            return self.composite_scorer.default_threshold
        if self.patch_analyzer is not None:
            return self.patch_analyzer.default_threshold(self.strategy)
        return SINGLE_KERNEL_THRESHOLD

    @property
    def patch_size(self) -> Optional[int]:
        return self.patch_analyzer.grid_size if self.patch_analyzer is not None else None

    def analyze(self, image: ImageInput, file: Optional[str] = None) -> ImageResult:
        """
        Score an image.

        Args:
            image: Decoded grayscale image (or array)
            file: Optional source path recorded in the result

        Returns:
            ImageResult

        Raises:
            KernelError: If the pixel buffer cannot be processed
        """
        start_time = time.perf_counter()

        if not isinstance(image, GrayscaleImage):
            image = GrayscaleImage.from_array(image)

        result = ImageResult(file=file, algorithm=self.algorithm.value, threshold=self.threshold)

        if self.composite_scorer is not None:
            result.composite = self.composite_scorer.score(image)
            score = result.composite.composite
        elif self.patch_analyzer is not None:
            result.patches = self.patch_analyzer.analyze(image)
            result.strategy = self.strategy.value
            score = result.patches.score_for(self.strategy)
        else:
            result.raw_score = self.algorithm.focus_measure.compute(image)
            score = result.raw_score

        result.is_blurry = is_blurry(score, self.threshold)
        result.blur_score = _round(score)
        result.processing_time = (time.perf_counter() - start_time) * 1000

        return result

    def score(self, image: ImageInput, file: Optional[str] = None) -> ImageResult:
        """Like analyze, but kernel failures become an error record."""
        start_time = time.perf_counter()
        try:
            return self.analyze(image, file)
        except KernelError as e:
            self.logger.error(f"Scoring failed{' for ' + file if file else ''}: {e}")
            return ImageResult(
                file=file,
                algorithm=self.algorithm.value,
                error=str(e),
                processing_time=(time.perf_counter() - start_time) * 1000
            )

    def analyze_file(self, path: Union[str, Path]) -> ImageResult:
        """
        Load a file's grayscale preview and score it.

        Args:
            path: Path to a RAW or standard image file

        Returns:
            ImageResult, with ``error`` set if loading or scoring failed
        """
        start_time = time.perf_counter()
        file = str(path)

        try:
            image = load_grayscale(file, self.logger)
            result = self.analyze(image, file)
        except (PreviewError, KernelError) as e:
            self.logger.error(f"Error processing {file}: {e}")
            return ImageResult(
                file=file,
                algorithm=self.algorithm.value,
                error=str(e),
                processing_time=(time.perf_counter() - start_time) * 1000
            )

        # Include decode time
        result.processing_time = (time.perf_counter() - start_time) * 1000

        self.logger.debug(
            f"{result.status.upper()}: {Path(file).name} - "
            f"Score: {result.blur_score:.2f} (threshold: {self.threshold})"
        )

        return result

    def describe(self) -> str:
        """One-line description of the detector settings."""
        text = f"{self.algorithm.value}"
        if self.algorithm is Algorithm.PATCH_BASED:
            text += f" ({self.strategy.value}, {self.patch_size}x{self.patch_size} grid)"
        text += f", threshold {self.threshold:g}"
        if self.calibration is not None:
            text += ", calibrated"
        return text


def score(image: ImageInput, algorithm: Union[str, Algorithm] = Algorithm.COMPOSITE,
          options: Optional[Dict[str, Any]] = None) -> ImageResult:
    """
    Score one decoded image.

    Args:
        image: Grayscale image or array
        algorithm: Algorithm name or enum member
        options: Optional ``strategy``, ``threshold``, ``calibration``,
            ``patch_size`` and ``file`` entries

    Returns:
        ImageResult (error record on kernel failure)

    Raises:
        ConfigError: On invalid options
    """
    options = dict(options or {})
    file = options.pop('file', None)
    unknown = set(options) - {'strategy', 'threshold', 'calibration', 'patch_size'}
    if unknown:
        raise ConfigError(f"Unknown scoring options: {', '.join(sorted(unknown))}")

    detector = BlurDetector(algorithm=algorithm, **options)
    return detector.score(image, file)


def collect_calibration_inputs(image: ImageInput, patch_mode: bool = False,
                               patch_size: int = DEFAULT_GRID_SIZE
                               ) -> Union[RawScores, List[RawScores]]:
    """
    Raw kernel scores to accumulate into a calibration corpus.

    Args:
        image: Grayscale image or array
        patch_mode: Return one RawScores per patch instead of one per image
        patch_size: Patch grid size used in patch mode

    Returns:
        RawScores, or a row-major list of per-patch RawScores in patch mode

    Raises:
        KernelError: If the image cannot be processed
    """
    if not isinstance(image, GrayscaleImage):
        image = GrayscaleImage.from_array(image)

    if not patch_mode:
        return compute_raw_scores(image)

    analyzer = PatchAnalyzer(patch_size)
    return [
        compute_raw_scores(view)
        for _, _, _, _, _, _, view in analyzer.partition(image)
    ]


def compute_calibration(corpus: Iterable[Any], patch_mode: bool = False) -> CalibrationStats:
    """
    Compute calibration statistics from accumulated calibration inputs.

    Raises:
        CalibrationError: If the corpus holds no valid sample
    """
    return compute_stats(corpus, patch_mode)
