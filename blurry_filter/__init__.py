"""
Blurry photo filter.

Scores the sharpness of photos from their decoded grayscale previews with
four classic focus measures, a weighted composite score and a patch-based
analysis for shots with a small sharp subject on a blurred background.
"""

__version__ = "1.0.0"
__author__ = "Blurry Filter"

from .calibration import CalibrationStats, compute_stats, load_stats, save_stats
from .composite import CompositeScorer
from .detector import (
    Algorithm, BlurDetector, ImageResult, collect_calibration_inputs, compute_calibration, score
)
from .exceptions import (
    BlurryFilterError, CalibrationError, ConfigError, FileOperationError, KernelError, PreviewError
)
from .focus_measures import FocusMeasure, RawScores, compute_raw_scores
from .image import GrayscaleImage
from .patch_analysis import PatchAnalyzer, Strategy
from .preview import load_grayscale
