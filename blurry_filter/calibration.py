"""
Dataset-driven calibration of the focus measures.

Instead of hand-tuned scale constants, a representative corpus is scored once
with the uncalibrated engine and the 5th/50th/95th percentiles and min/max of
every raw kernel score are stored. At scoring time raw values are mapped so
that p5 -> 0 and p95 -> 100.

Full-image calibration pairs with the composite algorithm; patch-mode
calibration (one data point per patch, flattened across all images) pairs
with the patch-based algorithm.
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

import numpy as np

from .exceptions import CalibrationError
from .focus_measures import FocusMeasure, RawScores
from .utils import percentile

CALIBRATION_VERSION = '1.0.0'
DEFAULT_CALIBRATION_FILE = '.blurry-calibration.json'

STAT_FIELDS = ('p5', 'p95', 'median', 'min', 'max')

logger = logging.getLogger('BlurryFilter.Calibration')


@dataclass(frozen=True)
class AlgorithmStats:
    """Distribution summary of one kernel's raw scores."""
    p5: float
    p95: float
    median: float
    min: float
    max: float

    @classmethod
    def from_values(cls, values: Sequence[float]) -> 'AlgorithmStats':
        values = np.asarray(values, dtype=np.float64)
        return cls(
            p5=percentile(values, 5),
            p95=percentile(values, 95),
            median=percentile(values, 50),
            min=float(values.min()),
            max=float(values.max())
        )

    def to_dict(self) -> Dict[str, float]:
        return {name: getattr(self, name) for name in STAT_FIELDS}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AlgorithmStats':
        return cls(**{name: float(data[name]) for name in STAT_FIELDS})


@dataclass(frozen=True)
class CalibrationStats:
    """Immutable calibration dataset consumed by the scorers."""
    laplacian: AlgorithmStats
    gradient: AlgorithmStats
    tenengrad: AlgorithmStats
    variance: AlgorithmStats
    sample_size: int
    total_samples: int
    patch_mode: bool
    version: str = CALIBRATION_VERSION

    def for_measure(self, measure: FocusMeasure) -> AlgorithmStats:
        return getattr(self, measure.value)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize with the on-disk field names."""
        data: Dict[str, Any] = {
            measure.value: self.for_measure(measure).to_dict()
            for measure in FocusMeasure
        }
        data['sampleSize'] = self.sample_size
        data['patchMode'] = self.patch_mode
        data['totalSamples'] = self.total_samples
        data['version'] = self.version
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CalibrationStats':
        """
        Build stats from the on-disk representation.

        Raises:
            CalibrationError: If a field is missing or has the wrong type
        """
        if not isinstance(data, dict):
            raise CalibrationError("Calibration data must be a JSON object")

        try:
            if not isinstance(data['patchMode'], bool):
                raise CalibrationError(f"Calibration field 'patchMode' must be true or false, "
                                       f"got {data['patchMode']!r}")
            per_measure = {
                measure.value: AlgorithmStats.from_dict(data[measure.value])
                for measure in FocusMeasure
            }
            return cls(
                sample_size=int(data['sampleSize']),
                total_samples=int(data['totalSamples']),
                patch_mode=data['patchMode'],
                version=str(data.get('version', CALIBRATION_VERSION)),
                **per_measure
            )
        except KeyError as e:
            raise CalibrationError(f"Calibration data is missing field {e}") from e
        except (TypeError, ValueError) as e:
            raise CalibrationError(f"Calibration data is malformed: {e}") from e


CorpusEntry = Union[RawScores, Sequence[RawScores], Any]


def _entry_samples(entry: CorpusEntry, patch_mode: bool) -> Optional[List[RawScores]]:
    """
    Raw-score samples carried by one corpus entry.

    Entries may be RawScores (one full image), a list of RawScores (one image's
    patches), or an image result exposing ``calibration_samples(patch_mode)``.
    Returns None for failed/empty entries, which are filtered out.

    Raises:
        CalibrationError: If a bare entry belongs to the other calibration mode
    """
    if entry is None:
        return None
    if isinstance(entry, RawScores):
        if patch_mode:
            raise CalibrationError("Full-image scores cannot be used for a patch-mode calibration")
        return [entry]
    if hasattr(entry, 'calibration_samples'):
        return entry.calibration_samples(patch_mode)
    if isinstance(entry, (list, tuple)):
        samples = [s for s in entry if isinstance(s, RawScores)]
        if not samples:
            return None
        if not patch_mode:
            raise CalibrationError("Per-patch scores cannot be used for a full-image calibration")
        return samples
    return None


def compute_stats(results: Iterable[CorpusEntry], patch_mode: bool = False) -> CalibrationStats:
    """
    Compute per-kernel calibration statistics from a corpus.

    In patch mode every patch of every image is one data point (the arrays are
    flattened across images, not aggregated per image).

    Args:
        results: Corpus entries (see _entry_samples)
        patch_mode: Whether the entries carry per-patch scores

    Returns:
        CalibrationStats for the corpus

    Raises:
        CalibrationError: If no valid entry remains after filtering
    """
    valid = []
    for entry in results:
        samples = _entry_samples(entry, patch_mode)
        if samples is not None:
            valid.append(samples)

    flattened = [sample for samples in valid for sample in samples]

    if not valid or not flattened:
        raise CalibrationError("No valid results to compute statistics from")

    per_measure = {
        measure.value: AlgorithmStats.from_values(
            [getattr(sample, measure.value) for sample in flattened]
        )
        for measure in FocusMeasure
    }

    stats = CalibrationStats(
        sample_size=len(valid),
        total_samples=len(flattened),
        patch_mode=patch_mode,
        **per_measure
    )

    logger.debug(
        f"Calibration computed from {stats.sample_size} images "
        f"({stats.total_samples} samples, patch_mode={patch_mode})"
    )

    return stats


def save_stats(stats: CalibrationStats, file_path: Union[str, Path]) -> Path:
    """
    Write calibration statistics as pretty-printed JSON.

    Args:
        stats: Statistics to save
        file_path: Target file

    Returns:
        Path written
    """
    path = Path(file_path)
    path.parent.mkdir(parents=True, exist_ok=True)

    with open(path, 'w', encoding='utf-8') as f:
        json.dump(stats.to_dict(), f, indent=2)

    logger.info(f"Calibration statistics saved to: {path}")
    return path


def load_stats(file_path: Union[str, Path]) -> CalibrationStats:
    """
    Load calibration statistics from a JSON file.

    Args:
        file_path: Calibration file

    Returns:
        CalibrationStats

    Raises:
        CalibrationError: If the file is missing, unreadable or malformed
    """
    path = Path(file_path)
    if not path.is_file():
        raise CalibrationError(f"Calibration file not found: {path}")

    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise CalibrationError(f"Failed to load calibration stats: {e}") from e

    stats = CalibrationStats.from_dict(data)
    logger.debug(f"Loaded calibration from {path} (patch_mode={stats.patch_mode})")
    return stats


def stats_exist(file_path: Union[str, Path]) -> bool:
    """Check whether a calibration file exists."""
    return Path(file_path).is_file()


def format_stats(stats: CalibrationStats) -> str:
    """Human-readable summary of calibration statistics."""
    lines = ["", "Calibration Statistics:", "=" * 70]

    if stats.patch_mode:
        lines.append("Mode: Patch-level calibration")
        lines.append(f"Images processed: {stats.sample_size}")
        lines.append(f"Total patches analyzed: {stats.total_samples}")
    else:
        lines.append("Mode: Full-image calibration")
        lines.append(f"Sample size: {stats.sample_size} images")
    lines.append("")

    for measure in FocusMeasure:
        s = stats.for_measure(measure)
        lines.extend([
            f"{measure.value.upper()}:",
            f"  5th percentile:  {s.p5:.2f}",
            f"  Median:          {s.median:.2f}",
            f"  95th percentile: {s.p95:.2f}",
            f"  Range:           {s.min:.2f} - {s.max:.2f}",
            ""
        ])

    lines.append("=" * 70)
    return "\n".join(lines)
