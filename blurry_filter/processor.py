"""
Main processing orchestrator for blur detection.

Coordinates file discovery, scoring, file organization and reports.
"""

import csv
import json
import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import numpy as np
from tqdm import tqdm

from .calibration import CalibrationStats
from .detector import Algorithm, BlurDetector, ImageResult
from .exceptions import BlurryFilterError
from .file_manager import FileManager, OperationSummary
from .patch_analysis import Strategy, format_blur_map
from .utils import ProgressTracker, format_time


@dataclass
class ProcessingReport:
    """Summary report from batch processing."""
    total_images: int
    sharp_count: int
    blurry_count: int
    error_count: int
    total_time: float  # seconds
    results: List[ImageResult]
    operations: Optional[OperationSummary] = None
    settings: str = ''
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())

    @property
    def successful(self) -> List[ImageResult]:
        return [r for r in self.results if r.error is None]

    @property
    def avg_processing_time(self) -> float:
        """Mean per-image processing time in milliseconds."""
        if not self.results:
            return 0.0
        return sum(r.processing_time for r in self.results) / len(self.results)

    @property
    def avg_blur_score(self) -> float:
        scores = [r.blur_score for r in self.successful]
        return sum(scores) / len(scores) if scores else 0.0

    @property
    def blurry_percentage(self) -> float:
        if self.total_images == 0:
            return 0.0
        return self.blurry_count / self.total_images * 100

    def _percent(self, count: int) -> str:
        """Calculate percentage with formatting."""
        if self.total_images == 0:
            return "0.0"
        return f"{(count / self.total_images) * 100:.1f}"

    def format_summary(self) -> str:
        """Format summary as human-readable string."""
        lines = [
            "",
            "=" * 70,
            "PROCESSING SUMMARY",
            "=" * 70,
        ]
        if self.settings:
            lines.append(f"Detector: {self.settings}")
        lines.extend([
            f"Total Images Processed: {self.total_images}",
            "",
            f"Sharp:          {self.sharp_count:5d} ({self._percent(self.sharp_count)}%)",
            f"Blurry:         {self.blurry_count:5d} ({self._percent(self.blurry_count)}%)",
            f"Errors:         {self.error_count:5d} ({self._percent(self.error_count)}%)",
            "",
            f"Total Time: {format_time(self.total_time)}",
            f"Average: {self.avg_processing_time:.1f}ms per image",
            "=" * 70,
            ""
        ])
        return "\n".join(lines)

    def format_quiet(self) -> str:
        """One-line summary."""
        return (
            f"{self.blurry_count}/{self.total_images} blurry, "
            f"{self.error_count} errors ({format_time(self.total_time)})"
        )

    def format_details(self) -> str:
        """Per-file score table."""
        lines = []
        for result in self.results:
            name = result.file_name or '<image>'
            if result.error is not None:
                lines.append(f"  ERROR   {name}: {result.error}")
                continue

            status = 'BLURRY' if result.is_blurry else 'SHARP '
            if result.composite is not None:
                raw = result.composite.raw
                detail = (
                    f"composite={result.blur_score:6.2f}  "
                    f"lap={raw.laplacian:.1f} grad={raw.gradient:.1f} "
                    f"ten={raw.tenengrad:.1f} var={raw.variance:.1f}"
                )
            elif result.patches is not None:
                p = result.patches
                detail = (
                    f"{result.strategy}={result.blur_score:6.2f}  "
                    f"max={p.max_focus:.1f} avg={p.avg_focus:.1f} "
                    f"center={p.center_weighted:.1f} "
                    f"sharp={p.sharp_patch_ratio * 100:.1f}%"
                )
            else:
                detail = f"{result.algorithm}={result.blur_score:.2f}"

            lines.append(f"  {status}  {name}  {detail}")

        return "\n".join(lines)

    def format_distribution(self) -> str:
        """Min/max/mean/median of the blur scores of successful images."""
        scores = np.array([r.blur_score for r in self.successful], dtype=np.float64)
        if scores.size == 0:
            return "Score distribution: no scored images"

        return "\n".join([
            "Score distribution:",
            f"  Min:    {scores.min():.2f}",
            f"  Max:    {scores.max():.2f}",
            f"  Mean:   {scores.mean():.2f}",
            f"  Median: {float(np.median(scores)):.2f}",
        ])

    def format_blur_maps(self) -> str:
        """ASCII blur map of every patch-scored image."""
        blocks = []
        for result in self.successful:
            if result.patches is None:
                continue
            blocks.append(f"{result.file_name}:")
            blocks.append(format_blur_map(result.patches.blur_map))
            blocks.append("")
        return "\n".join(blocks)

    def to_dict(self) -> Dict[str, Any]:
        """JSON report structure."""
        data: Dict[str, Any] = {
            'summary': {
                'total': self.total_images,
                'blurry': self.blurry_count,
                'sharp': self.sharp_count,
                'errors': self.error_count,
                'blurry_percentage': round(self.blurry_percentage),
                'avg_processing_time': round(self.avg_processing_time, 2),
                'avg_blur_score': round(self.avg_blur_score, 2),
            },
            'results': [r.to_dict() for r in self.results],
            'timestamp': self.timestamp,
        }
        if self.operations is not None and self.operations.action != 'none':
            data['file_operations'] = self.operations.to_dict()
        return data


def build_report(results: List[ImageResult], total_time: float,
                 settings: str = '') -> ProcessingReport:
    """
    Generate processing report from results.

    Args:
        results: List of ImageResult objects
        total_time: Total processing time in seconds
        settings: Detector description

    Returns:
        ProcessingReport object
    """
    return ProcessingReport(
        total_images=len(results),
        sharp_count=sum(1 for r in results if r.status == 'sharp'),
        blurry_count=sum(1 for r in results if r.status == 'blurry'),
        error_count=sum(1 for r in results if r.status == 'error'),
        total_time=total_time,
        results=list(results),
        settings=settings
    )


class BatchProcessor:
    """Main processor coordinating all components."""

    def __init__(self, config: dict, calibration: Optional[CalibrationStats] = None,
                 logger: Optional[logging.Logger] = None):
        """
        Initialize batch processor.

        Args:
            config: Configuration dictionary
            calibration: Optional calibration dataset for the detector
            logger: Optional logger instance

        Raises:
            ConfigError: If the detection settings are invalid
        """
        self.config = config
        self.logger = logger or logging.getLogger('BlurryFilter.Processor')

        detection = config['detection']
        self.detector = BlurDetector(
            algorithm=Algorithm.from_name(detection['algorithm']),
            strategy=Strategy.from_name(detection['strategy']),
            threshold=detection['threshold'],
            calibration=calibration,
            patch_size=detection['patch_size'],
            logger=logging.getLogger('BlurryFilter.Detector')
        )
        self.file_manager = FileManager(config, logging.getLogger('BlurryFilter.FileManager'))

        self.num_workers = config['processing']['num_workers']
        self.error_handling = config['processing']['error_handling']
        self.show_progress = config['logging']['show_progress']

        self.logger.info(f"Processor initialized - {self.detector.describe()}")

    def process_all(self, input_path: Optional[Union[str, Path]] = None) -> ProcessingReport:
        """
        Process all images under the input path.

        Args:
            input_path: File or directory (default: paths.input from config)

        Returns:
            ProcessingReport with results

        Raises:
            ConfigError: If the input path is missing or unsupported
            BlurryFilterError: If an image fails with error_handling 'stop'
        """
        if input_path is None:
            input_path = self.config['paths']['input']

        self.logger.info("Starting blur detection processing")
        start_time = time.time()

        image_paths = self.file_manager.scan(input_path)

        if not image_paths:
            self.logger.warning(f"No images found in {input_path}")
            return build_report([], 0.0, self.detector.describe())

        results = self.process_files(image_paths)

        total_time = time.time() - start_time
        report = build_report(results, total_time, self.detector.describe())

        report.operations = self.file_manager.process_blurry_files(results)

        output = self.config['output']
        if output['json_report']:
            self.save_report(report, output['json_report'])
        if output['scores_file']:
            self.save_scores_csv(results, output['scores_file'])

        self.logger.info(
            f"Processing complete - {len(image_paths)} images in {format_time(total_time)}"
        )

        return report

    def process_files(self, image_paths: List[str]) -> List[ImageResult]:
        """
        Score files with a bounded worker pool.

        Args:
            image_paths: List of image paths

        Returns:
            ImageResult objects in the order of ``image_paths``

        Raises:
            BlurryFilterError: On the first failed image with error_handling 'stop'
        """
        results: List[Optional[ImageResult]] = [None] * len(image_paths)

        if self.show_progress:
            progress = tqdm(total=len(image_paths), desc="Processing", unit="img")
        else:
            progress = ProgressTracker(len(image_paths), self.logger)

        try:
            if self.num_workers <= 1:
                for i, path in enumerate(image_paths):
                    results[i] = self._record(self.detector.analyze_file(path))
                    progress.update(1)
            else:
                self.logger.debug(f"Scoring with {self.num_workers} workers")
                with ThreadPoolExecutor(max_workers=self.num_workers) as executor:
                    futures = {
                        executor.submit(self.detector.analyze_file, path): i
                        for i, path in enumerate(image_paths)
                    }
                    try:
                        for future in as_completed(futures):
                            results[futures[future]] = self._record(future.result())
                            progress.update(1)
                    except BlurryFilterError:
                        for future in futures:
                            future.cancel()
                        raise
        finally:
            if isinstance(progress, ProgressTracker):
                progress.finish()
            else:
                progress.close()

        return results

    def _record(self, result: ImageResult) -> ImageResult:
        if result.error is not None and self.error_handling == 'stop':
            raise BlurryFilterError(f"Error processing {result.file}: {result.error}")
        return result

    def save_scores_csv(self, results: List[ImageResult], csv_file: Union[str, Path]) -> None:
        """
        Save per-image scores to a CSV file.

        Args:
            results: List of ImageResult objects
            csv_file: Output path
        """
        csv_file = Path(csv_file)
        csv_file.parent.mkdir(parents=True, exist_ok=True)

        try:
            with open(csv_file, 'w', newline='', encoding='utf-8') as f:
                writer = csv.writer(f)

                writer.writerow([
                    'Image Path',
                    'Status',
                    'Blur Score',
                    'Threshold',
                    'Algorithm',
                    'Strategy',
                    'Processing Time (ms)',
                    'Error Message'
                ])

                for result in results:
                    writer.writerow([
                        result.file,
                        result.status,
                        f"{result.blur_score:.2f}" if result.blur_score is not None else '',
                        result.threshold if result.threshold is not None else '',
                        result.algorithm,
                        result.strategy or '',
                        f"{result.processing_time:.1f}",
                        result.error or ''
                    ])

            self.logger.info(f"Scores saved to: {csv_file}")

        except OSError as e:
            self.logger.error(f"Failed to save scores CSV: {e}")

    def save_report(self, report: ProcessingReport, report_file: Union[str, Path]) -> None:
        """
        Save processing report as JSON.

        Args:
            report: ProcessingReport object
            report_file: Output path
        """
        report_file = Path(report_file)
        report_file.parent.mkdir(parents=True, exist_ok=True)

        try:
            with open(report_file, 'w', encoding='utf-8') as f:
                json.dump(report.to_dict(), f, indent=2)

            self.logger.info(f"Report saved to: {report_file}")
        except OSError as e:
            self.logger.error(f"Failed to save JSON report: {e}")
