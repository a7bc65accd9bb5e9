"""
Utility functions for the blur detection system.

Includes logging setup, the shared percentile/clip helpers used by patch
aggregation and calibration, and progress/time formatting.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional, Sequence

import numpy as np


def setup_logging(config: dict) -> logging.Logger:
    """
    Configure logging for console and file output.

    Args:
        config: Configuration dictionary containing logging settings

    Returns:
        Configured logger instance
    """
    logging_config = config.get('logging', {})
    log_level = logging_config.get('level', 'INFO')
    console_level = logging_config.get('console_level', log_level)
    file_level = logging_config.get('file_level', 'DEBUG')
    log_format = logging_config.get(
        'format',
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    date_format = logging_config.get('date_format', '%Y-%m-%d %H:%M:%S')

    logger = logging.getLogger('BlurryFilter')
    logger.setLevel(logging.DEBUG)  # Capture all levels, filters applied to handlers

    # Remove existing handlers to avoid duplicates
    logger.handlers.clear()

    console_handler = logging.StreamHandler()
    console_handler.setLevel(getattr(logging, console_level.upper()))
    console_handler.setFormatter(logging.Formatter(log_format, datefmt=date_format))
    logger.addHandler(console_handler)

    if logging_config.get('log_to_file', False):
        log_file = config.get('paths', {}).get('log_file')
        if log_file is None:
            timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
            log_dir = Path('logs')
            log_dir.mkdir(exist_ok=True)
            log_file = log_dir / f'blurry_filter_{timestamp}.log'

        file_handler = logging.FileHandler(log_file, mode='w', encoding='utf-8')
        file_handler.setLevel(getattr(logging, file_level.upper()))
        file_handler.setFormatter(logging.Formatter(log_format, datefmt=date_format))
        logger.addHandler(file_handler)

        logger.debug(f"Log file: {log_file}")

    logger.debug(f"Logging initialized - Console: {console_level}, File: {file_level}")

    return logger


def clip(value: float, lower: float, upper: float) -> float:
    """Clamp value into [lower, upper]."""
    return float(np.clip(value, lower, upper))


def log10_or_zero(value: float) -> float:
    """log10 for positive values, 0 for zero/negative ones."""
    return float(np.log10(value)) if value > 0 else 0.0


def percentile(values: Sequence[float], p: float) -> float:
    """
    Percentile with linear interpolation between order statistics.

    Args:
        values: Sample values (any order)
        p: Percentile in [0, 100]

    Returns:
        Interpolated percentile, or 0.0 for an empty input
    """
    values = np.asarray(values, dtype=np.float64)
    return float(np.percentile(values, p)) if values.size else 0.0


def format_time(seconds: float) -> str:
    """
    Format seconds into human-readable time string.

    Args:
        seconds: Time in seconds

    Returns:
        Formatted time string (e.g., "1h 23m 45s" or "12.3s")
    """
    if seconds < 60:
        return f"{seconds:.1f}s"
    elif seconds < 3600:
        minutes = int(seconds // 60)
        secs = seconds % 60
        return f"{minutes}m {secs:.1f}s"
    else:
        hours = int(seconds // 3600)
        minutes = int((seconds % 3600) // 60)
        secs = seconds % 60
        return f"{hours}h {minutes}m {secs:.0f}s"


class ProgressTracker:
    """Progress logger used when the tqdm bar is disabled."""

    def __init__(self, total: int, logger: logging.Logger,
                 description: str = "Processing", every: int = 10):
        self.total = total
        self.current = 0
        self.logger = logger
        self.description = description
        self.every = max(1, every)
        self.start_time = datetime.now()

    def update(self, n: int = 1, label: Optional[str] = None):
        """Update progress by n steps."""
        self.current += n
        if self.current % self.every == 0 or self.current == self.total:
            percent = (self.current / self.total) * 100 if self.total > 0 else 0
            elapsed = (datetime.now() - self.start_time).total_seconds()
            rate = self.current / elapsed if elapsed > 0 else 0
            suffix = f" - {label}" if label else ""
            self.logger.info(
                f"{self.description}: {self.current}/{self.total} "
                f"({percent:.1f}%) - {rate:.1f} imgs/sec{suffix}"
            )

    def finish(self):
        """Mark progress as complete."""
        elapsed = (datetime.now() - self.start_time).total_seconds()
        self.logger.info(
            f"{self.description} complete: {self.current} images "
            f"in {format_time(elapsed)}"
        )
