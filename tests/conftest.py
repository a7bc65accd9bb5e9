"""
Pytest configuration and fixtures.

Synthetic grayscale images with known focus properties:
- flat gray (no detail at all)
- fine checkerboard (saturates every focus measure)
- sharp and Gaussian-blurred noise (same content, different focus)
- small sharp subject in the middle of a flat frame
"""

import json
from pathlib import Path
from typing import Dict, List

import cv2
import numpy as np
import pytest

from blurry_filter.config_loader import apply_defaults
from blurry_filter.focus_measures import RawScores


def make_checkerboard(height: int, width: int, block: int = 2) -> np.ndarray:
    """0/255 checkerboard with square blocks of the given size."""
    rows = (np.arange(height) // block)[:, None]
    cols = (np.arange(width) // block)[None, :]
    return (((rows + cols) % 2) * 255).astype(np.uint8)


@pytest.fixture
def flat_image() -> np.ndarray:
    return np.full((64, 64), 128, dtype=np.uint8)


@pytest.fixture
def checkerboard_image() -> np.ndarray:
    return make_checkerboard(64, 64, block=2)


@pytest.fixture
def sharp_noise_image() -> np.ndarray:
    rng = np.random.default_rng(42)
    return rng.integers(0, 256, size=(64, 64), dtype=np.uint8)


@pytest.fixture
def blurred_noise_image(sharp_noise_image: np.ndarray) -> np.ndarray:
    return cv2.GaussianBlur(sharp_noise_image, (0, 0), 3.0)


@pytest.fixture
def center_subject_image() -> np.ndarray:
    """
    Flat 64x64 frame with a 16x16 checkerboard subject in the center.

    On an 8x8 grid (8x8-pixel patches) the subject covers exactly the four
    central patches (x, y in {3, 4}).
    """
    img = np.full((64, 64), 128, dtype=np.uint8)
    img[24:40, 24:40] = make_checkerboard(16, 16, block=2)
    return img


@pytest.fixture
def image_dir(tmp_path: Path, checkerboard_image, flat_image,
              center_subject_image) -> Path:
    """
    Directory of PNG images written with OpenCV.

    sharp.png is a checkerboard, flat.png is blurry, subject.png holds the
    center subject; a nested directory holds one more checkerboard.
    """
    directory = tmp_path / "shoot"
    directory.mkdir()
    cv2.imwrite(str(directory / "sharp.png"), checkerboard_image)
    cv2.imwrite(str(directory / "flat.png"), flat_image)
    cv2.imwrite(str(directory / "subject.png"), center_subject_image)
    (directory / "notes.txt").write_text("not an image")

    nested = directory / "nested"
    nested.mkdir()
    cv2.imwrite(str(nested / "nested_sharp.png"), checkerboard_image)

    return directory


@pytest.fixture
def corrupt_image(tmp_path: Path) -> Path:
    path = tmp_path / "corrupt.jpg"
    path.write_bytes(b"definitely not a jpeg")
    return path


@pytest.fixture
def config() -> Dict:
    """Default configuration with progress bars off."""
    cfg = apply_defaults({})
    cfg['logging']['show_progress'] = False
    return cfg


def make_raw_scores(laplacian: float, gradient: float,
                    tenengrad: float, variance: float) -> RawScores:
    return RawScores(laplacian=laplacian, gradient=gradient,
                     tenengrad=tenengrad, variance=variance)


@pytest.fixture
def raw_corpus() -> List[RawScores]:
    """Twenty-one raw-score samples spaced evenly per kernel."""
    return [
        make_raw_scores(
            laplacian=float(i * 10),
            gradient=float(i),
            tenengrad=10.0 ** (2 + i * 0.3),
            variance=float(i * 100)
        )
        for i in range(21)
    ]


@pytest.fixture
def calibration_json() -> Dict:
    """On-disk calibration document."""
    def stats(p5, p95):
        return {'p5': p5, 'p95': p95, 'median': (p5 + p95) / 2, 'min': p5 / 2, 'max': p95 * 2}

    return {
        'laplacian': stats(10.0, 110.0),
        'gradient': stats(2.0, 12.0),
        'tenengrad': stats(1e3, 1e7),
        'variance': stats(100.0, 1100.0),
        'sampleSize': 60,
        'patchMode': False,
        'totalSamples': 60,
        'version': '1.0.0'
    }


@pytest.fixture
def calibration_file(tmp_path: Path, calibration_json: Dict) -> Path:
    path = tmp_path / ".blurry-calibration.json"
    path.write_text(json.dumps(calibration_json, indent=2))
    return path
