"""
Focus-measure kernels.

Four independent sharpness metrics computed on the same grayscale buffer:

- Laplacian variance: variance of the 4-neighbour Laplacian response
- Gradient: mean Sobel gradient magnitude
- Tenengrad: variance of the squared Sobel gradient magnitude
- Variance: graylevel variance of the raw intensities

Filters are evaluated on interior pixels only. The one-pixel border is left
at zero and still counts towards every mean/variance (the denominator is the
full pixel count). Higher scores mean sharper images.
"""

from dataclasses import dataclass, asdict
from enum import Enum
from typing import Dict, Tuple, Union

import cv2
import numpy as np

from .exceptions import KernelError
from .image import GrayscaleImage

PixelBuffer = Union[GrayscaleImage, np.ndarray]


@dataclass(frozen=True)
class RawScores:
    """Raw (un-normalized) kernel outputs for one image or patch."""
    laplacian: float
    gradient: float
    tenengrad: float
    variance: float

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, float]) -> 'RawScores':
        return cls(
            laplacian=float(data['laplacian']),
            gradient=float(data['gradient']),
            tenengrad=float(data['tenengrad']),
            variance=float(data['variance'])
        )


def as_float_buffer(gray: PixelBuffer) -> np.ndarray:
    """
    Convert a pixel buffer to a contiguous float64 array.

    Args:
        gray: GrayscaleImage or 2-D array

    Returns:
        2-D float64 array

    Raises:
        KernelError: If the buffer is empty, not 2-D or not finite
    """
    if isinstance(gray, GrayscaleImage):
        gray = gray.pixels

    try:
        pixels = np.ascontiguousarray(gray, dtype=np.float64)
    except (TypeError, ValueError) as e:
        raise KernelError(f"Cannot read pixel buffer: {e}") from e

    if pixels.ndim != 2:
        raise KernelError(f"Expected a 2-D grayscale buffer, got shape {pixels.shape}")
    if pixels.size == 0:
        raise KernelError("Pixel buffer is empty")
    if not np.isfinite(pixels).all():
        raise KernelError("Pixel buffer contains non-finite values")

    return pixels


def _zero_border(response: np.ndarray) -> np.ndarray:
    response[0, :] = 0.0
    response[-1, :] = 0.0
    response[:, 0] = 0.0
    response[:, -1] = 0.0
    return response


def _has_interior(pixels: np.ndarray) -> bool:
    return pixels.shape[0] >= 3 and pixels.shape[1] >= 3


def laplacian_response(pixels: np.ndarray) -> np.ndarray:
    """Laplacian [[0,1,0],[1,-4,1],[0,1,0]] over interior pixels, zero border."""
    if not _has_interior(pixels):
        return np.zeros_like(pixels)
    try:
        # ksize=1 is the plain 4-neighbour kernel
        response = cv2.Laplacian(pixels, cv2.CV_64F, ksize=1)
    except cv2.error as e:
        raise KernelError(f"Laplacian filter failed: {e}") from e
    return _zero_border(response)


def sobel_gradients(pixels: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """3x3 Sobel X/Y responses over interior pixels, zero border."""
    if not _has_interior(pixels):
        return np.zeros_like(pixels), np.zeros_like(pixels)
    try:
        gx = cv2.Sobel(pixels, cv2.CV_64F, 1, 0, ksize=3)
        gy = cv2.Sobel(pixels, cv2.CV_64F, 0, 1, ksize=3)
    except cv2.error as e:
        raise KernelError(f"Sobel filter failed: {e}") from e
    return _zero_border(gx), _zero_border(gy)


def laplacian_variance(gray: PixelBuffer) -> float:
    """
    Variance of the Laplacian.

    Args:
        gray: Grayscale pixel buffer

    Returns:
        Population variance of the Laplacian response (>= 0)
    """
    pixels = as_float_buffer(gray)
    return float(laplacian_response(pixels).var())


def gradient_magnitude_mean(gray: PixelBuffer) -> float:
    """Mean Sobel gradient magnitude sqrt(gx^2 + gy^2) over the full buffer."""
    pixels = as_float_buffer(gray)
    gx, gy = sobel_gradients(pixels)
    return float(np.sqrt(gx * gx + gy * gy).mean())


def tenengrad(gray: PixelBuffer) -> float:
    """
    Tenengrad focus measure.

    Population variance of the squared Sobel magnitude gx^2 + gy^2. Its range
    spans several orders of magnitude (roughly 1e2 to 1e9 on 8-bit previews),
    which is why normalization maps it in log space.
    """
    pixels = as_float_buffer(gray)
    gx, gy = sobel_gradients(pixels)
    return float((gx * gx + gy * gy).var())


def graylevel_variance(gray: PixelBuffer) -> float:
    """Population variance of the raw intensities."""
    pixels = as_float_buffer(gray)
    return float(pixels.var())


class FocusMeasure(Enum):
    """The four focus-measure kernels."""
    LAPLACIAN = 'laplacian'
    GRADIENT = 'gradient'
    TENENGRAD = 'tenengrad'
    VARIANCE = 'variance'

    def compute(self, gray: PixelBuffer) -> float:
        """Run this kernel on a pixel buffer."""
        return _KERNELS[self](gray)


_KERNELS = {
    FocusMeasure.LAPLACIAN: laplacian_variance,
    FocusMeasure.GRADIENT: gradient_magnitude_mean,
    FocusMeasure.TENENGRAD: tenengrad,
    FocusMeasure.VARIANCE: graylevel_variance,
}


def compute_raw_scores(gray: PixelBuffer) -> RawScores:
    """
    Run all four kernels on the same buffer.

    The buffer is converted once and the Sobel gradients are shared between
    the gradient and Tenengrad measures; results are identical to calling the
    individual kernels.

    Args:
        gray: Grayscale pixel buffer

    Returns:
        RawScores for the buffer

    Raises:
        KernelError: If the buffer cannot be read
    """
    pixels = as_float_buffer(gray)

    gx, gy = sobel_gradients(pixels)
    squared_magnitude = gx * gx + gy * gy

    return RawScores(
        laplacian=float(laplacian_response(pixels).var()),
        gradient=float(np.sqrt(squared_magnitude).mean()),
        tenengrad=float(squared_magnitude.var()),
        variance=float(pixels.var())
    )
