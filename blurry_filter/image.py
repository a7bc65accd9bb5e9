"""
Grayscale pixel buffer shared by the focus measures and the patch grid.

A GrayscaleImage wraps a read-only 2-D numpy array. Regions are numpy views
over the same buffer (offset + stride), so partitioning an image into patches
never copies or re-decodes pixel data.
"""

from dataclasses import dataclass
from typing import Tuple

import cv2
import numpy as np

from .exceptions import KernelError


@dataclass(frozen=True, eq=False)
class GrayscaleImage:
    """Single-channel, row-major pixel buffer."""
    pixels: np.ndarray

    @classmethod
    def from_array(cls, array: np.ndarray) -> 'GrayscaleImage':
        """
        Wrap an array as an immutable grayscale image.

        BGR (3-channel) and BGRA (4-channel) arrays are converted with OpenCV;
        2-D arrays are wrapped without copying.

        Args:
            array: 2-D grayscale or 3-D BGR/BGRA array

        Returns:
            GrayscaleImage borrowing (or converted from) the array

        Raises:
            KernelError: If the array is not an image-shaped buffer
        """
        try:
            pixels = np.asarray(array)
        except (TypeError, ValueError) as e:
            raise KernelError(f"Cannot read pixel buffer: {e}") from e

        if pixels.ndim == 3 and pixels.shape[2] in (3, 4):
            code = cv2.COLOR_BGR2GRAY if pixels.shape[2] == 3 else cv2.COLOR_BGRA2GRAY
            try:
                pixels = cv2.cvtColor(pixels, code)
            except cv2.error as e:
                raise KernelError(
                    f"Cannot convert {pixels.dtype} colour image to grayscale: {e}"
                ) from e
        elif pixels.ndim == 3 and pixels.shape[2] == 1:
            pixels = pixels[:, :, 0]

        if pixels.ndim != 2:
            raise KernelError(f"Expected a single-channel image, got shape {pixels.shape}")

        pixels = pixels.view()
        pixels.flags.writeable = False
        return cls(pixels)

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def shape(self) -> Tuple[int, int]:
        """(height, width), numpy order."""
        return self.height, self.width

    def region(self, left: int, top: int, width: int, height: int) -> 'GrayscaleImage':
        """
        Borrow a rectangular sub-region as a view over this buffer.

        Args:
            left: X offset of the region
            top: Y offset of the region
            width: Region width in pixels
            height: Region height in pixels

        Returns:
            GrayscaleImage sharing memory with this image
        """
        if left < 0 or top < 0 or left + width > self.width or top + height > self.height:
            raise KernelError(
                f"Region ({left}, {top}, {width}x{height}) outside "
                f"{self.width}x{self.height} image"
            )
        return GrayscaleImage(self.pixels[top:top + height, left:left + width])
