"""
Image source: decoded grayscale previews.

RAW files are never demosaiced. The camera's embedded preview (usually a
full-size JPEG) is pulled out of the container with rawpy and decoded straight
to grayscale, which is fast and matches what the photographer saw on the back
of the camera. Standard raster images are decoded directly with OpenCV.
"""

import logging
from pathlib import Path
from typing import Optional, Union

import cv2
import numpy as np
import rawpy

from .exceptions import PreviewError
from .image import GrayscaleImage

RAW_EXTENSIONS = (
    '.nef', '.nrw',          # Nikon
    '.cr2', '.cr3',          # Canon
    '.arw',                  # Sony
    '.dng',                  # Adobe/Generic
    '.raf',                  # Fujifilm
    '.orf',                  # Olympus
    '.rw2',                  # Panasonic
    '.pef',                  # Pentax
    '.srw',                  # Samsung
    '.3fr', '.fff',          # Hasselblad
    '.erf',                  # Epson
    '.mrw',                  # Minolta
    '.raw',                  # Generic
)

STANDARD_EXTENSIONS = ('.jpg', '.jpeg', '.png', '.bmp', '.tif', '.tiff')


def is_raw_file(path: Union[str, Path]) -> bool:
    """
    Check if a file is a RAW image format.

    Args:
        path: Path to the image file

    Returns:
        True if the file is a RAW format, False otherwise
    """
    return Path(path).suffix.lower() in RAW_EXTENSIONS


def is_supported_file(path: Union[str, Path]) -> bool:
    """Check if a file can be decoded by load_grayscale."""
    suffix = Path(path).suffix.lower()
    return suffix in RAW_EXTENSIONS or suffix in STANDARD_EXTENSIONS


def _decode_grayscale(data: np.ndarray, source: str) -> np.ndarray:
    if data.size == 0:
        raise PreviewError(f"Empty image data in {source}")
    try:
        gray = cv2.imdecode(data, cv2.IMREAD_GRAYSCALE)
    except cv2.error as e:
        raise PreviewError(f"Failed to decode image data from {source}: {e}") from e
    if gray is None or gray.size == 0:
        raise PreviewError(f"Failed to decode image data from {source}")
    return gray


def extract_raw_preview(path: Union[str, Path],
                        logger: Optional[logging.Logger] = None) -> np.ndarray:
    """
    Extract the embedded preview of a RAW file as a grayscale array.

    Args:
        path: Path to the RAW file
        logger: Optional logger for debugging

    Returns:
        2-D uint8 array

    Raises:
        PreviewError: If the container has no decodable preview
    """
    logger = logger or logging.getLogger('BlurryFilter.Preview')

    try:
        with rawpy.imread(str(path)) as raw:
            thumb = raw.extract_thumb()
    except rawpy.LibRawNoThumbnailError as e:
        raise PreviewError(f"No preview image found in RAW file {path}") from e
    except (rawpy.LibRawError, OSError) as e:
        raise PreviewError(f"Failed to extract preview from {path}: {e}") from e

    if thumb.format == rawpy.ThumbFormat.JPEG:
        gray = _decode_grayscale(np.frombuffer(thumb.data, dtype=np.uint8), str(path))
    elif thumb.format == rawpy.ThumbFormat.BITMAP:
        try:
            gray = cv2.cvtColor(thumb.data, cv2.COLOR_RGB2GRAY)
        except cv2.error as e:
            raise PreviewError(f"Failed to convert preview bitmap from {path}: {e}") from e
    else:
        raise PreviewError(f"Unsupported preview format {thumb.format} in {path}")

    logger.debug(f"RAW preview extracted: {Path(path).name} {gray.shape}")
    return gray


def load_grayscale(path: Union[str, Path],
                   logger: Optional[logging.Logger] = None) -> GrayscaleImage:
    """
    Load a decoded grayscale image from a RAW or standard image file.

    Args:
        path: Path to the image file
        logger: Optional logger for debugging

    Returns:
        GrayscaleImage

    Raises:
        PreviewError: If the file is missing, unsupported or cannot be decoded
    """
    logger = logger or logging.getLogger('BlurryFilter.Preview')
    path = Path(path)

    if not path.is_file():
        raise PreviewError(f"File not found: {path}")

    if is_raw_file(path):
        return GrayscaleImage.from_array(extract_raw_preview(path, logger))

    if path.suffix.lower() not in STANDARD_EXTENSIONS:
        raise PreviewError(f"Unsupported file format: {path.suffix}")

    try:
        # np.fromfile copes with non-ASCII paths where cv2.imread does not
        data = np.fromfile(str(path), dtype=np.uint8)
    except OSError as e:
        raise PreviewError(f"Error reading image {path}: {e}") from e

    gray = _decode_grayscale(data, str(path))
    logger.debug(f"Image loaded successfully: {path.name} {gray.shape}")
    return GrayscaleImage.from_array(gray)
