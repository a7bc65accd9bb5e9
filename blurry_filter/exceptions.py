"""
Exception types raised by the blur detection engine.

Image-level failures (KernelError, PreviewError) are turned into error
records at the per-image boundary. Configuration and calibration failures
propagate to whoever asked for the operation.
"""


class BlurryFilterError(Exception):
    """Base class for all blurry-filter errors."""


class KernelError(BlurryFilterError):
    """A focus-measure kernel could not process the pixel buffer."""


class PreviewError(BlurryFilterError):
    """No usable grayscale preview could be decoded from a file."""


class CalibrationError(BlurryFilterError):
    """Calibration corpus is empty or a calibration file is missing/malformed."""


class ConfigError(BlurryFilterError, ValueError):
    """Unsupported algorithm or strategy name, or an invalid setting."""


class FileOperationError(BlurryFilterError):
    """A copy/move/rename of classified files could not be set up."""
