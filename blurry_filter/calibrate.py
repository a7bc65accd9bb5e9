"""
Calibration entry point.

Scores a representative set of images without calibration and records the
percentile statistics of every focus measure, so later runs can normalize
scores against the photographer's own camera and subjects.

Usage:
    blurry-calibrate ~/Photos/reference-shoot
    blurry-calibrate ~/Photos/reference-shoot --patch-mode --patch-size 8
"""

import argparse
import sys

from . import __version__
from .calibration import compute_stats, format_stats, save_stats
from .config_loader import load_config, validate_config
from .exceptions import BlurryFilterError, CalibrationError
from .file_manager import FileManager
from .main import resolve_config_path
from .processor import BatchProcessor
from .utils import format_time, setup_logging


def parse_arguments(argv=None):
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog='blurry-calibrate',
        description="Build calibration statistics from a representative set of images",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s ~/Photos/reference-shoot
  %(prog)s ~/Photos/reference-shoot -r -o my-calibration.json
  %(prog)s ~/Photos/reference-shoot --patch-mode

Use full-image calibration with the composite algorithm and patch-mode
calibration with the patch-based algorithm.
        """
    )

    parser.add_argument('path', help='Directory with representative images')
    parser.add_argument('--config', type=str, default=None, help='Path to configuration file')
    parser.add_argument('-o', '--output', help='Calibration file to write')
    parser.add_argument('-r', '--recursive', action='store_true', help='Scan subdirectories')
    parser.add_argument('-f', '--format', help='Only use one file extension (e.g. nef)')
    parser.add_argument('--patch-mode', action='store_true',
                        help='Collect per-patch statistics for the patch-based algorithm')
    parser.add_argument('--patch-size', type=int, help='Patch grid size in patch mode')
    parser.add_argument('--min-samples', type=int, help='Recommended minimum number of images')
    parser.add_argument('--workers', type=int, help='Number of worker threads')
    parser.add_argument('-v', '--verbose', action='store_true', help='Verbose logging')
    parser.add_argument(
        '--version',
        action='version',
        version=f'blurry-calibrate {__version__}'
    )

    return parser.parse_args(argv)


def apply_overrides(config: dict, args) -> dict:
    """Apply command-line flags and force an uncalibrated detector."""
    calibration = config['calibration']
    if args.output:
        calibration['output'] = args.output
    if args.patch_mode:
        calibration['patch_mode'] = True
    if args.patch_size is not None:
        calibration['patch_size'] = args.patch_size
    if args.min_samples is not None:
        calibration['min_samples'] = args.min_samples

    if args.recursive:
        config['processing']['recursive'] = True
    if args.format:
        config['processing']['format'] = args.format
    if args.workers is not None:
        config['processing']['num_workers'] = args.workers
    if args.verbose:
        config['logging']['console_level'] = 'DEBUG'

    detection = config['detection']
    detection['algorithm'] = 'patch-based' if calibration['patch_mode'] else 'composite'
    detection['patch_size'] = calibration['patch_size']
    detection['threshold'] = None
    detection['use_calibration'] = False

    # Calibration never touches the images
    config['output']['action'] = 'none'

    validate_config(config)
    return config


def main(argv=None):
    """Main entry point."""
    args = parse_arguments(argv)

    try:
        config = apply_overrides(load_config(resolve_config_path(args.config)), args)
        logger = setup_logging(config)

        calibration = config['calibration']
        patch_mode = calibration['patch_mode']

        file_manager = FileManager(config, logger)
        image_paths = file_manager.scan(args.path)

        if not image_paths:
            raise CalibrationError(f"No images found in {args.path}")

        if len(image_paths) < calibration['min_samples']:
            logger.warning(
                f"Only {len(image_paths)} images found; at least "
                f"{calibration['min_samples']} are recommended for reliable statistics"
            )

        mode = 'patch-level' if patch_mode else 'full-image'
        print(f"Calibrating on {len(image_paths)} images ({mode})...")

        processor = BatchProcessor(config, logger=logger)
        results = processor.process_files(image_paths)

        failed = sum(1 for r in results if r.error is not None)
        if failed:
            logger.warning(f"{failed} images could not be scored and were excluded")

        stats = compute_stats(results, patch_mode=patch_mode)
        print(format_stats(stats))

        output_path = save_stats(stats, calibration['output'])
        total_ms = sum(r.processing_time for r in results)
        print(f"Calibration saved to: {output_path} ({format_time(total_ms / 1000)} of scoring)")
        print("Use it with: blurry-filter <path> --use-calibration")
        return 0

    except BlurryFilterError as e:
        print(f"\nERROR: {e}", file=sys.stderr)
        return 1

    except KeyboardInterrupt:
        print("\n\nCalibration interrupted by user")
        return 130


if __name__ == "__main__":
    sys.exit(main())
