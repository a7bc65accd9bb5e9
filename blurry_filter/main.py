"""
Main entry point for the blurry photo filter.

Usage:
    blurry-filter ~/Photos/shoot
    blurry-filter ~/Photos/shoot -a patch-based --strategy subject-focus --show-blur-map
    blurry-filter ~/Photos/shoot --use-calibration --move-to ~/Photos/blurry --dry-run
"""

import argparse
import sys
from pathlib import Path

from . import __version__
from .calibration import load_stats, stats_exist
from .config_loader import load_config, print_config_summary, validate_config
from .detector import Algorithm
from .exceptions import BlurryFilterError, CalibrationError
from .patch_analysis import Strategy
from .processor import BatchProcessor
from .utils import setup_logging

DEFAULT_CONFIG_FILE = 'config/config.yaml'


def parse_arguments(argv=None):
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog='blurry-filter',
        description="Detect blurry photos from their embedded previews",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s ~/Photos/shoot
  %(prog)s ~/Photos/shoot -r -f nef --show-stats
  %(prog)s ~/Photos/shoot -a patch-based --strategy peak-focus
  %(prog)s ~/Photos/shoot --use-calibration --move-to ~/Photos/blurry --dry-run

Run blurry-calibrate on a representative shoot to create calibration data.
        """
    )

    parser.add_argument('path', nargs='?', help='Image file or directory to analyze')

    parser.add_argument(
        '--config',
        type=str,
        default=None,
        help=f'Path to configuration file (default: {DEFAULT_CONFIG_FILE} if present)'
    )
    parser.add_argument('-t', '--threshold', type=float, help='Blur threshold')
    parser.add_argument('-r', '--recursive', action='store_true', default=None,
                        help='Scan subdirectories')
    parser.add_argument('-f', '--format', help='Only process one file extension (e.g. nef)')
    parser.add_argument('-o', '--output', help='Write a JSON report to this file')
    parser.add_argument(
        '-a', '--algorithm',
        choices=[a.value for a in Algorithm],
        help='Scoring algorithm (default: composite)'
    )
    parser.add_argument(
        '--strategy',
        choices=[s.value for s in Strategy],
        help='Patch aggregation strategy (patch-based only, default: max-focus)'
    )
    parser.add_argument('--patch-size', type=int, help='Patch grid size N for an N x N grid')
    parser.add_argument('--show-stats', action='store_true', help='Show score distribution')
    parser.add_argument('--show-algorithms', action='store_true',
                        help='List algorithms and strategies, then exit')
    parser.add_argument('--show-blur-map', action='store_true',
                        help='Show per-patch blur maps (patch-based only)')

    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument('-v', '--verbose', action='store_true', help='Show per-file scores')
    verbosity.add_argument('-q', '--quiet', action='store_true', help='Only print a one-line summary')

    operation = parser.add_mutually_exclusive_group()
    operation.add_argument('--copy-to', metavar='DIR', help='Copy blurry files to DIR')
    operation.add_argument('--move-to', metavar='DIR', help='Move blurry files to DIR')
    operation.add_argument('--rename', nargs='?', const='blurry', metavar='SUFFIX',
                           help='Rename blurry files with a suffix (default: blurry)')

    parser.add_argument('--dry-run', action='store_true',
                        help='Show file operations without performing them')
    parser.add_argument('--use-calibration', action='store_true',
                        help='Normalize scores with calibration data')
    parser.add_argument('--calibration-file', help='Calibration data file')
    parser.add_argument('--workers', type=int, help='Number of worker threads')
    parser.add_argument(
        '--version',
        action='version',
        version=f'blurry-filter {__version__}'
    )

    return parser.parse_args(argv)


def print_algorithms():
    """Print the selectable algorithms and patch strategies."""
    print("Algorithms:")
    print("  composite      Weighted combination of all four focus measures (default)")
    print("  patch-based    Composite score per patch on an N x N grid, aggregated")
    print("  laplacian      Variance of the Laplacian")
    print("  gradient       Mean Sobel gradient magnitude")
    print("  tenengrad      Variance of the squared Sobel gradient")
    print("  variance       Graylevel variance")
    print("")
    print("Patch strategies:")
    for strategy in Strategy:
        params = strategy.subject_focus_params
        extra = f"  (top {params.top_percent:.0%}, sigma {params.sigma})" if params else ""
        print(f"  {strategy.value}{extra}")


def apply_overrides(config: dict, args) -> dict:
    """Apply command-line flags on top of the loaded configuration."""
    if args.path:
        config['paths']['input'] = args.path

    detection = config['detection']
    if args.algorithm:
        detection['algorithm'] = args.algorithm
    if args.strategy:
        detection['strategy'] = args.strategy
    if args.patch_size is not None:
        detection['patch_size'] = args.patch_size
    if args.threshold is not None:
        detection['threshold'] = args.threshold
    if args.use_calibration:
        detection['use_calibration'] = True
    if args.calibration_file:
        config['paths']['calibration_file'] = args.calibration_file

    processing = config['processing']
    if args.recursive:
        processing['recursive'] = True
    if args.format:
        processing['format'] = args.format
    if args.workers is not None:
        processing['num_workers'] = args.workers

    output = config['output']
    if args.output:
        output['json_report'] = args.output
    if args.copy_to:
        output['action'] = 'copy'
        output['target_dir'] = args.copy_to
    elif args.move_to:
        output['action'] = 'move'
        output['target_dir'] = args.move_to
    elif args.rename:
        output['action'] = 'rename'
        output['rename_suffix'] = args.rename
    if args.dry_run:
        output['dry_run'] = True

    if args.verbose:
        config['logging']['console_level'] = 'DEBUG'
    elif args.quiet:
        config['logging']['console_level'] = 'ERROR'
        config['logging']['show_progress'] = False

    validate_config(config)
    return config


def resolve_config_path(config_arg):
    """Explicit --config wins; otherwise the default file is used only if present."""
    if config_arg is not None:
        return config_arg
    if Path(DEFAULT_CONFIG_FILE).is_file():
        return DEFAULT_CONFIG_FILE
    return None


def print_file_operations(report):
    """Print the outcome of the file operation on blurry images."""
    ops = report.operations
    if ops is None or ops.action == 'none':
        return

    print("")
    print(f"File operations ({ops.action}):")
    for op in ops.operations:
        marker = {'success': 'OK', 'failed': 'FAILED', 'dry-run': 'DRY RUN'}[op.status]
        line = f"  [{marker}] {Path(op.source).name} -> {op.destination}"
        if op.error:
            line += f" ({op.error})"
        print(line)
    print(
        f"  Total: {ops.total}, Successful: {ops.successful}, "
        f"Failed: {ops.failed}, Skipped: {ops.skipped}"
    )


def main(argv=None):
    """Main entry point."""
    args = parse_arguments(argv)

    if args.show_algorithms:
        print_algorithms()
        return 0

    try:
        config = load_config(resolve_config_path(args.config))
        config = apply_overrides(config, args)

        logger = setup_logging(config)
        logger.info("Blurry filter started")
        print_config_summary(config, logger)

        calibration = None
        if config['detection']['use_calibration']:
            calibration_file = config['paths']['calibration_file']
            if not stats_exist(calibration_file):
                raise CalibrationError(
                    f"Calibration file not found: {calibration_file}\n"
                    f"Run blurry-calibrate on a representative set of images first."
                )
            calibration = load_stats(calibration_file)

        processor = BatchProcessor(config, calibration, logger)
        report = processor.process_all()

        if args.quiet:
            print(report.format_quiet())
        else:
            print(report.format_summary())
            if args.verbose:
                print(report.format_details())
            if args.show_stats:
                print("")
                print(report.format_distribution())
            if args.show_blur_map:
                blur_maps = report.format_blur_maps()
                if blur_maps:
                    print("")
                    print("Blur maps (' ' blurry ... '█' sharp):")
                    print(blur_maps)
            print_file_operations(report)

        if report.error_count > 0:
            logger.warning(f"{report.error_count} images had errors")
            return 1
        return 0

    except BlurryFilterError as e:
        print(f"\nERROR: {e}", file=sys.stderr)
        return 1

    except KeyboardInterrupt:
        print("\n\nProcessing interrupted by user")
        return 130

    except Exception as e:
        print(f"\nFATAL ERROR: {e}", file=sys.stderr)
        import traceback
        traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
