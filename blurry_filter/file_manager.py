"""
File management module for discovering and organizing images.

Handles scanning input paths for supported files and copying, moving or
renaming the images classified as blurry.
"""

import logging
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

from .exceptions import ConfigError, FileOperationError
from .preview import RAW_EXTENSIONS, STANDARD_EXTENSIONS, is_supported_file

ACTIONS = ('none', 'copy', 'move', 'rename')


@dataclass
class FileOperation:
    """One planned or performed file operation."""
    source: str
    destination: str
    action: str
    status: str  # 'success', 'failed', 'dry-run'
    blur_score: Optional[float]
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, object]:
        data = {
            'source': self.source,
            'destination': self.destination,
            'action': self.action,
            'status': self.status,
            'blur_score': self.blur_score,
        }
        if self.error:
            data['error'] = self.error
        return data


@dataclass
class OperationSummary:
    """Outcome of organizing the blurry files of a batch."""
    action: str
    total: int = 0
    successful: int = 0
    failed: int = 0
    skipped: int = 0
    operations: List[FileOperation] = field(default_factory=list)

    def to_dict(self) -> Dict[str, object]:
        return {
            'action': self.action,
            'total': self.total,
            'successful': self.successful,
            'failed': self.failed,
            'skipped': self.skipped,
            'operations': [op.to_dict() for op in self.operations],
        }


class FileManager:
    """Manages file discovery and operations for the blur detection system."""

    def __init__(self, config: dict, logger: Optional[logging.Logger] = None):
        """
        Initialize file manager.

        Args:
            config: Configuration dictionary
            logger: Optional logger instance
        """
        self.config = config
        self.logger = logger or logging.getLogger('BlurryFilter.FileManager')

        output = config['output']
        self.action = output['action']
        self.target_dir = Path(output['target_dir']) if output['target_dir'] else None
        self.rename_suffix = output['rename_suffix']
        self.dry_run = output['dry_run']

        self.recursive = config['processing']['recursive']
        self.format = config['processing']['format']

        self.logger.debug(f"File manager initialized - Action: {self.action}")

    def scan(self, path: Union[str, Path], recursive: Optional[bool] = None,
             file_format: Optional[str] = None) -> List[str]:
        """
        Find the images to process.

        A file path is returned as-is when its format is supported. A
        directory is scanned for RAW and standard image files (or one
        extension when ``file_format`` is given), case-insensitively.

        Args:
            path: File or directory
            recursive: Scan subdirectories (default: from config)
            file_format: Restrict to one extension, e.g. 'nef' (default: from config)

        Returns:
            Sorted list of absolute file paths

        Raises:
            ConfigError: If a single file has an unsupported format or the
                path does not exist
        """
        if recursive is None:
            recursive = self.recursive
        if file_format is None:
            file_format = self.format

        root = Path(path)

        if root.is_file():
            if not is_supported_file(root):
                raise ConfigError(f"Unsupported file format: {root.suffix}")
            return [str(root.resolve())]

        if not root.is_dir():
            raise ConfigError(f"Input path does not exist: {root}")

        if file_format:
            extensions = {'.' + file_format.lower().lstrip('.')}
        else:
            extensions = set(RAW_EXTENSIONS) | set(STANDARD_EXTENSIONS)

        self.logger.info(f"Scanning {'recursively ' if recursive else ''}for images: {root}")

        image_paths = set()
        if recursive:
            for dirpath, _, files in os.walk(root):
                for name in files:
                    if Path(name).suffix.lower() in extensions:
                        image_paths.add(str(Path(dirpath, name).resolve()))
        else:
            for entry in root.iterdir():
                if entry.is_file() and entry.suffix.lower() in extensions:
                    image_paths.add(str(entry.resolve()))

        self.logger.info(f"Found {len(image_paths)} images")

        return sorted(image_paths)

    def ensure_directory(self, directory: Path) -> None:
        """
        Create the target directory.

        Raises:
            FileOperationError: If it cannot be created
        """
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise FileOperationError(f"Failed to create directory {directory}: {e}") from e

    def handle_duplicate_filename(self, target_path: Path) -> Path:
        """
        Handle duplicate filenames by appending a counter.

        Args:
            target_path: Proposed target path

        Returns:
            Available target path (may have counter appended)
        """
        if not target_path.exists():
            return target_path

        counter = 1
        stem = target_path.stem
        suffix = target_path.suffix
        parent = target_path.parent

        while True:
            new_path = parent / f"{stem}_{counter}{suffix}"
            if not new_path.exists():
                return new_path
            counter += 1

    def get_destination(self, source: str) -> Path:
        """Destination of a blurry file under the configured action."""
        src = Path(source)
        if self.action == 'rename':
            return src.with_name(f"{src.stem}_{self.rename_suffix}{src.suffix}")
        return self.target_dir / src.name

    def _apply(self, source: Path, destination: Path) -> None:
        if self.action == 'copy':
            shutil.copy2(str(source), str(destination))
        elif self.action == 'move':
            # Falls back to copy + delete across filesystems
            shutil.move(str(source), str(destination))
        elif self.action == 'rename':
            source.rename(destination)
        else:
            raise FileOperationError(f"Unknown file operation: {self.action}")

    def process_blurry_files(self, results: Sequence) -> OperationSummary:
        """
        Copy, move or rename every image classified blurry.

        Results with an error are never touched. A failure on one file is
        recorded and the remaining files are still processed.

        Args:
            results: ImageResult objects from the detector

        Returns:
            OperationSummary

        Raises:
            FileOperationError: If the target directory cannot be created
        """
        summary = OperationSummary(action=self.action)
        if self.action == 'none':
            return summary

        blurry = [r for r in results if r.error is None and r.is_blurry]
        summary.total = len(blurry)
        if not blurry:
            return summary

        if not self.dry_run and self.action in ('copy', 'move'):
            self.ensure_directory(self.target_dir)

        for result in blurry:
            source = Path(result.file)
            destination = self.get_destination(result.file)

            if self.dry_run:
                self.logger.info(f"[DRY RUN] Would {self.action} {source.name} -> {destination}")
                summary.operations.append(FileOperation(
                    str(source), str(destination), self.action, 'dry-run', result.blur_score
                ))
                summary.skipped += 1
                continue

            try:
                if self.action != 'rename':
                    destination = self.handle_duplicate_filename(destination)
                self._apply(source, destination)
            except OSError as e:
                self.logger.error(f"Failed to {self.action} {source}: {e}")
                summary.operations.append(FileOperation(
                    str(source), str(destination), self.action, 'failed',
                    result.blur_score, str(e)
                ))
                summary.failed += 1
                continue

            self.logger.debug(f"{self.action.capitalize()}: {source.name} -> {destination}")
            summary.operations.append(FileOperation(
                str(source), str(destination), self.action, 'success', result.blur_score
            ))
            summary.successful += 1

        return summary
