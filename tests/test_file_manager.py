"""
Unit tests for file discovery and blurry-file operations.
"""

from pathlib import Path

import pytest

from blurry_filter.config_loader import apply_defaults
from blurry_filter.detector import ImageResult
from blurry_filter.exceptions import ConfigError
from blurry_filter.file_manager import FileManager


def make_manager(**output) -> FileManager:
    return FileManager(apply_defaults({'output': output}))


def blurry_result(path: Path, score: float = 5.0) -> ImageResult:
    return ImageResult(file=str(path), algorithm='composite', blur_score=score,
                       is_blurry=True, threshold=30.0)


def sharp_result(path: Path) -> ImageResult:
    return ImageResult(file=str(path), algorithm='composite', blur_score=90.0,
                       is_blurry=False, threshold=30.0)


class TestScan:
    """Input discovery."""

    def test_directory(self, image_dir):
        found = make_manager().scan(image_dir)
        assert [Path(p).name for p in found] == ['flat.png', 'sharp.png', 'subject.png']
        assert all(Path(p).is_absolute() for p in found)

    def test_recursive(self, image_dir):
        found = make_manager().scan(image_dir, recursive=True)
        assert len(found) == 4
        assert any(p.endswith('nested_sharp.png') for p in found)
        assert found == sorted(found)

    def test_format_filter_case_insensitive(self, image_dir):
        (image_dir / "UPPER.PNG").write_bytes((image_dir / "flat.png").read_bytes())
        (image_dir / "photo.NEF").write_bytes(b"raw")

        found = make_manager().scan(image_dir, file_format='png')
        assert 'UPPER.PNG' in [Path(p).name for p in found]
        assert not any(p.endswith('.NEF') for p in found)

        raw_only = make_manager().scan(image_dir, file_format='.nef')
        assert [Path(p).name for p in raw_only] == ['photo.NEF']

    def test_raw_extensions_included_by_default(self, image_dir):
        (image_dir / "frame.cr3").write_bytes(b"raw")
        found = make_manager().scan(image_dir)
        assert any(p.endswith('frame.cr3') for p in found)

    def test_single_file(self, image_dir):
        found = make_manager().scan(image_dir / "sharp.png")
        assert found == [str((image_dir / "sharp.png").resolve())]

    def test_unsupported_single_file(self, image_dir):
        with pytest.raises(ConfigError):
            make_manager().scan(image_dir / "notes.txt")

    def test_missing_path(self, tmp_path):
        with pytest.raises(ConfigError):
            make_manager().scan(tmp_path / "missing")

    def test_recursive_from_config(self, image_dir):
        manager = FileManager(apply_defaults({'processing': {'recursive': True}}))
        assert len(manager.scan(image_dir)) == 4


class TestOperations:
    """Copy, move and rename of blurry images."""

    def test_none(self, image_dir):
        summary = make_manager().process_blurry_files([blurry_result(image_dir / "flat.png")])
        assert summary.total == 0
        assert summary.operations == []

    def test_copy(self, image_dir, tmp_path):
        target = tmp_path / "blurry"
        manager = make_manager(action='copy', target_dir=str(target))
        summary = manager.process_blurry_files([
            blurry_result(image_dir / "flat.png"),
            sharp_result(image_dir / "sharp.png"),
        ])

        assert summary.total == 1
        assert summary.successful == 1
        assert (target / "flat.png").exists()
        assert (image_dir / "flat.png").exists()
        assert not (target / "sharp.png").exists()
        assert summary.operations[0].status == 'success'
        assert summary.operations[0].blur_score == 5.0

    def test_move(self, image_dir, tmp_path):
        target = tmp_path / "blurry"
        manager = make_manager(action='move', target_dir=str(target))
        summary = manager.process_blurry_files([blurry_result(image_dir / "flat.png")])

        assert summary.successful == 1
        assert (target / "flat.png").exists()
        assert not (image_dir / "flat.png").exists()

    def test_rename(self, image_dir):
        manager = make_manager(action='rename', rename_suffix='soft')
        summary = manager.process_blurry_files([blurry_result(image_dir / "flat.png")])

        assert summary.successful == 1
        assert (image_dir / "flat_soft.png").exists()
        assert not (image_dir / "flat.png").exists()

    def test_duplicate_names_get_counter(self, image_dir, tmp_path):
        target = tmp_path / "blurry"
        target.mkdir()
        (target / "flat.png").write_bytes(b"existing")

        manager = make_manager(action='copy', target_dir=str(target))
        summary = manager.process_blurry_files([blurry_result(image_dir / "flat.png")])

        assert summary.operations[0].destination == str(target / "flat_1.png")
        assert (target / "flat.png").read_bytes() == b"existing"

    def test_dry_run(self, image_dir, tmp_path):
        target = tmp_path / "blurry"
        manager = make_manager(action='move', target_dir=str(target), dry_run=True)
        summary = manager.process_blurry_files([blurry_result(image_dir / "flat.png")])

        assert summary.skipped == 1
        assert summary.successful == 0
        assert summary.operations[0].status == 'dry-run'
        assert (image_dir / "flat.png").exists()
        assert not target.exists()

    def test_error_results_untouched(self, image_dir, tmp_path):
        target = tmp_path / "blurry"
        failed = ImageResult(file=str(image_dir / "flat.png"), algorithm='composite', error='boom')
        summary = make_manager(action='copy', target_dir=str(target)).process_blurry_files([failed])
        assert summary.total == 0

    def test_failure_does_not_stop_others(self, image_dir, tmp_path):
        target = tmp_path / "blurry"
        manager = make_manager(action='copy', target_dir=str(target))
        summary = manager.process_blurry_files([
            blurry_result(image_dir / "gone.png"),
            blurry_result(image_dir / "flat.png"),
        ])

        assert summary.failed == 1
        assert summary.successful == 1
        failed = summary.operations[0]
        assert failed.status == 'failed'
        assert failed.error
        assert (target / "flat.png").exists()

    def test_summary_to_dict(self, image_dir, tmp_path):
        manager = make_manager(action='copy', target_dir=str(tmp_path / "out"))
        data = manager.process_blurry_files([blurry_result(image_dir / "flat.png")]).to_dict()
        assert data['total'] == 1
        assert set(data['operations'][0]) == {'source', 'destination', 'action',
                                              'status', 'blur_score'}
