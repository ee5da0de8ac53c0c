"""Tests for the BackupService."""

import json
import os
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest
from components.backup import (
    MANIFEST_FILENAME,
    BackupError,
    BackupFailedError,
    BackupService,
    InvalidBackupError,
    RestoreFailedError,
    format_size,
    is_backup,
)
from components.crdt_health import SeedHistoryEngine
from components.document_schema import Bundle

START = datetime(2025, 3, 10, 14, 30, 0, tzinfo=timezone.utc)
SOURCE = "= Backed Up\n\nOriginal text.\n"


class SteppingClock:
    """Returns a later time on every call."""

    def __init__(self, start=START, step=timedelta(minutes=1)):
        self.current = start
        self.step = step

    def __call__(self):
        value = self.current
        self.current += self.step
        return value


def make_bundle(root, name="Thesis"):
    bundle = Bundle(root / f"{name}.imprint")
    bundle.path.mkdir(parents=True)
    bundle.source_path.write_text(SOURCE, encoding="utf-8")
    bundle.metadata_path.write_text(
        json.dumps({"schemaVersion": 120, "title": "My Thesis", "authors": []}),
        encoding="utf-8",
    )
    bundle.bibliography_path.write_text("@article{a}\n", encoding="utf-8")
    bundle.history_path.write_bytes(SeedHistoryEngine().rebuild_from_text(SOURCE))
    return bundle


@pytest.fixture
def library(tmp_path):
    path = tmp_path / "library"
    path.mkdir()
    return path


@pytest.fixture
def service():
    return BackupService(clock=SteppingClock())


def test_format_size():
    assert format_size(0) == "0 bytes"
    assert format_size(1023) == "1023 bytes"
    assert format_size(2048) == "2.0 KB"
    assert format_size(3 * 1024 * 1024) == "3.0 MB"


def test_backup_creates_independent_copy(library, service):
    bundle = make_bundle(library)

    descriptor = service.backup(bundle)

    assert descriptor.location.parent == library
    assert descriptor.location.name == "Thesis-backup-2025-03-10T14-30-00.imprint"
    assert descriptor.original_name == "Thesis.imprint"
    assert descriptor.title == "My Thesis"
    assert descriptor.created_at == START
    assert descriptor.size_bytes > 0
    assert descriptor.size_string.endswith("bytes")
    assert is_backup(descriptor.location)
    assert not is_backup(bundle.path)
    assert (descriptor.location / "main.typ").read_text() == SOURCE

    bundle.source_path.write_text("changed", encoding="utf-8")
    assert (descriptor.location / "main.typ").read_text() == SOURCE


def test_backup_manifest_records_checksums(library, service):
    descriptor = service.backup(make_bundle(library))
    manifest = json.loads((descriptor.location / MANIFEST_FILENAME).read_text())
    assert set(manifest["files"]) == {
        "main.typ",
        "metadata.json",
        "bibliography.bib",
        "document.crdt",
    }
    assert len(manifest["root_hash"]) == 64
    assert manifest["schema_version"] == 120


def test_backups_in_same_second_do_not_collide(library):
    service = BackupService(clock=lambda: START)
    bundle = make_bundle(library)
    first = service.backup(bundle)
    second = service.backup(bundle)
    assert first.location != second.location
    assert second.location.name.endswith("-2.imprint")


def test_backup_into_configured_directory(library, tmp_path):
    backup_dir = tmp_path / "backups"
    service = BackupService(backup_dir=backup_dir, clock=SteppingClock())
    descriptor = service.backup(make_bundle(library))
    assert descriptor.location.parent == backup_dir


def test_backup_of_missing_bundle(library, service):
    with pytest.raises(FileNotFoundError):
        service.backup(Bundle(library / "Ghost.imprint"))


def test_backup_failure_cleans_up(library, service):
    bundle = make_bundle(library)
    with patch(
        "components.backup.backup_service.shutil.copytree",
        side_effect=OSError("no space left"),
    ):
        with pytest.raises(BackupFailedError):
            service.backup(bundle)
    assert service.list_backups(bundle) == []


def test_verify_fresh_backup(library, service):
    descriptor = service.backup(make_bundle(library))
    verification = service.verify(descriptor.location)
    assert verification.is_valid is True
    assert verification.issues == []


def test_verify_detects_missing_required_file(library, service):
    descriptor = service.backup(make_bundle(library))
    (descriptor.location / "main.typ").unlink()
    verification = service.verify(descriptor.location)
    assert verification.is_valid is False
    assert verification.issues == ["Missing required file: main.typ"]


def test_verify_detects_missing_history(library, service):
    descriptor = service.backup(make_bundle(library))
    (descriptor.location / "document.crdt").unlink()
    verification = service.verify(descriptor.location)
    assert verification.issues == ["Missing backed-up file: document.crdt"]


def test_verify_detects_tampering(library, service):
    descriptor = service.backup(make_bundle(library))
    (descriptor.location / "bibliography.bib").write_text("@misc{tampered}\n")
    verification = service.verify(descriptor.location)
    assert verification.issues == ["Checksum mismatch: bibliography.bib"]


def test_verify_missing_backup(library, service):
    verification = service.verify(library / "Nothing-backup-x.imprint")
    assert verification.is_valid is False


def test_restore_replaces_bundle(library, service):
    bundle = make_bundle(library)
    descriptor = service.backup(bundle)
    bundle.source_path.write_text("a later, broken edit", encoding="utf-8")
    (bundle.path / "stray.txt").write_text("stray")

    service.restore(descriptor.location, bundle.path)

    assert bundle.source_path.read_text() == SOURCE
    assert not (bundle.path / "stray.txt").exists()
    assert not (bundle.path / MANIFEST_FILENAME).exists()
    assert sorted(p.name for p in library.iterdir()) == sorted(
        ["Thesis.imprint", descriptor.location.name]
    )


def test_restore_into_deleted_bundle(library, service):
    bundle = make_bundle(library)
    descriptor = service.backup(bundle)
    for child in bundle.path.iterdir():
        child.unlink()
    bundle.path.rmdir()

    service.restore(descriptor.location, bundle.path)

    assert bundle.source_path.read_text() == SOURCE


def test_restore_from_invalid_backup_leaves_destination(library, service):
    bundle = make_bundle(library)
    descriptor = service.backup(bundle)
    (descriptor.location / "metadata.json").unlink()
    bundle.source_path.write_text("current work", encoding="utf-8")

    with pytest.raises(InvalidBackupError) as exc_info:
        service.restore(descriptor.location, bundle.path)

    assert "Missing required file: metadata.json" in exc_info.value.issues
    assert bundle.source_path.read_text() == "current work"


def test_restore_refuses_leftover_displaced_copy(library, service):
    bundle = make_bundle(library)
    descriptor = service.backup(bundle)
    (library / ".Thesis.imprint.displaced.tmp").mkdir()
    bundle.source_path.write_text("current work", encoding="utf-8")

    with pytest.raises(RestoreFailedError):
        service.restore(descriptor.location, bundle.path)

    assert bundle.source_path.read_text() == "current work"


def _rename_failing_after(calls_before_failure, errors):
    """os.rename stand-in that succeeds a number of times, then raises in turn."""
    real_rename = os.rename
    state = {"calls": 0}

    def fake_rename(src, dst):
        state["calls"] += 1
        if state["calls"] <= calls_before_failure:
            return real_rename(src, dst)
        raise errors.pop(0)

    return fake_rename


def test_restore_swap_failure_rolls_back(library, service):
    bundle = make_bundle(library)
    descriptor = service.backup(bundle)
    bundle.source_path.write_text("current work", encoding="utf-8")

    with patch(
        "components.backup.backup_service.os.rename",
        side_effect=_rename_failing_after(1, [OSError("swap failed")]),
    ):
        with pytest.raises(RestoreFailedError) as exc_info:
            service.restore(descriptor.location, bundle.path)

    assert "swap failed" in str(exc_info.value)
    assert bundle.source_path.read_text() == "current work"
    assert not (library / ".Thesis.imprint.restore.tmp").exists()


def test_restore_rollback_failure_reports_both_errors(library, service):
    bundle = make_bundle(library)
    descriptor = service.backup(bundle)
    bundle.source_path.write_text("current work", encoding="utf-8")

    with patch(
        "components.backup.backup_service.os.rename",
        side_effect=_rename_failing_after(
            1, [OSError("swap failed"), OSError("rollback failed")]
        ),
    ):
        with pytest.raises(RestoreFailedError) as exc_info:
            service.restore(descriptor.location, bundle.path)

    message = str(exc_info.value)
    assert "swap failed" in message
    assert "rollback failed" in message
    assert isinstance(exc_info.value.__cause__, OSError)
    displaced = library / ".Thesis.imprint.displaced.tmp"
    assert (displaced / "main.typ").read_text() == "current work"


def test_list_backups_newest_first(library, service):
    bundle = make_bundle(library)
    make_bundle(library, name="Other")
    first = service.backup(bundle)
    second = service.backup(bundle)
    service.backup(Bundle(library / "Other.imprint"))

    backups = service.list_backups(bundle)

    assert [b.location for b in backups] == [second.location, first.location]
    assert backups[0].created_at > backups[1].created_at


def test_discard(library, service):
    bundle = make_bundle(library)
    descriptor = service.backup(bundle)
    service.discard(descriptor.location)
    assert not descriptor.location.exists()
    with pytest.raises(BackupError):
        service.discard(bundle.path)
