"""
Point-in-time copies of document bundles.

A backup is a full, independent copy of a bundle plus a manifest recording the
SHA-256 of every file and their Merkle root. Backups are never modified after
they are written; restoring one replaces the destination bundle in a single
rename, so a failed restore leaves the destination as it was.
"""

import logging
import os
import shutil
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional, Union

from components.document_schema import Bundle, MetadataUnreadableError, VersionChecker
from components.document_schema.metadata import normalize_timestamp, utc_now
from pydantic import BaseModel, Field, computed_field
from shared.bundle import BUNDLE_SUFFIX
from shared.state_tracker import StateTracker

logger = logging.getLogger(__name__)

MANIFEST_FILENAME = "backup-manifest.json"
MANIFEST_VERSION = 1
BACKUP_MARKER = "-backup-"


def format_size(size_bytes: int) -> str:
    """Human-readable size: plain bytes below 1 KB, KB below 1 MB, else MB."""
    if size_bytes < 1024:
        return f"{size_bytes} bytes"
    if size_bytes < 1024 * 1024:
        return f"{size_bytes / 1024:.1f} KB"
    return f"{size_bytes / (1024 * 1024):.1f} MB"


def is_backup(path: Path) -> bool:
    """Whether a bundle directory is a backup taken by this service."""
    return (path / MANIFEST_FILENAME).is_file()


class BackupDescriptor(BaseModel):
    location: Path
    original_name: str
    title: str
    created_at: datetime
    size_bytes: int

    @computed_field  # type: ignore[prop-decorator]
    @property
    def size_string(self) -> str:
        return format_size(self.size_bytes)


class BackupVerification(BaseModel):
    is_valid: bool
    issues: List[str] = Field(default_factory=list)


class BackupError(Exception):
    """Base class for backup failures."""


class BackupFailedError(BackupError):
    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Backup failed: {reason}")


class InvalidBackupError(BackupError):
    def __init__(self, issues: List[str]):
        self.issues = issues
        super().__init__(f"Backup is not valid: {'; '.join(issues)}")


class RestoreFailedError(BackupError):
    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Restore failed: {reason}")


class BackupService:
    """Creates, verifies, lists and restores bundle backups."""

    def __init__(
        self,
        checker: Optional[VersionChecker] = None,
        backup_dir: Optional[Path] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Args:
            checker: Version checker used to find a backup's required files.
            backup_dir: Where backups go; None places them beside the bundle.
            clock: Source of backup timestamps.
        """
        self.checker = checker or VersionChecker()
        self.backup_dir = Path(backup_dir) if backup_dir else None
        self.clock = clock

    def backup(self, bundle: Bundle) -> BackupDescriptor:
        """
        Copy a bundle to a new timestamped location.

        Raises:
            FileNotFoundError: If the bundle does not exist.
            BackupFailedError: If the copy could not be completed.
        """
        if not bundle.exists():
            raise FileNotFoundError(f"Bundle not found: {bundle.path}")

        created_at = normalize_timestamp(self.clock())
        location = self._allocate_location(bundle, created_at)
        title = self._read_title(bundle)

        try:
            shutil.copytree(bundle.path, location)
            tracker = StateTracker(location, exclude={MANIFEST_FILENAME})
            root_hash, manifest = tracker.generate_manifest()
            size_bytes = tracker.total_size()
            StateTracker.save_state(
                location / MANIFEST_FILENAME,
                {
                    "version": MANIFEST_VERSION,
                    "created_at": created_at.isoformat(),
                    "source_bundle": bundle.path.name,
                    "title": title,
                    "schema_version": self._stored_version(bundle),
                    "size_bytes": size_bytes,
                    "root_hash": root_hash,
                    "files": manifest,
                },
            )
        except OSError as e:
            logger.error(f"Failed to back up {bundle.name}: {e}")
            shutil.rmtree(location, ignore_errors=True)
            raise BackupFailedError(str(e)) from e

        descriptor = BackupDescriptor(
            location=location,
            original_name=bundle.path.name,
            title=title,
            created_at=created_at,
            size_bytes=size_bytes,
        )
        logger.info(
            f"Created backup of {bundle.name} at {location} ({descriptor.size_string})"
        )
        return descriptor

    def verify(self, backup_location: Union[str, Path]) -> BackupVerification:
        """
        Check that a backup holds every file its schema version requires and
        that no file differs from what the manifest recorded.
        """
        backup = Bundle(backup_location)
        if not backup.exists():
            return BackupVerification(
                is_valid=False, issues=[f"Backup not found: {backup.path}"]
            )

        issues: List[str] = []
        declared = self.checker.declared_version(self._stored_version(backup))
        required = self.checker.required_files(declared)
        for filename in sorted(required):
            if not backup.has_file(filename):
                issues.append(f"Missing required file: {filename}")

        state = StateTracker.load_state(backup.path / MANIFEST_FILENAME)
        if state is not None:
            recorded = state.get("files") or {}
            _, current = StateTracker(
                backup.path, exclude={MANIFEST_FILENAME}
            ).generate_manifest()
            changes = StateTracker.compare_states(recorded, current)
            for path in changes["removed"]:
                if path not in required:
                    issues.append(f"Missing backed-up file: {path}")
            for path in changes["updated"]:
                issues.append(f"Checksum mismatch: {path}")

        if issues:
            logger.warning(f"Backup {backup.path.name} failed verification: {issues}")
        return BackupVerification(is_valid=not issues, issues=issues)

    def restore(
        self, backup_location: Union[str, Path], destination: Union[str, Path]
    ) -> None:
        """
        Replace a destination bundle with the content of a backup.

        The backup is verified before anything is written. The copy is staged
        next to the destination and swapped in by rename; on any failure the
        destination is left exactly as it was.

        Raises:
            InvalidBackupError: If the backup fails verification.
            RestoreFailedError: If an I/O operation fails.
        """
        backup_path = Path(backup_location)
        destination = Path(destination)

        verification = self.verify(backup_path)
        if not verification.is_valid:
            raise InvalidBackupError(verification.issues)

        staging = destination.with_name(f".{destination.name}.restore.tmp")
        displaced = destination.with_name(f".{destination.name}.displaced.tmp")
        if displaced.exists():
            raise RestoreFailedError(
                f"an earlier restore left {displaced.name} behind; resolve it first"
            )

        moved_aside = False
        try:
            if staging.exists():
                shutil.rmtree(staging)
            shutil.copytree(
                backup_path, staging, ignore=shutil.ignore_patterns(MANIFEST_FILENAME)
            )
            if destination.exists():
                os.rename(destination, displaced)
                moved_aside = True
            os.rename(staging, destination)
        except OSError as e:
            logger.error(f"Restore of {destination.name} failed: {e}")
            shutil.rmtree(staging, ignore_errors=True)
            if moved_aside and not destination.exists():
                try:
                    os.rename(displaced, destination)
                except OSError as rollback_error:
                    logger.error(
                        f"Rollback of {destination.name} failed; previous content "
                        f"remains at {displaced}: {rollback_error}"
                    )
                    raise RestoreFailedError(
                        f"{e}; rollback failed, previous content left at "
                        f"{displaced}: {rollback_error}"
                    ) from rollback_error
            raise RestoreFailedError(str(e)) from e

        if moved_aside:
            try:
                shutil.rmtree(displaced)
            except OSError as e:
                logger.warning(f"Could not remove displaced copy {displaced}: {e}")
        logger.info(f"Restored {destination.name} from backup {backup_path.name}")

    def list_backups(self, bundle: Bundle) -> List[BackupDescriptor]:
        """All backups of a bundle, newest first."""
        directory = self._backup_root(bundle)
        if not directory.is_dir():
            return []

        descriptors = []
        pattern = f"{bundle.name}{BACKUP_MARKER}*{BUNDLE_SUFFIX}"
        for location in directory.glob(pattern):
            if not location.is_dir():
                continue
            state = StateTracker.load_state(location / MANIFEST_FILENAME) or {}
            created_raw = state.get("created_at")
            if created_raw:
                created_at = datetime.fromisoformat(created_raw)
            else:
                created_at = datetime.fromtimestamp(location.stat().st_mtime)
            descriptors.append(
                BackupDescriptor(
                    location=location,
                    original_name=state.get("source_bundle", bundle.path.name),
                    title=state.get("title", bundle.name),
                    created_at=normalize_timestamp(created_at),
                    size_bytes=state.get("size_bytes")
                    or StateTracker(location, exclude={MANIFEST_FILENAME}).total_size(),
                )
            )
        return sorted(descriptors, key=lambda d: d.created_at, reverse=True)

    def discard(self, backup_location: Union[str, Path]) -> None:
        """Delete a backup the user no longer wants."""
        location = Path(backup_location)
        if not is_backup(location):
            raise BackupError(f"Not a backup: {location}")
        shutil.rmtree(location)
        logger.info(f"Discarded backup {location.name}")

    def _backup_root(self, bundle: Bundle) -> Path:
        return self.backup_dir or bundle.path.parent

    def _allocate_location(self, bundle: Bundle, created_at: datetime) -> Path:
        directory = self._backup_root(bundle)
        directory.mkdir(parents=True, exist_ok=True)
        stamp = created_at.strftime("%Y-%m-%dT%H-%M-%S")
        base = f"{bundle.name}{BACKUP_MARKER}{stamp}"
        location = directory / f"{base}{BUNDLE_SUFFIX}"
        counter = 2
        while location.exists():
            location = directory / f"{base}-{counter}{BUNDLE_SUFFIX}"
            counter += 1
        return location

    @staticmethod
    def _stored_version(bundle: Bundle) -> Optional[int]:
        if not bundle.metadata_path.exists():
            return None
        try:
            return bundle.read_stored_version()
        except (OSError, MetadataUnreadableError):
            return None

    @staticmethod
    def _read_title(bundle: Bundle) -> str:
        try:
            return bundle.read_metadata().title
        except (OSError, MetadataUnreadableError):
            return bundle.name
