"""
This service encapsulates the lifecycle of document bundles. It is decoupled
from any web framework and is the single entry point the API and the watcher
use to touch bundles on disk.

Responsibilities:
- Classifying a bundle's schema version and refusing newer ones.
- Backing up and migrating older bundles on open.
- Validating history health and repairing unhealthy bundles.
- Creating, verifying and restoring backups.
- Recovering bundles left mid-write by a previous session.

Operations on one bundle are serialised through a per-bundle lock; different
bundles share no state and can be processed in parallel.
"""

import asyncio
import logging
import threading
import weakref
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional, Union

from components.backup import (
    BackupDescriptor,
    BackupService,
    BackupVerification,
    is_backup,
)
from components.crdt_health import (
    CRDTHealthValidator,
    RepairError,
    RepairResult,
    ValidationResult,
)
from components.document_schema import (
    Bundle,
    Legacy,
    MetadataUnreadableError,
    NeedsMigration,
    NewerThanApp,
    VersionChecker,
)
from components.document_schema.metadata import utc_now
from components.migration import (
    CorruptedDocumentError,
    DocumentMigrator,
    MigrationError,
    MigrationResult,
    MissingFileError,
    NewerVersionError,
)
from shared.bundle import METADATA_FILENAME, iter_bundles
from shared.config import Config

from .models import OpenResult, VersionReport, classification_name

logger = logging.getLogger(__name__)


class _BundleLock:
    """Re-entrant lock for one bundle; dropped from the map once unused."""

    __slots__ = ("_lock", "__weakref__")

    def __init__(self):
        self._lock = threading.RLock()

    def __enter__(self) -> "_BundleLock":
        self._lock.acquire()
        return self

    def __exit__(self, *exc_info) -> None:
        self._lock.release()


class BundleService:
    """The central service for all bundle lifecycle operations."""

    def __init__(
        self,
        config: Config,
        checker: Optional[VersionChecker] = None,
        migrator: Optional[DocumentMigrator] = None,
        validator: Optional[CRDTHealthValidator] = None,
        backup_service: Optional[BackupService] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Initializes the BundleService with its collaborators.

        Args:
            config: The application's configuration object.
            checker: Schema version checker shared by all collaborators.
            migrator: Migrator used when a bundle is older than current.
            validator: History health validator and repairer.
            backup_service: Service used before migrations and repairs.
            clock: Time source for timestamps written by this service.
        """
        self.config = config
        self.checker = checker or VersionChecker()
        self.migrator = migrator or DocumentMigrator(
            checker=self.checker, app_version=config.app.version, clock=clock
        )
        self.validator = validator or CRDTHealthValidator(
            checker=self.checker,
            temp_suffixes=config.health.temp_suffixes,
            stale_history_ratio=config.health.stale_history_ratio,
            app_version=config.app.version,
            clock=clock,
        )
        self.backup_service = backup_service or BackupService(
            checker=self.checker, backup_dir=config.get_backup_path(), clock=clock
        )
        self._locks: "weakref.WeakValueDictionary[Path, _BundleLock]" = (
            weakref.WeakValueDictionary()
        )
        self._locks_guard = threading.Lock()

    def _lock_for(self, bundle: Bundle) -> "_BundleLock":
        key = bundle.path.resolve()
        with self._locks_guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = _BundleLock()
            return lock

    def resolve_bundle(self, bundle_path: Union[str, Path]) -> Bundle:
        """
        Turns a path (absolute, or relative to the library) into a Bundle.

        Raises:
            FileNotFoundError: If no bundle directory exists there.
        """
        path = Path(bundle_path).expanduser()
        if not path.is_absolute():
            path = self.config.get_library_path() / path
        if not path.is_dir():
            raise FileNotFoundError(f"Bundle not found: {path}")
        return Bundle(path)

    def list_bundles(self) -> List[Path]:
        """All document bundles in the library, excluding backups."""
        return [
            path
            for path in iter_bundles(self.config.get_library_path())
            if not is_backup(path)
        ]

    def check_version(self, bundle: Bundle) -> VersionReport:
        """
        Classifies a bundle's stored schema version.

        Raises:
            MissingFileError: If the bundle has no metadata.
            CorruptedDocumentError: If the metadata cannot be parsed.
        """
        stored = self._read_stored_version(bundle)
        return VersionReport(
            bundle_path=bundle.path,
            stored_version=stored,
            classification=classification_name(self.checker.check(stored)),
            can_open=self.checker.can_open(stored),
            current_version=int(self.checker.current),
            declared_version=int(self.checker.declared_version(stored)),
        )

    def open_bundle(self, bundle: Bundle) -> OpenResult:
        """
        Runs the open sequence: classify, back up and migrate if needed,
        validate, then back up and repair if unhealthy.

        Raises:
            NewerVersionError: If the bundle was written by a newer application.
            MigrationError: If migration fails; the bundle is left as it was.
            RepairError: If repair fails; the source is never modified.
        """
        with self._lock_for(bundle):
            logger.info(f"Opening bundle {bundle.name}")
            classification = None
            backup_before_migration = None
            migration = None

            if bundle.metadata_path.exists():
                stored = self._read_stored_version(bundle)
                classification = self.checker.check(stored)
                if isinstance(classification, NewerThanApp):
                    logger.error(
                        f"Refusing to open {bundle.name}: schema {classification.version} "
                        f"is newer than {int(self.checker.current)}"
                    )
                    raise NewerVersionError(classification.version)
                if isinstance(classification, (NeedsMigration, Legacy)):
                    if self.config.backup.before_migration:
                        backup_before_migration = self.backup_service.backup(bundle)
                    migration = self._migrate(bundle)
            else:
                logger.warning(f"Bundle {bundle.name} has no {METADATA_FILENAME}")

            validation = self.validator.validate_document(bundle)
            backup_before_repair = None
            repair = None
            if not validation.is_healthy:
                if self.config.backup.before_repair:
                    backup_before_repair = self.backup_service.backup(bundle)
                repair = self.validator.repair_document(bundle)

            return OpenResult(
                bundle_path=bundle.path,
                classification=(
                    classification_name(classification) if classification else None
                ),
                backup_before_migration=backup_before_migration,
                migration=migration,
                validation=validation,
                backup_before_repair=backup_before_repair,
                repair=repair,
            )

    def validate(self, bundle: Bundle) -> ValidationResult:
        with self._lock_for(bundle):
            return self.validator.validate_document(bundle)

    def repair(self, bundle: Bundle) -> RepairResult:
        """Backs up (when configured) and repairs a bundle."""
        with self._lock_for(bundle):
            validation = self.validator.validate_document(bundle)
            if validation.is_healthy:
                return RepairResult(
                    success=True, actions_performed=[], validation=validation
                )
            if self.config.backup.before_repair:
                self.backup_service.backup(bundle)
            return self.validator.repair_document(bundle)

    def migrate(self, bundle: Bundle) -> MigrationResult:
        """Backs up (when configured) and migrates a bundle to current."""
        with self._lock_for(bundle):
            stored = self._read_stored_version(bundle)
            if isinstance(self.checker.check(stored), (NeedsMigration, Legacy)):
                if self.config.backup.before_migration:
                    self.backup_service.backup(bundle)
            return self._migrate(bundle)

    def backup(self, bundle: Bundle) -> BackupDescriptor:
        with self._lock_for(bundle):
            return self.backup_service.backup(bundle)

    def list_backups(self, bundle: Bundle) -> List[BackupDescriptor]:
        return self.backup_service.list_backups(bundle)

    def verify_backup(self, backup_path: Union[str, Path]) -> BackupVerification:
        return self.backup_service.verify(backup_path)

    def restore_backup(self, backup_path: Union[str, Path], bundle: Bundle) -> None:
        with self._lock_for(bundle):
            self.backup_service.restore(backup_path, bundle.path)

    def recover_interrupted_bundles(self) -> Dict[str, RepairResult]:
        """
        Launch-time scan: repairs every bundle whose previous write was
        interrupted.

        Returns:
            A mapping of bundle name to the repair outcome.
        """
        results: Dict[str, RepairResult] = {}
        for path in self.list_bundles():
            bundle = Bundle(path)
            if not self.validator.check_for_partial_sync(bundle):
                continue
            logger.warning(f"Recovering interrupted write in {bundle.name}")
            try:
                results[bundle.name] = self.repair(bundle)
            except RepairError as e:
                logger.error(f"Recovery of {bundle.name} failed: {e}")
                results[bundle.name] = RepairResult(
                    success=False, actions_performed=[str(e)]
                )
        logger.info(f"Recovery scan finished: {len(results)} bundle(s) repaired")
        return results

    async def open_bundle_async(self, bundle: Bundle) -> OpenResult:
        return await asyncio.to_thread(self.open_bundle, bundle)

    async def validate_async(self, bundle: Bundle) -> ValidationResult:
        return await asyncio.to_thread(self.validate, bundle)

    async def repair_async(self, bundle: Bundle) -> RepairResult:
        return await asyncio.to_thread(self.repair, bundle)

    async def migrate_async(self, bundle: Bundle) -> MigrationResult:
        return await asyncio.to_thread(self.migrate, bundle)

    async def backup_async(self, bundle: Bundle) -> BackupDescriptor:
        return await asyncio.to_thread(self.backup, bundle)

    async def verify_backup_async(
        self, backup_path: Union[str, Path]
    ) -> BackupVerification:
        return await asyncio.to_thread(self.verify_backup, backup_path)

    async def restore_backup_async(
        self, backup_path: Union[str, Path], bundle: Bundle
    ) -> None:
        await asyncio.to_thread(self.restore_backup, backup_path, bundle)

    async def recover_interrupted_bundles_async(self) -> Dict[str, RepairResult]:
        return await asyncio.to_thread(self.recover_interrupted_bundles)

    def _migrate(self, bundle: Bundle) -> MigrationResult:
        try:
            return self.migrator.migrate_to_current(bundle)
        except MigrationError as e:
            logger.error(f"Migration of {bundle.name} failed: {e}")
            raise

    def _read_stored_version(self, bundle: Bundle) -> Optional[int]:
        if not bundle.metadata_path.exists():
            raise MissingFileError(METADATA_FILENAME)
        try:
            return bundle.read_stored_version()
        except MetadataUnreadableError as e:
            raise CorruptedDocumentError(str(e)) from e
