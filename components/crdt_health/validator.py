"""
Validates the structural health of a document bundle and repairs it without
ever touching the source file.

Checks for:
- Missing required files for the bundle's declared schema version
- A history blob whose container signature is wrong
- History text that disagrees with the source (when the engine can tell)
- Write-interruption markers from a partial sync
- A source file that is not valid UTF-8

Usage:

    validator = CRDTHealthValidator()
    result = validator.validate_document(bundle)
    if not result.is_healthy:
        validator.repair_document(bundle)
"""

import logging
from datetime import datetime
from enum import Enum
from typing import Callable, FrozenSet, Iterable, List, Optional

from components.document_schema import (
    Bundle,
    DocumentMetadata,
    MetadataUnreadableError,
    SchemaVersion,
    VersionChecker,
)
from components.document_schema.metadata import utc_now
from pydantic import BaseModel, Field, computed_field
from shared.bundle import (
    BIBLIOGRAPHY_FILENAME,
    DEFAULT_TEMP_SUFFIXES,
    HISTORY_FILENAME,
    METADATA_FILENAME,
    SOURCE_FILENAME,
    atomic_write_bytes,
)

from .history import HistoryEngine, SeedHistoryEngine, has_valid_signature
from .markers import PartialSyncSnapshot, scan_interruption_markers

logger = logging.getLogger(__name__)


class IssueKind(str, Enum):
    HISTORY_CORRUPTED = "history-corrupted"
    CONTENT_MISMATCH = "content-mismatch"
    PARTIAL_SYNC = "partial-sync"
    MISSING_FILE = "missing-file"
    STALE_HISTORY = "stale-history"
    SOURCE_UNREADABLE = "source-unreadable"


class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class HealthIssue(BaseModel):
    kind: IssueKind
    severity: Severity
    description: str
    suggested_action: str


class ValidationResult(BaseModel):
    """Outcome of one validation pass over a bundle."""

    is_healthy: bool
    issues: List[HealthIssue] = Field(default_factory=list)
    has_crdt_state: bool
    source_size: int
    crdt_size: int
    declared_version: int
    partial_sync: PartialSyncSnapshot

    @computed_field  # type: ignore[prop-decorator]
    @property
    def size_ratio(self) -> float:
        """History bytes per source byte; 0 when the source is empty."""
        if self.source_size <= 0:
            return 0.0
        return self.crdt_size / self.source_size

    def has_issue(self, kind: IssueKind) -> bool:
        return any(issue.kind == kind for issue in self.issues)


class RepairResult(BaseModel):
    success: bool
    actions_performed: List[str] = Field(default_factory=list)
    validation: Optional[ValidationResult] = None


class RepairError(Exception):
    """Base class for repair failures."""


class SourceNotReadableError(RepairError):
    def __init__(self, reason: str = ""):
        message = "Could not read source file for history rebuild"
        super().__init__(f"{message}: {reason}" if reason else message)


class RepairFailedError(RepairError):
    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"History repair failed: {reason}")


def is_healthy(issues: Iterable[HealthIssue]) -> bool:
    """Informational issues never make a bundle unhealthy."""
    return all(issue.severity == Severity.INFO for issue in issues)


class CRDTHealthValidator:
    """Inspects and repairs the collaboration history envelope of bundles."""

    def __init__(
        self,
        checker: Optional[VersionChecker] = None,
        engine: Optional[HistoryEngine] = None,
        temp_suffixes: Iterable[str] = DEFAULT_TEMP_SUFFIXES,
        stale_history_ratio: Optional[float] = None,
        app_version: Optional[str] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.checker = checker or VersionChecker()
        self.engine = engine or SeedHistoryEngine()
        self.temp_suffixes = tuple(temp_suffixes)
        self.stale_history_ratio = stale_history_ratio
        self.app_version = app_version
        self.clock = clock

    def validate_document(self, bundle: Bundle) -> ValidationResult:
        """
        Validate a bundle's files and history blob.

        Args:
            bundle: The bundle to inspect. Nothing is written.

        Returns:
            A ValidationResult with every issue found.
        """
        snapshot = scan_interruption_markers(bundle.path, self.temp_suffixes)
        declared = self._declared_version(bundle)
        issues: List[HealthIssue] = []

        for filename in sorted(self._required_files(declared)):
            if not bundle.has_file(filename):
                issues.append(_missing_file_issue(filename))

        if bundle.has_file(SOURCE_FILENAME):
            issues.extend(self._check_source(bundle))

        source_size = bundle.file_size(SOURCE_FILENAME)
        crdt_size = bundle.file_size(HISTORY_FILENAME)
        has_crdt_state = crdt_size > 0

        if has_crdt_state:
            issues.extend(self._check_history(bundle))

        if self.stale_history_ratio is not None and source_size > 0:
            if crdt_size / source_size > self.stale_history_ratio:
                issues.append(
                    HealthIssue(
                        kind=IssueKind.STALE_HISTORY,
                        severity=Severity.INFO,
                        description=(
                            f"History is {crdt_size / source_size:.1f}x the size "
                            f"of the source"
                        ),
                        suggested_action="Consider compacting document history",
                    )
                )

        if snapshot.detected:
            issues.append(
                HealthIssue(
                    kind=IssueKind.PARTIAL_SYNC,
                    severity=Severity.WARNING,
                    description=(
                        f"Interrupted write detected "
                        f"({len(snapshot.marker_paths)} marker file(s))"
                    ),
                    suggested_action="Repair will clear the markers",
                )
            )

        result = ValidationResult(
            is_healthy=is_healthy(issues),
            issues=issues,
            has_crdt_state=has_crdt_state,
            source_size=source_size,
            crdt_size=crdt_size,
            declared_version=int(declared),
            partial_sync=snapshot,
        )
        if not result.is_healthy:
            logger.warning(
                f"Bundle {bundle.name} is unhealthy: "
                f"{', '.join(issue.kind.value for issue in issues)}"
            )
        return result

    def check_for_partial_sync(self, bundle: Bundle) -> bool:
        """
        Check whether a previous write to the bundle was interrupted.

        This is called at launch to detect incomplete syncs.
        """
        return scan_interruption_markers(bundle.path, self.temp_suffixes).detected

    def repair_document(self, bundle: Bundle) -> RepairResult:
        """
        Repair a bundle in place, preserving its source and existing metadata.

        Steps, in order: refuse if the source is unreadable; create missing
        metadata and bibliography; rebuild a missing, corrupted or mismatched
        history from the source; remove interruption markers.

        Raises:
            SourceNotReadableError: If the source file is missing or unreadable.
            RepairFailedError: If a filesystem operation fails mid-repair.
        """
        validation = self.validate_document(bundle)
        if validation.is_healthy:
            logger.info(f"Bundle {bundle.name} is already healthy")
            return RepairResult(success=True, actions_performed=[], validation=validation)

        try:
            source_text = bundle.read_source()
        except (OSError, UnicodeDecodeError) as e:
            logger.error(f"Cannot repair {bundle.name}: source not readable ({e})")
            raise SourceNotReadableError(str(e)) from e

        actions: List[str] = []
        try:
            if not bundle.metadata_path.exists():
                metadata = DocumentMetadata.default_for(
                    title=bundle.name, app_version=self.app_version, now=self.clock()
                )
                bundle.write_metadata(metadata)
                actions.append(f"Created missing {METADATA_FILENAME} with default values")

            declared = self._declared_version(bundle)
            if BIBLIOGRAPHY_FILENAME in self._required_files(declared) and not (
                bundle.bibliography_path.exists()
            ):
                bundle.bibliography_path.write_text("", encoding="utf-8")
                actions.append(f"Created missing {BIBLIOGRAPHY_FILENAME}")

            rebuild_reason = self._history_rebuild_reason(validation)
            if rebuild_reason:
                atomic_write_bytes(
                    bundle.history_path, self.engine.rebuild_from_text(source_text)
                )
                actions.append(
                    f"Rebuilt {HISTORY_FILENAME} from source content ({rebuild_reason}); "
                    f"previous history discarded"
                )

            removed = _remove_markers(validation.partial_sync)
            if removed:
                actions.append(f"Removed {removed} interruption marker file(s)")
        except OSError as e:
            logger.error(f"Repair of {bundle.name} failed: {e}")
            raise RepairFailedError(str(e)) from e

        for action in actions:
            logger.info(f"Repaired {bundle.name}: {action}")

        post_repair = self.validate_document(bundle)
        return RepairResult(
            success=post_repair.is_healthy,
            actions_performed=actions,
            validation=post_repair,
        )

    def _declared_version(self, bundle: Bundle) -> SchemaVersion:
        if not bundle.metadata_path.exists():
            return SchemaVersion.oldest()
        try:
            stored = bundle.read_stored_version()
        except (OSError, MetadataUnreadableError):
            return SchemaVersion.oldest()
        return self.checker.declared_version(stored)

    def _required_files(self, version: SchemaVersion) -> FrozenSet[str]:
        return self.checker.required_files(version)

    @staticmethod
    def _check_source(bundle: Bundle) -> List[HealthIssue]:
        try:
            bundle.read_source()
        except (OSError, UnicodeDecodeError) as e:
            return [
                HealthIssue(
                    kind=IssueKind.SOURCE_UNREADABLE,
                    severity=Severity.CRITICAL,
                    description=f"Source file could not be read as UTF-8: {e}",
                    suggested_action="Restore from backup; the source cannot be recreated",
                )
            ]
        return []

    def _check_history(self, bundle: Bundle) -> List[HealthIssue]:
        try:
            blob = bundle.history_path.read_bytes()
        except OSError as e:
            return [
                HealthIssue(
                    kind=IssueKind.HISTORY_CORRUPTED,
                    severity=Severity.WARNING,
                    description=f"History file could not be read: {e}",
                    suggested_action="History will be rebuilt from source content",
                )
            ]

        if not has_valid_signature(blob, self.engine.signature):
            return [
                HealthIssue(
                    kind=IssueKind.HISTORY_CORRUPTED,
                    severity=Severity.WARNING,
                    description="History file has invalid header",
                    suggested_action="History will be rebuilt from source content",
                )
            ]

        history_text = self.engine.extract_text(blob)
        if history_text is None:
            return []
        try:
            source_text = bundle.read_source()
        except (OSError, UnicodeDecodeError):
            return []
        if history_text != source_text:
            return [
                HealthIssue(
                    kind=IssueKind.CONTENT_MISMATCH,
                    severity=Severity.WARNING,
                    description="History text differs from the source file",
                    suggested_action="Source content will be used as authoritative",
                )
            ]
        return []

    @staticmethod
    def _history_rebuild_reason(validation: ValidationResult) -> Optional[str]:
        if not validation.has_crdt_state:
            return "history missing"
        if validation.has_issue(IssueKind.HISTORY_CORRUPTED):
            return "invalid header"
        if validation.has_issue(IssueKind.CONTENT_MISMATCH):
            return "content mismatch"
        return None


def _missing_file_issue(filename: str) -> HealthIssue:
    if filename == SOURCE_FILENAME:
        action = "Restore from backup; the source cannot be recreated"
    else:
        action = "Repair will recreate the file"
    return HealthIssue(
        kind=IssueKind.MISSING_FILE,
        severity=Severity.CRITICAL,
        description=f"Required file missing: {filename}",
        suggested_action=action,
    )


def _remove_markers(snapshot: PartialSyncSnapshot) -> int:
    removed = 0
    for path in snapshot.marker_paths:
        try:
            path.unlink()
        except FileNotFoundError:
            continue
        removed += 1
    return removed
