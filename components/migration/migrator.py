"""
Upgrades document bundles from older schema versions to the current one.

Migration runs step by step through the version chain and rewrites only
metadata and non-authoritative files. The source file is never touched, and a
bundle that is already current is left as it is.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional

from components.document_schema import (
    Bundle,
    Current,
    DocumentMetadata,
    Legacy,
    MetadataUnreadableError,
    NeedsMigration,
    NewerThanApp,
    SchemaVersion,
    VersionChecker,
)
from components.document_schema.metadata import utc_now
from pydantic import ValidationError
from shared.bundle import METADATA_FILENAME, SOURCE_FILENAME

logger = logging.getLogger(__name__)


class MigrationError(Exception):
    """Base class for migration failures."""


class NewerVersionError(MigrationError):
    def __init__(self, document_version: int):
        self.document_version = document_version
        super().__init__(
            f"This document was created with a newer version of the application "
            f"(schema {document_version}). Please update the app to open it."
        )


class UnsupportedVersionError(MigrationError):
    def __init__(self, document_version: int):
        self.document_version = document_version
        super().__init__(
            f"This document format (schema {document_version}) is not supported."
        )


class MissingFileError(MigrationError):
    def __init__(self, filename: str):
        self.filename = filename
        super().__init__(f"Document is missing required file: {filename}")


class CorruptedDocumentError(MigrationError):
    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Document appears to be corrupted: {reason}")


@dataclass
class MigrationResult:
    from_version: Optional[int]
    to_version: int
    steps: List[str] = field(default_factory=list)

    @property
    def migrated(self) -> bool:
        return bool(self.steps)


class DocumentMigrator:
    """Migrates bundles in place to the current schema version."""

    def __init__(
        self,
        checker: Optional[VersionChecker] = None,
        app_version: Optional[str] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.checker = checker or VersionChecker()
        self.app_version = app_version
        self.clock = clock
        self._steps = {
            SchemaVersion.V1_0: self._migrate_1_0_to_1_1,
            SchemaVersion.V1_1: self._migrate_1_1_to_1_2,
        }

    def migrate_to_current(self, bundle: Bundle) -> MigrationResult:
        """
        Migrate a bundle to the current schema version.

        Args:
            bundle: The bundle to upgrade in place.

        Returns:
            A MigrationResult listing the steps performed (empty if current).

        Raises:
            MigrationError: If the bundle cannot be migrated. The bundle is left
                unchanged when the error is raised before the first step.
        """
        for filename in (SOURCE_FILENAME, METADATA_FILENAME):
            if not bundle.has_file(filename):
                raise MissingFileError(filename)

        try:
            stored_version = bundle.read_stored_version()
        except MetadataUnreadableError as e:
            raise CorruptedDocumentError(str(e)) from e

        target = self.checker.current
        classification = self.checker.check(stored_version)
        result = MigrationResult(from_version=stored_version, to_version=int(target))

        if isinstance(classification, Current):
            logger.info(f"Document {bundle.name} already at current version")
            return result

        if isinstance(classification, NewerThanApp):
            raise NewerVersionError(classification.version)

        if isinstance(classification, Legacy):
            logger.info(
                f"Migrating legacy document {bundle.name} to "
                f"v{target.display_string}"
            )
            metadata = self._load_legacy_metadata(bundle)
            result.steps.append("Converted legacy metadata to versioned format")
            start = SchemaVersion.oldest()
        elif isinstance(classification, NeedsMigration):
            start = classification.schema_version
            if start is None:
                raise UnsupportedVersionError(classification.from_version)
            logger.info(
                f"Migrating document {bundle.name} from v{start.display_string} "
                f"to v{target.display_string}"
            )
            metadata = self._load_metadata(bundle)
        else:
            raise UnsupportedVersionError(stored_version or 0)

        version = start
        while version < target:
            next_version = version.next()
            step = self._steps.get(version)
            if step is None or next_version is None:
                raise UnsupportedVersionError(int(version))
            result.steps.append(step(bundle))
            logger.info(
                f"Migrated v{version.display_string} -> "
                f"v{next_version.display_string}: {result.steps[-1]}"
            )
            version = next_version

        updated = metadata.model_copy(
            update={
                "schema_version": int(target),
                "modified_at": self.clock(),
                "last_saved_by_app_version": self.app_version
                or metadata.last_saved_by_app_version,
            }
        )
        bundle.write_metadata(DocumentMetadata.model_validate(updated.model_dump()))
        result.steps.append(f"Updated metadata to schema {int(target)}")
        return result

    def _load_metadata(self, bundle: Bundle) -> DocumentMetadata:
        try:
            return bundle.read_metadata()
        except MetadataUnreadableError as e:
            raise CorruptedDocumentError(str(e)) from e

    def _load_legacy_metadata(self, bundle: Bundle) -> DocumentMetadata:
        """Read metadata written before the schemaVersion field existed."""
        try:
            raw = bundle.read_raw_metadata()
        except MetadataUnreadableError as e:
            raise CorruptedDocumentError(str(e)) from e

        raw = dict(raw)
        raw.setdefault("title", bundle.name)
        raw["schemaVersion"] = int(SchemaVersion.oldest())
        try:
            return DocumentMetadata.model_validate(raw)
        except ValidationError as e:
            raise CorruptedDocumentError(f"legacy metadata is malformed: {e}") from e

    def _migrate_1_0_to_1_1(self, bundle: Bundle) -> str:
        if not bundle.bibliography_path.exists():
            bundle.bibliography_path.write_text("", encoding="utf-8")
            return "Added empty bibliography.bib"
        return "Kept existing bibliography.bib"

    def _migrate_1_1_to_1_2(self, bundle: Bundle) -> str:
        # History is created by the replication engine on first edit.
        return "Prepared bundle for collaboration history"
