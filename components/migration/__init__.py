from .migrator import (
    CorruptedDocumentError,
    DocumentMigrator,
    MigrationError,
    MigrationResult,
    MissingFileError,
    NewerVersionError,
    UnsupportedVersionError,
)

__all__ = [
    "CorruptedDocumentError",
    "DocumentMigrator",
    "MigrationError",
    "MigrationResult",
    "MissingFileError",
    "NewerVersionError",
    "UnsupportedVersionError",
]
